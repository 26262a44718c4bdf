"""Network probe: connection type, latency, DNS resolve time and throughput.

Latency is a TCP connect round trip (no raw-socket ICMP, so no privileges
needed). Throughput streams a fixed-size download over httpx and stops
early if the phase is cancelled.
"""

from __future__ import annotations

import logging
import socket
import time

import httpx
import psutil

from hostdoctor.diagnostics.result import NetworkDiagnostics
from hostdoctor.scan.cancellation import CancellationToken
from hostdoctor.scan.phases import ProbeContext

logger = logging.getLogger(__name__)

_VPN_MARKERS = ("tun", "tap", "wg", "vpn", "utun", "ppp", "tailscale", "zt")
_WIFI_MARKERS = ("wi-fi", "wifi", "wlan", "wlp", "wireless", "airport")
_ETHERNET_MARKERS = ("ethernet", "eth", "enp", "eno", "ens", "en0", "en1")


def probe_network(record: NetworkDiagnostics, ctx: ProbeContext) -> None:
    settings = ctx.settings
    record.connection_type, record.vpn_active = classify_interfaces()

    ctx.token.raise_if_cancelled()
    record.ping_ms = measure_latency(settings.network_ping_host, timeout_ms=5_000)
    ctx.log(f"  Latency to {settings.network_ping_host}: {record.ping_ms} ms")

    ctx.token.raise_if_cancelled()
    record.dns_ms = measure_dns(settings.network_dns_host)
    ctx.log(f"  DNS resolve {settings.network_dns_host}: {record.dns_ms} ms")

    ctx.token.raise_if_cancelled()
    try:
        record.download_mbps = measure_download(
            settings.network_test_url, settings.network_http_timeout, ctx.token,
        )
        ctx.log(f"  Download: {record.download_mbps} Mbps")
    except httpx.HTTPError as e:
        record.speed_test_error = f"{type(e).__name__}: {e}"
        ctx.log(f"  Speed test failed: {record.speed_test_error}")


def classify_interfaces() -> tuple[str, bool]:
    """(connection type, vpn active) from the interfaces that are up."""
    try:
        stats = psutil.net_if_stats()
    except OSError:
        return "Unknown", False

    up = [name for name, st in stats.items() if st.isup and not name.lower().startswith(("lo", "loopback"))]
    lowered = [n.lower() for n in up]
    vpn = any(n.startswith(_VPN_MARKERS) or "vpn" in n for n in lowered)
    if any(any(m in n for m in _WIFI_MARKERS) for n in lowered):
        return "Wi-Fi", vpn
    if any(n.startswith(_ETHERNET_MARKERS) or "ethernet" in n for n in lowered):
        return "Ethernet", vpn
    return ("Other" if up else "Disconnected"), vpn


def measure_latency(hostname: str, port: int = 443, timeout_ms: int = 5_000) -> float | None:
    """TCP connect time in ms, or None if the host is unreachable."""
    t0 = time.perf_counter()
    try:
        sock = socket.create_connection((hostname, port), timeout=timeout_ms / 1000)
        sock.close()
    except OSError as e:
        logger.info("Latency check to %s:%s failed: %s", hostname, port, e)
        return None
    return round((time.perf_counter() - t0) * 1000, 1)


def measure_dns(hostname: str) -> float | None:
    """Name resolution time in ms, or None on failure."""
    t0 = time.perf_counter()
    try:
        socket.getaddrinfo(hostname, None)
    except socket.gaierror as e:
        logger.info("DNS resolution of %s failed: %s", hostname, e)
        return None
    return round((time.perf_counter() - t0) * 1000, 1)


def measure_download(url: str, timeout: float, token: CancellationToken) -> float | None:
    """Stream ``url`` and return throughput in Mbps. Raises httpx.HTTPError."""
    received = 0
    t0 = time.perf_counter()
    with httpx.Client(timeout=timeout, follow_redirects=True) as client:
        with client.stream("GET", url) as resp:
            resp.raise_for_status()
            for chunk in resp.iter_bytes():
                received += len(chunk)
                if token.cancelled:
                    break
    elapsed = time.perf_counter() - t0
    if elapsed <= 0 or received == 0:
        return None
    return round(received * 8 / elapsed / 1_000_000, 1)
