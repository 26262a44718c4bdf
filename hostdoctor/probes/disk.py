"""Drive usage, health, activity and reclaimable-space probe."""

from __future__ import annotations

import logging
import os
import sys

import psutil

from hostdoctor import locations
from hostdoctor.diagnostics.result import BrowserCache, DiskDiagnostics, DriveInfo
from hostdoctor.probes._command import IS_WINDOWS, powershell_json
from hostdoctor.scan.phases import ProbeContext

logger = logging.getLogger(__name__)

_MB = 1024 * 1024
_FAILING_HEALTH = ("unhealthy", "warning", "failing", "pred fail")
# Pseudo / container filesystems that are never worth reporting.
_IGNORED_FSTYPES = {"squashfs", "tmpfs", "devtmpfs", "overlay", "iso9660", "udf"}


def probe_disk(record: DiskDiagnostics, ctx: ProbeContext) -> None:
    health = _physical_disk_health()
    record.drives = _drives(health)
    ctx.log(f"  {len(record.drives)} drive(s) found")

    ctx.token.raise_if_cancelled()
    record.activity_percent = _activity_percent(ctx)

    ctx.token.raise_if_cancelled()
    record.temp_mb = locations.paths_size_mb(locations.temp_paths())
    record.trash_mb = trash_mb()
    record.crash_dump_mb = locations.paths_size_mb(locations.crash_dump_paths())

    for browser in locations.BROWSERS:
        ctx.token.raise_if_cancelled()
        paths = [p for p in locations.browser_cache_paths(browser) if p.exists()]
        if not paths:
            continue
        record.browser_caches.append(BrowserCache(
            name=browser,
            cache_mb=locations.paths_size_mb(paths),
            path=str(paths[0]),
        ))
    ctx.log(f"  Reclaimable: {record.reclaimable_mb:,} MB")


def _system_root() -> str:
    if IS_WINDOWS:
        return os.environ.get("SystemDrive", "C:") + "\\"
    return "/"


def _drives(health: dict[str, str]) -> list[DriveInfo]:
    drives: list[DriveInfo] = []
    for part in psutil.disk_partitions(all=False):
        if part.fstype.lower() in _IGNORED_FSTYPES or "cdrom" in part.opts:
            continue
        try:
            usage = psutil.disk_usage(part.mountpoint)
        except (PermissionError, OSError):
            continue
        status = health.get(part.device.rstrip("\\").upper(), health.get("*", "Unknown"))
        drives.append(DriveInfo(
            mount=part.mountpoint,
            total_mb=usage.total // _MB,
            used_mb=usage.used // _MB,
            free_mb=usage.free // _MB,
            percent_used=round(usage.percent, 1),
            health_status=status,
            health_failing=status.lower() in _FAILING_HEALTH,
            drive_type=_drive_type(part.device),
        ))
    root = _system_root()
    # System drive first
    drives.sort(key=lambda d: d.mount.rstrip("\\/").lower() != root.rstrip("\\/").lower())
    return drives


def _drive_type(device: str) -> str:
    if sys.platform != "linux":
        return "Unknown"
    name = os.path.basename(device)
    base = name.rstrip("0123456789")
    if base.startswith("nvme"):
        return "NVMe"
    try:
        with open(f"/sys/block/{base}/queue/rotational", encoding="utf-8") as f:
            return "HDD" if f.read().strip() == "1" else "SSD"
    except OSError:
        return "Unknown"


def _physical_disk_health() -> dict[str, str]:
    """Drive letter (or ``*`` for all) -> health status text."""
    if not IS_WINDOWS:
        return {}
    rows = powershell_json("Get-PhysicalDisk | Select-Object FriendlyName, HealthStatus", timeout_sec=20)
    statuses = [str(r.get("HealthStatus") or "Unknown") for r in rows]
    if not statuses:
        return {}
    # Worst physical disk applies to every volume; volume mapping needs admin rights.
    failing = [s for s in statuses if s.lower() in _FAILING_HEALTH]
    return {"*": failing[0] if failing else statuses[0]}


def _activity_percent(ctx: ProbeContext) -> float | None:
    before = psutil.disk_io_counters()
    if before is None or not hasattr(before, "busy_time"):
        return None
    if ctx.token.wait(1.0):
        return None
    after = psutil.disk_io_counters()
    busy_ms = after.busy_time - before.busy_time
    return round(min(100.0, max(0.0, busy_ms / 10.0)), 1)


def trash_mb() -> int:
    if not IS_WINDOWS:
        return locations.paths_size_mb(locations.trash_paths())
    rows = powershell_json(
        "(New-Object -ComObject Shell.Application).NameSpace(10).Items() | Select-Object Size",
        timeout_sec=20,
    )
    return sum(int(r.get("Size") or 0) for r in rows) // _MB
