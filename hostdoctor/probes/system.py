"""System overview, CPU and memory probes (psutil)."""

from __future__ import annotations

import logging
import platform
import socket
import time

import psutil

from hostdoctor.diagnostics.result import (
    CpuDiagnostics,
    ProcessInfo,
    RamDiagnostics,
    SystemOverview,
)
from hostdoctor.probes._command import IS_WINDOWS, powershell_json
from hostdoctor.scan.phases import ProbeContext

logger = logging.getLogger(__name__)

_MB = 1024 * 1024
UPTIME_FLAG_DAYS = 7
TOP_PROCESS_COUNT = 5
# Current clock below this share of max while busy counts as throttling.
THROTTLE_RATIO = 0.6
THROTTLE_MIN_LOAD = 50.0


def probe_system(record: SystemOverview, ctx: ProbeContext) -> None:
    record.hostname = socket.gethostname()
    record.os_name = platform.system()
    record.os_version = platform.release()
    record.cpu_model = _cpu_model()
    record.total_ram_mb = psutil.virtual_memory().total // _MB
    record.uptime_seconds = max(0.0, time.time() - psutil.boot_time())
    record.uptime_flagged = record.uptime_seconds >= UPTIME_FLAG_DAYS * 86400
    ctx.log(f"  Host {record.hostname}, {record.os_name} {record.os_version}")


def _cpu_model() -> str:
    if IS_WINDOWS:
        rows = powershell_json("Get-CimInstance Win32_Processor | Select-Object Name", timeout_sec=15)
        if rows and rows[0].get("Name"):
            return str(rows[0]["Name"]).strip()
    else:
        try:
            with open("/proc/cpuinfo", encoding="utf-8") as f:
                for line in f:
                    if line.startswith("model name"):
                        return line.split(":", 1)[1].strip()
        except OSError:
            pass
    return platform.processor() or "Unknown"


def probe_cpu(record: CpuDiagnostics, ctx: ProbeContext) -> None:
    """Average ``cpu_sample_count`` one-second load samples."""
    procs = _prime_process_cpu()

    samples: list[float] = []
    for _ in range(max(1, ctx.settings.cpu_sample_count)):
        ctx.token.raise_if_cancelled()
        samples.append(psutil.cpu_percent(interval=1.0))
    record.load_percent = round(sum(samples) / len(samples), 1)
    ctx.log(f"  CPU load {record.load_percent}% over {len(samples)} samples")

    record.temperature_c = _cpu_temperature()
    freq = psutil.cpu_freq()
    if freq and freq.max:
        record.is_throttling = (
            freq.current < freq.max * THROTTLE_RATIO and record.load_percent >= THROTTLE_MIN_LOAD
        )

    top: list[ProcessInfo] = []
    for proc in procs:
        try:
            top.append(ProcessInfo(
                name=proc.name(),
                pid=proc.pid,
                memory_mb=proc.memory_info().rss // _MB,
                cpu_percent=round(proc.cpu_percent(None) / (psutil.cpu_count() or 1), 1),
            ))
        except psutil.Error:
            continue
    top.sort(key=lambda p: p.cpu_percent, reverse=True)
    record.top_processes = top[:TOP_PROCESS_COUNT]


def _prime_process_cpu() -> list[psutil.Process]:
    # First cpu_percent() call per process only sets the reference point.
    procs = []
    for proc in psutil.process_iter():
        try:
            proc.cpu_percent(None)
            procs.append(proc)
        except psutil.Error:
            continue
    return procs


def _cpu_temperature() -> float | None:
    if not hasattr(psutil, "sensors_temperatures"):
        return None
    try:
        sensors = psutil.sensors_temperatures()
    except (OSError, RuntimeError):
        return None
    for chip in ("coretemp", "k10temp", "zenpower", "cpu_thermal", "acpitz"):
        readings = [r.current for r in sensors.get(chip, []) if r.current]
        if readings:
            return round(max(readings), 1)
    return None


def probe_ram(record: RamDiagnostics, ctx: ProbeContext) -> None:
    vm = psutil.virtual_memory()
    record.total_mb = vm.total // _MB
    record.available_mb = vm.available // _MB
    record.used_mb = record.total_mb - record.available_mb
    record.percent_used = round(vm.percent, 1)
    ctx.log(f"  RAM {record.percent_used}% of {record.total_mb:,} MB in use")

    top: list[ProcessInfo] = []
    for proc in psutil.process_iter(["pid", "name", "memory_info"]):
        mem = proc.info.get("memory_info")
        if mem is None:
            continue
        top.append(ProcessInfo(name=proc.info.get("name") or "", pid=proc.info["pid"], memory_mb=mem.rss // _MB))
    top.sort(key=lambda p: p.memory_mb, reverse=True)
    record.top_processes = top[:TOP_PROCESS_COUNT]
