"""Graphics adapter probe: driver age, temperature and load."""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, timezone

import psutil

from hostdoctor.diagnostics.result import GpuAdapter, GpuDiagnostics
from hostdoctor.probes._command import IS_WINDOWS, powershell_json, run_command
from hostdoctor.scan.phases import ProbeContext

logger = logging.getLogger(__name__)

_MB = 1024 * 1024
DRIVER_MAX_AGE_DAYS = 365
# A second thermal reading further than this from the first belongs to another adapter.
SECONDARY_TEMP_DELTA = 5.0
_GPU_SENSOR_CHIPS = ("amdgpu", "nouveau", "radeon", "i915")


def probe_gpu(record: GpuDiagnostics, ctx: ProbeContext) -> None:
    adapters = _windows_adapters() if IS_WINDOWS else []
    ctx.token.raise_if_cancelled()
    _merge_nvidia(adapters)
    if not adapters:
        ctx.log("  No graphics adapter reported")
        return

    adapters[0].is_primary = True
    assign_temperatures(adapters, _sensor_readings())

    today = datetime.now(timezone.utc).date()
    for adapter in adapters:
        if adapter.driver_date is not None:
            adapter.driver_outdated = (today - adapter.driver_date).days > DRIVER_MAX_AGE_DAYS
    record.adapters = adapters
    ctx.log(f"  {len(adapters)} adapter(s); primary {adapters[0].name}")


def assign_temperatures(adapters: list[GpuAdapter], readings: list[float]) -> None:
    """Attribute loose thermal readings to adapters that have none.

    The first reading goes to the primary adapter. A further reading is
    only credited to the secondary adapter when it differs from the first
    by more than ``SECONDARY_TEMP_DELTA``; otherwise it is assumed to be the
    same chip reported twice.
    """
    if not adapters or not readings:
        return
    if adapters[0].temperature_c is None:
        adapters[0].temperature_c = readings[0]
    if len(adapters) < 2 or len(readings) < 2:
        return
    if adapters[1].temperature_c is None and abs(readings[1] - readings[0]) > SECONDARY_TEMP_DELTA:
        adapters[1].temperature_c = readings[1]


def _windows_adapters() -> list[GpuAdapter]:
    rows = powershell_json(
        "Get-CimInstance Win32_VideoController | "
        "Select-Object Name, DriverVersion, @{n='DriverDate';e={$_.DriverDate.ToString('yyyy-MM-dd')}}, AdapterRAM",
        timeout_sec=20,
    )
    adapters = []
    for row in rows:
        adapters.append(GpuAdapter(
            name=str(row.get("Name") or "Unknown"),
            driver_version=str(row.get("DriverVersion") or "Unknown"),
            driver_date=_parse_date(row.get("DriverDate")),
            memory_mb=int(row.get("AdapterRAM") or 0) // _MB,
        ))
    return adapters


def _merge_nvidia(adapters: list[GpuAdapter]) -> None:
    res = run_command(
        [
            "nvidia-smi",
            "--query-gpu=name,driver_version,temperature.gpu,utilization.gpu,memory.total",
            "--format=csv,noheader,nounits",
        ],
        timeout_sec=15,
    )
    if not res.ok:
        return
    for line in res.stdout.splitlines():
        fields = [f.strip() for f in line.split(",")]
        if len(fields) < 5:
            continue
        name, version, temp, usage, memory = fields[:5]
        match = next((a for a in adapters if a.name.lower() == name.lower()), None)
        if match is None:
            match = GpuAdapter(name=name, driver_version=version)
            adapters.append(match)
        match.temperature_c = _to_float(temp)
        match.usage_percent = _to_float(usage)
        if memory.isdigit():
            match.memory_mb = int(memory)


def _sensor_readings() -> list[float]:
    if not hasattr(psutil, "sensors_temperatures"):
        return []
    try:
        sensors = psutil.sensors_temperatures()
    except (OSError, RuntimeError):
        return []
    readings = []
    for chip in _GPU_SENSOR_CHIPS:
        for entry in sensors.get(chip, []):
            if entry.current:
                readings.append(round(entry.current, 1))
                break
    return readings


def _parse_date(value) -> date | None:
    if not value:
        return None
    match = re.match(r"(\d{4})-(\d{2})-(\d{2})", str(value))
    if not match:
        return None
    try:
        return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError:
        return None


def _to_float(value: str) -> float | None:
    try:
        return float(value)
    except ValueError:
        return None
