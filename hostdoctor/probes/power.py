"""Battery wear, power source and active power plan."""

from __future__ import annotations

import logging
import re
import sys
from pathlib import Path

import psutil

from hostdoctor.diagnostics.result import BatteryDiagnostics
from hostdoctor.probes._command import IS_WINDOWS, powershell_json, run_command
from hostdoctor.scan.phases import ProbeContext

logger = logging.getLogger(__name__)

_POWER_SUPPLY = Path("/sys/class/power_supply")


def probe_battery(record: BatteryDiagnostics, ctx: ProbeContext) -> None:
    record.power_plan = active_power_plan()

    battery = psutil.sensors_battery() if hasattr(psutil, "sensors_battery") else None
    if battery is None:
        record.power_source = "AC"
        ctx.log("  No battery present")
        return

    record.has_battery = True
    record.charge_percent = round(battery.percent, 1)
    record.power_source = "AC" if battery.power_plugged else "Battery"

    design, full = _capacities()
    record.design_capacity_mwh = design
    record.full_charge_capacity_mwh = full
    if design > 0 and full > 0:
        record.health_percent = round(min(100.0, full / design * 100), 1)
    ctx.log(f"  Battery {record.charge_percent}% on {record.power_source}, health {record.health_percent}")


def active_power_plan() -> str:
    if IS_WINDOWS:
        res = run_command(["powercfg", "/getactivescheme"], timeout_sec=10)
        match = re.search(r"\(([^)]+)\)", res.stdout) if res.ok else None
        return match.group(1) if match else "Unknown"
    if sys.platform == "linux":
        res = run_command(["powerprofilesctl", "get"], timeout_sec=5)
        if res.ok and res.stdout.strip():
            return res.stdout.strip()
    return "Unknown"


def _capacities() -> tuple[int, int]:
    """(design, full charge) capacity in mWh; zeros when unknown."""
    if IS_WINDOWS:
        static = powershell_json(
            "Get-CimInstance -Namespace root/wmi -ClassName BatteryStaticData | Select-Object DesignedCapacity",
            timeout_sec=15,
        )
        full = powershell_json(
            "Get-CimInstance -Namespace root/wmi -ClassName BatteryFullChargedCapacity "
            "| Select-Object FullChargedCapacity",
            timeout_sec=15,
        )
        design_mwh = int(static[0].get("DesignedCapacity") or 0) if static else 0
        full_mwh = int(full[0].get("FullChargedCapacity") or 0) if full else 0
        return design_mwh, full_mwh

    if not _POWER_SUPPLY.is_dir():
        return 0, 0
    for supply in sorted(_POWER_SUPPLY.glob("BAT*")):
        for prefix in ("energy", "charge"):
            design = _read_int(supply / f"{prefix}_full_design")
            full = _read_int(supply / f"{prefix}_full")
            if design and full:
                # sysfs reports micro-units
                return design // 1000, full // 1000
    return 0, 0


def _read_int(path: Path) -> int:
    try:
        return int(path.read_text().strip())
    except (OSError, ValueError):
        return 0
