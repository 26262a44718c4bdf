"""Pending OS updates, reboot-pending flag and update service state."""

from __future__ import annotations

import logging
import os
import time
from pathlib import Path

from hostdoctor.diagnostics.result import UpdateDiagnostics
from hostdoctor.probes._command import IS_WINDOWS, powershell, powershell_json, run_command
from hostdoctor.scan.phases import ProbeContext

logger = logging.getLogger(__name__)

_APT_STAMPS = (
    Path("/var/lib/apt/periodic/upgrade-stamp"),
    Path("/var/lib/apt/periodic/update-success-stamp"),
    Path("/var/log/dpkg.log"),
)


def probe_updates(record: UpdateDiagnostics, ctx: ProbeContext) -> None:
    if IS_WINDOWS:
        _windows(record, ctx)
    else:
        _apt(record, ctx)
    ctx.log(
        f"  Pending updates: {record.pending_count}; reboot pending: {record.reboot_pending}; "
        f"last update {record.days_since_update} day(s) ago",
    )


def _windows(record: UpdateDiagnostics, ctx: ProbeContext) -> None:
    service = powershell_json("Get-Service wuauserv | Select-Object @{n='StartType';e={\"$($_.StartType)\"}}")
    if service:
        record.service_start_type = str(service[0].get("StartType") or "Unknown")

    ctx.token.raise_if_cancelled()
    res = powershell(
        "Test-Path 'HKLM:\\SOFTWARE\\Microsoft\\Windows\\CurrentVersion\\WindowsUpdate\\Auto Update\\RebootRequired'",
        timeout_sec=10,
    )
    record.reboot_pending = res.ok and res.stdout.strip().lower() == "true"

    ctx.token.raise_if_cancelled()
    hotfix = powershell_json(
        "Get-HotFix | Where-Object InstalledOn | Sort-Object InstalledOn -Descending | Select-Object -First 1 "
        "| Select-Object @{n='Days';e={[int]((Get-Date) - $_.InstalledOn).TotalDays}}",
        timeout_sec=30,
    )
    if hotfix and hotfix[0].get("Days") is not None:
        record.days_since_update = int(hotfix[0]["Days"])

    if record.service_disabled:
        # The update agent cannot search while its service is disabled.
        return
    ctx.token.raise_if_cancelled()
    res = powershell(
        "(New-Object -ComObject Microsoft.Update.Session).CreateUpdateSearcher()"
        ".Search('IsInstalled=0 and IsHidden=0').Updates.Count",
        timeout_sec=25,
    )
    if res.ok and res.stdout.strip().isdigit():
        record.pending_count = int(res.stdout.strip())


def _apt(record: UpdateDiagnostics, ctx: ProbeContext) -> None:
    record.reboot_pending = Path("/var/run/reboot-required").exists()

    res = run_command(["apt-get", "-s", "-q", "upgrade"], timeout_sec=25)
    if res.ok:
        record.pending_count = sum(1 for line in res.stdout.splitlines() if line.startswith("Inst "))
        record.service_start_type = "N/A"

    for stamp in _APT_STAMPS:
        try:
            mtime = os.stat(stamp).st_mtime
        except OSError:
            continue
        record.days_since_update = int((time.time() - mtime) // 86400)
        break
