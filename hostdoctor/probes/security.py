"""Antivirus, firewall and disk encryption state.

Values stay ``None`` where the platform offers no reliable answer, so the
matching rules do not fire.
"""

from __future__ import annotations

import logging
import os
import shutil
import sys

from hostdoctor.diagnostics.result import SecurityDiagnostics
from hostdoctor.probes._command import IS_WINDOWS, powershell_json, run_command
from hostdoctor.scan.phases import ProbeContext

logger = logging.getLogger(__name__)


def probe_security(record: SecurityDiagnostics, ctx: ProbeContext) -> None:
    if IS_WINDOWS:
        _windows(record, ctx)
    elif sys.platform == "darwin":
        _macos(record, ctx)
    else:
        _linux(record, ctx)
    ctx.log(
        f"  Antivirus: {record.antivirus_name}; firewall: {record.firewall_enabled}; "
        f"encryption: {record.encryption_status}",
    )


def _windows(record: SecurityDiagnostics, ctx: ProbeContext) -> None:
    products = powershell_json(
        "Get-CimInstance -Namespace root/SecurityCenter2 -ClassName AntiVirusProduct "
        "| Select-Object displayName",
        timeout_sec=20,
    )
    names = [str(p.get("displayName")) for p in products if p.get("displayName")]
    record.antivirus_present = bool(names)
    record.antivirus_name = ", ".join(names) if names else "None"

    ctx.token.raise_if_cancelled()
    profiles = powershell_json("Get-NetFirewallProfile | Select-Object Name, Enabled", timeout_sec=20)
    if profiles:
        record.firewall_enabled = all(bool(p.get("Enabled")) for p in profiles)

    ctx.token.raise_if_cancelled()
    drive = os.environ.get("SystemDrive", "C:")
    res = run_command(["manage-bde", "-status", drive], timeout_sec=20)
    if res.ok:
        on = "protection on" in res.stdout.lower()
        record.encrypted = on
        record.encryption_status = "BitLocker on" if on else "BitLocker off"


def _macos(record: SecurityDiagnostics, ctx: ProbeContext) -> None:
    res = run_command(["fdesetup", "status"], timeout_sec=10)
    if res.ok:
        record.encrypted = "filevault is on" in res.stdout.lower()
        record.encryption_status = "FileVault on" if record.encrypted else "FileVault off"

    res = run_command(["/usr/libexec/ApplicationFirewall/socketfilterfw", "--getglobalstate"], timeout_sec=10)
    if res.ok:
        record.firewall_enabled = "enabled" in res.stdout.lower()


def _linux(record: SecurityDiagnostics, ctx: ProbeContext) -> None:
    scanners = [name for name in ("clamd", "clamscan", "sophos-av", "mdatp") if shutil.which(name)]
    if scanners:
        record.antivirus_present = True
        record.antivirus_name = scanners[0]

    record.firewall_enabled = _linux_firewall()

    ctx.token.raise_if_cancelled()
    res = run_command(["lsblk", "-n", "-o", "TYPE"], timeout_sec=10)
    if res.ok:
        record.encrypted = "crypt" in res.stdout.split()
        record.encryption_status = "LUKS on" if record.encrypted else "Not encrypted"


def _linux_firewall() -> bool | None:
    res = run_command(["ufw", "status"], timeout_sec=10)
    if res.ok:
        return "status: active" in res.stdout.lower()
    res = run_command(["firewall-cmd", "--state"], timeout_sec=10)
    if res.exit_code != -1:
        return res.ok and "running" in res.stdout.lower()
    return None
