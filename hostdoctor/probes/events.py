"""Recent crash, disk-error and shutdown events from the system logs.

Also records, per category, when it was last remediated successfully so
only newer events count as outstanding.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timedelta, timezone

from hostdoctor.diagnostics.result import EVENT_CATEGORIES, EventEntry, EventHistory
from hostdoctor.probes._command import IS_WINDOWS, powershell_json, run_command
from hostdoctor.scan.phases import ProbeContext

logger = logging.getLogger(__name__)

LOOKBACK_DAYS = 30
MAX_EVENTS = 200

# category -> Get-WinEvent filter hashtable body
_WINDOWS_FILTERS = {
    "bsods": "LogName='System'; ProviderName='Microsoft-Windows-WER-SystemErrorReporting'; Id=1001",
    "app_crashes": "LogName='Application'; ProviderName='Application Error'; Id=1000",
    "disk_errors": "LogName='System'; ProviderName='disk','Ntfs','stornvme','storahci'; Id=7,11,51,55,153",
    "unexpected_shutdowns": "LogName='System'; Id=41,6008",
}
_DISK_ERROR_MARKERS = ("i/o error", "ext4-fs error", "btrfs error", "xfs", "medium error", "ata bus error")


def probe_events(record: EventHistory, ctx: ProbeContext) -> None:
    for category in EVENT_CATEGORIES:
        stamp = ctx.remediated_at(category)
        if stamp is not None:
            record.remediated_at[category] = stamp

    if IS_WINDOWS:
        for category, flt in _WINDOWS_FILTERS.items():
            ctx.token.raise_if_cancelled()
            setattr(record, category, _windows_events(flt))
    elif sys.platform == "linux":
        record.app_crashes = _coredumps()
        ctx.token.raise_if_cancelled()
        record.disk_errors = _kernel_disk_errors()

    ctx.log(
        "  Events: "
        + ", ".join(f"{len(getattr(record, c))} {c.replace('_', ' ')}" for c in EVENT_CATEGORIES),
    )


def _windows_events(flt: str) -> list[EventEntry]:
    rows = powershell_json(
        f"Get-WinEvent -FilterHashtable @{{{flt}; StartTime=(Get-Date).AddDays(-{LOOKBACK_DAYS})}} "
        f"-MaxEvents {MAX_EVENTS} -ErrorAction SilentlyContinue | Select-Object ProviderName, Id, "
        "LevelDisplayName, @{n='Time';e={$_.TimeCreated.ToUniversalTime().ToString('o')}}, Message",
        timeout_sec=20,
    )
    entries = []
    for r in rows:
        ts = _parse_iso(r.get("Time"))
        if ts is None:
            continue
        entries.append(EventEntry(
            source=str(r.get("ProviderName") or ""),
            event_id=int(r.get("Id") or 0),
            level=str(r.get("LevelDisplayName") or ""),
            timestamp=ts,
            message=str(r.get("Message") or "").strip(),
        ))
    return entries


def _coredumps() -> list[EventEntry]:
    res = run_command(
        ["coredumpctl", "list", "--json=short", "--no-pager", f"--since=-{LOOKBACK_DAYS}d"],
        timeout_sec=15,
    )
    if not res.ok or not res.stdout.strip():
        return []
    try:
        rows = json.loads(res.stdout)
    except json.JSONDecodeError:
        return []
    entries = []
    for r in rows[-MAX_EVENTS:]:
        exe = str(r.get("exe") or "").rsplit("/", 1)[-1]
        entries.append(EventEntry(
            source="systemd-coredump",
            event_id=int(r.get("sig") or 0),
            level="Error",
            timestamp=datetime.fromtimestamp(int(r.get("time") or 0) / 1_000_000, tz=timezone.utc),
            message=f"Faulting application name: {exe}, pid {r.get('pid')}",
        ))
    return entries


def _kernel_disk_errors() -> list[EventEntry]:
    since = (datetime.now(timezone.utc) - timedelta(days=LOOKBACK_DAYS)).strftime("%Y-%m-%d %H:%M:%S")
    res = run_command(
        ["journalctl", "-k", "-p", "err", "--utc", "--since", since, "-o", "json", "--no-pager", "-q"],
        timeout_sec=20,
    )
    if not res.ok:
        return []
    entries = []
    for line in res.stdout.splitlines():
        try:
            row = json.loads(line)
        except json.JSONDecodeError:
            continue
        message = row.get("MESSAGE")
        if not isinstance(message, str) or not any(m in message.lower() for m in _DISK_ERROR_MARKERS):
            continue
        micros = int(row.get("__REALTIME_TIMESTAMP") or 0)
        entries.append(EventEntry(
            source="kernel",
            level="Error",
            timestamp=datetime.fromtimestamp(micros / 1_000_000, tz=timezone.utc),
            message=message,
        ))
    return entries[-MAX_EVENTS:]


def _parse_iso(value) -> datetime | None:
    if not value:
        return None
    text = str(value)
    # .NET round-trip format carries 7 fractional digits
    if "." in text:
        head, _, tail = text.partition(".")
        digits = "".join(ch for ch in tail if ch.isdigit())
        suffix = tail[len(digits):]
        text = f"{head}.{digits[:6]}{suffix}"
    try:
        ts = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)
