"""Programs launched at sign-in."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from hostdoctor.diagnostics.result import StartupDiagnostics, StartupEntry
from hostdoctor.probes._command import IS_WINDOWS, powershell_json
from hostdoctor.scan.phases import ProbeContext

logger = logging.getLogger(__name__)


def probe_startup(record: StartupDiagnostics, ctx: ProbeContext) -> None:
    if IS_WINDOWS:
        record.entries = _windows_entries()
    elif sys.platform == "darwin":
        record.entries = _launch_agents()
    else:
        record.entries = _xdg_autostart()
    ctx.log(f"  {record.enabled_count} of {len(record.entries)} startup item(s) enabled")


def _windows_entries() -> list[StartupEntry]:
    rows = powershell_json(
        "Get-CimInstance Win32_StartupCommand | Select-Object Name, Command, Location, User",
        timeout_sec=20,
    )
    return [
        StartupEntry(
            name=str(r.get("Name") or ""),
            publisher=str(r.get("User") or ""),
            location=str(r.get("Location") or ""),
        )
        for r in rows
    ]


def _xdg_autostart() -> list[StartupEntry]:
    dirs = [Path.home() / ".config" / "autostart", Path("/etc/xdg/autostart")]
    seen: dict[str, StartupEntry] = {}
    for directory in dirs:
        if not directory.is_dir():
            continue
        for desktop in sorted(directory.glob("*.desktop")):
            # User entries shadow system entries of the same file name.
            if desktop.name in seen:
                continue
            seen[desktop.name] = parse_desktop_entry(desktop)
    return list(seen.values())


def parse_desktop_entry(path: Path) -> StartupEntry:
    values: dict[str, str] = {}
    try:
        lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
    except OSError:
        lines = []
    in_main = False
    for line in lines:
        line = line.strip()
        if line.startswith("["):
            in_main = line == "[Desktop Entry]"
            continue
        if in_main and "=" in line:
            key, value = line.split("=", 1)
            values.setdefault(key.strip(), value.strip())

    enabled = (
        values.get("Hidden", "false").lower() != "true"
        and values.get("X-GNOME-Autostart-enabled", "true").lower() != "false"
    )
    return StartupEntry(
        name=values.get("Name", path.stem),
        publisher=values.get("X-GNOME-Bugzilla-Product", ""),
        enabled=enabled,
        location=str(path),
    )


def _launch_agents() -> list[StartupEntry]:
    directory = Path.home() / "Library" / "LaunchAgents"
    if not directory.is_dir():
        return []
    return [
        StartupEntry(name=p.stem, location=str(p))
        for p in sorted(directory.glob("*.plist"))
    ]
