"""Installed applications, end-of-life software and preinstalled bloatware."""

from __future__ import annotations

import logging
import sys

from hostdoctor.diagnostics.result import InstalledApp, SoftwareDiagnostics
from hostdoctor.probes._command import IS_WINDOWS, powershell_json, run_command
from hostdoctor.scan.phases import ProbeContext

logger = logging.getLogger(__name__)

# Lower-cased name fragments.
EOL_MARKERS = (
    "adobe flash",
    "internet explorer",
    "silverlight",
    "quicktime",
    "java 6",
    "java 7",
    "python 2.",
    "python2",
    "windows live essentials",
    "office 2010",
    "office 2013",
)
BLOATWARE_MARKERS = (
    "mcafee",
    "norton",
    "wildtangent",
    "candy crush",
    "booking.com",
    "cyberlink",
    "bonjour",
    "ask toolbar",
)
RUNTIME_MARKERS = (
    "visual c++",
    ".net",
    "java",
    "node.js",
    "python",
    "directx",
    "vcredist",
)

_UNINSTALL_KEYS = (
    "HKLM:\\Software\\Microsoft\\Windows\\CurrentVersion\\Uninstall\\*",
    "HKLM:\\Software\\WOW6432Node\\Microsoft\\Windows\\CurrentVersion\\Uninstall\\*",
    "HKCU:\\Software\\Microsoft\\Windows\\CurrentVersion\\Uninstall\\*",
)


def probe_software(record: SoftwareDiagnostics, ctx: ProbeContext) -> None:
    apps = _installed_apps()
    record.applications = apps
    classify_apps(record)
    ctx.log(
        f"  {len(apps)} application(s); {len(record.eol_apps)} end-of-life, "
        f"{len(record.bloatware_apps)} bloatware",
    )


def classify_apps(record: SoftwareDiagnostics) -> None:
    record.eol_apps = [a for a in record.applications if _matches(a.name, EOL_MARKERS)]
    record.bloatware_apps = [a for a in record.applications if _matches(a.name, BLOATWARE_MARKERS)]
    record.runtime_count = sum(1 for a in record.applications if _matches(a.name, RUNTIME_MARKERS))


def _matches(name: str, markers: tuple[str, ...]) -> bool:
    lowered = name.lower()
    return any(m in lowered for m in markers)


def _installed_apps() -> list[InstalledApp]:
    if IS_WINDOWS:
        paths = ",".join(f"'{k}'" for k in _UNINSTALL_KEYS)
        rows = powershell_json(
            f"Get-ItemProperty {paths} -ErrorAction SilentlyContinue | Where-Object DisplayName "
            "| Select-Object DisplayName, DisplayVersion, Publisher",
            timeout_sec=25,
        )
        seen: dict[str, InstalledApp] = {}
        for r in rows:
            name = str(r.get("DisplayName") or "").strip()
            if name and name.lower() not in seen:
                seen[name.lower()] = InstalledApp(
                    name=name,
                    version=str(r.get("DisplayVersion") or ""),
                    publisher=str(r.get("Publisher") or ""),
                )
        return list(seen.values())

    if sys.platform == "linux":
        res = run_command(
            ["dpkg-query", "-W", "-f=${Package}\t${Version}\t${Maintainer}\n"],
            timeout_sec=25,
        )
        if res.ok:
            apps = []
            for line in res.stdout.splitlines():
                parts = line.split("\t")
                if len(parts) == 3 and parts[0]:
                    apps.append(InstalledApp(name=parts[0], version=parts[1], publisher=parts[2]))
            return apps
    return []
