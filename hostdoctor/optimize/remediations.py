"""Built-in remediations and the registry that dispatches action keys to them.

A remediation knows how to apply one fix, which protected values it is
about to change, and how to re-measure the narrow signal it targets so the
verifier can judge the effect. Measurements are "lower is better".
"""

from __future__ import annotations

import logging
import os
import subprocess
import sys
import webbrowser
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import psutil

from hostdoctor import locations
from hostdoctor.optimize.actions import OptimizationAction
from hostdoctor.probes._command import powershell, run_command
from hostdoctor.probes.disk import trash_mb
from hostdoctor.rollback.stores import ValueKind, ValueStore
from hostdoctor.scan.cancellation import CancellationToken

logger = logging.getLogger(__name__)

_MB = 1024 * 1024
BALANCED_SCHEME = "381b4222-f694-41f0-9685-ff5bb260df2e"


class RemediationError(RuntimeError):
    """A remediation could not apply its fix."""


class UnknownActionError(ValueError):
    """No remediation is registered for an action key."""


@dataclass(frozen=True)
class ValueRef:
    root: str
    path: str
    name: str


@dataclass
class ApplyResult:
    freed_mb: int = 0
    deleted: int = 0
    skipped: int = 0
    detail: str | None = None


@dataclass
class RemediationContext:
    token: CancellationToken
    store: ValueStore | None = None
    log: Callable[[str], None] = lambda _msg: None


class Remediation:
    key: str = ""
    shortcut = False
    long_running = False
    estimated_seconds = 0
    estimated_duration = "< 10 sec"
    requires_reboot = False
    platforms: tuple[str, ...] = ()  # empty: every platform
    target: float | None = None  # measure() at or below this is fully fixed

    def available(self) -> bool:
        return not self.platforms or sys.platform in self.platforms

    def protected_values(self, action: OptimizationAction) -> list[ValueRef]:
        return []

    def apply(self, action: OptimizationAction, ctx: RemediationContext) -> ApplyResult:
        raise NotImplementedError

    def measure(self, action: OptimizationAction, ctx: RemediationContext) -> float | None:
        return None

    def expected_improvement(self, action: OptimizationAction) -> float | None:
        return float(action.estimated_free_mb) if action.estimated_free_mb else None


def key_argument(action_key: str) -> str:
    """``"ClearBrowserCache:Chrome"`` -> ``"Chrome"``."""
    return action_key.split(":", 1)[1] if ":" in action_key else ""


# ── File cleanup ─────────────────────────────────────────────────────────────


class _CleanupRemediation(Remediation):
    min_age_seconds: float = 0
    label = "files"

    def paths(self, action: OptimizationAction) -> list[Path]:
        raise NotImplementedError

    def apply(self, action: OptimizationAction, ctx: RemediationContext) -> ApplyResult:
        freed = deleted = skipped = 0
        for path in self.paths(action):
            if ctx.token.cancelled:
                break
            if not path.exists():
                continue
            ctx.log(f"  Cleaning: {path}")
            f, d, s = locations.delete_contents(path, ctx.token, self.min_age_seconds)
            freed += f
            deleted += d
            skipped += s
        freed_mb = freed // _MB
        detail = f"Deleted {deleted:,} {self.label} ({freed_mb:,} MB), {skipped:,} skipped"
        return ApplyResult(freed_mb=freed_mb, deleted=deleted, skipped=skipped, detail=detail)

    def measure(self, action: OptimizationAction, ctx: RemediationContext) -> float | None:
        return float(locations.paths_size_mb(self.paths(action)))


class ClearTempFiles(_CleanupRemediation):
    key = "ClearTempFiles"
    estimated_duration = "~10–30 sec"
    target = 100
    min_age_seconds = 3600  # leave files that running programs just created
    label = "temp files"

    def paths(self, action: OptimizationAction) -> list[Path]:
        return locations.temp_paths()


class EmptyRecycleBin(_CleanupRemediation):
    key = "EmptyRecycleBin"
    estimated_duration = "~5–15 sec"
    target = 10
    label = "trashed files"

    def paths(self, action: OptimizationAction) -> list[Path]:
        return locations.trash_paths()

    def apply(self, action: OptimizationAction, ctx: RemediationContext) -> ApplyResult:
        if sys.platform != "win32":
            return super().apply(action, ctx)
        before = trash_mb()
        res = powershell("Clear-RecycleBin -Force -ErrorAction SilentlyContinue", timeout_sec=120)
        if not res.ok:
            raise RemediationError(f"Clear-RecycleBin failed: {res.stderr.strip()[:200]}")
        freed = max(0, before - trash_mb())
        return ApplyResult(freed_mb=freed, deleted=1 if freed else 0, detail="Recycle Bin emptied")

    def measure(self, action: OptimizationAction, ctx: RemediationContext) -> float | None:
        return float(trash_mb())


class ClearBrowserCache(_CleanupRemediation):
    key = "ClearBrowserCache"
    label = "cache files"

    def paths(self, action: OptimizationAction) -> list[Path]:
        return locations.browser_cache_paths(key_argument(action.action_key))


class ClearCrashDumps(_CleanupRemediation):
    key = "ClearCrashDumps"
    target = 0
    label = "crash dumps"

    def paths(self, action: OptimizationAction) -> list[Path]:
        return locations.crash_dump_paths()


class ClearErrorReports(_CleanupRemediation):
    key = "ClearErrorReports"
    platforms = ("win32",)
    label = "error report files"

    def paths(self, action: OptimizationAction) -> list[Path]:
        return locations.error_report_paths()


# ── Processes ────────────────────────────────────────────────────────────────


def _parse_process_key(action_key: str) -> tuple[int, str]:
    """``"KillProcess:1234:chrome"`` -> ``(1234, "chrome")``."""
    parts = key_argument(action_key).split(":", 1)
    if len(parts) != 2 or not parts[0].isdigit():
        raise RemediationError(f"Malformed process action key: {action_key}")
    return int(parts[0]), parts[1]


class KillProcess(Remediation):
    key = "KillProcess"
    estimated_duration = "< 5 sec"
    target = 0

    def apply(self, action: OptimizationAction, ctx: RemediationContext) -> ApplyResult:
        pid, name = _parse_process_key(action.action_key)
        try:
            proc = psutil.Process(pid)
            actual = proc.name()
            # PID may have been reused since the scan
            if actual.lower() != name.lower():
                return ApplyResult(skipped=1, detail=f"PID {pid} is now {actual}, not {name}; skipped")
            mem_mb = proc.memory_info().rss // _MB
            proc.terminate()
            try:
                proc.wait(timeout=10)
            except psutil.TimeoutExpired:
                proc.kill()
                proc.wait(timeout=5)
        except psutil.NoSuchProcess:
            return ApplyResult(skipped=1, detail=f"{name} (PID {pid}) is no longer running")
        except psutil.AccessDenied as e:
            raise RemediationError(f"Access denied ending {name} (PID {pid})") from e
        return ApplyResult(deleted=1, detail=f"Ended {name} (PID {pid}, was using {mem_mb:,} MB RAM)")

    def measure(self, action: OptimizationAction, ctx: RemediationContext) -> float | None:
        pid, name = _parse_process_key(action.action_key)
        try:
            proc = psutil.Process(pid)
            return 1.0 if proc.is_running() and proc.name().lower() == name.lower() else 0.0
        except psutil.NoSuchProcess:
            return 0.0

    def expected_improvement(self, action: OptimizationAction) -> float | None:
        return 1.0


# ── Platform commands ────────────────────────────────────────────────────────


class _CommandRemediation(Remediation):
    platforms = ("win32",)
    commands: tuple[tuple[str, ...], ...] = ()
    timeout_sec: float = 60
    success_detail = "Done"

    def apply(self, action: OptimizationAction, ctx: RemediationContext) -> ApplyResult:
        for cmd in self.commands:
            ctx.log(f"  Running: {' '.join(cmd)}")
            res = run_command(list(cmd), timeout_sec=self.timeout_sec)
            if not res.ok:
                raise RemediationError(
                    f"{cmd[0]} failed (exit code {res.exit_code}): {res.stderr.strip()[:200]}",
                )
        return ApplyResult(detail=self.success_detail)


class RunSfc(_CommandRemediation):
    key = "RunSfc"
    long_running = True
    estimated_seconds = 900
    estimated_duration = "~5–15 min"
    timeout_sec = 1200
    commands = (("sfc", "/scannow"),)
    success_detail = "System File Checker completed"


class RunDism(_CommandRemediation):
    key = "RunDism"
    long_running = True
    estimated_seconds = 1800
    estimated_duration = "~10–30 min"
    timeout_sec = 2400
    commands = (("DISM", "/Online", "/Cleanup-Image", "/RestoreHealth"),)
    success_detail = "Component store repaired"


class ScheduleChkdsk(_CommandRemediation):
    key = "ScheduleChkdsk"
    requires_reboot = True
    estimated_duration = "< 10 sec"
    timeout_sec = 30

    @property
    def commands(self) -> tuple[tuple[str, ...], ...]:  # type: ignore[override]
        return (("fsutil", "dirty", "set", _system_drive()),)

    @property
    def success_detail(self) -> str:  # type: ignore[override]
        return f"Disk check scheduled for {_system_drive()}; runs on next restart"


class ScheduleMemoryDiagnostic(_CommandRemediation):
    key = "ScheduleMemoryDiagnostic"
    requires_reboot = True
    timeout_sec = 15
    commands = (("bcdedit", "/bootsequence", "{memdiag}"),)
    success_detail = "Memory diagnostic scheduled; RAM will be tested on next restart"


class RepairPowerConfig(_CommandRemediation):
    key = "RepairPowerConfig"
    estimated_duration = "~15 sec"
    commands = (
        ("powercfg", "/restoredefaultschemes"),
        ("powercfg", "/setactive", BALANCED_SCHEME),
    )
    success_detail = "Power plans reset to defaults"


class SetPowerPlanBalanced(_CommandRemediation):
    key = "SetPowerPlanBalanced"
    estimated_duration = "< 5 sec"
    target = 0
    commands = (("powercfg", "/setactive", BALANCED_SCHEME),)
    success_detail = "Switched to Balanced power plan"

    def measure(self, action: OptimizationAction, ctx: RemediationContext) -> float | None:
        res = run_command(["powercfg", "/getactivescheme"], timeout_sec=10)
        if not res.ok:
            return None
        return 0.0 if BALANCED_SCHEME in res.stdout.lower() else 1.0

    def expected_improvement(self, action: OptimizationAction) -> float | None:
        return 1.0


def _system_drive() -> str:
    return os.environ.get("SystemDrive", "C:")


# ── Protected values ─────────────────────────────────────────────────────────


class _ValueRemediation(Remediation):
    """Sets protected values; the executor journals each one first."""

    platforms = ("win32",)
    target = 0
    values: tuple[tuple[ValueRef, Any, ValueKind], ...] = ()

    def protected_values(self, action: OptimizationAction) -> list[ValueRef]:
        return [ref for ref, _value, _kind in self.values]

    def apply(self, action: OptimizationAction, ctx: RemediationContext) -> ApplyResult:
        if ctx.store is None:
            raise RemediationError("No value store available on this host")
        changes = 0
        for ref, desired, kind in self.values:
            current = ctx.store.read(ref.root, ref.path, ref.name)
            if current is not None and current[0] == desired:
                continue
            ctx.store.write(ref.root, ref.path, ref.name, desired, kind)
            changes += 1
        if not changes:
            return ApplyResult(skipped=1, detail="Settings were already applied")
        return ApplyResult(deleted=changes, detail=f"Changed {changes} setting(s)")

    def measure(self, action: OptimizationAction, ctx: RemediationContext) -> float | None:
        if ctx.store is None:
            return None
        off = 0
        for ref, desired, _kind in self.values:
            current = ctx.store.read(ref.root, ref.path, ref.name)
            if current is None or current[0] != desired:
                off += 1
        return float(off)

    def expected_improvement(self, action: OptimizationAction) -> float | None:
        return float(len(self.values))


class SwitchToPerformanceVisuals(_ValueRemediation):
    key = "SwitchToPerformanceVisuals"
    values = (
        (ValueRef("HKCU", r"SOFTWARE\Microsoft\Windows\CurrentVersion\Themes\Personalize",
                  "EnableTransparency"), 0, ValueKind.DWORD),
        (ValueRef("HKCU", r"Control Panel\Desktop\WindowMetrics", "MinAnimate"), "0", ValueKind.STRING),
        (ValueRef("HKCU", r"SOFTWARE\Microsoft\Windows\CurrentVersion\Explorer\VisualEffects",
                  "VisualFXSetting"), 2, ValueKind.DWORD),
        (ValueRef("HKCU", r"Control Panel\Desktop", "UserPreferencesMask"),
         bytes([0x90, 0x12, 0x01, 0x80, 0x10, 0x00, 0x00, 0x00]), ValueKind.BINARY),
    )


class DisableFastStartup(_ValueRemediation):
    key = "DisableFastStartup"
    estimated_duration = "< 5 sec"
    values = (
        (ValueRef("HKLM", r"SYSTEM\CurrentControlSet\Control\Session Manager\Power",
                  "HiberbootEnabled"), 0, ValueKind.DWORD),
    )


class EnableUpdateService(_ValueRemediation):
    key = "StartWuauserv"
    requires_reboot = True
    estimated_duration = "~15 sec"
    values = (
        (ValueRef("HKLM", r"SYSTEM\CurrentControlSet\Services\wuauserv", "Start"), 3, ValueKind.DWORD),
    )

    def apply(self, action: OptimizationAction, ctx: RemediationContext) -> ApplyResult:
        result = super().apply(action, ctx)
        res = run_command(["sc", "start", "wuauserv"], timeout_sec=30)
        if not res.ok:
            ctx.log(f"  Service start deferred until restart (exit code {res.exit_code})")
        return result


# ── Shortcuts ────────────────────────────────────────────────────────────────


class _ShortcutRemediation(Remediation):
    shortcut = True
    platforms = ("win32",)
    estimated_duration = "instant"
    command: tuple[str, ...] = ()

    def apply(self, action: OptimizationAction, ctx: RemediationContext) -> ApplyResult:
        try:
            subprocess.Popen(list(self.command))
        except OSError as e:
            raise RemediationError(f"Could not launch {self.command[0]}: {e}") from e
        return ApplyResult(detail=f"Opened {action.title}")


class OpenResourceMonitor(_ShortcutRemediation):
    key = "OpenResourceMonitor"
    command = ("resmon",)


class OpenTaskManagerStartup(_ShortcutRemediation):
    key = "OpenTaskManagerStartup"
    command = ("taskmgr", "/0", "/startup")


class OpenAppsSettings(_ShortcutRemediation):
    key = "OpenAppsSettings"
    command = ("explorer", "ms-settings:appsfeatures")


class OpenBitLocker(_ShortcutRemediation):
    key = "OpenBitLocker"
    command = ("control", "/name", "Microsoft.BitLockerDriveEncryption")


class ScheduleRestart(_ShortcutRemediation):
    key = "ScheduleRestart"
    requires_reboot = True
    command = ("shutdown", "/r", "/t", "600")


_DRIVER_PAGES = (
    ("nvidia", "https://www.nvidia.com/Download/index.aspx"),
    ("geforce", "https://www.nvidia.com/Download/index.aspx"),
    ("amd", "https://www.amd.com/en/support/download/drivers.html"),
    ("radeon", "https://www.amd.com/en/support/download/drivers.html"),
    ("intel", "https://www.intel.com/content/www/us/en/download-center/home.html"),
)


def driver_page_url(gpu_name: str) -> str:
    lowered = gpu_name.lower()
    for marker, url in _DRIVER_PAGES:
        if marker in lowered:
            return url
    return "https://www.google.com/search?q=" + "+".join((gpu_name + " driver download").split())


class OpenGpuDriverPage(Remediation):
    key = "OpenGpuDriverPage"
    shortcut = True
    estimated_duration = "instant"

    def apply(self, action: OptimizationAction, ctx: RemediationContext) -> ApplyResult:
        url = driver_page_url(key_argument(action.action_key))
        if not webbrowser.open(url):
            raise RemediationError(f"No browser available to open {url}")
        return ApplyResult(detail=f"Opened {url}")


# ── Registry ─────────────────────────────────────────────────────────────────

BUILTIN_REMEDIATIONS: tuple[type[Remediation], ...] = (
    ClearTempFiles,
    EmptyRecycleBin,
    ClearBrowserCache,
    ClearCrashDumps,
    ClearErrorReports,
    KillProcess,
    RunSfc,
    RunDism,
    ScheduleChkdsk,
    ScheduleMemoryDiagnostic,
    RepairPowerConfig,
    SetPowerPlanBalanced,
    SwitchToPerformanceVisuals,
    DisableFastStartup,
    EnableUpdateService,
    OpenResourceMonitor,
    OpenTaskManagerStartup,
    OpenAppsSettings,
    OpenBitLocker,
    ScheduleRestart,
    OpenGpuDriverPage,
)


class RemediationRegistry:
    """Maps action keys (``Key`` or ``Key:argument``) to remediations."""

    def __init__(self, remediations: Iterable[Remediation] = ()) -> None:
        self._by_key: dict[str, Remediation] = {}
        for remediation in remediations:
            self.register(remediation)

    @classmethod
    def default(cls) -> RemediationRegistry:
        return cls(r() for r in BUILTIN_REMEDIATIONS)

    def register(self, remediation: Remediation) -> None:
        self._by_key[remediation.key] = remediation

    def find(self, action_key: str) -> Remediation | None:
        if action_key in self._by_key:
            return self._by_key[action_key]
        return self._by_key.get(action_key.split(":", 1)[0])

    def resolve(self, action_key: str) -> Remediation:
        remediation = self.find(action_key)
        if remediation is None:
            raise UnknownActionError(f"Unknown action key: {action_key}")
        return remediation

    def available(self, action_key: str) -> bool:
        remediation = self.find(action_key)
        return remediation is not None and remediation.available()

    def is_shortcut(self, action_key: str) -> bool:
        remediation = self.find(action_key)
        return remediation is not None and remediation.shortcut
