"""Action planner: map a frozen DiagnosticResult to candidate remediations.

Pure: reads only the result (including the remediation cutoffs the
events probe captured) and the registry's availability table.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from hostdoctor.diagnostics.result import DiagnosticResult, Severity, as_utc
from hostdoctor.optimize.actions import ActionImpact, ActionRisk, ActionType, OptimizationAction
from hostdoctor.optimize.remediations import RemediationRegistry

logger = logging.getLogger(__name__)

REPEAT_WINDOW = timedelta(days=7)

# Planning thresholds (MB) below which a cleanup is not worth proposing.
MIN_TEMP_MB = 500
MIN_TRASH_MB = 100
MIN_BROWSER_CACHE_MB = 200
MIN_PROCESS_MB = 500
MIN_APP_CRASHES = 5

_SYSTEM_PROCESSES = {"system", "svchost", "svchost.exe", "csrss", "csrss.exe", "dwm", "dwm.exe",
                     "explorer", "explorer.exe", "systemd", "kernel_task", "launchd", "xorg", "gnome-shell"}

_OFFICE_EXECUTABLES = {"outlook.exe", "winword.exe", "excel.exe", "powerpnt.exe",
                       "msaccess.exe", "onenote.exe", "mspub.exe", "lync.exe"}

_BROWSER_EXECUTABLES = (
    ("chrome.exe", "Chrome"),
    ("msedge.exe", "Microsoft Edge"),
    ("firefox.exe", "Firefox"),
    ("chrome", "Chrome"),
    ("firefox", "Firefox"),
)

# Issue codes that describe hardware or otherwise non-automatable problems.
_HARDWARE_CODES = {"battery.health", "ram.capacity", "disk.health", "security.antivirus"}


class _Plan:
    def __init__(self, registry: RemediationRegistry) -> None:
        self.registry = registry
        self.actions: list[OptimizationAction] = []

    def add(
        self,
        category: str,
        title: str,
        action_key: str,
        description: str,
        risk: ActionRisk = ActionRisk.SAFE,
        impact: ActionImpact = ActionImpact.LOW,
        rationale: str = "",
        estimated_free_mb: int = 0,
        selected: bool | None = None,
    ) -> None:
        remediation = self.registry.find(action_key)
        if remediation is None or not remediation.available():
            logger.debug("Not planning %s: unavailable on this host", action_key)
            return
        action_type = ActionType.SHORTCUT if remediation.shortcut else ActionType.AUTO_FIX
        if selected is None:
            selected = risk == ActionRisk.SAFE
        self.actions.append(OptimizationAction(
            category=category,
            title=title,
            action_key=action_key,
            description=description,
            type=action_type,
            risk=risk,
            impact=impact,
            impact_rationale=rationale,
            estimated_free_mb=estimated_free_mb,
            estimated_duration=remediation.estimated_duration,
            # only Safe AutoFix actions start selected
            is_selected=bool(selected) and action_type == ActionType.AUTO_FIX and risk == ActionRisk.SAFE,
        ))

    def manual(
        self, category: str, title: str, description: str, code: str,
        risk: ActionRisk = ActionRisk.SAFE, impact: ActionImpact = ActionImpact.MEDIUM,
    ) -> None:
        self.actions.append(OptimizationAction(
            category=category,
            title=title,
            action_key=f"ManualOnly:{code}",
            description=description,
            type=ActionType.MANUAL_ONLY,
            risk=risk,
            impact=impact,
            estimated_duration="manual",
        ))


def build_plan(result: DiagnosticResult, registry: RemediationRegistry) -> list[OptimizationAction]:
    """Ordered, de-duplicated list of remediation actions for ``result``."""
    plan = _Plan(registry)

    _plan_disk(result, plan)
    _plan_cpu(result, plan)
    _plan_ram(result, plan)
    _plan_startup(result, plan)
    _plan_updates(result, plan)
    _plan_system(result, plan)
    _plan_gpu(result, plan)
    _plan_security(result, plan)
    _plan_events(result, plan)
    _plan_manual(result, plan)

    seen: set[str] = set()
    unique = []
    for action in plan.actions:
        if action.action_key in seen:
            continue
        seen.add(action.action_key)
        unique.append(action)

    return sorted(unique, key=lambda a: (a.type.rank, -a.risk.level, a.category))


# ── Per-category planning ────────────────────────────────────────────────────


def _plan_disk(r: DiagnosticResult, plan: _Plan) -> None:
    disk = r.disk
    if disk.temp_mb > MIN_TEMP_MB:
        plan.add(
            "Disk Cleanup", "Clear Temporary Files", "ClearTempFiles",
            f"Delete system and user temp files (~{disk.temp_mb:,} MB)",
            impact=ActionImpact.HIGH if disk.temp_mb > 2048 else ActionImpact.MEDIUM,
            rationale="Frees disk space immediately",
            estimated_free_mb=disk.temp_mb,
        )
    if disk.trash_mb > MIN_TRASH_MB:
        plan.add(
            "Disk Cleanup", "Empty Recycle Bin", "EmptyRecycleBin",
            f"Permanently delete trashed files ({disk.trash_mb:,} MB)",
            impact=ActionImpact.MEDIUM,
            rationale="Frees disk space immediately",
            estimated_free_mb=disk.trash_mb,
        )
    if disk.crash_dump_mb > 0:
        plan.add(
            "Disk Cleanup", "Clear Crash Dump Files", "ClearCrashDumps",
            f"Delete old crash memory dumps ({disk.crash_dump_mb:,} MB)",
            rationale="Dumps are only needed for debugging past crashes",
            estimated_free_mb=disk.crash_dump_mb,
        )
    for cache in disk.browser_caches:
        if cache.cache_mb <= MIN_BROWSER_CACHE_MB:
            continue
        plan.add(
            "Browser", f"Clear {cache.name} Cache", f"ClearBrowserCache:{cache.name}",
            f"Delete browser cache files (~{cache.cache_mb:,} MB)",
            impact=ActionImpact.MEDIUM,
            rationale="Cache rebuilds on demand",
            estimated_free_mb=cache.cache_mb,
        )


def _plan_cpu(r: DiagnosticResult, plan: _Plan) -> None:
    if r.has_issue("cpu.load"):
        plan.add(
            "CPU", "Open Resource Monitor", "OpenResourceMonitor",
            f"CPU load is {r.cpu.load_percent:.0f}%; identify the processes responsible",
            impact=ActionImpact.MEDIUM,
            rationale="Locates the source of sustained load",
        )
    if "power saver" in r.battery.power_plan.lower():
        plan.add(
            "Performance", "Switch to Balanced Power Plan", "SetPowerPlanBalanced",
            "Power saver mode throttles CPU performance",
            impact=ActionImpact.MEDIUM,
            rationale="Restores normal CPU clock behaviour",
        )
    if r.has_issue("cpu.load") or r.has_issue("cpu.throttling"):
        plan.add(
            "Visual Settings", "Switch to Performance Visuals", "SwitchToPerformanceVisuals",
            "Disable transparency and animations to reduce CPU/GPU overhead",
            impact=ActionImpact.LOW,
            rationale="Small, reversible reduction in compositor load",
            selected=False,
        )


def _plan_ram(r: DiagnosticResult, plan: _Plan) -> None:
    if not r.has_issue("ram.usage"):
        return
    candidates = [
        p for p in r.ram.top_processes
        if p.name.lower() not in _SYSTEM_PROCESSES and p.memory_mb > MIN_PROCESS_MB
    ]
    if not candidates:
        return
    top = max(candidates, key=lambda p: p.memory_mb)
    plan.add(
        "RAM", f"End Memory-Heavy Process: {top.name}", f"KillProcess:{top.pid}:{top.name}",
        f"{top.name} (PID {top.pid}) is using {top.memory_mb:,} MB of RAM",
        risk=ActionRisk.MODERATE,
        impact=ActionImpact.HIGH,
        rationale=f"Releases about {top.memory_mb:,} MB; unsaved work in that program is lost",
    )


def _plan_startup(r: DiagnosticResult, plan: _Plan) -> None:
    if r.has_issue("startup.count"):
        plan.add(
            "Startup", "Open Task Manager (Startup)", "OpenTaskManagerStartup",
            f"{r.startup.enabled_count} startup items enabled; review and disable extras",
            impact=ActionImpact.MEDIUM,
            rationale="Fewer startup items shortens boot and frees memory",
        )


def _plan_updates(r: DiagnosticResult, plan: _Plan) -> None:
    if r.updates.service_disabled:
        plan.add(
            "Updates", "Enable Update Service", "StartWuauserv",
            "The update service is disabled; security patches will not be installed",
            risk=ActionRisk.REQUIRES_REBOOT,
            impact=ActionImpact.HIGH,
            rationale="Security updates resume",
        )


def _plan_system(r: DiagnosticResult, plan: _Plan) -> None:
    if not (r.system.uptime_flagged or r.has_issue("system.uptime") or r.updates.reboot_pending):
        return
    if r.system.uptime_flagged or r.has_issue("system.uptime"):
        reason = f"System has been running for {r.system.uptime_days or 0:.0f} days"
    else:
        reason = "Pending updates require a restart"
    plan.add(
        "System", "Schedule System Restart", "ScheduleRestart", reason,
        risk=ActionRisk.REQUIRES_REBOOT,
        impact=ActionImpact.MEDIUM,
        rationale="Clears leaked resources and finishes pending updates",
    )


def _plan_gpu(r: DiagnosticResult, plan: _Plan) -> None:
    for adapter in r.gpu.adapters:
        if not adapter.driver_outdated:
            continue
        dated = f" dated {adapter.driver_date:%Y-%m-%d}" if adapter.driver_date else ""
        plan.add(
            "GPU", "Open GPU Driver Update Page", f"OpenGpuDriverPage:{adapter.name}",
            f"{adapter.name} driver{dated} is out of date; open the vendor download page",
            impact=ActionImpact.MEDIUM,
            rationale="Newer drivers fix stability and performance problems",
        )


def _plan_security(r: DiagnosticResult, plan: _Plan) -> None:
    if r.security.encrypted is False:
        plan.add(
            "Security", "Open BitLocker Settings", "OpenBitLocker",
            "System drive is not encrypted; open encryption management",
            risk=ActionRisk.MODERATE,
            impact=ActionImpact.MEDIUM,
            rationale="Protects data if the device is lost",
        )


# ── Event history ────────────────────────────────────────────────────────────


def _event_context(r: DiagnosticResult, category: str, count: int, label: str) -> str:
    cutoff = r.events.remediated_at.get(category)
    if cutoff is not None:
        return f"{count} new {label}(s) since last fix on {cutoff:%b %d at %H:%M}"
    return f"{count} {label}(s) detected"


def _is_repeat(r: DiagnosticResult, category: str) -> bool:
    """Fixed less than a week before this scan, and events keep appearing."""
    cutoff = r.events.remediated_at.get(category)
    if cutoff is None:
        return False
    return as_utc(r.timestamp) - as_utc(cutoff) < REPEAT_WINDOW


def _crashing_browser(top: list[tuple[str, int]]) -> str | None:
    for app, _count in top:
        lowered = app.lower()
        for exe, browser in _BROWSER_EXECUTABLES:
            if lowered == exe:
                return browser
    return None


def _plan_events(r: DiagnosticResult, plan: _Plan) -> None:
    ev = r.events

    bsods = ev.outstanding("bsods")
    if bsods:
        context = _event_context(r, "bsods", len(bsods), "system crash")
        if _is_repeat(r, "bsods"):
            plan.manual(
                "Events", "System crashes persist after previous repair",
                f"{context}. Earlier automated repairs did not resolve them; "
                "run hardware diagnostics or consider reinstalling the OS",
                "events.bsod", risk=ActionRisk.MODERATE, impact=ActionImpact.HIGH,
            )
        else:
            plan.add(
                "Events", "Run System File Checker", "RunSfc",
                f"{context}; repair corrupted system files",
                impact=ActionImpact.HIGH, rationale="Corrupt system files are a common crash cause",
            )
            plan.add(
                "Events", "Run System Image Repair", "RunDism",
                "Repair the component store that system file repair relies on",
                impact=ActionImpact.HIGH, rationale="Fixes corruption the file checker cannot",
            )
            plan.add(
                "Events", "Schedule Memory Diagnostic", "ScheduleMemoryDiagnostic",
                "Faulty RAM causes crashes; test memory on next restart",
                risk=ActionRisk.REQUIRES_REBOOT, impact=ActionImpact.MEDIUM,
                rationale="Rules hardware in or out",
            )

    disk_errors = ev.outstanding("disk_errors")
    if disk_errors:
        context = _event_context(r, "disk_errors", len(disk_errors), "disk error")
        if _is_repeat(r, "disk_errors"):
            plan.manual(
                "Events", "Disk errors persist after disk check",
                f"{context}. The previous disk check did not stop them; the drive may be "
                "failing. Back up data and consider replacing it",
                "events.disk_error", risk=ActionRisk.MODERATE, impact=ActionImpact.HIGH,
            )
        else:
            plan.add(
                "Events", "Schedule Disk Check", "ScheduleChkdsk",
                f"{context}; scan and repair the file system on next restart",
                risk=ActionRisk.REQUIRES_REBOOT, impact=ActionImpact.HIGH,
                rationale="Repairs file system damage before it spreads",
            )

    crashes = ev.outstanding("app_crashes")
    if len(crashes) >= MIN_APP_CRASHES:
        _plan_app_crashes(r, plan, len(crashes))

    shutdowns = ev.outstanding("unexpected_shutdowns")
    if shutdowns:
        context = _event_context(r, "unexpected_shutdowns", len(shutdowns), "unexpected shutdown")
        if _is_repeat(r, "unexpected_shutdowns"):
            plan.manual(
                "Events", "Unexpected shutdowns persist",
                f"{context}. Power settings were already repaired; check the power supply, "
                "battery or overheating",
                "events.shutdown", impact=ActionImpact.HIGH,
            )
        else:
            plan.add(
                "Events", "Disable Fast Startup", "DisableFastStartup",
                f"{context}; disable hybrid shutdown to avoid hibernate-related power faults",
                impact=ActionImpact.MEDIUM, rationale="Full shutdowns reset drivers cleanly",
            )
            plan.add(
                "Events", "Repair Power Configuration", "RepairPowerConfig",
                "Reset power plans to defaults (custom plans are removed)",
                impact=ActionImpact.MEDIUM, rationale="Clears broken wake and sleep settings",
            )


def _plan_app_crashes(r: DiagnosticResult, plan: _Plan, count: int) -> None:
    top = r.events.top_crashing_apps(3)
    summary = ", ".join(f"{app} ({n}x)" for app, n in top)
    context = _event_context(r, "app_crashes", count, "app crash")
    office = next((t for t in top if t[0].lower() in _OFFICE_EXECUTABLES), None)
    browser = _crashing_browser(top)
    targeted = office is not None or browser is not None

    if office is not None:
        plan.add(
            "Events", "Repair Office Installation", "OpenAppsSettings",
            f"{office[0]} crashed {office[1]}x; run the Office repair from Apps settings",
            risk=ActionRisk.MODERATE, impact=ActionImpact.HIGH,
            rationale="Repairs corrupted Office files",
        )
    if browser is not None:
        plan.add(
            "Events", f"Clear {browser} Cache", f"ClearBrowserCache:{browser}",
            f"{browser} is crashing; corrupt cache files are a common cause",
            impact=ActionImpact.MEDIUM, rationale="Cache rebuilds on demand",
        )

    if _is_repeat(r, "app_crashes"):
        if not targeted:
            detail = f"{context}. Top crashing apps: {summary}. " if summary else f"{context}. "
            plan.manual(
                "Events", "App crashes persist after previous repair",
                detail + "Earlier repairs did not help; reinstall or update the crashing applications",
                "events.app_crash", impact=ActionImpact.MEDIUM,
            )
        return

    if not _has_outstanding(r, "bsods"):
        plan.add(
            "Events", "Run System File Checker", "RunSfc",
            f"{context} (top: {summary}); repair corrupted system files" if summary
            else f"{context}; repair corrupted system files",
            impact=ActionImpact.MEDIUM, rationale="Corrupt system files can crash applications",
            selected=not targeted,
        )
    plan.add(
        "Events", "Clear Error Reports", "ClearErrorReports",
        "Delete old error reports and application crash dumps",
        rationale="Frees space used by stale crash data",
    )


def _has_outstanding(r: DiagnosticResult, category: str) -> bool:
    return bool(r.events.outstanding(category))


# ── Non-automatable findings ─────────────────────────────────────────────────


def _plan_manual(r: DiagnosticResult, plan: _Plan) -> None:
    for issue in r.flagged_issues:
        if issue.code not in _HARDWARE_CODES:
            continue
        plan.manual(
            issue.category,
            "Manual Action Required",
            f"{issue.description}. {issue.recommendation}",
            issue.code,
            risk=ActionRisk.MODERATE if issue.severity == Severity.CRITICAL else ActionRisk.SAFE,
            impact=ActionImpact.HIGH if issue.severity == Severity.CRITICAL else ActionImpact.MEDIUM,
        )
