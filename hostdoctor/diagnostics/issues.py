"""Issue & score engine.

Pure evaluation of a completed DiagnosticResult against a rule table.
Every rule is either a two-tier threshold over a measured value, a flag
over a probe predicate, or an informational observation. The score is
100 minus per-rule penalties, with each category's total deduction
capped, clamped to [0, 100].
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from hostdoctor.diagnostics.result import DiagnosticResult, FlaggedIssue, Severity

logger = logging.getLogger(__name__)


class Polarity(str, Enum):
    HIGHER_IS_WORSE = "higher_is_worse"
    LOWER_IS_WORSE = "lower_is_worse"


@dataclass(frozen=True)
class Rule:
    code: str
    category: str
    warn: float | None = None
    critical: float | None = None
    warn_penalty: int = 0
    critical_penalty: int = 0
    polarity: Polarity = Polarity.HIGHER_IS_WORSE
    severity: Severity | None = None  # fixed severity for flag / info rules

    def tier(self, value: float) -> Severity | None:
        """Severity reached by ``value``, or None when inside the healthy band."""
        if self.polarity == Polarity.HIGHER_IS_WORSE:
            if self.critical is not None and value >= self.critical:
                return Severity.CRITICAL
            if self.warn is not None and value >= self.warn:
                return self.severity or Severity.WARNING
        else:
            if self.critical is not None and value <= self.critical:
                return Severity.CRITICAL
            if self.warn is not None and value <= self.warn:
                return self.severity or Severity.WARNING
        return None

    def penalty(self, severity: Severity) -> int:
        if severity == Severity.CRITICAL:
            return self.critical_penalty
        if severity == Severity.WARNING:
            return self.warn_penalty
        return 0


@dataclass
class RuleSet:
    rules: dict[str, Rule] = field(default_factory=dict)
    category_caps: dict[str, int] = field(default_factory=dict)

    def __getitem__(self, code: str) -> Rule:
        return self.rules[code]

    def with_overrides(self, overrides: dict[str, dict[str, Any]]) -> RuleSet:
        """Copy with per-rule field overrides, e.g. ``{"cpu.load": {"warn": 40}}``."""
        rules = dict(self.rules)
        for code, fields in overrides.items():
            if code not in rules:
                logger.warning("Ignoring override for unknown rule: %s", code)
                continue
            allowed = {k: v for k, v in fields.items() if k in _OVERRIDABLE}
            rules[code] = replace(rules[code], **allowed)
        return RuleSet(rules=rules, category_caps=dict(self.category_caps))


_OVERRIDABLE = {"warn", "critical", "warn_penalty", "critical_penalty"}

_LOWER = Polarity.LOWER_IS_WORSE

DEFAULT_RULES = RuleSet(
    rules={r.code: r for r in (
        Rule("system.uptime", "System", 7, 30, 2, 5),
        Rule("cpu.load", "CPU", 30, 60, 4, 10),
        Rule("cpu.temperature", "CPU", 80, 90, 3, 8),
        Rule("cpu.throttling", "CPU", warn_penalty=3, severity=Severity.WARNING),
        Rule("ram.usage", "RAM", 80, 90, 5, 10),
        Rule("ram.capacity", "RAM", 8192, 4096, 3, 8, _LOWER),
        Rule("disk.free", "Disk", 15, 5, 5, 12, _LOWER),
        Rule("disk.activity", "Disk", 50, 90, 2, 5),
        Rule("disk.health", "Disk", critical_penalty=10, severity=Severity.CRITICAL),
        Rule("disk.reclaimable", "Disk", warn=1024, severity=Severity.INFO),
        Rule("gpu.temperature", "GPU", 80, 95, 2, 5),
        Rule("gpu.usage", "GPU", 80, 95, 1, 3),
        Rule("gpu.driver", "GPU", warn_penalty=2, severity=Severity.WARNING),
        Rule("battery.health", "Battery", 70, 50, 3, 6, _LOWER),
        Rule("startup.count", "Startup", 10, 20, 3, 6),
        Rule("network.latency", "Network", 100, 300, 2, 5),
        Rule("network.download", "Network", 25, 5, 2, 5, _LOWER),
        Rule("network.dns", "Network", 100, 500, 1, 3),
        Rule("security.antivirus", "Security", critical_penalty=10, severity=Severity.CRITICAL),
        Rule("security.firewall", "Security", critical_penalty=8, severity=Severity.CRITICAL),
        Rule("security.encryption", "Security", warn_penalty=3, severity=Severity.WARNING),
        Rule("updates.pending", "Updates", 1, 10, 2, 5),
        Rule("updates.age", "Updates", 30, 90, 3, 6),
        Rule("updates.service", "Updates", warn_penalty=4, severity=Severity.WARNING),
        Rule("software.eol", "Software", 1, 3, 2, 5),
        Rule("software.bloatware", "Software", warn=1, severity=Severity.INFO),
        Rule("events.bsod", "Events", 1, 3, 5, 12),
        Rule("events.app_crash", "Events", 5, 20, 2, 5),
        Rule("events.disk_error", "Events", 1, 5, 4, 10),
        Rule("events.shutdown", "Events", 1, 3, 3, 6),
    )},
    category_caps={
        "System": 5,
        "CPU": 15,
        "RAM": 15,
        "Disk": 20,
        "GPU": 8,
        "Battery": 6,
        "Startup": 6,
        "Network": 10,
        "Security": 15,
        "Updates": 10,
        "Software": 5,
        "Events": 20,
    },
)


@dataclass
class Evaluation:
    issues: list[FlaggedIssue]
    score: int
    deductions: dict[str, int] = field(default_factory=dict)


class _Collector:
    """Accumulates issues and raw per-category penalties in scan order."""

    def __init__(self, rules: RuleSet) -> None:
        self.rules = rules
        self.issues: list[FlaggedIssue] = []
        self.penalties: dict[str, int] = {}

    def _add(self, rule: Rule, severity: Severity, description: str, recommendation: str) -> None:
        self.issues.append(FlaggedIssue(
            severity=severity,
            category=rule.category,
            description=description,
            recommendation=recommendation,
            code=rule.code,
        ))
        penalty = rule.penalty(severity)
        if penalty:
            self.penalties[rule.category] = self.penalties.get(rule.category, 0) + penalty

    def threshold(
        self,
        code: str,
        value: float | None,
        description: Callable[[Severity], str],
        recommendation: str,
    ) -> Severity | None:
        if value is None:
            return None
        rule = self.rules[code]
        severity = rule.tier(value)
        if severity is not None:
            self._add(rule, severity, description(severity), recommendation)
        return severity

    def flag(self, code: str, fired: bool | None, description: str, recommendation: str) -> None:
        if not fired:
            return
        rule = self.rules[code]
        self._add(rule, rule.severity or Severity.WARNING, description, recommendation)

    def deductions(self) -> dict[str, int]:
        caps = self.rules.category_caps
        return {
            cat: min(total, caps[cat]) if cat in caps else total
            for cat, total in self.penalties.items()
        }


# ── Category checks (scan order) ─────────────────────────────────────────────


def _check_system(r: DiagnosticResult, c: _Collector) -> None:
    days = r.system.uptime_days
    c.threshold(
        "system.uptime", days,
        lambda s: f"System has been running for {days:.0f} days without a restart",
        "Restart the computer to clear leaked memory and apply pending changes",
    )


def _check_cpu(r: DiagnosticResult, c: _Collector) -> None:
    cpu = r.cpu
    c.threshold(
        "cpu.load", cpu.load_percent,
        lambda s: f"{'Very high' if s == Severity.CRITICAL else 'High'} CPU load "
                  f"({cpu.load_percent:.0f}% average)",
        "Close heavy background applications or check the top CPU processes",
    )
    c.threshold(
        "cpu.temperature", cpu.temperature_c,
        lambda s: f"CPU temperature is {cpu.temperature_c:.0f}°C",
        "Clean dust from vents and fans; check that cooling works",
    )
    c.flag(
        "cpu.throttling", cpu.is_throttling,
        "CPU is running below its rated clock speed (throttling)",
        "Check cooling and switch to a Balanced or High performance power plan",
    )


def _check_ram(r: DiagnosticResult, c: _Collector) -> None:
    ram = r.ram
    c.threshold(
        "ram.usage", ram.percent_used,
        lambda s: f"Memory usage is {ram.percent_used:.0f}%",
        "Close unused applications or browser tabs",
    )
    c.threshold(
        "ram.capacity", ram.total_mb,
        lambda s: f"Only {(ram.total_mb or 0) / 1024:.0f} GB of RAM installed",
        "Consider a memory upgrade",
    )


def _check_disk(r: DiagnosticResult, c: _Collector) -> None:
    disk = r.disk
    for drive in disk.drives:
        if drive.total_mb <= 0:
            continue
        c.threshold(
            "disk.free", drive.percent_free,
            lambda s, d=drive: f"Drive {d.mount} has only {d.percent_free:.0f}% free "
                               f"({d.free_mb / 1024:.1f} GB)",
            "Free up disk space: empty temp files, trash and old downloads",
        )
    c.threshold(
        "disk.activity", disk.activity_percent,
        lambda s: f"Disk is busy {disk.activity_percent:.0f}% of the time",
        "Check for background indexing, updates or antivirus scans",
    )
    for drive in disk.drives:
        c.flag(
            "disk.health", drive.health_failing,
            f"Drive {drive.mount} reports health status '{drive.health_status}'",
            "Back up your data now and plan to replace the drive",
        )
    reclaimable = disk.reclaimable_mb
    c.threshold(
        "disk.reclaimable", reclaimable if reclaimable else None,
        lambda s: f"{reclaimable / 1024:.1f} GB of temporary files, caches and dumps can be removed",
        "Run the cleanup actions to reclaim space",
    )


def _check_gpu(r: DiagnosticResult, c: _Collector) -> None:
    for adapter in r.gpu.adapters:
        c.threshold(
            "gpu.temperature", adapter.temperature_c,
            lambda s, a=adapter: f"{a.name} temperature is {a.temperature_c:.0f}°C",
            "Improve airflow and clean the graphics card fans",
        )
    primary = r.gpu.primary
    if primary is not None:
        c.threshold(
            "gpu.usage", primary.usage_percent,
            lambda s: f"{primary.name} usage is {primary.usage_percent:.0f}%",
            "Check which applications are using the GPU",
        )
    for adapter in r.gpu.adapters:
        c.flag(
            "gpu.driver", adapter.driver_outdated,
            f"{adapter.name} driver {adapter.driver_version} is out of date",
            "Install the latest driver from the vendor's site",
        )


def _check_battery(r: DiagnosticResult, c: _Collector) -> None:
    battery = r.battery
    if not battery.has_battery:
        return
    c.threshold(
        "battery.health", battery.health_percent,
        lambda s: f"Battery holds {battery.health_percent:.0f}% of its design capacity",
        "Consider replacing the battery",
    )


def _check_startup(r: DiagnosticResult, c: _Collector) -> None:
    if not r.startup.entries:
        return
    count = r.startup.enabled_count
    c.threshold(
        "startup.count", count,
        lambda s: f"{count} programs start automatically with the system",
        "Disable startup programs you do not need",
    )


def _check_network(r: DiagnosticResult, c: _Collector) -> None:
    net = r.network
    c.threshold(
        "network.latency", net.ping_ms,
        lambda s: f"Network latency is {net.ping_ms:.0f} ms",
        "Check Wi-Fi signal strength or use a wired connection",
    )
    c.threshold(
        "network.download", net.download_mbps,
        lambda s: f"Download speed is {net.download_mbps:.1f} Mbps",
        "Check your connection or contact your provider",
    )
    c.threshold(
        "network.dns", net.dns_ms,
        lambda s: f"DNS lookups take {net.dns_ms:.0f} ms",
        "Switch to a faster DNS resolver",
    )


def _check_security(r: DiagnosticResult, c: _Collector) -> None:
    sec = r.security
    c.flag(
        "security.antivirus", sec.antivirus_present is False,
        "No active antivirus protection detected",
        "Enable the built-in antivirus or install a trusted one",
    )
    c.flag(
        "security.firewall", sec.firewall_enabled is False,
        "Firewall is disabled",
        "Turn the firewall back on",
    )
    c.flag(
        "security.encryption", sec.encrypted is False,
        f"System drive is not encrypted ({sec.encryption_status})",
        "Enable disk encryption to protect data if the device is lost",
    )


def _check_updates(r: DiagnosticResult, c: _Collector) -> None:
    upd = r.updates
    c.threshold(
        "updates.pending", upd.pending_count,
        lambda s: f"{upd.pending_count} updates are waiting to be installed",
        "Install pending updates",
    )
    c.threshold(
        "updates.age", upd.days_since_update,
        lambda s: f"Last update was installed {upd.days_since_update} days ago",
        "Check for and install updates",
    )
    c.flag(
        "updates.service", upd.service_disabled,
        "The update service is disabled",
        "Re-enable the update service",
    )


def _check_software(r: DiagnosticResult, c: _Collector) -> None:
    sw = r.software
    if sw.eol_apps:
        names = ", ".join(a.name for a in sw.eol_apps[:3])
        c.threshold(
            "software.eol", len(sw.eol_apps),
            lambda s: f"{len(sw.eol_apps)} end-of-life applications installed ({names})",
            "Uninstall or upgrade unsupported software",
        )
    if sw.bloatware_apps:
        names = ", ".join(a.name for a in sw.bloatware_apps[:3])
        c.threshold(
            "software.bloatware", len(sw.bloatware_apps),
            lambda s: f"{len(sw.bloatware_apps)} preinstalled extras found ({names})",
            "Remove applications you do not use",
        )


_EVENT_RULES = (
    ("events.bsod", "bsods", "system crashes (BSOD)", "Run system file and memory checks"),
    ("events.app_crash", "app_crashes", "application crashes", "Update or reinstall the crashing applications"),
    ("events.disk_error", "disk_errors", "disk errors", "Check the disk for errors and back up data"),
    ("events.shutdown", "unexpected_shutdowns", "unexpected shutdowns", "Check power settings and the power supply"),
)


def _check_events(r: DiagnosticResult, c: _Collector) -> None:
    ev = r.events
    for code, category, label, recommendation in _EVENT_RULES:
        outstanding = ev.outstanding(category)
        if not outstanding:
            continue
        count = len(outstanding)
        cutoff = ev.remediated_at.get(category)
        if cutoff is not None:
            text = f"{count} new {label} since last fix on {cutoff:%Y-%m-%d}"
        else:
            text = f"{count} {label} in the event log"
        c.threshold(code, count, lambda s, t=text: t, recommendation)


_CHECKS: tuple[Callable[[DiagnosticResult, _Collector], None], ...] = (
    _check_system,
    _check_cpu,
    _check_ram,
    _check_disk,
    _check_gpu,
    _check_battery,
    _check_startup,
    _check_network,
    _check_security,
    _check_updates,
    _check_software,
    _check_events,
)


# ── Public API ───────────────────────────────────────────────────────────────


def evaluate(result: DiagnosticResult, rules: RuleSet | None = None) -> Evaluation:
    """Derive issues and score without touching ``result``."""
    collector = _Collector(rules or DEFAULT_RULES)
    for check in _CHECKS:
        check(result, collector)

    issues = sorted(collector.issues, key=lambda i: i.severity.rank)
    deductions = collector.deductions()
    score = max(0, min(100, 100 - sum(deductions.values())))
    return Evaluation(issues=issues, score=score, deductions=deductions)


def freeze(result: DiagnosticResult, rules: RuleSet | None = None) -> Evaluation:
    """Evaluate and store issues + score on the aggregate, marking it frozen."""
    evaluation = evaluate(result, rules)
    result.freeze(evaluation.issues, evaluation.score)
    return evaluation
