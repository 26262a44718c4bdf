"""Diagnostic result aggregate filled in by the probes of one scan.

One sub-record per category. Metrics that a probe could not measure stay
``None`` so the issue engine can tell "not measured" apart from a real
zero reading.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from hostdoctor.optimize.actions import OptimizationAction, OptimizationSummary


# ── Issues ───────────────────────────────────────────────────────────────────


class Severity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"

    @property
    def rank(self) -> int:
        """Sort rank: Critical first."""
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.CRITICAL: 0, Severity.WARNING: 1, Severity.INFO: 2}


@dataclass(frozen=True)
class FlaggedIssue:
    """A severity-tagged finding derived from one or more measurements."""

    severity: Severity
    category: str
    description: str
    recommendation: str = ""
    code: str = ""  # rule that produced it, e.g. "cpu.load"


# ── Shared records ───────────────────────────────────────────────────────────


@dataclass
class ProcessInfo:
    name: str = ""
    pid: int = 0
    memory_mb: int = 0
    cpu_percent: float = 0.0


# ── Categories ───────────────────────────────────────────────────────────────


@dataclass
class SystemOverview:
    hostname: str = ""
    os_name: str = ""
    os_version: str = ""
    cpu_model: str = ""
    total_ram_mb: int = 0
    uptime_seconds: float | None = None
    uptime_flagged: bool = False

    @property
    def uptime_days(self) -> float | None:
        if self.uptime_seconds is None:
            return None
        return self.uptime_seconds / 86400


@dataclass
class CpuDiagnostics:
    load_percent: float | None = None
    temperature_c: float | None = None
    is_throttling: bool = False
    top_processes: list[ProcessInfo] = field(default_factory=list)


@dataclass
class RamDiagnostics:
    total_mb: int | None = None
    used_mb: int = 0
    available_mb: int = 0
    percent_used: float | None = None
    top_processes: list[ProcessInfo] = field(default_factory=list)


@dataclass
class DriveInfo:
    mount: str = ""
    total_mb: int = 0
    used_mb: int = 0
    free_mb: int = 0
    percent_used: float = 0.0
    health_status: str = "Unknown"
    health_failing: bool = False
    drive_type: str = "Unknown"

    @property
    def percent_free(self) -> float:
        if self.total_mb <= 0:
            return 100.0
        return round(self.free_mb / self.total_mb * 100, 1)


@dataclass
class BrowserCache:
    name: str = ""
    cache_mb: int = 0
    path: str = ""


@dataclass
class DiskDiagnostics:
    drives: list[DriveInfo] = field(default_factory=list)
    activity_percent: float | None = None
    temp_mb: int = 0
    trash_mb: int = 0
    crash_dump_mb: int = 0
    browser_caches: list[BrowserCache] = field(default_factory=list)

    @property
    def reclaimable_mb(self) -> int:
        return (
            self.temp_mb
            + self.trash_mb
            + self.crash_dump_mb
            + sum(b.cache_mb for b in self.browser_caches)
        )

    @property
    def system_drive(self) -> DriveInfo | None:
        return self.drives[0] if self.drives else None


@dataclass
class GpuAdapter:
    name: str = "Unknown"
    driver_version: str = "Unknown"
    driver_date: date | None = None
    driver_outdated: bool = False
    temperature_c: float | None = None
    usage_percent: float | None = None
    memory_mb: int = 0
    is_primary: bool = False


@dataclass
class GpuDiagnostics:
    adapters: list[GpuAdapter] = field(default_factory=list)

    @property
    def primary(self) -> GpuAdapter | None:
        for adapter in self.adapters:
            if adapter.is_primary:
                return adapter
        return self.adapters[0] if self.adapters else None


@dataclass
class BatteryDiagnostics:
    has_battery: bool = False
    design_capacity_mwh: int = 0
    full_charge_capacity_mwh: int = 0
    health_percent: float | None = None
    charge_percent: float | None = None
    power_source: str = "Unknown"
    power_plan: str = "Unknown"


@dataclass
class StartupEntry:
    name: str = ""
    publisher: str = ""
    enabled: bool = True
    location: str = ""


@dataclass
class StartupDiagnostics:
    entries: list[StartupEntry] = field(default_factory=list)

    @property
    def enabled_count(self) -> int:
        return sum(1 for e in self.entries if e.enabled)


@dataclass
class NetworkDiagnostics:
    connection_type: str = "Unknown"
    ping_ms: float | None = None
    dns_ms: float | None = None
    download_mbps: float | None = None
    vpn_active: bool = False
    speed_test_error: str = ""


@dataclass
class SecurityDiagnostics:
    antivirus_name: str = "Unknown"
    antivirus_present: bool | None = None
    firewall_enabled: bool | None = None
    encryption_status: str = "Unknown"
    encrypted: bool | None = None


@dataclass
class UpdateDiagnostics:
    pending_count: int | None = None
    reboot_pending: bool = False
    service_start_type: str = "Unknown"
    days_since_update: int | None = None

    @property
    def service_disabled(self) -> bool:
        return self.service_start_type.lower() == "disabled"


@dataclass
class InstalledApp:
    name: str = ""
    version: str = ""
    publisher: str = ""


@dataclass
class SoftwareDiagnostics:
    applications: list[InstalledApp] = field(default_factory=list)
    eol_apps: list[InstalledApp] = field(default_factory=list)
    bloatware_apps: list[InstalledApp] = field(default_factory=list)
    runtime_count: int = 0


@dataclass
class EventEntry:
    source: str = ""
    event_id: int = 0
    level: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    message: str = ""


EVENT_CATEGORIES = ("bsods", "app_crashes", "disk_errors", "unexpected_shutdowns")


@dataclass
class EventHistory:
    bsods: list[EventEntry] = field(default_factory=list)
    app_crashes: list[EventEntry] = field(default_factory=list)
    disk_errors: list[EventEntry] = field(default_factory=list)
    unexpected_shutdowns: list[EventEntry] = field(default_factory=list)
    # category -> last successful remediation (UTC), captured by the probe
    remediated_at: dict[str, datetime] = field(default_factory=dict)

    def outstanding(self, category: str) -> list[EventEntry]:
        """Events of ``category`` newer than its last remediation."""
        entries: list[EventEntry] = getattr(self, category)
        cutoff = self.remediated_at.get(category)
        if cutoff is None:
            return list(entries)
        return [e for e in entries if as_utc(e.timestamp) > as_utc(cutoff)]

    def top_crashing_apps(self, limit: int = 5) -> list[tuple[str, int]]:
        """Faulting application names from crash messages, most frequent first."""
        counts: dict[str, int] = {}
        display: dict[str, str] = {}
        for entry in self.app_crashes:
            app = extract_faulting_app(entry.message)
            if not app:
                continue
            key = app.lower()
            counts[key] = counts.get(key, 0) + 1
            display.setdefault(key, app)
        ranked = sorted(counts.items(), key=lambda kv: -kv[1])
        return [(display[k], n) for k, n in ranked[:limit]]


def extract_faulting_app(message: str) -> str | None:
    """Parse "Faulting application name: foo.exe, ..." or "The program foo.exe ..."."""
    if not message:
        return None
    lowered = message.lower()

    marker = "application name:"
    idx = lowered.find(marker)
    if idx >= 0:
        start = idx + len(marker)
        end = message.find(",", start)
        name = message[start:end if end >= 0 else len(message)].strip()
        if name:
            return name

    marker = "program "
    idx = lowered.find(marker)
    if idx >= 0:
        start = idx + len(marker)
        end = message.find(" ", start)
        name = message[start:end if end >= 0 else len(message)].strip()
        if name:
            return name
    return None


def as_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


# ── Phase bookkeeping ────────────────────────────────────────────────────────


class PhaseStatus(str, Enum):
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class PhaseOutcome:
    name: str
    status: PhaseStatus
    duration_seconds: float = 0.0
    message: str = ""


# ── Aggregate ────────────────────────────────────────────────────────────────

# Attribute names of the per-category sub-records, in scan order.
SECTIONS = (
    "system",
    "cpu",
    "ram",
    "disk",
    "gpu",
    "battery",
    "startup",
    "network",
    "security",
    "updates",
    "software",
    "events",
)


class ResultFrozenError(RuntimeError):
    """Raised when a frozen result is written to outside of optimization attach."""


@dataclass
class DiagnosticResult:
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    scan_duration_seconds: float = 0.0
    scanned_user: str = ""

    system: SystemOverview = field(default_factory=SystemOverview)
    cpu: CpuDiagnostics = field(default_factory=CpuDiagnostics)
    ram: RamDiagnostics = field(default_factory=RamDiagnostics)
    disk: DiskDiagnostics = field(default_factory=DiskDiagnostics)
    gpu: GpuDiagnostics = field(default_factory=GpuDiagnostics)
    battery: BatteryDiagnostics = field(default_factory=BatteryDiagnostics)
    startup: StartupDiagnostics = field(default_factory=StartupDiagnostics)
    network: NetworkDiagnostics = field(default_factory=NetworkDiagnostics)
    security: SecurityDiagnostics = field(default_factory=SecurityDiagnostics)
    updates: UpdateDiagnostics = field(default_factory=UpdateDiagnostics)
    software: SoftwareDiagnostics = field(default_factory=SoftwareDiagnostics)
    events: EventHistory = field(default_factory=EventHistory)

    phase_outcomes: list[PhaseOutcome] = field(default_factory=list)

    # Derived once all phases resolve
    flagged_issues: list[FlaggedIssue] = field(default_factory=list)
    health_score: int = 100
    frozen: bool = False

    # Populated only after the optimizer has run
    optimization_actions: list[OptimizationAction] | None = None
    optimization_summary: OptimizationSummary | None = None

    def merge_section(self, name: str, record: Any) -> None:
        """Install a probe's private sub-record into the aggregate."""
        if self.frozen:
            raise ResultFrozenError(f"Cannot merge '{name}' into a frozen result")
        if name not in SECTIONS:
            raise KeyError(f"Unknown section: {name}")
        setattr(self, name, record)

    def new_section(self, name: str) -> Any:
        """Return a fresh, default-valued sub-record for ``name``."""
        if name not in SECTIONS:
            raise KeyError(f"Unknown section: {name}")
        return type(getattr(self, name))()

    def freeze(self, issues: list[FlaggedIssue], score: int) -> None:
        self.flagged_issues = list(issues)
        self.health_score = score
        self.frozen = True

    def attach_optimization(
        self, actions: list[OptimizationAction], summary: OptimizationSummary,
    ) -> None:
        self.optimization_actions = actions
        self.optimization_summary = summary

    def has_issue(self, code: str) -> bool:
        return any(i.code == code for i in self.flagged_issues)

    def count(self, severity: Severity) -> int:
        return sum(1 for i in self.flagged_issues if i.severity == severity)

    def skipped_phases(self) -> list[str]:
        return [p.name for p in self.phase_outcomes if p.status != PhaseStatus.COMPLETED]

    def to_dict(self) -> dict[str, Any]:
        return jsonable(self)


# ── Serialization ────────────────────────────────────────────────────────────


def jsonable(obj: Any) -> Any:
    """Convert dataclasses / enums / datetimes into JSON-friendly values."""
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: jsonable(getattr(obj, f.name)) for f in dataclasses.fields(obj)}
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, dict):
        return {str(k): jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [jsonable(v) for v in obj]
    return obj
