"""Scan history: compact per-scan snapshots kept for trend comparison."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from hostdoctor.diagnostics.result import DiagnosticResult, Severity, as_utc
from hostdoctor.storage import read_json, write_json_atomic

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 50


@dataclass(frozen=True)
class ScanSnapshot:
    timestamp: datetime
    health_score: int
    ram_used_percent: float
    disk_free_mb: int
    critical_count: int
    warning_count: int
    crash_count: int
    startup_enabled: int
    cpu_load_percent: float

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["timestamp"] = self.timestamp.isoformat()
        return d

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ScanSnapshot:
        return cls(
            timestamp=as_utc(datetime.fromisoformat(raw["timestamp"])),
            health_score=int(raw.get("health_score", 0)),
            ram_used_percent=float(raw.get("ram_used_percent", 0.0)),
            disk_free_mb=int(raw.get("disk_free_mb", 0)),
            critical_count=int(raw.get("critical_count", 0)),
            warning_count=int(raw.get("warning_count", 0)),
            crash_count=int(raw.get("crash_count", 0)),
            startup_enabled=int(raw.get("startup_enabled", 0)),
            cpu_load_percent=float(raw.get("cpu_load_percent", 0.0)),
        )


@dataclass(frozen=True)
class MetricDelta:
    """One compared metric. ``direction``: +1 improved, -1 degraded, 0 unchanged."""

    label: str
    before: str
    after: str
    direction: int


def _sign(value: float) -> int:
    return (value > 0) - (value < 0)


def create_snapshot(result: DiagnosticResult) -> ScanSnapshot:
    drive = result.disk.system_drive
    return ScanSnapshot(
        timestamp=result.timestamp,
        health_score=result.health_score,
        ram_used_percent=result.ram.percent_used or 0.0,
        disk_free_mb=drive.free_mb if drive else 0,
        critical_count=result.count(Severity.CRITICAL),
        warning_count=result.count(Severity.WARNING),
        crash_count=len(result.events.app_crashes) + len(result.events.bsods),
        startup_enabled=result.startup.enabled_count,
        cpu_load_percent=result.cpu.load_percent or 0.0,
    )


def compare(previous: ScanSnapshot, current: ScanSnapshot) -> list[MetricDelta]:
    """Every tracked metric, in display order, including unchanged ones."""
    return [
        MetricDelta(
            "Health Score",
            f"{previous.health_score}/100",
            f"{current.health_score}/100",
            _sign(current.health_score - previous.health_score),
        ),
        MetricDelta(
            "Disk Free",
            format_mb(previous.disk_free_mb),
            format_mb(current.disk_free_mb),
            _sign(current.disk_free_mb - previous.disk_free_mb),
        ),
        # Percentages compare at whole-percent resolution; lower is better
        MetricDelta(
            "RAM Usage",
            f"{previous.ram_used_percent:.0f}%",
            f"{current.ram_used_percent:.0f}%",
            -_sign(round(current.ram_used_percent) - round(previous.ram_used_percent)),
        ),
        MetricDelta(
            "CPU Load",
            f"{previous.cpu_load_percent:.0f}%",
            f"{current.cpu_load_percent:.0f}%",
            -_sign(round(current.cpu_load_percent) - round(previous.cpu_load_percent)),
        ),
        MetricDelta(
            "Critical Issues",
            str(previous.critical_count),
            str(current.critical_count),
            -_sign(current.critical_count - previous.critical_count),
        ),
        MetricDelta(
            "Warnings",
            str(previous.warning_count),
            str(current.warning_count),
            -_sign(current.warning_count - previous.warning_count),
        ),
        MetricDelta(
            "Crashes",
            str(previous.crash_count),
            str(current.crash_count),
            -_sign(current.crash_count - previous.crash_count),
        ),
        MetricDelta(
            "Startup Items",
            str(previous.startup_enabled),
            str(current.startup_enabled),
            -_sign(current.startup_enabled - previous.startup_enabled),
        ),
    ]


def changed(deltas: list[MetricDelta]) -> list[MetricDelta]:
    return [d for d in deltas if d.direction != 0]


def format_mb(mb: int) -> str:
    if mb >= 1024:
        return f"{mb / 1024:.1f} GB"
    return f"{mb:,} MB"


class HistoryStore:
    """Append-only JSON list of snapshots, oldest first, capped at ``max_entries``."""

    def __init__(self, path: Path, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        self.path = path
        self.max_entries = max_entries

    create_snapshot = staticmethod(create_snapshot)
    compare = staticmethod(compare)

    def load(self) -> list[ScanSnapshot]:
        if not self.path.exists():
            return []
        try:
            raw = read_json(self.path)
        except (OSError, ValueError) as e:
            logger.warning("Unreadable scan history %s: %s", self.path, e)
            return []
        if not isinstance(raw, list):
            return []
        snapshots = []
        for item in raw:
            try:
                snapshots.append(ScanSnapshot.from_dict(item))
            except (KeyError, TypeError, ValueError):
                logger.debug("Skipping malformed history entry: %r", item)
        return snapshots

    def append(self, snapshot: ScanSnapshot) -> None:
        history = self.load()
        history.append(snapshot)
        if len(history) > self.max_entries:
            history = history[len(history) - self.max_entries:]
        try:
            write_json_atomic(self.path, [s.to_dict() for s in history])
        except OSError as e:
            logger.warning("Failed to save scan history %s: %s", self.path, e)

    def previous(self) -> ScanSnapshot | None:
        """The snapshot before the latest one, or the only one there is."""
        history = self.load()
        if len(history) >= 2:
            return history[-2]
        return history[0] if history else None

    def latest(self) -> ScanSnapshot | None:
        history = self.load()
        return history[-1] if history else None
