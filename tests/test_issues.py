"""Tests for the issue and score engine."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from hostdoctor.diagnostics.issues import DEFAULT_RULES, evaluate, freeze
from hostdoctor.diagnostics.result import (
    DiagnosticResult,
    DriveInfo,
    EventEntry,
    GpuAdapter,
    InstalledApp,
    ResultFrozenError,
    Severity,
    StartupEntry,
)


def events(count: int, when: datetime | None = None) -> list[EventEntry]:
    when = when or datetime(2026, 3, 1, tzinfo=timezone.utc)
    return [EventEntry(source="test", event_id=41, timestamp=when) for _ in range(count)]


# ── Thresholds ───────────────────────────────────────────────────────────────


class TestThresholds:
    def test_empty_result_is_healthy(self) -> None:
        evaluation = evaluate(DiagnosticResult())
        assert evaluation.issues == []
        assert evaluation.score == 100

    def test_cpu_warning_scenario(self) -> None:
        result = DiagnosticResult()
        result.cpu.load_percent = 45.0
        evaluation = evaluate(result)

        assert len(evaluation.issues) == 1
        issue = evaluation.issues[0]
        assert issue.severity == Severity.WARNING
        assert issue.category == "CPU"
        assert "45%" in issue.description
        assert evaluation.score == 96

    @pytest.mark.parametrize("load,expected", [
        (29.9, None),
        (30.0, Severity.WARNING),
        (59.9, Severity.WARNING),
        (60.0, Severity.CRITICAL),
    ])
    def test_higher_is_worse_boundaries(self, load, expected) -> None:
        result = DiagnosticResult()
        result.cpu.load_percent = load
        severities = [i.severity for i in evaluate(result).issues]
        assert severities == ([expected] if expected else [])

    @pytest.mark.parametrize("free_mb,expected", [
        (16_000, None),
        (15_000, Severity.WARNING),
        (5_000, Severity.CRITICAL),
    ])
    def test_lower_is_worse_boundaries(self, free_mb, expected) -> None:
        result = DiagnosticResult()
        result.disk.drives = [DriveInfo(mount="/", total_mb=100_000, free_mb=free_mb)]
        severities = [i.severity for i in evaluate(result).issues if i.code == "disk.free"]
        assert severities == ([expected] if expected else [])

    def test_unmeasured_values_do_not_fire(self) -> None:
        result = DiagnosticResult()
        result.security.antivirus_present = None
        result.network.download_mbps = None
        result.ram.total_mb = None
        assert evaluate(result).issues == []

    def test_measured_zero_fires(self) -> None:
        result = DiagnosticResult()
        result.network.download_mbps = 0.0
        issues = evaluate(result).issues
        assert [(i.code, i.severity) for i in issues] == [("network.download", Severity.CRITICAL)]

    def test_battery_ignored_without_battery(self) -> None:
        result = DiagnosticResult()
        result.battery.health_percent = 10.0
        assert evaluate(result).issues == []

        result.battery.has_battery = True
        assert evaluate(result).issues[0].code == "battery.health"


# ── Score ────────────────────────────────────────────────────────────────────


class TestScore:
    def test_category_cap(self) -> None:
        result = DiagnosticResult()
        result.events.bsods = events(3)
        result.events.disk_errors = events(5)
        evaluation = evaluate(result)

        assert evaluation.deductions == {"Events": 20}
        assert evaluation.score == 80

    def test_score_floor_is_zero(self) -> None:
        result = DiagnosticResult()
        result.system.uptime_seconds = 30 * 86400
        result.cpu.load_percent = 95
        result.cpu.temperature_c = 95
        result.ram.percent_used = 95
        result.ram.total_mb = 4096
        result.disk.drives = [
            DriveInfo(mount="/", total_mb=100_000, free_mb=1_000, health_failing=True, health_status="Unhealthy"),
        ]
        result.gpu.adapters = [GpuAdapter(name="gpu", temperature_c=99, usage_percent=99, is_primary=True)]
        result.battery.has_battery = True
        result.battery.health_percent = 40
        result.startup.entries = [StartupEntry(name=f"app{i}") for i in range(25)]
        result.network.ping_ms = 500
        result.network.download_mbps = 1
        result.security.antivirus_present = False
        result.security.firewall_enabled = False
        result.updates.pending_count = 20
        result.updates.days_since_update = 200
        result.software.eol_apps = [InstalledApp(name=f"old{i}") for i in range(4)]
        result.events.bsods = events(5)
        result.events.disk_errors = events(6)

        evaluation = evaluate(result)
        assert evaluation.score == 0
        assert sum(evaluation.deductions.values()) == sum(DEFAULT_RULES.category_caps.values())

    def test_score_never_rises_as_signals_accumulate(self) -> None:
        steps = [
            lambda r: setattr(r.cpu, "load_percent", 45),
            lambda r: setattr(r.cpu, "load_percent", 95),
            lambda r: setattr(r.cpu, "temperature_c", 95),
            lambda r: setattr(r.ram, "percent_used", 95),
            lambda r: setattr(r.ram, "total_mb", 4096),
            lambda r: setattr(r.system, "uptime_seconds", 30 * 86400),
            lambda r: setattr(r.disk, "drives", [DriveInfo(mount="/", total_mb=100_000, free_mb=10_000)]),
            lambda r: setattr(r.disk, "drives", [
                DriveInfo(mount="/", total_mb=100_000, free_mb=1_000, health_failing=True, health_status="Unhealthy"),
            ]),
            lambda r: setattr(r.gpu, "adapters", [GpuAdapter(name="gpu", temperature_c=99, usage_percent=99, is_primary=True)]),
            lambda r: setattr(r.battery, "has_battery", True),
            lambda r: setattr(r.battery, "health_percent", 40),
            lambda r: setattr(r.startup, "entries", [StartupEntry(name=f"app{i}") for i in range(25)]),
            lambda r: setattr(r.network, "ping_ms", 500),
            lambda r: setattr(r.network, "download_mbps", 1),
            lambda r: setattr(r.security, "firewall_enabled", False),
            lambda r: setattr(r.security, "antivirus_present", False),
            lambda r: setattr(r.updates, "pending_count", 20),
            lambda r: setattr(r.updates, "days_since_update", 200),
            lambda r: setattr(r.software, "eol_apps", [InstalledApp(name=f"old{i}") for i in range(4)]),
            lambda r: setattr(r.events, "bsods", events(1)),
            lambda r: setattr(r.events, "bsods", events(5)),
            lambda r: setattr(r.events, "disk_errors", events(6)),
        ]
        result = DiagnosticResult()
        scores = [evaluate(result).score]
        for step in steps:
            step(result)
            scores.append(evaluate(result).score)

        assert all(0 <= s <= 100 for s in scores)
        assert all(later <= earlier for earlier, later in zip(scores, scores[1:]))
        assert scores[0] == 100
        assert scores[-1] == 0

    def test_info_issues_cost_nothing(self) -> None:
        result = DiagnosticResult()
        result.disk.temp_mb = 4096
        evaluation = evaluate(result)
        assert [i.severity for i in evaluation.issues] == [Severity.INFO]
        assert evaluation.score == 100


# ── Ordering ─────────────────────────────────────────────────────────────────


class TestOrdering:
    def test_critical_before_warning_before_info(self) -> None:
        result = DiagnosticResult()
        result.disk.temp_mb = 2048  # info
        result.cpu.load_percent = 40  # warning
        result.security.firewall_enabled = False  # critical
        severities = [i.severity for i in evaluate(result).issues]
        assert severities == [Severity.CRITICAL, Severity.WARNING, Severity.INFO]

    def test_stable_within_severity(self) -> None:
        result = DiagnosticResult()
        result.cpu.load_percent = 40
        result.ram.percent_used = 85
        codes = [i.code for i in evaluate(result).issues]
        assert codes == ["cpu.load", "ram.usage"]


# ── Purity ───────────────────────────────────────────────────────────────────


class TestPurity:
    def test_evaluate_does_not_mutate(self) -> None:
        result = DiagnosticResult()
        result.cpu.load_percent = 70
        evaluate(result)
        assert result.flagged_issues == []
        assert result.health_score == 100
        assert not result.frozen

    def test_evaluate_is_deterministic(self) -> None:
        result = DiagnosticResult()
        result.cpu.load_percent = 70
        result.ram.percent_used = 92
        assert evaluate(result) == evaluate(result)

    def test_freeze_blocks_merges(self) -> None:
        result = DiagnosticResult()
        result.cpu.load_percent = 70
        freeze(result)

        assert result.frozen
        assert result.health_score == 90
        with pytest.raises(ResultFrozenError):
            result.merge_section("cpu", result.new_section("cpu"))


# ── Overrides ────────────────────────────────────────────────────────────────


class TestOverrides:
    def test_threshold_override(self) -> None:
        rules = DEFAULT_RULES.with_overrides({"cpu.load": {"warn": 20}})
        result = DiagnosticResult()
        result.cpu.load_percent = 25
        assert [i.code for i in evaluate(result, rules).issues] == ["cpu.load"]
        assert evaluate(result).issues == []

    def test_unknown_rule_ignored(self) -> None:
        rules = DEFAULT_RULES.with_overrides({"cpu.bogus": {"warn": 1}})
        assert "cpu.bogus" not in rules.rules

    def test_override_does_not_touch_defaults(self) -> None:
        DEFAULT_RULES.with_overrides({"cpu.load": {"warn": 1}})
        assert DEFAULT_RULES["cpu.load"].warn == 30


# ── Event Suppression ────────────────────────────────────────────────────────


class TestEventSuppression:
    def test_events_before_remediation_are_ignored(self) -> None:
        fixed = datetime(2026, 3, 10, tzinfo=timezone.utc)
        result = DiagnosticResult()
        result.events.bsods = events(2, fixed - timedelta(days=2)) + events(1, fixed + timedelta(days=1))
        result.events.remediated_at = {"bsods": fixed}

        issues = evaluate(result).issues
        assert len(issues) == 1
        assert issues[0].description == "1 new system crashes (BSOD) since last fix on 2026-03-10"

    def test_all_events_remediated(self) -> None:
        fixed = datetime(2026, 3, 10, tzinfo=timezone.utc)
        result = DiagnosticResult()
        result.events.unexpected_shutdowns = events(4, fixed - timedelta(hours=1))
        result.events.remediated_at = {"unexpected_shutdowns": fixed}
        assert evaluate(result).issues == []

    def test_unremediated_text(self) -> None:
        result = DiagnosticResult()
        result.events.app_crashes = events(6)
        assert evaluate(result).issues[0].description == "6 application crashes in the event log"
