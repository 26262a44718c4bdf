"""Tests for the HostDoctor service and CLI rendering."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from conftest import FakeRemediation
from rich.console import Console

from hostdoctor import main as cli
from hostdoctor import report
from hostdoctor.diagnostics.result import EventEntry, PhaseStatus
from hostdoctor.optimize.remediations import ApplyResult, RemediationRegistry, ValueRef
from hostdoctor.profiles import ScanProfile
from hostdoctor.rollback.stores import ValueKind
from hostdoctor.scan.phases import Phase
from hostdoctor.service import HostDoctor, NoScanError, ScanInProgressError

VISUALS = ValueRef("HKCU", r"Control Panel\Desktop", "MinAnimate")
CRASHED_AT = datetime(2026, 1, 2, 8, 30, tzinfo=timezone.utc)


def probe_cpu(record, ctx):
    record.load_percent = 45.0


def probe_events(record, ctx):
    record.bsods = [EventEntry(source="BugCheck", event_id=1001, timestamp=CRASHED_AT)]
    cutoff = ctx.remediated_at("bsods")
    if cutoff is not None:
        record.remediated_at["bsods"] = cutoff


def set_visuals(action, ctx):
    ctx.store.write(VISUALS.root, VISUALS.path, VISUALS.name, "0", ValueKind.STRING)


@pytest.fixture
def registry():
    return RemediationRegistry([
        FakeRemediation("RunSfc", result=ApplyResult(detail="System File Checker completed")),
        FakeRemediation("RunDism"),
        FakeRemediation("SwitchToPerformanceVisuals", protected=[VISUALS], on_apply=set_visuals),
    ])


@pytest.fixture
def doctor(settings, store, registry):
    store.values[(VISUALS.root, VISUALS.path, VISUALS.name)] = ("1", ValueKind.STRING)
    return HostDoctor(
        settings,
        profile=ScanProfile(),
        phases=[Phase("cpu", "cpu", probe_cpu), Phase("events", "events", probe_events)],
        registry=registry,
        store=store,
    )


# ── HostDoctor ───────────────────────────────────────────────────────────────


class TestHostDoctor:
    def test_scan_records_history(self, doctor) -> None:
        result = doctor.scan()
        assert result is not None
        assert doctor.latest is result
        assert doctor.history.latest().health_score == result.health_score
        assert not doctor.busy

    def test_plan_requires_scan(self, doctor) -> None:
        with pytest.raises(NoScanError):
            doctor.plan()

    def test_second_run_rejected_while_busy(self, doctor) -> None:
        doctor._acquire()
        try:
            with pytest.raises(ScanInProgressError):
                doctor.scan()
            assert doctor.start_scan() is False
        finally:
            doctor._release()

    def test_profile_disables_phase(self, settings, store, registry) -> None:
        doctor = HostDoctor(
            settings,
            profile=ScanProfile(disabled_phases=["events"]),
            phases=[Phase("cpu", "cpu", probe_cpu), Phase("events", "events", probe_events)],
            registry=registry,
            store=store,
        )
        result = doctor.scan()
        assert result.phase_outcomes[1].status == PhaseStatus.SKIPPED
        assert result.events.bsods == []

    def test_optimize_then_rescan_suppresses_fixed_events(self, doctor) -> None:
        result = doctor.scan()
        assert result.has_issue("events.bsod")

        actions = doctor.plan(result)
        summary = doctor.optimize(result, actions)
        assert summary.success_count == 2
        assert result.optimization_summary is summary
        assert doctor.timestamps.get("bsods") is not None

        # the same pre-fix crash is no longer outstanding
        rescanned = doctor.scan()
        assert not rescanned.has_issue("events.bsod")

    def test_optimize_then_restore(self, doctor, store) -> None:
        result = doctor.scan()
        actions = doctor.plan(result)
        for action in actions:
            action.is_selected = action.action_key == "SwitchToPerformanceVisuals"

        doctor.optimize(result, actions, verify=False)
        assert store.values[(VISUALS.root, VISUALS.path, VISUALS.name)][0] == "0"
        assert doctor.has_rollback()

        results = doctor.restore()
        assert [r.success for r in results] == [True]
        assert store.values[(VISUALS.root, VISUALS.path, VISUALS.name)][0] == "1"
        assert not doctor.has_rollback()


# ── Report ───────────────────────────────────────────────────────────────────


class TestReport:
    def _console(self) -> Console:
        return Console(record=True, width=120)

    def test_render_result_and_plan(self, doctor) -> None:
        console = self._console()
        result = doctor.scan()
        report.render_result(console, result)
        report.render_plan(console, doctor.plan(result))
        text = console.export_text()
        assert f"Health score: {result.health_score}/100" in text
        assert "Run System File Checker" in text

    def test_render_summary(self, doctor) -> None:
        console = self._console()
        result = doctor.scan()
        actions = doctor.plan(result)
        summary = doctor.optimize(result, actions)
        report.render_summary(console, summary, actions)
        text = console.export_text()
        assert "Optimization complete" in text
        assert "Run System File Checker" in text

    @pytest.mark.parametrize("score,style", [(95, "green"), (70, "yellow"), (20, "red")])
    def test_score_style(self, score, style) -> None:
        assert style in report.score_style(score)


# ── CLI ──────────────────────────────────────────────────────────────────────


class TestCli:
    def test_restore_without_journal(self, doctor) -> None:
        with patch.object(cli, "console", Console(record=True)) as console:
            assert cli.run_restore(doctor, assume_yes=True) == 0
        assert "No rollback data found" in console.export_text()

    def test_optimize_declined(self, doctor) -> None:
        with patch.object(cli, "console", Console(record=True)), \
             patch.object(cli.Confirm, "ask", return_value=False) as ask:
            assert cli.run_optimize(doctor, assume_yes=False, select=[], skip_verify=True) == 0
        ask.assert_called_once()
        assert doctor.timestamps.get("bsods") is None

    def test_optimize_selected_only(self, doctor, registry) -> None:
        with patch.object(cli, "console", Console(record=True)):
            cli.run_optimize(doctor, assume_yes=True, select=["RunDism"], skip_verify=True)
        assert registry.find("RunDism").applied == ["RunDism"]
        assert registry.find("RunSfc").applied == []

    def test_history_renders(self, doctor) -> None:
        doctor.scan()
        doctor.scan()
        with patch.object(cli, "console", Console(record=True)) as console:
            cli.run_history(doctor)
        assert "Last 2 scan(s)" in console.export_text()

    def test_open_shortcut(self, doctor, registry) -> None:
        monitor = FakeRemediation("OpenResourceMonitor", shortcut=True)
        registry.register(monitor)
        with patch.object(cli, "console", Console(record=True)):
            assert cli.run_optimize(
                doctor, assume_yes=True, select=[], skip_verify=True, open_keys=["OpenResourceMonitor"],
            ) == 0
        assert monitor.applied == ["OpenResourceMonitor"]
        assert registry.find("RunSfc").applied == []

    def test_open_rejects_autofix_key(self, doctor, registry) -> None:
        with patch.object(cli, "console", Console(record=True)) as console:
            assert cli.run_optimize(
                doctor, assume_yes=True, select=[], skip_verify=True, open_keys=["RunSfc"],
            ) == 1
        assert registry.find("RunSfc").applied == []
        assert "Not a shortcut in the current plan: RunSfc" in console.export_text()
