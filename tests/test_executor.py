"""Tests for the action executor."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from conftest import FakeRemediation, make_action

from hostdoctor.optimize.actions import ActionStatus, ActionType
from hostdoctor.optimize.executor import ActionExecutor
from hostdoctor.optimize.remediations import (
    ApplyResult,
    RemediationError,
    RemediationRegistry,
    UnknownActionError,
    ValueRef,
)
from hostdoctor.optimize.timestamps import RemediationTimestamps
from hostdoctor.rollback.journal import RollbackJournal
from hostdoctor.rollback.stores import ValueKind
from hostdoctor.scan.cancellation import CancellationToken


@pytest.fixture
def journal(store, tmp_path):
    return RollbackJournal(store, tmp_path / "rollback.json")


@pytest.fixture
def timestamps(tmp_path):
    return RemediationTimestamps(tmp_path / "remediation.json")


def executor_for(registry, journal, timestamps, **kw) -> ActionExecutor:
    return ActionExecutor(registry, journal, timestamps, **kw)


# ── Execute ──────────────────────────────────────────────────────────────────


class TestExecute:
    def test_failure_does_not_stop_batch(self, journal, timestamps) -> None:
        registry = RemediationRegistry([
            FakeRemediation("A", result=ApplyResult(freed_mb=120, deleted=40, detail="Deleted 40 files")),
            FakeRemediation("B", error=RemediationError("access denied")),
            FakeRemediation("C", result=ApplyResult(freed_mb=30, deleted=3)),
        ])
        actions = [make_action("A"), make_action("B"), make_action("C")]
        summary = executor_for(registry, journal, timestamps).execute(actions)

        assert [a.status for a in actions] == [
            ActionStatus.SUCCESS, ActionStatus.FAILED, ActionStatus.SUCCESS,
        ]
        assert actions[0].result_message == "Freed 120 MB; Deleted 40 files"
        assert actions[1].result_message == "access denied"
        assert summary.actions_run == 3
        assert summary.success_count == 2
        assert summary.failure_count == 1
        assert summary.total_freed_mb == 150
        assert any(d.startswith("✗ B") for d in summary.details)

    def test_no_change_when_everything_skipped(self, journal, timestamps) -> None:
        registry = RemediationRegistry([FakeRemediation("A", result=ApplyResult(skipped=5))])
        action = make_action("A")
        summary = executor_for(registry, journal, timestamps).execute([action])

        assert action.status == ActionStatus.NO_CHANGE
        assert "5 item(s) locked" in action.result_message
        assert summary.success_count == 0
        assert summary.failure_count == 0

    def test_partial_success(self, journal, timestamps) -> None:
        registry = RemediationRegistry([
            FakeRemediation("A", result=ApplyResult(freed_mb=10, deleted=8, skipped=2, detail="8 deleted, 2 skipped")),
        ])
        action = make_action("A")
        summary = executor_for(registry, journal, timestamps).execute([action])

        assert action.status == ActionStatus.PARTIAL_SUCCESS
        assert action.actual_freed_mb == 10
        assert summary.success_count == 1

    def test_only_selected_autofix_runs(self, journal, timestamps) -> None:
        a, b, c = FakeRemediation("A"), FakeRemediation("B"), FakeRemediation("C", shortcut=True)
        registry = RemediationRegistry([a, b, c])
        actions = [
            make_action("A"),
            make_action("B", selected=False),
            make_action("C", type=ActionType.SHORTCUT),
            make_action("ManualOnly:x", type=ActionType.MANUAL_ONLY),
        ]
        executor_for(registry, journal, timestamps).execute(actions)

        assert a.applied == ["A"]
        assert b.applied == []
        assert c.applied == []
        assert actions[1].status == ActionStatus.SKIPPED
        assert actions[3].status == ActionStatus.PENDING

    def test_cancel_skips_remaining(self, journal, timestamps) -> None:
        token = CancellationToken()
        first = FakeRemediation("A", on_apply=lambda action, ctx: token.cancel())
        second = FakeRemediation("B")
        registry = RemediationRegistry([first, second])
        actions = [make_action("A"), make_action("B")]

        summary = executor_for(registry, journal, timestamps).execute(actions, token)

        assert summary.cancelled
        assert actions[0].status == ActionStatus.SUCCESS
        assert actions[1].status == ActionStatus.SKIPPED
        assert actions[1].result_message == "Cancelled before it ran"
        assert second.applied == []

    def test_unknown_key_fails_that_action(self, journal, timestamps) -> None:
        action = make_action("Nope")
        executor_for(RemediationRegistry(), journal, timestamps).execute([action])
        assert action.status == ActionStatus.FAILED
        assert "Unknown action key" in action.result_message

    def test_baseline_recorded_before_apply(self, journal, timestamps) -> None:
        registry = RemediationRegistry([FakeRemediation("A", measures=[900.0])])
        action = make_action("A")
        executor_for(registry, journal, timestamps).execute([action])
        assert action.baseline == 900.0

    def test_progress_and_log_callbacks(self, journal, timestamps) -> None:
        registry = RemediationRegistry([FakeRemediation("A"), FakeRemediation("B")])
        progress, lines = [], []
        executor_for(
            registry, journal, timestamps, on_progress=progress.append, on_log=lines.append,
        ).execute([make_action("A"), make_action("B")])

        assert [(p.index, p.total, p.name) for p in progress] == [(0, 2, "A"), (1, 2, "B")]
        assert any(line.startswith("[1/2] A") for line in lines)


# ── Journaling ───────────────────────────────────────────────────────────────


class TestJournaling:
    def test_protected_values_captured_before_apply(self, store, journal, timestamps) -> None:
        ref = ValueRef("HKCU", r"Control Panel\Desktop", "MinAnimate")
        store.values[(ref.root, ref.path, ref.name)] = ("1", ValueKind.STRING)
        seen = []

        def check(action, ctx):
            seen.append([(e.name, e.original, e.action_key) for e in journal.pending])
            ctx.store.write(ref.root, ref.path, ref.name, "0", ValueKind.STRING)

        registry = RemediationRegistry([FakeRemediation("Visuals", protected=[ref], on_apply=check)])
        executor_for(registry, journal, timestamps).execute([make_action("Visuals")])

        assert seen == [[("MinAnimate", "1", "Visuals")]]
        assert journal.has_saved_rollback()
        assert [e.name for e in journal.load_entries()] == ["MinAnimate"]

    def test_journal_saved_even_when_action_fails(self, store, journal, timestamps) -> None:
        ref = ValueRef("HKLM", "Power", "HiberbootEnabled")
        registry = RemediationRegistry([
            FakeRemediation("A", protected=[ref], error=RuntimeError("boom")),
        ])
        executor_for(registry, journal, timestamps).execute([make_action("A")])

        entries = journal.load_entries()
        assert len(entries) == 1
        assert entries[0].original is None


# ── Timestamps ───────────────────────────────────────────────────────────────


class TestTimestamps:
    def test_successful_event_fix_recorded(self, journal, timestamps) -> None:
        registry = RemediationRegistry([FakeRemediation("RunSfc"), FakeRemediation("ScheduleChkdsk", error=RuntimeError("x"))])
        executor_for(registry, journal, timestamps).execute([make_action("RunSfc"), make_action("ScheduleChkdsk")])

        assert timestamps.get("bsods") is not None
        assert timestamps.get("disk_errors") is None

    def test_browser_cache_counts_as_app_crash_fix(self, journal, timestamps) -> None:
        registry = RemediationRegistry([FakeRemediation("ClearBrowserCache")])
        executor_for(registry, journal, timestamps).execute([make_action("ClearBrowserCache:Chrome")])
        assert timestamps.get("app_crashes") is not None

    def test_malformed_entries_read_as_missing(self, timestamps) -> None:
        timestamps.path.write_text('{"bsods": 12345, "disk_errors": "soon", "app_crashes": null}')
        assert timestamps.get("bsods") is None
        assert timestamps.get("disk_errors") is None
        assert timestamps.get("app_crashes") is None
        assert timestamps.latest() is None

    def test_latest_across_categories(self, timestamps) -> None:
        early = datetime(2026, 3, 1, tzinfo=timezone.utc)
        late = datetime(2026, 3, 9, tzinfo=timezone.utc)
        timestamps.record(["bsods"], when=early)
        timestamps.record(["disk_errors"], when=late)
        assert timestamps.get("bsods") == early
        assert timestamps.latest() == late


# ── Shortcuts ────────────────────────────────────────────────────────────────


class TestShortcuts:
    def test_dispatch_shortcut(self, journal, timestamps) -> None:
        shortcut = FakeRemediation("OpenResourceMonitor", shortcut=True)
        executor = executor_for(RemediationRegistry([shortcut]), journal, timestamps)
        action = make_action("OpenResourceMonitor", type=ActionType.SHORTCUT)

        executor.dispatch_shortcut(action)
        assert shortcut.applied == ["OpenResourceMonitor"]
        assert action.status == ActionStatus.PENDING

    def test_dispatch_rejects_non_shortcut(self, journal, timestamps) -> None:
        executor = executor_for(RemediationRegistry([FakeRemediation("ClearTempFiles")]), journal, timestamps)
        with pytest.raises(UnknownActionError):
            executor.dispatch_shortcut(make_action("ClearTempFiles"))
