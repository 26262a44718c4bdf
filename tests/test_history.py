"""Tests for scan history snapshots and comparison."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from hostdoctor.diagnostics.issues import freeze
from hostdoctor.diagnostics.result import DiagnosticResult, DriveInfo, EventEntry, StartupEntry
from hostdoctor.history import HistoryStore, ScanSnapshot, changed, compare, create_snapshot, format_mb

T0 = datetime(2026, 5, 1, 9, 0, tzinfo=timezone.utc)


def snapshot(**kw) -> ScanSnapshot:
    base = ScanSnapshot(
        timestamp=T0,
        health_score=80,
        ram_used_percent=60.0,
        disk_free_mb=50_000,
        critical_count=0,
        warning_count=2,
        crash_count=0,
        startup_enabled=5,
        cpu_load_percent=10.0,
    )
    return replace(base, **kw)


@pytest.fixture
def history(tmp_path) -> HistoryStore:
    return HistoryStore(tmp_path / "history.json", max_entries=3)


# ── Create Snapshot ──────────────────────────────────────────────────────────


class TestCreateSnapshot:
    def test_from_result(self) -> None:
        result = DiagnosticResult(timestamp=T0)
        result.ram.percent_used = 85.0
        result.cpu.load_percent = 35.0
        result.disk.drives = [DriveInfo(mount="/", total_mb=100_000, free_mb=20_000), DriveInfo(mount="/d", free_mb=1)]
        result.events.bsods = [EventEntry()]
        result.events.app_crashes = [EventEntry(), EventEntry()]
        result.startup.entries = [StartupEntry("a"), StartupEntry("b", enabled=False)]
        freeze(result)

        snap = create_snapshot(result)
        assert snap.timestamp == T0
        assert snap.health_score == result.health_score
        assert snap.disk_free_mb == 20_000
        assert snap.crash_count == 3
        assert snap.startup_enabled == 1
        assert snap.warning_count == 3  # cpu, ram, bsod

    def test_unmeasured_values_become_zero(self) -> None:
        snap = create_snapshot(DiagnosticResult())
        assert snap.ram_used_percent == 0.0
        assert snap.disk_free_mb == 0
        assert snap.cpu_load_percent == 0.0


# ── Compare ──────────────────────────────────────────────────────────────────


class TestCompare:
    def test_ram_drop_is_improvement(self) -> None:
        deltas = {d.label: d for d in compare(snapshot(ram_used_percent=90.0), snapshot(ram_used_percent=70.0))}
        assert deltas["RAM Usage"].before == "90%"
        assert deltas["RAM Usage"].after == "70%"
        assert deltas["RAM Usage"].direction == 1

    def test_all_metrics_reported_in_order(self) -> None:
        labels = [d.label for d in compare(snapshot(), snapshot())]
        assert labels == [
            "Health Score", "Disk Free", "RAM Usage", "CPU Load",
            "Critical Issues", "Warnings", "Crashes", "Startup Items",
        ]
        assert all(d.direction == 0 for d in compare(snapshot(), snapshot()))

    def test_directions(self) -> None:
        prev = snapshot()
        cur = snapshot(health_score=70, disk_free_mb=60_000, critical_count=1, startup_enabled=3)
        deltas = {d.label: d.direction for d in compare(prev, cur)}
        assert deltas["Health Score"] == -1
        assert deltas["Disk Free"] == 1
        assert deltas["Critical Issues"] == -1
        assert deltas["Startup Items"] == 1

    def test_sub_percent_noise_ignored(self) -> None:
        deltas = {d.label: d for d in compare(snapshot(ram_used_percent=60.2), snapshot(ram_used_percent=59.9))}
        assert deltas["RAM Usage"].direction == 0

    def test_changed_filters_unchanged(self) -> None:
        deltas = compare(snapshot(), snapshot(warning_count=0))
        assert [d.label for d in changed(deltas)] == ["Warnings"]

    @pytest.mark.parametrize("mb,text", [(512, "512 MB"), (2048, "2.0 GB"), (1536, "1.5 GB")])
    def test_format_mb(self, mb, text) -> None:
        assert format_mb(mb) == text


# ── History Store ────────────────────────────────────────────────────────────


class TestHistoryStore:
    def test_empty(self, history) -> None:
        assert history.load() == []
        assert history.previous() is None
        assert history.latest() is None

    def test_single_entry_is_both_previous_and_latest(self, history) -> None:
        history.append(snapshot())
        assert history.previous() == history.latest() == snapshot()

    def test_previous_is_second_to_last(self, history) -> None:
        history.append(snapshot(health_score=50))
        history.append(snapshot(health_score=60, timestamp=T0 + timedelta(hours=1)))
        assert history.previous().health_score == 50
        assert history.latest().health_score == 60

    def test_capped_oldest_dropped(self, history) -> None:
        for score in range(5):
            history.append(snapshot(health_score=score))
        assert [s.health_score for s in history.load()] == [2, 3, 4]

    def test_round_trips_through_disk(self, history, tmp_path) -> None:
        history.append(snapshot(ram_used_percent=42.5))
        reloaded = HistoryStore(tmp_path / "history.json").load()
        assert reloaded == [snapshot(ram_used_percent=42.5)]

    def test_corrupt_file_treated_as_empty(self, history) -> None:
        history.path.write_text("][")
        assert history.load() == []
        history.append(snapshot())
        assert len(history.load()) == 1

    def test_write_failure_is_not_raised(self, tmp_path) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("file, not a directory")
        store = HistoryStore(blocker / "history.json")
        store.append(snapshot())
        assert store.load() == []
