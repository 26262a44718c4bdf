"""HostDoctor service: wires scanner, planner, executor, verifier and stores.

The CLI and the HTTP API both drive the system through this one object.

Flow:
1. scan()      -> phased scan, issues + score, snapshot appended to history
2. plan()      -> actions proposed for the latest result
3. optimize()  -> selected AutoFix actions run, verified, attached to the result
4. restore()   -> every journaled protected value written back

open_shortcut() opens the tool behind a Shortcut action on request.

Usage:
    doctor = HostDoctor(settings)
    result = doctor.scan()
    actions = doctor.plan(result)
    summary = doctor.optimize(result, actions)
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from typing import Any

from hostdoctor.config import Settings
from hostdoctor.diagnostics.result import DiagnosticResult
from hostdoctor.history.store import HistoryStore, create_snapshot
from hostdoctor.optimize.actions import (
    ActionType,
    OptimizationAction,
    OptimizationProgress,
    OptimizationSummary,
)
from hostdoctor.optimize.executor import ActionExecutor
from hostdoctor.optimize.planner import build_plan
from hostdoctor.optimize.remediations import ApplyResult, RemediationRegistry, UnknownActionError
from hostdoctor.optimize.timestamps import RemediationTimestamps
from hostdoctor.optimize.verifier import Verifier
from hostdoctor.probes import default_phases
from hostdoctor.profiles import ScanProfile, load_profile
from hostdoctor.rollback.journal import RestoreResult, RollbackJournal
from hostdoctor.rollback.stores import ValueStore, default_store
from hostdoctor.scan.cancellation import CancelCause, CancellationToken
from hostdoctor.scan.phases import Phase, ScanProgress
from hostdoctor.scan.scheduler import PhaseScheduler

logger = logging.getLogger(__name__)


class ScanInProgressError(RuntimeError):
    """A scan or optimization run is already active."""


class NoScanError(LookupError):
    """No completed scan is available yet."""


class HostDoctor:
    def __init__(
        self,
        settings: Settings,
        profile: ScanProfile | None = None,
        phases: Sequence[Phase] | None = None,
        registry: RemediationRegistry | None = None,
        store: ValueStore | None = None,
    ) -> None:
        self.settings = settings
        self.profile = profile if profile is not None else load_profile(settings.profile_path)
        self._phases = list(phases) if phases is not None else None
        self.registry = registry or RemediationRegistry.default()
        self.store = store if store is not None else default_store()
        self.journal = RollbackJournal(self.store, settings.rollback_path)
        self.timestamps = RemediationTimestamps(settings.remediation_path)
        self.history = HistoryStore(settings.history_path, settings.history_max_entries)

        self.latest: DiagnosticResult | None = None
        self._lock = threading.Lock()
        self._busy = False
        self._token: CancellationToken | None = None

    # ── State ────────────────────────────────────────────────────────────

    @property
    def busy(self) -> bool:
        return self._busy

    def _acquire(self) -> CancellationToken:
        with self._lock:
            if self._busy:
                raise ScanInProgressError("A scan or optimization is already running")
            self._busy = True
            self._token = CancellationToken()
            return self._token

    def _release(self) -> None:
        with self._lock:
            self._busy = False
            self._token = None

    def cancel(self) -> bool:
        """Cancel the active run. Returns False if nothing was running."""
        with self._lock:
            token = self._token
        if token is None:
            return False
        token.cancel(CancelCause.USER_CANCELLED)
        logger.info("Cancellation requested")
        return True

    # ── Scan ─────────────────────────────────────────────────────────────

    def phases(self) -> list[Phase]:
        phases = self._phases if self._phases is not None else default_phases(self.settings)
        return self.profile.apply(phases)

    def scan(
        self,
        on_progress: Callable[[ScanProgress], Any] | None = None,
        on_log: Callable[[str], Any] | None = None,
    ) -> DiagnosticResult | None:
        """Run a full scan. Returns None if it was cancelled."""
        token = self._acquire()
        try:
            scheduler = PhaseScheduler(
                self.phases(),
                self.settings,
                timeouts=self.profile.timeout_policy(self.settings),
                rules=self.profile.rules(),
                on_progress=on_progress,
                on_log=on_log,
                remediated_at=self.timestamps.get,
            )
            result = scheduler.scan(token)
        finally:
            self._release()

        if result is None:
            return None
        self.latest = result
        self.history.append(create_snapshot(result))
        return result

    def start_scan(self) -> bool:
        """Run :meth:`scan` on a background thread. False if one is already running."""
        if self._busy:
            return False

        def _run() -> None:
            try:
                self.scan()
            except ScanInProgressError:
                logger.info("Background scan skipped: another run started first")
            except Exception:
                logger.exception("Background scan failed")

        threading.Thread(target=_run, name="hostdoctor-scan", daemon=True).start()
        return True

    def require_latest(self) -> DiagnosticResult:
        if self.latest is None:
            raise NoScanError("No scan has completed yet")
        return self.latest

    # ── Optimize ─────────────────────────────────────────────────────────

    def plan(self, result: DiagnosticResult | None = None) -> list[OptimizationAction]:
        return build_plan(result or self.require_latest(), self.registry)

    def optimize(
        self,
        result: DiagnosticResult,
        actions: list[OptimizationAction],
        verify: bool = True,
        on_progress: Callable[[OptimizationProgress], Any] | None = None,
        on_log: Callable[[str], Any] | None = None,
    ) -> OptimizationSummary:
        token = self._acquire()
        try:
            executor = ActionExecutor(
                self.registry,
                self.journal,
                self.timestamps,
                min_display_seconds=self.settings.min_action_display_seconds,
                on_progress=on_progress,
                on_log=on_log,
            )
            summary = executor.execute(actions, token)
            if verify and not summary.cancelled:
                Verifier(
                    self.registry,
                    self.store,
                    settle_seconds=self.settings.verify_settle_seconds,
                    on_progress=on_progress,
                    on_log=on_log,
                ).verify(actions, token)
        finally:
            self._release()

        result.attach_optimization(actions, summary)
        return summary

    def open_shortcut(self, action_key: str, result: DiagnosticResult | None = None) -> ApplyResult:
        """Run one Shortcut action from the plan of ``result`` (default: latest)."""
        actions = self.plan(result)
        action = next((a for a in actions if a.action_key == action_key), None)
        if action is None or action.type != ActionType.SHORTCUT:
            raise UnknownActionError(f"Not a shortcut in the current plan: {action_key}")
        executor = ActionExecutor(self.registry, self.journal, self.timestamps)
        outcome = executor.dispatch_shortcut(action)
        logger.info("Opened shortcut %s", action_key)
        return outcome

    # ── Rollback ─────────────────────────────────────────────────────────

    def has_rollback(self) -> bool:
        return self.journal.has_saved_rollback()

    def restore(self) -> list[RestoreResult]:
        return self.journal.restore_all()
