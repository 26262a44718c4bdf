"""Action executor: runs selected AutoFix actions strictly one at a time.

Flow per action:
1. Pending -> Running, progress event, log line
2. Journal every protected value the remediation will touch (capture,
   then tag with the action key), record the baseline measurement
3. Apply the remediation; an exception fails only this action
4. Classify the outcome (Success / PartialSuccess / NoChange / Failed)
5. Hold for the optional minimum display time

After the batch: unselected automatable actions become Skipped, event
categories that were remediated get a timestamp, and the journal is
written once.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from hostdoctor.optimize.actions import (
    ActionStatus,
    ActionType,
    OptimizationAction,
    OptimizationProgress,
    OptimizationSummary,
)
from hostdoctor.optimize.remediations import (
    ApplyResult,
    Remediation,
    RemediationContext,
    RemediationRegistry,
    UnknownActionError,
)
from hostdoctor.optimize.timestamps import RemediationTimestamps, remediated_categories
from hostdoctor.rollback.journal import RollbackJournal
from hostdoctor.scan.cancellation import CancellationToken

logger = logging.getLogger(__name__)


class ActionExecutor:
    def __init__(
        self,
        registry: RemediationRegistry,
        journal: RollbackJournal,
        timestamps: RemediationTimestamps,
        min_display_seconds: float = 0.0,
        on_progress: Callable[[OptimizationProgress], Any] | None = None,
        on_log: Callable[[str], Any] | None = None,
    ) -> None:
        self.registry = registry
        self.journal = journal
        self.timestamps = timestamps
        self.min_display_seconds = min_display_seconds
        self.on_progress = on_progress
        self.on_log = on_log

    def execute(
        self,
        actions: list[OptimizationAction],
        token: CancellationToken | None = None,
    ) -> OptimizationSummary:
        """Run every selected, pending AutoFix action in planner order."""
        token = token or CancellationToken()
        selected = [
            a for a in actions
            if a.is_selected and a.type == ActionType.AUTO_FIX and a.status == ActionStatus.PENDING
        ]
        summary = OptimizationSummary()
        total = len(selected)
        self._log(f"Running {total} optimization action(s)")

        try:
            for index, action in enumerate(selected):
                if token.cancelled:
                    break
                self._run_one(index, total, action, token, summary)
                summary.actions_run += 1

            if token.cancelled:
                summary.cancelled = True
                for action in selected:
                    if action.status == ActionStatus.PENDING:
                        action.transition(ActionStatus.SKIPPED, "Cancelled before it ran")
                self._log("Optimization cancelled; remaining actions skipped")

            for action in actions:
                if action.is_automatable and not action.is_selected and action.status == ActionStatus.PENDING:
                    action.transition(ActionStatus.SKIPPED)

            self.timestamps.record(remediated_categories(selected))
        finally:
            self.journal.save()

        self._log(
            f"Optimization finished: {summary.success_count} succeeded, "
            f"{summary.failure_count} failed, {summary.total_freed_mb:,} MB freed",
        )
        return summary

    def dispatch_shortcut(self, action: OptimizationAction) -> ApplyResult:
        """Open the tool behind a Shortcut action on explicit operator request."""
        remediation = self.registry.find(action.action_key)
        if remediation is None or not remediation.shortcut:
            raise UnknownActionError(f"Unknown shortcut action key: {action.action_key}")
        ctx = RemediationContext(token=CancellationToken(), store=self.journal.store, log=self._log)
        return remediation.apply(action, ctx)

    # ── Internals ────────────────────────────────────────────────────────

    def _run_one(
        self,
        index: int,
        total: int,
        action: OptimizationAction,
        token: CancellationToken,
        summary: OptimizationSummary,
    ) -> None:
        remediation = self.registry.find(action.action_key)
        action.transition(ActionStatus.RUNNING)
        self._emit_progress(OptimizationProgress(
            index=index,
            total=total,
            name=action.title,
            is_long_running=bool(remediation and remediation.long_running),
            estimated_seconds=remediation.estimated_seconds if remediation else 0,
        ))
        self._log(f"[{index + 1}/{total}] {action.title}...")
        started = time.monotonic()
        ctx = RemediationContext(token=token, store=self.journal.store, log=self._log)

        try:
            if remediation is None:
                raise UnknownActionError(f"Unknown action key: {action.action_key}")
            for ref in remediation.protected_values(action):
                self.journal.capture(ref.root, ref.path, ref.name)
                self.journal.tag_last(action.action_key)
            action.baseline = measure_safely(remediation, action, ctx)
            outcome = remediation.apply(action, ctx)
        except Exception as e:
            logger.exception("Action %s failed", action.action_key)
            action.transition(ActionStatus.FAILED, str(e))
            summary.failure_count += 1
            summary.details.append(f"✗ {action.title}: {e}")
            self._log(f"  ✗ {action.title}: {e}")
        else:
            _classify(action, outcome, summary)
            self._log(f"  {_MARK[action.status]} {action.title}: {action.result_message}")

        remaining = self.min_display_seconds - (time.monotonic() - started)
        if remaining > 0:
            token.wait(remaining)

    def _emit_progress(self, progress: OptimizationProgress) -> None:
        if not self.on_progress:
            return
        try:
            self.on_progress(progress)
        except Exception:
            logger.exception("Progress callback error")

    def _log(self, message: str) -> None:
        logger.info(message)
        if not self.on_log:
            return
        try:
            self.on_log(message)
        except Exception:
            logger.exception("Log callback error")


_MARK = {
    ActionStatus.SUCCESS: "✓",
    ActionStatus.PARTIAL_SUCCESS: "~",
    ActionStatus.NO_CHANGE: "⊘",
    ActionStatus.FAILED: "✗",
}


def _classify(action: OptimizationAction, outcome: ApplyResult, summary: OptimizationSummary) -> None:
    freed = max(0, outcome.freed_mb)
    action.actual_freed_mb = freed

    if outcome.deleted == 0 and outcome.skipped > 0:
        message = outcome.detail or f"Nothing changed; {outcome.skipped:,} item(s) locked or in use"
        action.transition(ActionStatus.NO_CHANGE, message)
        summary.details.append(f"⊘ {action.title}: {message}")
        return

    if outcome.detail:
        message = f"Freed {freed:,} MB; {outcome.detail}" if freed > 0 else outcome.detail
    else:
        message = f"Freed {freed:,} MB" if freed > 0 else "Done"

    partial = outcome.deleted > 0 and outcome.skipped > 0
    action.transition(ActionStatus.PARTIAL_SUCCESS if partial else ActionStatus.SUCCESS, message)
    summary.success_count += 1
    summary.total_freed_mb += freed
    summary.details.append(f"{'~' if partial else '✓'} {action.title}: {message}")


def measure_safely(
    remediation: Remediation, action: OptimizationAction, ctx: RemediationContext,
) -> float | None:
    try:
        return remediation.measure(action, ctx)
    except Exception as e:
        logger.warning("Could not measure %s: %s", action.action_key, e)
        return None
