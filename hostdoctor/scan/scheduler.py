"""Phase scheduler: runs probes one at a time under per-phase timeouts.

Each probe runs on a daemon worker thread against a private sub-record.
The event loop races the worker against the phase timeout and the
overall cancellation token. Only a completed probe's sub-record is
merged into the aggregate; a hung probe is abandoned and its thread is
left to die with the process.
"""

from __future__ import annotations

import asyncio
import logging
import os
import threading
import time
from collections.abc import Callable, Sequence
from datetime import datetime
from typing import Any

from hostdoctor.config import Settings
from hostdoctor.diagnostics.issues import RuleSet, freeze
from hostdoctor.diagnostics.result import DiagnosticResult, PhaseOutcome, PhaseStatus
from hostdoctor.scan.cancellation import CancelCause, CancellationToken, OperationCancelled
from hostdoctor.scan.phases import Phase, ProbeContext, ScanProgress, TimeoutPolicy

logger = logging.getLogger(__name__)


class PhaseScheduler:
    """Runs an ordered list of phases sequentially into one DiagnosticResult."""

    def __init__(
        self,
        phases: Sequence[Phase],
        settings: Settings,
        timeouts: TimeoutPolicy | None = None,
        rules: RuleSet | None = None,
        on_progress: Callable[[ScanProgress], Any] | None = None,
        on_log: Callable[[str], Any] | None = None,
        remediated_at: Callable[[str], datetime | None] | None = None,
    ) -> None:
        self.phases = list(phases)
        self.settings = settings
        self.timeouts = timeouts or TimeoutPolicy.from_settings(settings)
        self.rules = rules
        self.on_progress = on_progress
        self.on_log = on_log
        self.remediated_at = remediated_at or (lambda _cat: None)

    def scan(self, token: CancellationToken | None = None) -> DiagnosticResult | None:
        """Blocking wrapper around :meth:`run` for sync callers."""
        return asyncio.run(self.run(token=token))

    async def run(
        self,
        result: DiagnosticResult | None = None,
        token: CancellationToken | None = None,
    ) -> DiagnosticResult | None:
        """Run every phase. Returns None if the overall token fires."""
        result = result or DiagnosticResult()
        token = token or CancellationToken()
        if not result.scanned_user:
            result.scanned_user = os.environ.get("USER") or os.environ.get("USERNAME", "")

        started = time.monotonic()
        total = len(self.phases)
        self._log(f"Scan started: {total} phases")

        try:
            for index, phase in enumerate(self.phases):
                token.raise_if_cancelled()
                self._emit_progress(ScanProgress(
                    index=index,
                    total=total,
                    name=phase.name,
                    description=phase.description,
                    estimated_seconds=phase.estimated_seconds,
                ))
                if not phase.enabled:
                    result.phase_outcomes.append(
                        PhaseOutcome(phase.name, PhaseStatus.SKIPPED, message="Disabled by profile"),
                    )
                    self._log(f"Skipped {phase.name} (disabled)")
                    continue
                outcome = await self._run_phase(phase, result, token)
                result.phase_outcomes.append(outcome)
        except OperationCancelled:
            self._log("Scan cancelled")
            return None

        result.scan_duration_seconds = round(time.monotonic() - started, 2)
        freeze(result, self.rules)
        self._log(
            f"Scan complete in {result.scan_duration_seconds:.1f}s: "
            f"score {result.health_score}, {len(result.flagged_issues)} issues",
        )
        return result

    async def _run_phase(
        self, phase: Phase, result: DiagnosticResult, token: CancellationToken,
    ) -> PhaseOutcome:
        loop = asyncio.get_running_loop()
        budget = self.timeouts.for_phase(phase.name)
        phase_token = token.link()
        record = result.new_section(phase.section)
        ctx = ProbeContext(
            token=phase_token,
            settings=self.settings,
            log=self._log,
            remediated_at=self.remediated_at,
        )

        probe_done: asyncio.Future[None] = loop.create_future()
        cancelled: asyncio.Future[CancelCause] = loop.create_future()

        def _worker() -> None:
            try:
                phase.probe(record, ctx)
            except Exception as exc:
                _post(loop, probe_done, exc=exc)
            else:
                _post(loop, probe_done, value=None)

        phase_token.add_callback(lambda cause: _post(loop, cancelled, value=cause))

        started = time.monotonic()
        worker = threading.Thread(target=_worker, name=f"probe-{phase.name}", daemon=True)
        worker.start()

        try:
            await asyncio.wait(
                {probe_done, cancelled},
                timeout=budget,
                return_when=asyncio.FIRST_COMPLETED,
            )
            elapsed = round(time.monotonic() - started, 2)

            if token.cancelled:
                phase_token.cancel(CancelCause.USER_CANCELLED)
                raise OperationCancelled(CancelCause.USER_CANCELLED)

            if not probe_done.done():
                phase_token.cancel(CancelCause.PHASE_TIMED_OUT)
                logger.warning("Phase %s timed out after %.0fs", phase.name, budget)
                self._log(f"{phase.name} timed out after {budget:.0f}s, continuing")
                return PhaseOutcome(
                    phase.name, PhaseStatus.TIMED_OUT, elapsed, f"Timed out after {budget:.0f}s",
                )

            exc = probe_done.exception()
            if exc is not None:
                logger.error("Probe %s failed", phase.name, exc_info=exc)
                self._log(f"{phase.name} failed: {exc}")
                return PhaseOutcome(phase.name, PhaseStatus.FAILED, elapsed, str(exc))

            result.merge_section(phase.section, record)
            logger.debug("Phase %s completed in %.2fs", phase.name, elapsed)
            return PhaseOutcome(phase.name, PhaseStatus.COMPLETED, elapsed)
        finally:
            token.unlink(phase_token)
            for fut in (probe_done, cancelled):
                if not fut.done():
                    fut.cancel()
                elif not fut.cancelled():
                    fut.exception()  # mark retrieved

    # ── Callbacks ────────────────────────────────────────────────────────

    def _emit_progress(self, progress: ScanProgress) -> None:
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


def _post(
    loop: asyncio.AbstractEventLoop,
    fut: asyncio.Future[Any],
    value: Any = None,
    exc: BaseException | None = None,
) -> None:
    """Resolve ``fut`` from any thread; late resolutions are dropped."""

    def _resolve() -> None:
        if fut.done():
            return
        if exc is not None:
            fut.set_exception(exc)
        else:
            fut.set_result(value)

    try:
        loop.call_soon_threadsafe(_resolve)
    except RuntimeError:
        # Loop already closed: an abandoned probe finished after the scan.
        logger.debug("Dropped late probe resolution")
