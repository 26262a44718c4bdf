"""Post-action verification.

Re-measures only the narrow signal each remediation targets and compares
it against the baseline the executor recorded. Measurements are "lower
is better".
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from hostdoctor.optimize.actions import (
    ActionStatus,
    OptimizationAction,
    OptimizationProgress,
    VerificationStatus,
)
from hostdoctor.optimize.remediations import Remediation, RemediationContext, RemediationRegistry
from hostdoctor.rollback.stores import ValueStore
from hostdoctor.scan.cancellation import CancellationToken

logger = logging.getLogger(__name__)


class Verifier:
    def __init__(
        self,
        registry: RemediationRegistry,
        store: ValueStore | None = None,
        settle_seconds: float = 3.0,
        on_progress: Callable[[OptimizationProgress], Any] | None = None,
        on_log: Callable[[str], Any] | None = None,
    ) -> None:
        self.registry = registry
        self.store = store
        self.settle_seconds = settle_seconds
        self.on_progress = on_progress
        self.on_log = on_log

    def verify(
        self,
        actions: list[OptimizationAction],
        token: CancellationToken | None = None,
    ) -> None:
        """Set ``verification`` on every executed action.

        Returns early, leaving the rest unverified, if ``token`` fires.
        """
        token = token or CancellationToken()
        executed = [a for a in actions if a.was_executed]
        if not executed:
            return

        self._log(f"Waiting {self.settle_seconds:g}s for changes to settle...")
        if self.settle_seconds > 0 and token.wait(self.settle_seconds):
            self._log("Verification cancelled")
            return

        total = len(executed)
        for index, action in enumerate(executed):
            if token.cancelled:
                self._log("Verification cancelled")
                return
            self._emit_progress(OptimizationProgress(index=index, total=total, name=f"Verifying {action.title}"))
            self._verify_one(action, token)
            self._log(f"  {action.title}: {action.verification.value} {action.verification_message}".rstrip())

    def _verify_one(self, action: OptimizationAction, token: CancellationToken) -> None:
        if action.status == ActionStatus.FAILED:
            action.set_verification(VerificationStatus.NOT_VERIFIED, "Action failed; not verified")
            return

        action.set_verification(VerificationStatus.VERIFYING)
        try:
            status, message = self._judge(action, token)
        except Exception:
            logger.exception("Verification of %s failed", action.action_key)
            status, message = VerificationStatus.NOT_VERIFIED, "Verification check failed"
        action.set_verification(status, message)

    def _judge(self, action: OptimizationAction, token: CancellationToken) -> tuple[VerificationStatus, str]:
        remediation: Remediation | None = self.registry.find(action.action_key)
        if remediation is None:
            return _trust_outcome(action)
        if remediation.requires_reboot:
            return VerificationStatus.REQUIRES_REBOOT, "Takes effect after a restart"

        ctx = RemediationContext(token=token, store=self.store, log=self._log)
        after = remediation.measure(action, ctx)
        if after is None:
            return _trust_outcome(action)

        if remediation.target is not None and after <= remediation.target:
            return VerificationStatus.VERIFIED, f"Now {after:g} (target {remediation.target:g})"

        if action.baseline is None:
            return _trust_outcome(action)

        improvement = action.baseline - after
        expected = remediation.expected_improvement(action)
        if improvement > 0 and expected is not None and improvement >= expected:
            return VerificationStatus.VERIFIED, f"Improved by {improvement:g}"
        if improvement > 0:
            return VerificationStatus.PARTIALLY_VERIFIED, f"Improved by {improvement:g} of an expected {expected or 0:g}"
        return VerificationStatus.NOT_VERIFIED, f"No measurable change ({action.baseline:g} -> {after:g})"

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


def _trust_outcome(action: OptimizationAction) -> tuple[VerificationStatus, str]:
    if action.status == ActionStatus.SUCCESS:
        return VerificationStatus.VERIFIED, "Not measurable; action reported success"
    return VerificationStatus.PARTIALLY_VERIFIED, "Not measurable; action only partly applied"
