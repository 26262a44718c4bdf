"""Tests for post-action verification."""

from __future__ import annotations

from conftest import FakeRemediation, make_action

from hostdoctor.optimize.actions import ActionStatus, VerificationStatus
from hostdoctor.optimize.remediations import RemediationRegistry
from hostdoctor.optimize.verifier import Verifier
from hostdoctor.scan.cancellation import CancellationToken


def finished(key: str, status: ActionStatus = ActionStatus.SUCCESS, baseline: float | None = None, **kw):
    action = make_action(key, **kw)
    action.transition(ActionStatus.RUNNING)
    action.transition(status)
    action.baseline = baseline
    return action


def verify(remediation: FakeRemediation, action) -> None:
    Verifier(RemediationRegistry([remediation]), settle_seconds=0).verify([action])


# ── Judgement ────────────────────────────────────────────────────────────────


class TestJudgement:
    def test_target_reached(self) -> None:
        action = finished("ClearTempFiles", baseline=3000)
        verify(FakeRemediation("ClearTempFiles", measures=[80.0], target=100), action)
        assert action.verification == VerificationStatus.VERIFIED

    def test_improvement_meets_expectation(self) -> None:
        action = finished("ClearTempFiles", baseline=3000)
        verify(FakeRemediation("ClearTempFiles", measures=[500.0], target=100, expected=2000), action)
        assert action.verification == VerificationStatus.VERIFIED
        assert action.verification_message == "Improved by 2500"

    def test_partial_improvement(self) -> None:
        action = finished("ClearTempFiles", baseline=3000)
        verify(FakeRemediation("ClearTempFiles", measures=[2500.0], expected=2000), action)
        assert action.verification == VerificationStatus.PARTIALLY_VERIFIED

    def test_no_change(self) -> None:
        action = finished("ClearTempFiles", baseline=3000)
        verify(FakeRemediation("ClearTempFiles", measures=[3000.0], expected=2000), action)
        assert action.verification == VerificationStatus.NOT_VERIFIED
        assert "No measurable change" in action.verification_message

    def test_reboot_required(self) -> None:
        action = finished("ScheduleChkdsk")
        verify(FakeRemediation("ScheduleChkdsk", requires_reboot=True), action)
        assert action.verification == VerificationStatus.REQUIRES_REBOOT

    def test_unmeasurable_success_trusted(self) -> None:
        action = finished("RunSfc")
        verify(FakeRemediation("RunSfc"), action)
        assert action.verification == VerificationStatus.VERIFIED

    def test_unmeasurable_partial_is_partial(self) -> None:
        action = finished("RunSfc", ActionStatus.PARTIAL_SUCCESS)
        verify(FakeRemediation("RunSfc"), action)
        assert action.verification == VerificationStatus.PARTIALLY_VERIFIED

    def test_failed_action_not_verified(self) -> None:
        action = finished("RunSfc", ActionStatus.FAILED)
        remediation = FakeRemediation("RunSfc", measures=[0.0])
        verify(remediation, action)
        assert action.verification == VerificationStatus.NOT_VERIFIED
        assert action.verification_message == "Action failed; not verified"
        assert remediation.measures == [0.0]

    def test_measure_error_not_verified(self) -> None:
        class Broken(FakeRemediation):
            def measure(self, action, ctx):
                raise OSError("gone")

        action = finished("ClearTempFiles", baseline=10)
        verify(Broken("ClearTempFiles"), action)
        assert action.verification == VerificationStatus.NOT_VERIFIED
        assert action.verification_message == "Verification check failed"


# ── Verify Batch ─────────────────────────────────────────────────────────────


class TestVerifyBatch:
    def test_skipped_and_pending_untouched(self) -> None:
        skipped = make_action("A")
        skipped.transition(ActionStatus.SKIPPED)
        pending = make_action("B")
        Verifier(RemediationRegistry(), settle_seconds=0).verify([skipped, pending])
        assert skipped.verification == VerificationStatus.NONE
        assert pending.verification == VerificationStatus.NONE

    def test_cancel_during_settle_leaves_unverified(self) -> None:
        token = CancellationToken()
        token.cancel()
        action = finished("RunSfc")
        Verifier(RemediationRegistry([FakeRemediation("RunSfc")]), settle_seconds=5).verify([action], token)
        assert action.verification == VerificationStatus.NONE

    def test_progress_per_action(self) -> None:
        actions = [finished("A"), finished("B")]
        progress = []
        Verifier(
            RemediationRegistry([FakeRemediation("A"), FakeRemediation("B")]),
            settle_seconds=0,
            on_progress=progress.append,
        ).verify(actions)
        assert [p.name for p in progress] == ["Verifying A", "Verifying B"]
