"""Tests for the action state machines."""

from __future__ import annotations

import pytest
from conftest import make_action

from hostdoctor.optimize.actions import (
    ActionStatus,
    ActionType,
    InvalidTransitionError,
    VerificationStatus,
)


# ── Status Transitions ───────────────────────────────────────────────────────


class TestStatusTransitions:
    def test_happy_path(self) -> None:
        action = make_action("ClearTempFiles")
        action.transition(ActionStatus.RUNNING)
        action.transition(ActionStatus.SUCCESS, "Freed 10 MB")
        assert action.status == ActionStatus.SUCCESS
        assert action.result_message == "Freed 10 MB"
        assert action.was_executed

    def test_pending_can_be_skipped(self) -> None:
        action = make_action("ClearTempFiles")
        action.transition(ActionStatus.SKIPPED)
        assert action.status.is_terminal
        assert not action.was_executed

    @pytest.mark.parametrize("target", [ActionStatus.SUCCESS, ActionStatus.FAILED, ActionStatus.PENDING])
    def test_pending_cannot_jump(self, target) -> None:
        with pytest.raises(InvalidTransitionError):
            make_action("X").transition(target)

    def test_terminal_is_final(self) -> None:
        action = make_action("X")
        action.transition(ActionStatus.RUNNING)
        action.transition(ActionStatus.FAILED, "boom")
        with pytest.raises(InvalidTransitionError):
            action.transition(ActionStatus.RUNNING)
        with pytest.raises(InvalidTransitionError):
            action.transition(ActionStatus.SUCCESS)

    def test_manual_actions_not_automatable(self) -> None:
        assert not make_action("ManualOnly:x", type=ActionType.MANUAL_ONLY).is_automatable
        assert make_action("OpenBitLocker", type=ActionType.SHORTCUT).is_automatable


# ── Verification Transitions ─────────────────────────────────────────────────


class TestVerificationTransitions:
    def test_requires_terminal_status(self) -> None:
        action = make_action("X")
        with pytest.raises(InvalidTransitionError):
            action.set_verification(VerificationStatus.VERIFYING)

    def test_verify_flow(self) -> None:
        action = make_action("X")
        action.transition(ActionStatus.RUNNING)
        action.transition(ActionStatus.SUCCESS)
        action.set_verification(VerificationStatus.VERIFYING)
        action.set_verification(VerificationStatus.VERIFIED, "Now 0")
        assert action.verification == VerificationStatus.VERIFIED
        assert action.verification_message == "Now 0"

    def test_failed_marked_directly(self) -> None:
        action = make_action("X")
        action.transition(ActionStatus.RUNNING)
        action.transition(ActionStatus.FAILED)
        action.set_verification(VerificationStatus.NOT_VERIFIED)
        assert action.verification == VerificationStatus.NOT_VERIFIED

    def test_cannot_skip_verifying(self) -> None:
        action = make_action("X")
        action.transition(ActionStatus.RUNNING)
        action.transition(ActionStatus.SUCCESS)
        with pytest.raises(InvalidTransitionError):
            action.set_verification(VerificationStatus.VERIFIED)

    def test_result_is_final(self) -> None:
        action = make_action("X")
        action.transition(ActionStatus.RUNNING)
        action.transition(ActionStatus.SUCCESS)
        action.set_verification(VerificationStatus.VERIFYING)
        action.set_verification(VerificationStatus.PARTIALLY_VERIFIED)
        with pytest.raises(InvalidTransitionError):
            action.set_verification(VerificationStatus.VERIFIED)
