"""Tests for cancellation tokens."""

from __future__ import annotations

import threading

import pytest

from hostdoctor.scan.cancellation import CancelCause, CancellationToken, OperationCancelled


# ── Cancellation Token ───────────────────────────────────────────────────────


class TestCancellationToken:
    def test_starts_live(self) -> None:
        token = CancellationToken()
        assert not token.cancelled
        assert token.cause is None
        token.raise_if_cancelled()

    def test_cancel_sets_cause(self) -> None:
        token = CancellationToken()
        token.cancel(CancelCause.PHASE_TIMED_OUT)
        assert token.cancelled
        assert token.cause == CancelCause.PHASE_TIMED_OUT

    def test_first_cause_wins(self) -> None:
        token = CancellationToken()
        token.cancel(CancelCause.USER_CANCELLED)
        token.cancel(CancelCause.PHASE_TIMED_OUT)
        assert token.cause == CancelCause.USER_CANCELLED

    def test_raise_if_cancelled_carries_cause(self) -> None:
        token = CancellationToken()
        token.cancel(CancelCause.PHASE_TIMED_OUT)
        with pytest.raises(OperationCancelled) as exc_info:
            token.raise_if_cancelled()
        assert exc_info.value.cause == CancelCause.PHASE_TIMED_OUT

    def test_wait_times_out_when_live(self) -> None:
        assert CancellationToken().wait(0.01) is False

    def test_wait_wakes_on_cancel(self) -> None:
        token = CancellationToken()
        timer = threading.Timer(0.05, token.cancel)
        timer.start()
        try:
            assert token.wait(5) is True
        finally:
            timer.cancel()


# ── Linked Tokens ────────────────────────────────────────────────────────────


class TestLinkedTokens:
    def test_parent_cancels_child(self) -> None:
        parent = CancellationToken()
        child = parent.link()
        parent.cancel(CancelCause.USER_CANCELLED)
        assert child.cancelled
        assert child.cause == CancelCause.USER_CANCELLED

    def test_child_does_not_cancel_parent(self) -> None:
        parent = CancellationToken()
        child = parent.link()
        child.cancel(CancelCause.PHASE_TIMED_OUT)
        assert child.cancelled
        assert not parent.cancelled

    def test_link_on_cancelled_parent_is_cancelled(self) -> None:
        parent = CancellationToken()
        parent.cancel()
        assert parent.link().cancelled

    def test_unlinked_child_is_not_cancelled(self) -> None:
        parent = CancellationToken()
        child = parent.link()
        parent.unlink(child)
        parent.cancel()
        assert not child.cancelled


# ── Callbacks ────────────────────────────────────────────────────────────────


class TestCallbacks:
    def test_callback_receives_cause(self) -> None:
        token = CancellationToken()
        seen = []
        token.add_callback(seen.append)
        token.cancel(CancelCause.PHASE_TIMED_OUT)
        assert seen == [CancelCause.PHASE_TIMED_OUT]

    def test_callback_runs_immediately_when_already_cancelled(self) -> None:
        token = CancellationToken()
        token.cancel()
        seen = []
        token.add_callback(seen.append)
        assert seen == [CancelCause.USER_CANCELLED]

    def test_failing_callback_does_not_block_others(self) -> None:
        token = CancellationToken()
        seen = []

        def boom(_cause):
            raise RuntimeError("boom")

        token.add_callback(boom)
        token.add_callback(seen.append)
        token.cancel()
        assert seen == [CancelCause.USER_CANCELLED]

    def test_callbacks_fire_once(self) -> None:
        token = CancellationToken()
        seen = []
        token.add_callback(seen.append)
        token.cancel()
        token.cancel()
        assert len(seen) == 1
