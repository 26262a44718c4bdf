"""Cooperative cancellation tokens for scans and optimization runs.

A scan owns one root token. The phase scheduler links a child token per
probe, so a phase timeout can stop that probe's writes without tearing
down the whole scan. Cancelling a parent cancels every linked child; a
child never propagates upwards.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from enum import Enum

logger = logging.getLogger(__name__)


class CancelCause(str, Enum):
    USER_CANCELLED = "user_cancelled"
    PHASE_TIMED_OUT = "phase_timed_out"


class OperationCancelled(Exception):
    """Raised by ``raise_if_cancelled`` once a token has fired."""

    def __init__(self, cause: CancelCause) -> None:
        super().__init__(f"Operation cancelled ({cause.value})")
        self.cause = cause


class CancellationToken:
    """Thread-safe, one-shot cancellation signal with linked children."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._cause: CancelCause | None = None
        self._callbacks: list[Callable[[CancelCause], None]] = []
        self._children: list[CancellationToken] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def cause(self) -> CancelCause | None:
        return self._cause

    def cancel(self, cause: CancelCause = CancelCause.USER_CANCELLED) -> None:
        """Fire the token. Later calls are no-ops; the first cause wins."""
        with self._lock:
            if self._event.is_set():
                return
            self._cause = cause
            self._event.set()
            callbacks = list(self._callbacks)
            children = list(self._children)
            self._callbacks.clear()

        for cb in callbacks:
            try:
                cb(cause)
            except Exception:
                logger.exception("Cancellation callback error")
        for child in children:
            child.cancel(cause)

    def link(self) -> CancellationToken:
        """Create a child token that fires whenever this one does."""
        child = CancellationToken()
        with self._lock:
            if not self._event.is_set():
                self._children.append(child)
                return child
            cause = self._cause
        child.cancel(cause or CancelCause.USER_CANCELLED)
        return child

    def unlink(self, child: CancellationToken) -> None:
        with self._lock:
            if child in self._children:
                self._children.remove(child)

    def add_callback(self, callback: Callable[[CancelCause], None]) -> None:
        """Run ``callback(cause)`` on cancellation (immediately if already fired)."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
            cause = self._cause
        callback(cause or CancelCause.USER_CANCELLED)

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or ``timeout`` elapses. Returns True if cancelled."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled(self._cause or CancelCause.USER_CANCELLED)
