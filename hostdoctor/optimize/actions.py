"""Optimization action model and its forward-only state machines."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ActionType(str, Enum):
    AUTO_FIX = "auto_fix"
    SHORTCUT = "shortcut"
    MANUAL_ONLY = "manual_only"

    @property
    def rank(self) -> int:
        return _TYPE_RANK[self]


_TYPE_RANK = {ActionType.AUTO_FIX: 0, ActionType.SHORTCUT: 1, ActionType.MANUAL_ONLY: 2}


class ActionRisk(str, Enum):
    SAFE = "safe"
    MODERATE = "moderate"
    REQUIRES_REBOOT = "requires_reboot"

    @property
    def level(self) -> int:
        return _RISK_LEVEL[self]


_RISK_LEVEL = {ActionRisk.SAFE: 0, ActionRisk.MODERATE: 1, ActionRisk.REQUIRES_REBOOT: 2}


class ActionImpact(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ActionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    NO_CHANGE = "no_change"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self not in (ActionStatus.PENDING, ActionStatus.RUNNING)


class VerificationStatus(str, Enum):
    NONE = "none"
    VERIFYING = "verifying"
    VERIFIED = "verified"
    PARTIALLY_VERIFIED = "partially_verified"
    NOT_VERIFIED = "not_verified"
    REQUIRES_REBOOT = "requires_reboot"


_STATUS_TRANSITIONS: dict[ActionStatus, frozenset[ActionStatus]] = {
    ActionStatus.PENDING: frozenset({ActionStatus.RUNNING, ActionStatus.SKIPPED}),
    ActionStatus.RUNNING: frozenset({
        ActionStatus.SUCCESS,
        ActionStatus.PARTIAL_SUCCESS,
        ActionStatus.NO_CHANGE,
        ActionStatus.FAILED,
    }),
}

_VERIFICATION_TRANSITIONS: dict[VerificationStatus, frozenset[VerificationStatus]] = {
    VerificationStatus.NONE: frozenset({
        VerificationStatus.VERIFYING,
        # failed actions are marked directly, without a re-measurement
        VerificationStatus.NOT_VERIFIED,
    }),
    VerificationStatus.VERIFYING: frozenset({
        VerificationStatus.VERIFIED,
        VerificationStatus.PARTIALLY_VERIFIED,
        VerificationStatus.NOT_VERIFIED,
        VerificationStatus.REQUIRES_REBOOT,
    }),
}


class InvalidTransitionError(RuntimeError):
    """An action was moved backwards or sideways through its state machine."""


@dataclass
class OptimizationAction:
    category: str
    title: str
    action_key: str
    description: str = ""
    type: ActionType = ActionType.AUTO_FIX
    risk: ActionRisk = ActionRisk.SAFE
    impact: ActionImpact = ActionImpact.LOW
    impact_rationale: str = ""
    estimated_free_mb: int = 0
    estimated_duration: str = ""
    is_selected: bool = False
    status: ActionStatus = ActionStatus.PENDING
    result_message: str = ""
    actual_freed_mb: int = 0
    baseline: float | None = None
    verification: VerificationStatus = VerificationStatus.NONE
    verification_message: str = ""

    @property
    def is_automatable(self) -> bool:
        return self.type != ActionType.MANUAL_ONLY

    @property
    def was_executed(self) -> bool:
        return self.status.is_terminal and self.status != ActionStatus.SKIPPED

    def transition(self, new: ActionStatus, message: str | None = None) -> None:
        if new not in _STATUS_TRANSITIONS.get(self.status, frozenset()):
            raise InvalidTransitionError(
                f"{self.action_key}: cannot move status {self.status.value} -> {new.value}",
            )
        self.status = new
        if message is not None:
            self.result_message = message

    def set_verification(self, new: VerificationStatus, message: str | None = None) -> None:
        if not self.status.is_terminal:
            raise InvalidTransitionError(
                f"{self.action_key}: cannot verify while status is {self.status.value}",
            )
        if new not in _VERIFICATION_TRANSITIONS.get(self.verification, frozenset()):
            raise InvalidTransitionError(
                f"{self.action_key}: cannot move verification "
                f"{self.verification.value} -> {new.value}",
            )
        self.verification = new
        if message is not None:
            self.verification_message = message


@dataclass(frozen=True)
class OptimizationProgress:
    index: int
    total: int
    name: str
    is_long_running: bool = False
    estimated_seconds: float = 0


@dataclass
class OptimizationSummary:
    actions_run: int = 0
    success_count: int = 0
    failure_count: int = 0
    total_freed_mb: int = 0
    cancelled: bool = False
    details: list[str] = field(default_factory=list)
