from hostdoctor.optimize.actions import (
    ActionImpact,
    ActionRisk,
    ActionStatus,
    ActionType,
    InvalidTransitionError,
    OptimizationAction,
    OptimizationProgress,
    OptimizationSummary,
    VerificationStatus,
)
from hostdoctor.optimize.executor import ActionExecutor
from hostdoctor.optimize.planner import build_plan
from hostdoctor.optimize.remediations import (
    Remediation,
    RemediationError,
    RemediationRegistry,
    UnknownActionError,
)
from hostdoctor.optimize.timestamps import RemediationTimestamps
from hostdoctor.optimize.verifier import Verifier

__all__ = [
    "ActionExecutor",
    "ActionImpact",
    "ActionRisk",
    "ActionStatus",
    "ActionType",
    "InvalidTransitionError",
    "OptimizationAction",
    "OptimizationProgress",
    "OptimizationSummary",
    "Remediation",
    "RemediationError",
    "RemediationRegistry",
    "RemediationTimestamps",
    "UnknownActionError",
    "Verifier",
    "VerificationStatus",
    "build_plan",
]
