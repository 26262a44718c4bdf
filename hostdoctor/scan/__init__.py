"""Scan subsystem: linked cancellation, phase definitions, scheduler."""

from hostdoctor.scan.cancellation import CancelCause, CancellationToken, OperationCancelled
from hostdoctor.scan.phases import Phase, ProbeContext, ScanProgress, TimeoutPolicy
from hostdoctor.scan.scheduler import PhaseScheduler

__all__ = [
    "CancelCause",
    "CancellationToken",
    "OperationCancelled",
    "Phase",
    "PhaseScheduler",
    "ProbeContext",
    "ScanProgress",
    "TimeoutPolicy",
]
