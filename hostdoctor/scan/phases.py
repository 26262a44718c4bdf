"""Phase definitions and the per-probe execution context."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from hostdoctor.config import Settings
from hostdoctor.scan.cancellation import CancellationToken

logger = logging.getLogger(__name__)

# Phases that touch slow or occasionally hanging OS subsystems.
SLOW_PHASES = ("gpu", "security", "updates", "software", "events")
NETWORK_PHASES = ("network",)


@dataclass
class ProbeContext:
    """What a probe may use while it runs.

    ``token`` is the phase-local token; probes check it between samples
    and before each external call.
    """

    token: CancellationToken
    settings: Settings
    log: Callable[[str], None] = lambda _msg: None
    remediated_at: Callable[[str], datetime | None] = lambda _cat: None


# A probe fills in the private sub-record it is handed.
Probe = Callable[[Any, ProbeContext], None]


@dataclass
class Phase:
    name: str
    section: str  # DiagnosticResult attribute this probe owns
    probe: Probe
    description: str = ""
    estimated_seconds: float = 1.0
    enabled: bool = True


@dataclass(frozen=True)
class ScanProgress:
    index: int
    total: int
    name: str
    description: str
    estimated_seconds: float


@dataclass
class TimeoutPolicy:
    """Per-phase timeout lookup with a shared default.

    A phase with its own entry uses exactly that value, even when it is
    shorter than the default, so a profile can give one phase a tighter
    ceiling. Phases without an entry get the default.
    """

    default: float = 60.0
    per_phase: dict[str, float] = field(default_factory=dict)

    def for_phase(self, name: str) -> float:
        return self.per_phase.get(name, self.default)

    @classmethod
    def from_settings(cls, settings: Settings) -> TimeoutPolicy:
        per_phase = {name: settings.slow_phase_timeout for name in SLOW_PHASES}
        per_phase.update({name: settings.network_phase_timeout for name in NETWORK_PHASES})
        return cls(default=settings.default_phase_timeout, per_phase=per_phase)

    def with_overrides(self, overrides: dict[str, float]) -> TimeoutPolicy:
        merged = dict(self.per_phase)
        merged.update(overrides)
        return TimeoutPolicy(default=self.default, per_phase=merged)
