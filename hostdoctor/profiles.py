"""Scan profile: loads a YAML file of timeout, phase and threshold overrides.

Example::

    timeouts:
      default: 45
      phases:
        network: 120
    disabled_phases: [software]
    thresholds:
      cpu.load: {warn: 40, critical: 75}

A missing or malformed file yields the empty profile (built-in defaults).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from hostdoctor.config import Settings
from hostdoctor.diagnostics.issues import DEFAULT_RULES, RuleSet
from hostdoctor.scan.phases import Phase, TimeoutPolicy

logger = logging.getLogger(__name__)


@dataclass
class ScanProfile:
    default_timeout: float | None = None
    phase_timeouts: dict[str, float] = field(default_factory=dict)
    disabled_phases: list[str] = field(default_factory=list)
    thresholds: dict[str, dict[str, Any]] = field(default_factory=dict)

    def timeout_policy(self, settings: Settings) -> TimeoutPolicy:
        policy = TimeoutPolicy.from_settings(settings)
        if self.default_timeout is not None:
            policy = TimeoutPolicy(default=self.default_timeout, per_phase=policy.per_phase)
        return policy.with_overrides(self.phase_timeouts)

    def rules(self) -> RuleSet:
        if not self.thresholds:
            return DEFAULT_RULES
        return DEFAULT_RULES.with_overrides(self.thresholds)

    def apply(self, phases: list[Phase]) -> list[Phase]:
        """Mark disabled phases; returns the same list for chaining."""
        known = {p.name for p in phases}
        for name in self.disabled_phases:
            if name not in known:
                logger.warning("Profile disables unknown phase: %s", name)
        for phase in phases:
            if phase.name in self.disabled_phases:
                phase.enabled = False
        return phases


def load_profile(path: Path | str | None) -> ScanProfile:
    """Parse a profile YAML file; fall back to defaults on any problem."""
    if not path:
        return ScanProfile()
    path = Path(path)
    if not path.exists():
        logger.warning("Scan profile not found: %s", path)
        return ScanProfile()

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except Exception as e:
        logger.error("Failed to parse %s: %s", path, e)
        return ScanProfile()

    try:
        profile = _parse_profile(raw)
    except (AttributeError, TypeError, ValueError) as e:
        logger.warning("Ignoring malformed scan profile %s: %s", path, e)
        return ScanProfile()

    logger.info(
        "Loaded scan profile %s (%d timeout override(s), %d disabled phase(s), %d threshold override(s))",
        path, len(profile.phase_timeouts), len(profile.disabled_phases), len(profile.thresholds),
    )
    return profile


def _parse_profile(raw: dict[str, Any]) -> ScanProfile:
    timeouts = raw.get("timeouts") or {}
    default = timeouts.get("default")
    return ScanProfile(
        default_timeout=float(default) if default is not None else None,
        phase_timeouts={str(k): float(v) for k, v in (timeouts.get("phases") or {}).items()},
        disabled_phases=[str(p) for p in raw.get("disabled_phases") or []],
        thresholds={str(k): dict(v) for k, v in (raw.get("thresholds") or {}).items()},
    )
