"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from hostdoctor.config import Settings
from hostdoctor.optimize.actions import ActionType, OptimizationAction
from hostdoctor.optimize.remediations import (
    ApplyResult,
    Remediation,
    RemediationContext,
    RemediationRegistry,
    ValueRef,
)
from hostdoctor.rollback.stores import ValueKind


class MemoryStore:
    """In-memory ValueStore."""

    def __init__(self, values: dict[tuple[str, str, str], tuple[Any, ValueKind]] | None = None) -> None:
        self.values = dict(values or {})
        self.fail_reads = False

    def read(self, root: str, path: str, name: str) -> tuple[Any, ValueKind] | None:
        if self.fail_reads:
            raise OSError("access denied")
        return self.values.get((root, path, name))

    def write(self, root: str, path: str, name: str, value: Any, kind: ValueKind) -> None:
        self.values[(root, path, name)] = (value, kind)

    def delete(self, root: str, path: str, name: str) -> None:
        self.values.pop((root, path, name), None)


class FakeRemediation(Remediation):
    """Scriptable remediation that records how it was driven."""

    def __init__(
        self,
        key: str,
        shortcut: bool = False,
        result: ApplyResult | None = None,
        error: Exception | None = None,
        measures: list[float | None] | None = None,
        requires_reboot: bool = False,
        target: float | None = None,
        expected: float | None = None,
        protected: list[ValueRef] | None = None,
        on_apply=None,
    ) -> None:
        self.key = key
        self.shortcut = shortcut
        self.result = result or ApplyResult(deleted=1, detail="done")
        self.error = error
        self.measures = list(measures or [])
        self.requires_reboot = requires_reboot
        self.target = target
        self.expected = expected
        self.protected = protected or []
        self.on_apply = on_apply
        self.applied: list[str] = []

    def protected_values(self, action: OptimizationAction) -> list[ValueRef]:
        return list(self.protected)

    def apply(self, action: OptimizationAction, ctx: RemediationContext) -> ApplyResult:
        self.applied.append(action.action_key)
        if self.on_apply:
            self.on_apply(action, ctx)
        if self.error:
            raise self.error
        return self.result

    def measure(self, action: OptimizationAction, ctx: RemediationContext) -> float | None:
        return self.measures.pop(0) if self.measures else None

    def expected_improvement(self, action: OptimizationAction) -> float | None:
        return self.expected


def make_action(key: str, selected: bool = True, type: ActionType = ActionType.AUTO_FIX, **kw) -> OptimizationAction:
    return OptimizationAction(
        category=kw.pop("category", "Test"),
        title=kw.pop("title", key),
        action_key=key,
        type=type,
        is_selected=selected,
        **kw,
    )


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        data_dir=tmp_path / "data",
        verify_settle_seconds=0,
        cpu_sample_count=1,
    )


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def registry() -> RemediationRegistry:
    return RemediationRegistry()
