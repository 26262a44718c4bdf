"""Per-category "last successful remediation" timestamps.

The event-history probe reads these so only events newer than the last
fix count as outstanding.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path

from hostdoctor.optimize.actions import ActionStatus, OptimizationAction
from hostdoctor.storage import read_json, write_json_atomic

logger = logging.getLogger(__name__)

# Action key -> event category it remediates.
_REMEDIATED_CATEGORY = {
    "RunSfc": "bsods",
    "RunDism": "bsods",
    "ScheduleMemoryDiagnostic": "bsods",
    "ScheduleChkdsk": "disk_errors",
    "OpenAppsSettings": "app_crashes",
    "ClearErrorReports": "app_crashes",
    "DisableFastStartup": "unexpected_shutdowns",
    "RepairPowerConfig": "unexpected_shutdowns",
}


def remediated_categories(actions: Iterable[OptimizationAction]) -> set[str]:
    """Event categories touched by actions that applied successfully."""
    done = (ActionStatus.SUCCESS, ActionStatus.PARTIAL_SUCCESS)
    categories: set[str] = set()
    for action in actions:
        if action.status not in done:
            continue
        key = action.action_key
        if key.startswith("ClearBrowserCache:"):
            categories.add("app_crashes")
        elif key in _REMEDIATED_CATEGORY:
            categories.add(_REMEDIATED_CATEGORY[key])
    return categories


def _parse(value: object) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        ts = datetime.fromisoformat(value)
    except ValueError:
        return None
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


class RemediationTimestamps:
    def __init__(self, path: Path) -> None:
        self.path = path

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            raw = read_json(self.path)
        except Exception as e:
            logger.warning("Unreadable remediation timestamps %s: %s", self.path, e)
            return {}
        return raw if isinstance(raw, dict) else {}

    def get(self, category: str) -> datetime | None:
        return _parse(self._load().get(category))

    def latest(self) -> datetime | None:
        known = [ts for ts in map(_parse, self._load().values()) if ts is not None]
        return max(known) if known else None

    def record(self, categories: Iterable[str], when: datetime | None = None) -> None:
        categories = list(categories)
        if not categories:
            return
        stamp = (when or datetime.now(timezone.utc)).isoformat()
        data = self._load()
        for category in categories:
            data[category] = stamp
        try:
            write_json_atomic(self.path, data)
        except Exception as e:
            logger.warning("Failed to save remediation timestamps %s: %s", self.path, e)
            return
        logger.info("Recorded remediation for: %s", ", ".join(sorted(categories)))
