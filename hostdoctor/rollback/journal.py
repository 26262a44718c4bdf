"""Rollback journal: capture protected values before mutating them.

Entries are held in memory while an optimization batch runs and merged
into the on-disk journal in one write afterwards. A restore replays every
entry on disk and then deletes the journal, so the same undo is never
applied twice.
"""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from hostdoctor.rollback.stores import ValueKind, ValueStore
from hostdoctor.storage import read_json, write_json_atomic

logger = logging.getLogger(__name__)


@dataclass
class RollbackEntry:
    root: str
    path: str
    name: str
    original: str | None  # serialized; None for absent or zero-length data
    kind: ValueKind
    captured_at: str
    action_key: str = ""
    existed: bool = True

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["kind"] = self.kind.value
        return d

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> RollbackEntry:
        return cls(
            root=raw["root"],
            path=raw["path"],
            name=raw["name"],
            original=raw.get("original"),
            kind=ValueKind(raw.get("kind", ValueKind.NONE.value)),
            captured_at=raw.get("captured_at", ""),
            action_key=raw.get("action_key", ""),
            existed=raw.get("existed", raw.get("original") is not None),
        )


@dataclass(frozen=True)
class RestoreResult:
    action_key: str
    success: bool
    message: str


# ── Serialization ────────────────────────────────────────────────────────────


def serialize_value(value: Any, kind: ValueKind) -> str | None:
    if value is None:
        return None
    if kind in (ValueKind.BINARY, ValueKind.NONE):
        return base64.b64encode(bytes(value)).decode("ascii")
    if kind in (ValueKind.DWORD, ValueKind.QWORD):
        return str(int(value))
    if kind == ValueKind.MULTI_STRING:
        return json.dumps(list(value))
    return str(value)


def deserialize_value(text: str, kind: ValueKind) -> Any:
    if kind in (ValueKind.BINARY, ValueKind.NONE):
        return base64.b64decode(text)
    if kind in (ValueKind.DWORD, ValueKind.QWORD):
        return int(text)
    if kind == ValueKind.MULTI_STRING:
        return json.loads(text)
    return text


# ── Journal ──────────────────────────────────────────────────────────────────


class RollbackJournal:
    def __init__(self, store: ValueStore | None, path: Path) -> None:
        self.store = store
        self.path = path
        self._pending: list[RollbackEntry] = []

    @property
    def pending(self) -> list[RollbackEntry]:
        return list(self._pending)

    def capture(self, root: str, path: str, name: str) -> Any | None:
        """Record the current value (or its absence) and return it.

        Returns None without recording anything if the value can't be read.
        """
        if self.store is None:
            return None
        try:
            current = self.store.read(root, path, name)
        except Exception as e:
            logger.warning("Could not capture %s\\%s\\%s: %s", root, path, name, e)
            return None

        value, kind = current if current is not None else (None, ValueKind.NONE)
        self._pending.append(RollbackEntry(
            root=root,
            path=path,
            name=name,
            original=serialize_value(value, kind),
            kind=kind,
            captured_at=datetime.now(timezone.utc).isoformat(),
            existed=current is not None,
        ))
        return value

    def tag_last(self, action_key: str) -> None:
        """Attribute the most recent capture to the action about to mutate it."""
        if self._pending:
            self._pending[-1].action_key = action_key

    def save(self) -> bool:
        """Merge pending entries into the on-disk journal. Best-effort."""
        if not self._pending:
            return True
        try:
            merged = self.load_entries() + self._pending
            write_json_atomic(self.path, [e.to_dict() for e in merged])
        except Exception as e:
            logger.warning("Failed to save rollback journal %s: %s", self.path, e)
            return False
        logger.info("Saved %d rollback entries (%d total)", len(self._pending), len(merged))
        self._pending.clear()
        return True

    def load_entries(self) -> list[RollbackEntry]:
        if not self.path.exists():
            return []
        try:
            raw = read_json(self.path)
            return [RollbackEntry.from_dict(r) for r in raw or []]
        except Exception as e:
            logger.warning("Unreadable rollback journal %s: %s", self.path, e)
            return []

    def has_saved_rollback(self) -> bool:
        try:
            return self.path.exists() and self.path.stat().st_size > 2
        except OSError:
            return False

    def clear_saved_rollback(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not remove rollback journal %s: %s", self.path, e)

    def restore_all(self) -> list[RestoreResult]:
        """Undo every journaled change, newest first, then drop the journal."""
        entries = self.load_entries()
        if not entries:
            self.clear_saved_rollback()
            return [RestoreResult("", False, "No rollback data found")]

        results: list[RestoreResult] = []
        # Newest first, so a value captured in several sessions ends at its oldest original.
        for entry in reversed(entries):
            results.append(self._restore_one(entry))

        self.clear_saved_rollback()
        ok = sum(1 for r in results if r.success)
        logger.info("Rollback restored %d/%d entries", ok, len(results))
        return results

    def _restore_one(self, entry: RollbackEntry) -> RestoreResult:
        if self.store is None:
            return RestoreResult(entry.action_key, False, "No value store available on this host")
        try:
            if not entry.existed:
                self.store.delete(entry.root, entry.path, entry.name)
                return RestoreResult(entry.action_key, True, f"Removed {entry.name}")
            value = None if entry.original is None else deserialize_value(entry.original, entry.kind)
            self.store.write(entry.root, entry.path, entry.name, value, entry.kind)
            return RestoreResult(entry.action_key, True, f"Restored {entry.name}")
        except Exception as e:
            logger.warning("Restore failed for %s\\%s: %s", entry.path, entry.name, e)
            return RestoreResult(entry.action_key, False, f"Failed: {e}")
