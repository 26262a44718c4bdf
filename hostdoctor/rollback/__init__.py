"""Rollback journal and protected-value stores."""

from hostdoctor.rollback.journal import RestoreResult, RollbackEntry, RollbackJournal
from hostdoctor.rollback.stores import ValueKind, ValueStore, WindowsRegistryStore, default_store

__all__ = [
    "RestoreResult",
    "RollbackEntry",
    "RollbackJournal",
    "ValueKind",
    "ValueStore",
    "WindowsRegistryStore",
    "default_store",
]
