from hostdoctor.history.store import (
    HistoryStore,
    MetricDelta,
    ScanSnapshot,
    changed,
    compare,
    create_snapshot,
    format_mb,
)

__all__ = ["HistoryStore", "MetricDelta", "ScanSnapshot", "changed", "compare", "create_snapshot", "format_mb"]
