"""Timer module — work/rest statistics derived from timer events."""

from timekeeper.timer.ledger import (
    LedgerStats,
    LiveStatus,
    SimpleEvent,
    compute_stats,
    live_status,
)

__all__ = ["LedgerStats", "LiveStatus", "SimpleEvent", "compute_stats", "live_status"]
