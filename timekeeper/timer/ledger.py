"""Timer ledger — derive work/rest statistics from a day's timer events.

Events are WORK, REST or END stamps. A single linear pass over the events
(sorted by timestamp) opens and closes spans:

  - WORK closes an open rest span and opens a work span unless one is open.
  - REST closes an open work span and opens a rest span unless one is open.
  - END closes whatever is open.

Consecutive events of the same type are idempotent. A dangling work span
means "currently working"; its live duration is reported by
:func:`live_status` and never persisted.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator, Optional, Protocol, Sequence

from timekeeper.common.constants import EventType, TimerState
from timekeeper.common.timeutils import (
    elapsed_seconds,
    seconds_to_hours,
    seconds_to_minutes,
)


class LedgerEvent(Protocol):
    event_type: EventType
    timestamp: int
    end_timestamp: Optional[int]


@dataclass(frozen=True)
class SimpleEvent:
    """Plain event value, for callers that do not hold ORM rows."""

    event_type: EventType
    timestamp: int
    end_timestamp: Optional[int] = None


@dataclass(frozen=True)
class LedgerStats:
    total_work_seconds: int = 0
    total_rest_seconds: int = 0
    work_periods: int = 0
    rest_periods: int = 0

    @property
    def total_work_minutes(self) -> int:
        return seconds_to_minutes(self.total_work_seconds)

    @property
    def total_rest_minutes(self) -> int:
        return seconds_to_minutes(self.total_rest_seconds)

    @property
    def total_work_hours(self) -> float:
        return seconds_to_hours(self.total_work_seconds)

    @property
    def total_rest_hours(self) -> float:
        return seconds_to_hours(self.total_rest_seconds)


@dataclass(frozen=True)
class LiveStatus:
    state: TimerState
    stats: LedgerStats
    open_span_start: Optional[int] = None
    ongoing_work_seconds: int = 0
    ongoing_rest_seconds: int = 0

    @property
    def ongoing_work_minutes(self) -> int:
        return seconds_to_minutes(self.ongoing_work_seconds)


@dataclass
class _Pass:
    """Mutable accumulator for one pass over the events."""

    work_seconds: int = 0
    rest_seconds: int = 0
    work_periods: int = 0
    rest_periods: int = 0
    open_work_start: Optional[int] = None
    open_rest_start: Optional[int] = None
    last_type: Optional[EventType] = None

    def close_work(self, at: int) -> None:
        if self.open_work_start is not None:
            self.work_seconds += elapsed_seconds(self.open_work_start, at)
            self.open_work_start = None

    def close_rest(self, at: int) -> None:
        if self.open_rest_start is not None:
            self.rest_seconds += elapsed_seconds(self.open_rest_start, at)
            self.open_rest_start = None

    def apply(self, event: LedgerEvent) -> None:
        now = int(event.timestamp)
        event_type = EventType(event.event_type)
        if event_type == EventType.work:
            self.close_rest(now)
            if self.open_work_start is None:
                self.open_work_start = now
                self.work_periods += 1
        elif event_type == EventType.rest:
            self.close_work(now)
            if self.open_rest_start is None:
                self.open_rest_start = now
                self.rest_periods += 1
        else:
            # Malformed input may leave both open; close both.
            self.close_work(now)
            self.close_rest(now)
        self.last_type = event_type

    def stats(self) -> LedgerStats:
        return LedgerStats(
            total_work_seconds=self.work_seconds,
            total_rest_seconds=self.rest_seconds,
            work_periods=self.work_periods,
            rest_periods=self.rest_periods,
        )


def sort_events(events: Iterable[LedgerEvent]) -> list[LedgerEvent]:
    """Ascending by timestamp; stable so append order breaks ties."""
    return sorted(events, key=lambda e: int(e.timestamp))


def _run(events: Iterable[LedgerEvent]) -> _Pass:
    acc = _Pass()
    for event in sort_events(events):
        acc.apply(event)
    return acc


def compute_stats(events: Iterable[LedgerEvent]) -> LedgerStats:
    """Total work/rest seconds and period counts for a day's events."""
    return _run(events).stats()


def live_status(events: Iterable[LedgerEvent], now: int) -> LiveStatus:
    """Stats plus the state of any span still open at *now*."""
    acc = _run(events)
    stats = acc.stats()

    if acc.open_work_start is not None:
        return LiveStatus(
            state=TimerState.working,
            stats=stats,
            open_span_start=acc.open_work_start,
            ongoing_work_seconds=stats.total_work_seconds
            + elapsed_seconds(acc.open_work_start, now),
            ongoing_rest_seconds=stats.total_rest_seconds,
        )
    if acc.open_rest_start is not None:
        return LiveStatus(
            state=TimerState.resting,
            stats=stats,
            open_span_start=acc.open_rest_start,
            ongoing_work_seconds=stats.total_work_seconds,
            ongoing_rest_seconds=stats.total_rest_seconds
            + elapsed_seconds(acc.open_rest_start, now),
        )

    state = TimerState.ended if acc.last_type == EventType.end else TimerState.idle
    return LiveStatus(
        state=state,
        stats=stats,
        ongoing_work_seconds=stats.total_work_seconds,
        ongoing_rest_seconds=stats.total_rest_seconds,
    )


def closed_rest_minutes(events: Iterable[LedgerEvent]) -> int:
    """Sum of floored minutes of every REST event that has been closed."""
    total = 0
    for event in events:
        if EventType(event.event_type) != EventType.rest or event.end_timestamp is None:
            continue
        total += seconds_to_minutes(elapsed_seconds(event.timestamp, event.end_timestamp))
    return total


def with_durations(
    events: Sequence[LedgerEvent],
) -> Iterator[tuple[LedgerEvent, Optional[int]]]:
    """Yield ``(event, duration_from_previous)``; the first has ``None``."""
    previous: Optional[int] = None
    for event in sort_events(events):
        ts = int(event.timestamp)
        yield event, (ts - previous if previous is not None else None)
        previous = ts
