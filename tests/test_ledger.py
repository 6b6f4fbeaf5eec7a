"""Tests for the timer ledger — stats, live status, rest minutes, durations."""

from __future__ import annotations

from timekeeper.common.constants import EventType, TimerState
from timekeeper.timer.ledger import (
    SimpleEvent,
    closed_rest_minutes,
    compute_stats,
    live_status,
    sort_events,
    with_durations,
)

WORK, REST, END = EventType.work, EventType.rest, EventType.end


def _events(*pairs):
    return [SimpleEvent(event_type=t, timestamp=ts) for t, ts in pairs]


# ═════════════════════════════════════════════════════════════════════
# compute_stats
# ═════════════════════════════════════════════════════════════════════


def test_work_rest_work_end_scenario():
    """Work 30 min, rest 5 min, work 60 min, end."""
    stats = compute_stats(_events((WORK, 0), (REST, 1800), (WORK, 2100), (END, 5700)))

    assert stats.total_rest_seconds == 300
    assert stats.total_work_seconds == 5400
    assert stats.work_periods == 2
    assert stats.rest_periods == 1
    assert stats.total_work_minutes == 90
    assert stats.total_rest_minutes == 5
    assert stats.total_work_hours == 1.5


def test_consecutive_work_is_idempotent():
    once = compute_stats(_events((WORK, 0), (END, 600)))
    twice = compute_stats(_events((WORK, 0), (WORK, 300), (END, 600)))

    assert twice.work_periods == once.work_periods == 1
    assert twice.total_work_seconds == once.total_work_seconds == 600


def test_consecutive_rest_is_idempotent():
    stats = compute_stats(_events((WORK, 0), (REST, 100), (REST, 200), (WORK, 400)))
    assert stats.rest_periods == 1
    assert stats.total_rest_seconds == 300


def test_durations_add_up_for_alternating_sequence():
    events = _events((WORK, 10), (REST, 910), (WORK, 1210), (REST, 4000), (WORK, 4100), (END, 9000))
    stats = compute_stats(events)

    assert stats.total_work_seconds + stats.total_rest_seconds == 9000 - 10


def test_input_is_sorted_before_the_pass():
    ordered = _events((WORK, 0), (REST, 1800), (WORK, 2100), (END, 5700))
    shuffled = [ordered[2], ordered[0], ordered[3], ordered[1]]
    assert compute_stats(shuffled) == compute_stats(ordered)


def test_sort_is_stable_for_equal_timestamps():
    first = SimpleEvent(WORK, 100)
    second = SimpleEvent(REST, 100)
    assert sort_events([first, second]) == [first, second]


def test_end_without_open_span_counts_nothing():
    stats = compute_stats(_events((END, 100)))
    assert stats.total_work_seconds == 0
    assert stats.work_periods == 0


def test_empty_day():
    stats = compute_stats([])
    assert stats.total_work_seconds == 0
    assert stats.total_rest_seconds == 0


def test_work_after_end_reopens():
    stats = compute_stats(_events((WORK, 0), (END, 600), (WORK, 900), (END, 1500)))
    assert stats.work_periods == 2
    assert stats.total_work_seconds == 1200


# ═════════════════════════════════════════════════════════════════════
# live_status
# ═════════════════════════════════════════════════════════════════════


def test_live_status_working_includes_open_span():
    status = live_status(_events((WORK, 0), (REST, 600), (WORK, 900)), now=1500)

    assert status.state == TimerState.working
    assert status.open_span_start == 900
    assert status.stats.total_work_seconds == 600
    assert status.ongoing_work_seconds == 1200
    assert status.ongoing_work_minutes == 20
    assert status.ongoing_rest_seconds == 300


def test_live_status_resting():
    status = live_status(_events((WORK, 0), (REST, 600)), now=660)
    assert status.state == TimerState.resting
    assert status.ongoing_rest_seconds == 60
    assert status.ongoing_work_seconds == 600


def test_live_status_ended_and_idle():
    assert live_status(_events((WORK, 0), (END, 60)), now=600).state == TimerState.ended
    assert live_status([], now=600).state == TimerState.idle


def test_live_value_is_not_part_of_stats():
    events = _events((WORK, 0))
    status = live_status(events, now=3600)
    assert status.ongoing_work_seconds == 3600
    assert compute_stats(events).total_work_seconds == 0


# ═════════════════════════════════════════════════════════════════════
# closed_rest_minutes / with_durations
# ═════════════════════════════════════════════════════════════════════


def test_closed_rest_minutes_floors_each_rest():
    events = [
        SimpleEvent(WORK, 0, end_timestamp=1800),
        SimpleEvent(REST, 1800, end_timestamp=1919),  # 1m59s → 1
        SimpleEvent(WORK, 1919, end_timestamp=3000),
        SimpleEvent(REST, 3000, end_timestamp=3300),  # 5
        SimpleEvent(REST, 4000),  # still open
    ]
    assert closed_rest_minutes(events) == 6


def test_with_durations():
    pairs = list(with_durations(_events((WORK, 0), (REST, 1800), (WORK, 2100))))
    assert [gap for _, gap in pairs] == [None, 1800, 300]
