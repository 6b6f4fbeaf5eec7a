"""Enums and constants for Timekeeper — persisted as their string values."""

from __future__ import annotations

import enum


# ── Timer ───────────────────────────────────────────────────────────

class EventType(str, enum.Enum):
    work = "WORK"
    rest = "REST"
    end = "END"


class TimerState(str, enum.Enum):
    idle = "IDLE"
    working = "WORKING"
    resting = "RESTING"
    ended = "ENDED"


# ── Attendance ──────────────────────────────────────────────────────

class RecordStatus(str, enum.Enum):
    in_progress = "IN_PROGRESS"
    completed = "COMPLETED"
    corrected = "CORRECTED"


class ApprovalStatus(str, enum.Enum):
    pending = "PENDING"
    approved = "APPROVED"
    rejected = "REJECTED"


class CorrectionField(str, enum.Enum):
    check_in_time = "check_in_time"
    check_out_time = "check_out_time"


class CorrectionDecision(str, enum.Enum):
    approve = "APPROVE"
    reject = "REJECT"


# ── Audit ───────────────────────────────────────────────────────────

class OperationAction(str, enum.Enum):
    check_in = "CHECK_IN"
    timer_event = "TIMER_EVENT"
    check_out = "CHECK_OUT"
    cancel_checkout = "CANCEL_CHECKOUT"
    memo_update = "MEMO_UPDATE"
    request_correction = "REQUEST_CORRECTION"
    edit_time = "EDIT_TIME"
    edit_status = "EDIT_STATUS"
    approve_attendance = "APPROVE_ATTENDANCE"
    reject_attendance = "REJECT_ATTENDANCE"


CHECKED_OUT_STATUSES = frozenset({RecordStatus.completed, RecordStatus.corrected})


def enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """``values_callable`` for sa.Enum so the value, not the name, is stored."""
    return [member.value for member in enum_cls]


# ── Business limits ─────────────────────────────────────────────────

CANCEL_WINDOW_SECONDS = 300
MAX_CANCELS_PER_DAY = 3
MEMO_MAX_LENGTH = 500
REASON_MIN_LENGTH = 10
REASON_MAX_LENGTH = 500
COMMENT_MAX_LENGTH = 500
CORRECTION_WINDOW_DAYS = 30

# ── Misc constants ──────────────────────────────────────────────────

SYSTEM_CHECKOUT_NOTE = "system: check-out"
SYSTEM_RESUME_NOTE = "system: check-out cancelled"
MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 20
