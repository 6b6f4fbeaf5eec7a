"""Attendance Pydantic v2 schemas — response shapes for the query boundary.

Naming conventions:
  - *Response → read models built from ORM rows or ledger values
"""


import uuid
from datetime import date
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from timekeeper.common.constants import (
    ApprovalStatus,
    CorrectionField,
    EventType,
    OperationAction,
    RecordStatus,
    TimerState,
)
from timekeeper.common.timeutils import minutes_to_hours


# ═════════════════════════════════════════════════════════════════════
# Attendance record
# ═════════════════════════════════════════════════════════════════════


class AttendanceRecordResponse(BaseModel):
    """Full attendance record for one employee-day."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    date: date
    check_in_time: int
    check_out_time: Optional[int] = None
    total_work_minutes: int
    status: RecordStatus
    approval_status: ApprovalStatus
    approved_by: Optional[uuid.UUID] = None
    approved_at: Optional[int] = None
    approval_comment: Optional[str] = None
    rejection_reason: Optional[str] = None
    notes: Optional[str] = None
    version: int

    @property
    def total_work_hours(self) -> float:
        return minutes_to_hours(self.total_work_minutes)


# ═════════════════════════════════════════════════════════════════════
# Timer events and statistics
# ═════════════════════════════════════════════════════════════════════


class TimerEventResponse(BaseModel):
    """A timer event with its derived gap to the previous event."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    attendance_record_id: uuid.UUID
    event_type: EventType
    timestamp: int
    end_timestamp: Optional[int] = None
    memo: Optional[str] = None
    notes: Optional[str] = None
    duration_from_previous: Optional[int] = None


class LedgerStatsResponse(BaseModel):
    """Work/rest totals derived from a day's events."""

    model_config = ConfigDict(from_attributes=True)

    total_work_seconds: int
    total_rest_seconds: int
    total_work_minutes: int
    total_rest_minutes: int
    total_work_hours: float
    total_rest_hours: float
    work_periods: int
    rest_periods: int


class LiveStatusResponse(BaseModel):
    """Current timer state; ongoing values are computed, never stored."""

    record_id: uuid.UUID
    state: TimerState
    open_span_start: Optional[int] = None
    ongoing_work_seconds: int
    ongoing_rest_seconds: int
    ongoing_work_minutes: int
    stats: LedgerStatsResponse


# ═════════════════════════════════════════════════════════════════════
# Corrections and logs
# ═════════════════════════════════════════════════════════════════════


class CorrectionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    attendance_record_id: uuid.UUID
    employee_id: uuid.UUID
    field_name: CorrectionField
    before_value: int
    after_value: int
    reason: str
    approval_status: ApprovalStatus
    reviewed_by: Optional[uuid.UUID] = None
    reviewed_at: Optional[int] = None


class OperationLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    attendance_record_id: uuid.UUID
    actor_id: uuid.UUID
    action: OperationAction
    old_value: Optional[dict[str, Any]] = None
    new_value: Optional[dict[str, Any]] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    timestamp: int
    reason: Optional[str] = None
