"""Attendance service layer — check in/out, timer events, cancellation, memos.

Business logic:
  - One record per employee per calendar day (check-in)
  - Timer events appended in order; each append closes the previous span
  - Check-out computes total work minutes from check-in and closed rests
  - Check-out cancellation within 5 minutes, at most 3 times per day
  - Memo edits and correction requests by the record owner
  - Read operations: record, events, stats, live status, logs, corrections
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from timekeeper.attendance.models import AttendanceRecord, TimeCorrection, TimerEvent
from timekeeper.attendance.schemas import (
    AttendanceRecordResponse,
    CorrectionResponse,
    LedgerStatsResponse,
    LiveStatusResponse,
    OperationLogResponse,
    TimerEventResponse,
)
from timekeeper.common.audit import (
    CancelCheckoutChange,
    CheckInChange,
    CheckOutChange,
    CorrectionRequestChange,
    MemoUpdateChange,
    RequestContext,
    TimerEventChange,
    count_actions,
    create_operation_log,
    list_logs_for_record,
)
from timekeeper.common.concurrency import compare_and_swap
from timekeeper.common.constants import (
    CANCEL_WINDOW_SECONDS,
    CORRECTION_WINDOW_DAYS,
    MAX_CANCELS_PER_DAY,
    MEMO_MAX_LENGTH,
    REASON_MAX_LENGTH,
    REASON_MIN_LENGTH,
    SYSTEM_CHECKOUT_NOTE,
    SYSTEM_RESUME_NOTE,
    ApprovalStatus,
    CorrectionField,
    EventType,
    OperationAction,
    RecordStatus,
)
from timekeeper.common.exceptions import (
    AlreadyCheckedOut,
    CancellationLimitReached,
    CancellationWindowExpired,
    DuplicateRecord,
    ForbiddenException,
    InvalidStateError,
    MemoTooLong,
    NothingToCancel,
    NotFoundException,
    PolicyViolation,
    ReasonTooLong,
    ReasonTooShort,
    RecordApproved,
    ValidationException,
)
from timekeeper.common.timeutils import (
    days_between,
    epoch_now,
    local_date,
    minutes_between,
)
from timekeeper.timer.ledger import (
    closed_rest_minutes,
    compute_stats,
    live_status,
    with_durations,
)

logger = logging.getLogger(__name__)

_SPAN_TYPES = (EventType.work, EventType.rest)


def validate_reason(reason: Optional[str]) -> str:
    """Reasons are 10 to 500 characters; returns the reason unchanged."""
    reason = reason or ""
    if len(reason) < REASON_MIN_LENGTH:
        raise ReasonTooShort()
    if len(reason) > REASON_MAX_LENGTH:
        raise ReasonTooLong()
    return reason


# ═════════════════════════════════════════════════════════════════════
# AttendanceService
# ═════════════════════════════════════════════════════════════════════


class AttendanceService:
    """Async attendance operations: check in/out, timer, cancel, memo, corrections."""

    # ── Helpers ─────────────────────────────────────────────────────

    @staticmethod
    async def load_record(db: AsyncSession, record_id: uuid.UUID) -> AttendanceRecord:
        """Load a record fresh from the database or raise NotFound."""

        result = await db.execute(
            select(AttendanceRecord)
            .where(AttendanceRecord.id == record_id)
            .execution_options(populate_existing=True)
        )
        record = result.scalars().first()
        if record is None:
            raise NotFoundException("AttendanceRecord", record_id)
        return record

    @staticmethod
    async def _get_event(db: AsyncSession, event_id: uuid.UUID) -> TimerEvent:
        result = await db.execute(
            select(TimerEvent)
            .where(TimerEvent.id == event_id)
            .execution_options(populate_existing=True)
        )
        event = result.scalars().first()
        if event is None:
            raise NotFoundException("TimerEvent", event_id)
        return event

    @staticmethod
    async def load_events(
        db: AsyncSession, record_id: uuid.UUID,
    ) -> list[TimerEvent]:
        """Events of a record in append order."""

        result = await db.execute(
            select(TimerEvent)
            .where(TimerEvent.attendance_record_id == record_id)
            .order_by(TimerEvent.sequence)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    @staticmethod
    def _ensure_owner(record: AttendanceRecord, employee_id: uuid.UUID) -> None:
        if record.employee_id != employee_id:
            raise ForbiddenException("You can only modify your own attendance records.")

    @staticmethod
    def _ensure_not_approved(record: AttendanceRecord) -> None:
        if record.approval_status == ApprovalStatus.approved:
            raise RecordApproved()

    @staticmethod
    def _append_event(
        db: AsyncSession,
        record: AttendanceRecord,
        events: list[TimerEvent],
        event_type: EventType,
        now: int,
        *,
        memo: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> tuple[TimerEvent, Optional[TimerEvent]]:
        """Append an event at *now*, closing the previous open span.

        Returns ``(new_event, closed_event)``.
        """

        closed: Optional[TimerEvent] = None
        if events:
            last = events[-1]
            if now < last.timestamp:
                raise ValidationException(
                    {"timestamp": ["Event time cannot precede the previous event."]}
                )
            if last.event_type in _SPAN_TYPES and last.end_timestamp is None:
                last.end_timestamp = now
                closed = last

        event = TimerEvent(
            id=uuid.uuid4(),
            attendance_record_id=record.id,
            employee_id=record.employee_id,
            sequence=events[-1].sequence + 1 if events else 1,
            event_type=event_type,
            timestamp=now,
            memo=memo,
            notes=notes,
        )
        db.add(event)
        events.append(event)
        return event, closed

    @staticmethod
    def work_minutes(
        check_in_time: int,
        check_out_time: int,
        events: Sequence[TimerEvent],
    ) -> int:
        """Floored minutes from check-in to check-out minus closed rests, never negative."""

        minutes = minutes_between(check_in_time, check_out_time) - closed_rest_minutes(events)
        if minutes < 0:
            logger.warning(
                "Negative work minutes (%s) clamped to 0; check REST events", minutes,
            )
        return max(0, minutes)

    @staticmethod
    def build_record_response(record: AttendanceRecord) -> AttendanceRecordResponse:
        return AttendanceRecordResponse.model_validate(record)

    @staticmethod
    def _build_event_responses(
        events: Sequence[TimerEvent],
    ) -> list[TimerEventResponse]:
        responses = []
        for event, gap in with_durations(events):
            item = TimerEventResponse.model_validate(event)
            item.duration_from_previous = gap
            responses.append(item)
        return responses

    # ── Check in ────────────────────────────────────────────────────

    @staticmethod
    async def check_in(
        db: AsyncSession,
        employee_id: uuid.UUID,
        *,
        day: Optional[date] = None,
        context: Optional[RequestContext] = None,
        now: Optional[int] = None,
    ) -> AttendanceRecordResponse:
        """Create the employee's record for *day* (local date of *now* by default)."""

        now = epoch_now() if now is None else now
        day = day or local_date(now)

        existing = await db.execute(
            select(AttendanceRecord.id).where(
                AttendanceRecord.employee_id == employee_id,
                AttendanceRecord.date == day,
            )
        )
        if existing.scalars().first() is not None:
            raise DuplicateRecord(f"Already checked in for {day.isoformat()}.")

        record = AttendanceRecord(
            id=uuid.uuid4(),
            employee_id=employee_id,
            date=day,
            check_in_time=now,
            total_work_minutes=0,
            status=RecordStatus.in_progress,
            approval_status=ApprovalStatus.pending,
            version=1,
        )
        db.add(record)
        try:
            await db.flush()
        except IntegrityError as exc:
            # Concurrent check-in won the unique (employee_id, date) slot
            raise DuplicateRecord(f"Already checked in for {day.isoformat()}.") from exc

        await create_operation_log(
            db,
            record_id=record.id,
            actor_id=employee_id,
            change=CheckInChange(date=day.isoformat(), check_in_time=now),
            timestamp=now,
            context=context,
        )

        return AttendanceService.build_record_response(record)

    # ── Timer events ────────────────────────────────────────────────

    @staticmethod
    async def record_event(
        db: AsyncSession,
        record_id: uuid.UUID,
        employee_id: uuid.UUID,
        event_type: EventType,
        *,
        memo: Optional[str] = None,
        context: Optional[RequestContext] = None,
        now: Optional[int] = None,
    ) -> TimerEventResponse:
        """Append a WORK or REST event; END is a check-out."""

        now = epoch_now() if now is None else now
        event_type = EventType(event_type)

        if event_type == EventType.end:
            record, events = await AttendanceService._check_out(
                db, record_id, employee_id, memo=memo, context=context, now=now,
            )
            return AttendanceService._build_event_responses(events)[-1]

        record = await AttendanceService.load_record(db, record_id)
        AttendanceService._ensure_owner(record, employee_id)
        AttendanceService._ensure_not_approved(record)
        if record.is_checked_out:
            raise AlreadyCheckedOut()
        if memo is not None and len(memo) > MEMO_MAX_LENGTH:
            raise MemoTooLong()

        events = await AttendanceService.load_events(db, record.id)
        event, closed = AttendanceService._append_event(
            db, record, events, event_type, now, memo=memo or None,
        )

        # Bumps the version so a concurrent check-out cannot interleave
        await compare_and_swap(
            db,
            record,
            expected={"check_out_time": None, "approval_status": record.approval_status},
            values={},
            entity_type="AttendanceRecord",
        )

        await create_operation_log(
            db,
            record_id=record.id,
            actor_id=employee_id,
            change=TimerEventChange(
                event_id=event.id,
                event_type=event_type,
                timestamp=now,
                closed_event_id=closed.id if closed else None,
            ),
            timestamp=now,
            context=context,
        )

        return AttendanceService._build_event_responses(events)[-1]

    # ── Check out ───────────────────────────────────────────────────

    @staticmethod
    async def _check_out(
        db: AsyncSession,
        record_id: uuid.UUID,
        employee_id: uuid.UUID,
        *,
        memo: Optional[str] = None,
        context: Optional[RequestContext],
        now: int,
    ) -> tuple[AttendanceRecord, list[TimerEvent]]:
        record = await AttendanceService.load_record(db, record_id)
        AttendanceService._ensure_owner(record, employee_id)
        if record.is_checked_out:
            raise AlreadyCheckedOut()
        AttendanceService._ensure_not_approved(record)
        if memo is not None and len(memo) > MEMO_MAX_LENGTH:
            raise MemoTooLong()

        events = await AttendanceService.load_events(db, record.id)
        AttendanceService._append_event(
            db, record, events, EventType.end, now,
            memo=memo or None, notes=SYSTEM_CHECKOUT_NOTE,
        )

        old_minutes = record.total_work_minutes
        minutes = AttendanceService.work_minutes(record.check_in_time, now, events)

        await compare_and_swap(
            db,
            record,
            expected={"check_out_time": None},
            values={
                "check_out_time": now,
                "total_work_minutes": minutes,
                "status": RecordStatus.completed,
            },
            entity_type="AttendanceRecord",
        )

        await create_operation_log(
            db,
            record_id=record.id,
            actor_id=employee_id,
            change=CheckOutChange(
                old_check_out=None,
                new_check_out=now,
                old_minutes=old_minutes,
                new_minutes=minutes,
            ),
            timestamp=now,
            context=context,
        )
        logger.info("Checked out record %s: %s work minutes", record.id, minutes)
        return record, events

    @staticmethod
    async def check_out(
        db: AsyncSession,
        record_id: uuid.UUID,
        employee_id: uuid.UUID,
        *,
        context: Optional[RequestContext] = None,
        now: Optional[int] = None,
    ) -> AttendanceRecordResponse:
        """Close the day: append END, compute total work minutes, mark COMPLETED."""

        now = epoch_now() if now is None else now
        record, _ = await AttendanceService._check_out(
            db, record_id, employee_id, context=context, now=now,
        )
        return AttendanceService.build_record_response(record)

    # ── Cancel check out ────────────────────────────────────────────

    @staticmethod
    def _resume_span(
        db: AsyncSession,
        record: AttendanceRecord,
        events: list[TimerEvent],
    ) -> Optional[TimerEvent]:
        """Reopen the span closed by the check-out END, stamped at the END itself.

        The span type is the one preceding the END, WORK when there was none.
        The gap between check-out and cancellation counts toward that span.
        """

        if not events or events[-1].event_type != EventType.end:
            return None
        end = events[-1]
        previous = events[-2] if len(events) > 1 else None
        if previous is not None and previous.event_type in _SPAN_TYPES:
            span_type = EventType(previous.event_type)
        else:
            span_type = EventType.work
        resumed, _ = AttendanceService._append_event(
            db, record, events, span_type, end.timestamp, notes=SYSTEM_RESUME_NOTE,
        )
        return resumed

    @staticmethod
    async def cancel_checkout(
        db: AsyncSession,
        record_id: uuid.UUID,
        employee_id: uuid.UUID,
        *,
        context: Optional[RequestContext] = None,
        now: Optional[int] = None,
    ) -> AttendanceRecordResponse:
        """Reopen a check-out made less than 5 minutes ago (3 times per day max)."""

        now = epoch_now() if now is None else now

        record = await AttendanceService.load_record(db, record_id)
        AttendanceService._ensure_owner(record, employee_id)
        if not record.is_checked_out:
            raise NothingToCancel()
        AttendanceService._ensure_not_approved(record)
        if now - record.check_out_time > CANCEL_WINDOW_SECONDS:
            raise CancellationWindowExpired()

        previous = await count_actions(db, record.id, OperationAction.cancel_checkout)
        if previous >= MAX_CANCELS_PER_DAY:
            raise CancellationLimitReached()

        events = await AttendanceService.load_events(db, record.id)
        resumed = AttendanceService._resume_span(db, record, events)

        change = CancelCheckoutChange(
            old_check_out=record.check_out_time,
            old_minutes=record.total_work_minutes,
            old_status=record.status,
            cancel_number=previous + 1,
            resumed_event_id=resumed.id if resumed else None,
            resumed_event_type=resumed.event_type if resumed else None,
        )

        await compare_and_swap(
            db,
            record,
            expected={
                "check_out_time": record.check_out_time,
                "approval_status": record.approval_status,
            },
            values={
                "check_out_time": None,
                "total_work_minutes": 0,
                "status": RecordStatus.in_progress,
            },
            entity_type="AttendanceRecord",
        )

        await create_operation_log(
            db,
            record_id=record.id,
            actor_id=employee_id,
            change=change,
            timestamp=now,
            context=context,
        )
        logger.info(
            "Cancelled check-out of record %s (%s/%s)",
            record.id, previous + 1, MAX_CANCELS_PER_DAY,
        )

        return AttendanceService.build_record_response(record)

    # ── Memo ────────────────────────────────────────────────────────

    @staticmethod
    async def update_memo(
        db: AsyncSession,
        event_id: uuid.UUID,
        employee_id: uuid.UUID,
        memo: Optional[str],
        *,
        context: Optional[RequestContext] = None,
        now: Optional[int] = None,
    ) -> TimerEventResponse:
        """Set or clear a timer event's memo; refused once the day is approved."""

        now = epoch_now() if now is None else now

        event = await AttendanceService._get_event(db, event_id)
        record = await AttendanceService.load_record(db, event.attendance_record_id)
        # Approval is checked first so the refusal is the same for every actor
        AttendanceService._ensure_not_approved(record)
        if event.employee_id != employee_id:
            raise ForbiddenException("You can only edit memos on your own timer events.")
        if memo is not None and len(memo) > MEMO_MAX_LENGTH:
            raise MemoTooLong()

        old_memo = event.memo
        new_memo = memo or None

        await compare_and_swap(
            db,
            record,
            expected={"approval_status": record.approval_status},
            values={},
            entity_type="AttendanceRecord",
        )
        event.memo = new_memo
        await db.flush()

        await create_operation_log(
            db,
            record_id=record.id,
            actor_id=employee_id,
            change=MemoUpdateChange(event_id=event.id, old_memo=old_memo, new_memo=new_memo),
            timestamp=now,
            context=context,
        )

        events = await AttendanceService.load_events(db, record.id)
        responses = AttendanceService._build_event_responses(events)
        return next(r for r in responses if r.id == event.id)

    # ── Correction request ──────────────────────────────────────────

    @staticmethod
    async def request_correction(
        db: AsyncSession,
        record_id: uuid.UUID,
        employee_id: uuid.UUID,
        field_name: CorrectionField,
        after_value: int,
        reason: str,
        *,
        context: Optional[RequestContext] = None,
        now: Optional[int] = None,
    ) -> CorrectionResponse:
        """Submit a PENDING correction of check-in or check-out time."""

        now = epoch_now() if now is None else now
        field_name = CorrectionField(field_name)

        record = await AttendanceService.load_record(db, record_id)
        AttendanceService._ensure_owner(record, employee_id)
        if not record.is_checked_out:
            raise InvalidStateError("Corrections can only be requested after check-out.")
        validate_reason(reason)

        before_value = getattr(record, field_name.value)
        if before_value is None:
            raise ValidationException({field_name.value: ["Field has no value to correct."]})
        if after_value > now:
            raise ValidationException({"after_value": ["Time cannot be in the future."]})
        if field_name == CorrectionField.check_in_time and after_value >= record.check_out_time:
            raise ValidationException(
                {"after_value": ["Check-in time must be before check-out time."]}
            )
        if field_name == CorrectionField.check_out_time and after_value <= record.check_in_time:
            raise ValidationException(
                {"after_value": ["Check-out time must be after check-in time."]}
            )
        if days_between(record.date, local_date(now)) > CORRECTION_WINDOW_DAYS:
            raise PolicyViolation(
                f"Corrections can only be requested within {CORRECTION_WINDOW_DAYS} days."
            )

        pending = await db.execute(
            select(TimeCorrection.id).where(
                TimeCorrection.attendance_record_id == record.id,
                TimeCorrection.field_name == field_name,
                TimeCorrection.approval_status == ApprovalStatus.pending,
            )
        )
        if pending.scalars().first() is not None:
            raise DuplicateRecord("A pending correction already exists for this field.")

        correction = TimeCorrection(
            id=uuid.uuid4(),
            attendance_record_id=record.id,
            employee_id=employee_id,
            field_name=field_name,
            before_value=before_value,
            after_value=after_value,
            reason=reason,
            approval_status=ApprovalStatus.pending,
            version=1,
        )
        db.add(correction)
        await db.flush()

        await create_operation_log(
            db,
            record_id=record.id,
            actor_id=employee_id,
            change=CorrectionRequestChange(
                correction_id=correction.id,
                field_name=field_name,
                before_value=before_value,
                after_value=after_value,
            ),
            timestamp=now,
            context=context,
            reason=reason,
        )

        return CorrectionResponse.model_validate(correction)

    # ── Reads ───────────────────────────────────────────────────────

    @staticmethod
    async def get_record(
        db: AsyncSession, record_id: uuid.UUID,
    ) -> AttendanceRecordResponse:
        record = await AttendanceService.load_record(db, record_id)
        return AttendanceService.build_record_response(record)

    @staticmethod
    async def get_today_record(
        db: AsyncSession,
        employee_id: uuid.UUID,
        *,
        now: Optional[int] = None,
    ) -> Optional[AttendanceRecordResponse]:
        """Today's record for the employee, or None before check-in."""

        now = epoch_now() if now is None else now
        result = await db.execute(
            select(AttendanceRecord).where(
                AttendanceRecord.employee_id == employee_id,
                AttendanceRecord.date == local_date(now),
            )
        )
        record = result.scalars().first()
        return AttendanceService.build_record_response(record) if record else None

    @staticmethod
    async def get_events_for_record(
        db: AsyncSession, record_id: uuid.UUID,
    ) -> list[TimerEventResponse]:
        """Events in order, each with ``duration_from_previous``."""

        await AttendanceService.load_record(db, record_id)
        events = await AttendanceService.load_events(db, record_id)
        return AttendanceService._build_event_responses(events)

    @staticmethod
    async def get_stats_for_record(
        db: AsyncSession, record_id: uuid.UUID,
    ) -> LedgerStatsResponse:
        await AttendanceService.load_record(db, record_id)
        events = await AttendanceService.load_events(db, record_id)
        return LedgerStatsResponse.model_validate(compute_stats(events))

    @staticmethod
    async def get_live_status(
        db: AsyncSession,
        record_id: uuid.UUID,
        *,
        now: Optional[int] = None,
    ) -> LiveStatusResponse:
        """Timer state at *now*, including the still-open span."""

        now = epoch_now() if now is None else now
        await AttendanceService.load_record(db, record_id)
        events = await AttendanceService.load_events(db, record_id)
        status = live_status(events, now)
        return LiveStatusResponse(
            record_id=record_id,
            state=status.state,
            open_span_start=status.open_span_start,
            ongoing_work_seconds=status.ongoing_work_seconds,
            ongoing_rest_seconds=status.ongoing_rest_seconds,
            ongoing_work_minutes=status.ongoing_work_minutes,
            stats=LedgerStatsResponse.model_validate(status.stats),
        )

    @staticmethod
    async def get_logs_for_record(
        db: AsyncSession, record_id: uuid.UUID,
    ) -> list[OperationLogResponse]:
        """Operation logs of a record, newest first."""

        await AttendanceService.load_record(db, record_id)
        logs = await list_logs_for_record(db, record_id)
        return [OperationLogResponse.model_validate(log) for log in logs]

    @staticmethod
    async def list_corrections(
        db: AsyncSession,
        *,
        record_id: Optional[uuid.UUID] = None,
        employee_id: Optional[uuid.UUID] = None,
        status: Optional[ApprovalStatus] = None,
    ) -> list[CorrectionResponse]:
        """Corrections filtered by record, employee and/or status, newest first."""

        query = select(TimeCorrection)
        if record_id is not None:
            query = query.where(TimeCorrection.attendance_record_id == record_id)
        if employee_id is not None:
            query = query.where(TimeCorrection.employee_id == employee_id)
        if status is not None:
            query = query.where(TimeCorrection.approval_status == status)
        result = await db.execute(
            query.order_by(TimeCorrection.created_at.desc())
            .execution_options(populate_existing=True)
        )
        return [CorrectionResponse.model_validate(c) for c in result.scalars().all()]
