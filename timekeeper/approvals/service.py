"""Approval service layer — approve, reject, resolve time corrections.

Business logic:
  - PENDING → APPROVED | REJECTED, once; only checked-out records qualify
  - Bulk approval is all-or-nothing within one transaction
  - Correction approval applies the proposed time and recomputes work minutes
  - Correction rejection leaves the record untouched and annotates the reason
  - Read operations: pending queue, monthly statistics, approved-hours summary
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from timekeeper.approvals.schemas import (
    ApprovalStatsResponse,
    ApprovedWorkSummary,
    EmployeePendingCount,
)
from timekeeper.attendance.models import AttendanceRecord, TimeCorrection
from timekeeper.attendance.schemas import AttendanceRecordResponse, CorrectionResponse
from timekeeper.attendance.service import AttendanceService, validate_reason
from timekeeper.common.audit import (
    ApproveChange,
    EditTimeChange,
    RejectChange,
    RequestContext,
    create_operation_log,
)
from timekeeper.common.concurrency import compare_and_swap
from timekeeper.common.constants import (
    CHECKED_OUT_STATUSES,
    COMMENT_MAX_LENGTH,
    ApprovalStatus,
    CorrectionDecision,
    CorrectionField,
    RecordStatus,
)
from timekeeper.common.exceptions import (
    CommentTooLong,
    InvalidStateError,
    NotFoundException,
    NotPending,
    RecordNotCompleted,
    StaleCorrection,
    ValidationException,
)
from timekeeper.common.pagination import PaginatedResponse, PaginationParams, paginate
from timekeeper.common.timeutils import epoch_now, local_date, minutes_to_hours, month_bounds

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════
# ApprovalService
# ═════════════════════════════════════════════════════════════════════


class ApprovalService:
    """Async approval workflow operations."""

    # ── Helpers ─────────────────────────────────────────────────────

    @staticmethod
    async def _get_correction(
        db: AsyncSession, correction_id: uuid.UUID,
    ) -> TimeCorrection:
        result = await db.execute(
            select(TimeCorrection)
            .where(TimeCorrection.id == correction_id)
            .execution_options(populate_existing=True)
        )
        correction = result.scalars().first()
        if correction is None:
            raise NotFoundException("TimeCorrection", correction_id)
        return correction

    @staticmethod
    def _ensure_pending(status: ApprovalStatus) -> None:
        if status != ApprovalStatus.pending:
            raise NotPending(f"Already {status.value.lower()}.")

    # ── Approve ─────────────────────────────────────────────────────

    @staticmethod
    async def approve(
        db: AsyncSession,
        record_id: uuid.UUID,
        approver_id: uuid.UUID,
        *,
        comment: Optional[str] = None,
        context: Optional[RequestContext] = None,
        now: Optional[int] = None,
    ) -> AttendanceRecordResponse:
        """Approve a checked-out PENDING record; it becomes immutable."""

        now = epoch_now() if now is None else now

        record = await AttendanceService.load_record(db, record_id)
        ApprovalService._ensure_pending(record.approval_status)
        if record.status not in CHECKED_OUT_STATUSES:
            raise RecordNotCompleted()
        if comment is not None and len(comment) > COMMENT_MAX_LENGTH:
            raise CommentTooLong()
        comment = comment or None

        await compare_and_swap(
            db,
            record,
            expected={
                "approval_status": ApprovalStatus.pending,
                "check_out_time": record.check_out_time,
            },
            values={
                "approval_status": ApprovalStatus.approved,
                "approved_by": approver_id,
                "approved_at": now,
                "approval_comment": comment,
            },
            entity_type="AttendanceRecord",
        )

        await create_operation_log(
            db,
            record_id=record.id,
            actor_id=approver_id,
            change=ApproveChange(approved_by=approver_id, approved_at=now, comment=comment),
            timestamp=now,
            context=context,
        )
        logger.info("Record %s approved by %s", record.id, approver_id)

        return AttendanceService.build_record_response(record)

    @staticmethod
    async def approve_many(
        db: AsyncSession,
        record_ids: Sequence[uuid.UUID],
        approver_id: uuid.UUID,
        *,
        comment: Optional[str] = None,
        context: Optional[RequestContext] = None,
        now: Optional[int] = None,
    ) -> list[AttendanceRecordResponse]:
        """Approve every record or none: the first failure aborts the transaction."""

        if not record_ids:
            raise ValidationException({"record_ids": ["At least one record is required."]})
        if len(set(record_ids)) != len(record_ids):
            raise ValidationException({"record_ids": ["Record ids must be unique."]})

        now = epoch_now() if now is None else now
        approved = []
        for record_id in record_ids:
            approved.append(
                await ApprovalService.approve(
                    db, record_id, approver_id,
                    comment=comment, context=context, now=now,
                )
            )
        return approved

    # ── Reject ──────────────────────────────────────────────────────

    @staticmethod
    async def reject(
        db: AsyncSession,
        record_id: uuid.UUID,
        approver_id: uuid.UUID,
        reason: str,
        *,
        context: Optional[RequestContext] = None,
        now: Optional[int] = None,
    ) -> AttendanceRecordResponse:
        """Reject a PENDING record with a 10-500 character reason."""

        now = epoch_now() if now is None else now
        validate_reason(reason)

        record = await AttendanceService.load_record(db, record_id)
        ApprovalService._ensure_pending(record.approval_status)

        await compare_and_swap(
            db,
            record,
            expected={"approval_status": ApprovalStatus.pending},
            values={
                "approval_status": ApprovalStatus.rejected,
                "approved_by": approver_id,
                "approved_at": now,
                "rejection_reason": reason,
            },
            entity_type="AttendanceRecord",
        )

        await create_operation_log(
            db,
            record_id=record.id,
            actor_id=approver_id,
            change=RejectChange(rejection_reason=reason),
            timestamp=now,
            context=context,
            reason=reason,
        )
        logger.info("Record %s rejected by %s", record.id, approver_id)

        return AttendanceService.build_record_response(record)

    # ── Correction resolution ───────────────────────────────────────

    @staticmethod
    async def resolve_correction(
        db: AsyncSession,
        correction_id: uuid.UUID,
        decision: CorrectionDecision,
        admin_id: uuid.UUID,
        *,
        admin_reason: Optional[str] = None,
        context: Optional[RequestContext] = None,
        now: Optional[int] = None,
    ) -> CorrectionResponse:
        """Apply (APPROVE) or annotate (REJECT) a PENDING time correction."""

        now = epoch_now() if now is None else now
        decision = CorrectionDecision(decision)

        correction = await ApprovalService._get_correction(db, correction_id)
        ApprovalService._ensure_pending(correction.approval_status)
        if admin_reason is not None:
            validate_reason(admin_reason)

        record = await AttendanceService.load_record(db, correction.attendance_record_id)
        field = CorrectionField(correction.field_name)
        current_value = getattr(record, field.value)
        old_minutes: Optional[int] = None
        new_minutes: Optional[int] = None

        if decision == CorrectionDecision.approve:
            if not record.is_checked_out:
                raise InvalidStateError(
                    "The attendance record is no longer checked out; "
                    "the correction cannot be applied."
                )
            if current_value != correction.before_value:
                raise StaleCorrection(
                    f"{field.value} is now {current_value}, but the correction was "
                    f"requested against {correction.before_value}."
                )
            check_in = record.check_in_time
            check_out = record.check_out_time
            if field == CorrectionField.check_in_time:
                check_in = correction.after_value
            else:
                check_out = correction.after_value
            if check_in >= check_out:
                raise ValidationException(
                    {"after_value": ["Check-out time must be after check-in time."]}
                )

            events = await AttendanceService.load_events(db, record.id)
            old_minutes = record.total_work_minutes
            new_minutes = AttendanceService.work_minutes(check_in, check_out, events)

            expected = {"check_out_time": record.check_out_time}
            expected[field.value] = correction.before_value
            await compare_and_swap(
                db,
                record,
                expected=expected,
                values={
                    field.value: correction.after_value,
                    "status": RecordStatus.corrected,
                    "total_work_minutes": new_minutes,
                },
                entity_type="AttendanceRecord",
            )
            correction_values = {"approval_status": ApprovalStatus.approved}
        else:
            correction_values = {"approval_status": ApprovalStatus.rejected}
            if admin_reason:
                correction_values["reason"] = (
                    f"{correction.reason}\n\nRejection reason: {admin_reason}"
                )

        correction_values.update(reviewed_by=admin_id, reviewed_at=now)
        await compare_and_swap(
            db,
            correction,
            expected={"approval_status": ApprovalStatus.pending},
            values=correction_values,
            entity_type="TimeCorrection",
        )

        await create_operation_log(
            db,
            record_id=record.id,
            actor_id=admin_id,
            change=EditTimeChange(
                correction_id=correction.id,
                decision=decision,
                field_name=field,
                before_value=current_value,
                after_value=correction.after_value,
                old_minutes=old_minutes,
                new_minutes=new_minutes,
            ),
            timestamp=now,
            context=context,
            reason=admin_reason,
        )
        logger.info(
            "Correction %s %s by %s", correction.id, correction.approval_status.value, admin_id,
        )

        return CorrectionResponse.model_validate(correction)

    # ── Reads ───────────────────────────────────────────────────────

    @staticmethod
    async def list_pending(
        db: AsyncSession,
        params: Optional[PaginationParams] = None,
    ) -> PaginatedResponse:
        """Checked-out PENDING records, oldest day first."""

        query = (
            select(AttendanceRecord)
            .where(
                AttendanceRecord.approval_status == ApprovalStatus.pending,
                AttendanceRecord.status.in_(list(CHECKED_OUT_STATUSES)),
            )
            .order_by(AttendanceRecord.date.asc(), AttendanceRecord.check_in_time.asc())
        )
        return await paginate(
            db,
            query,
            params or PaginationParams(),
            transform=AttendanceService.build_record_response,
        )

    @staticmethod
    async def approval_stats(
        db: AsyncSession,
        *,
        now: Optional[int] = None,
    ) -> ApprovalStatsResponse:
        """Pending queue size plus this month's approved / rejected counts."""

        now = epoch_now() if now is None else now
        first_day, last_day = month_bounds(local_date(now))
        checked_out = AttendanceRecord.status.in_(list(CHECKED_OUT_STATUSES))

        async def _count(*conditions) -> int:
            result = await db.execute(
                select(func.count()).select_from(AttendanceRecord).where(*conditions)
            )
            return result.scalar_one()

        pending = AttendanceRecord.approval_status == ApprovalStatus.pending
        in_month = (
            AttendanceRecord.date >= first_day,
            AttendanceRecord.date <= last_day,
        )

        total_pending = await _count(checked_out, pending)
        total_approved = await _count(
            checked_out,
            AttendanceRecord.approval_status == ApprovalStatus.approved,
            *in_month,
        )
        total_rejected = await _count(
            checked_out,
            AttendanceRecord.approval_status == ApprovalStatus.rejected,
            *in_month,
        )
        processed = total_approved + total_rejected
        approval_rate = round(total_approved / processed * 100, 1) if processed else 0.0

        by_employee = await db.execute(
            select(AttendanceRecord.employee_id, func.count(AttendanceRecord.id))
            .where(checked_out, pending)
            .group_by(AttendanceRecord.employee_id)
            .order_by(func.count(AttendanceRecord.id).desc())
        )
        oldest = await db.execute(
            select(func.min(AttendanceRecord.date)).where(checked_out, pending)
        )

        return ApprovalStatsResponse(
            total_pending=total_pending,
            total_approved=total_approved,
            total_rejected=total_rejected,
            approval_rate=approval_rate,
            employees_with_pending=[
                EmployeePendingCount(employee_id=employee_id, pending_count=count)
                for employee_id, count in by_employee.all()
            ],
            oldest_pending=oldest.scalar_one_or_none(),
        )

    @staticmethod
    async def approved_work_summary(
        db: AsyncSession,
        employee_id: uuid.UUID,
        from_date: date,
        to_date: date,
    ) -> ApprovedWorkSummary:
        """Total APPROVED work minutes for an employee, the figure payroll consumes."""

        if from_date > to_date:
            raise ValidationException(
                {"date_range": ["from_date must be before or equal to to_date."]}
            )

        result = await db.execute(
            select(
                func.count(AttendanceRecord.id),
                func.coalesce(func.sum(AttendanceRecord.total_work_minutes), 0),
            ).where(
                AttendanceRecord.employee_id == employee_id,
                AttendanceRecord.approval_status == ApprovalStatus.approved,
                AttendanceRecord.date >= from_date,
                AttendanceRecord.date <= to_date,
            )
        )
        days, minutes = result.one()

        return ApprovedWorkSummary(
            employee_id=employee_id,
            from_date=from_date,
            to_date=to_date,
            approved_days=days,
            total_work_minutes=int(minutes),
            total_work_hours=minutes_to_hours(int(minutes)),
        )
