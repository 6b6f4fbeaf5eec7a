"""Command / query boundary of the timekeeping engine.

Each method opens one transaction with :func:`session_scope`, delegates to
the attendance or approval service and returns pydantic response models.
Callers (HTTP handlers, jobs, tests) pass the acting identity and a
:class:`RequestContext`; authentication happens before this layer.
"""

from __future__ import annotations

import uuid
from datetime import date
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from timekeeper.approvals.schemas import ApprovalStatsResponse, ApprovedWorkSummary
from timekeeper.approvals.service import ApprovalService
from timekeeper.attendance.schemas import (
    AttendanceRecordResponse,
    CorrectionResponse,
    LedgerStatsResponse,
    LiveStatusResponse,
    OperationLogResponse,
    TimerEventResponse,
)
from timekeeper.attendance.service import AttendanceService
from timekeeper.common.audit import RequestContext
from timekeeper.common.constants import (
    DEFAULT_PAGE_SIZE,
    ApprovalStatus,
    CorrectionDecision,
    CorrectionField,
    EventType,
)
from timekeeper.common.pagination import PaginatedResponse, PaginationParams
from timekeeper.database import async_session_factory, session_scope


class Timekeeper:
    """Async facade over the attendance and approval services."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ) -> None:
        self.session_factory = session_factory or async_session_factory

    def _transaction(self):
        return session_scope(self.session_factory)

    # ── Employee commands ───────────────────────────────────────────

    async def check_in(
        self,
        employee_id: uuid.UUID,
        *,
        day: Optional[date] = None,
        context: Optional[RequestContext] = None,
        now: Optional[int] = None,
    ) -> AttendanceRecordResponse:
        async with self._transaction() as db:
            return await AttendanceService.check_in(
                db, employee_id, day=day, context=context, now=now,
            )

    async def record_event(
        self,
        record_id: uuid.UUID,
        employee_id: uuid.UUID,
        event_type: EventType,
        *,
        memo: Optional[str] = None,
        context: Optional[RequestContext] = None,
        now: Optional[int] = None,
    ) -> TimerEventResponse:
        async with self._transaction() as db:
            return await AttendanceService.record_event(
                db, record_id, employee_id, event_type,
                memo=memo, context=context, now=now,
            )

    async def check_out(
        self,
        record_id: uuid.UUID,
        employee_id: uuid.UUID,
        *,
        context: Optional[RequestContext] = None,
        now: Optional[int] = None,
    ) -> AttendanceRecordResponse:
        async with self._transaction() as db:
            return await AttendanceService.check_out(
                db, record_id, employee_id, context=context, now=now,
            )

    async def cancel_checkout(
        self,
        record_id: uuid.UUID,
        employee_id: uuid.UUID,
        *,
        context: Optional[RequestContext] = None,
        now: Optional[int] = None,
    ) -> AttendanceRecordResponse:
        async with self._transaction() as db:
            return await AttendanceService.cancel_checkout(
                db, record_id, employee_id, context=context, now=now,
            )

    async def update_memo(
        self,
        event_id: uuid.UUID,
        employee_id: uuid.UUID,
        memo: Optional[str],
        *,
        context: Optional[RequestContext] = None,
        now: Optional[int] = None,
    ) -> TimerEventResponse:
        async with self._transaction() as db:
            return await AttendanceService.update_memo(
                db, event_id, employee_id, memo, context=context, now=now,
            )

    async def request_correction(
        self,
        record_id: uuid.UUID,
        employee_id: uuid.UUID,
        field_name: CorrectionField,
        after_value: int,
        reason: str,
        *,
        context: Optional[RequestContext] = None,
        now: Optional[int] = None,
    ) -> CorrectionResponse:
        async with self._transaction() as db:
            return await AttendanceService.request_correction(
                db, record_id, employee_id, field_name, after_value, reason,
                context=context, now=now,
            )

    # ── Admin commands ──────────────────────────────────────────────

    async def approve(
        self,
        record_id: uuid.UUID,
        approver_id: uuid.UUID,
        *,
        comment: Optional[str] = None,
        context: Optional[RequestContext] = None,
        now: Optional[int] = None,
    ) -> AttendanceRecordResponse:
        async with self._transaction() as db:
            return await ApprovalService.approve(
                db, record_id, approver_id, comment=comment, context=context, now=now,
            )

    async def approve_many(
        self,
        record_ids: Sequence[uuid.UUID],
        approver_id: uuid.UUID,
        *,
        comment: Optional[str] = None,
        context: Optional[RequestContext] = None,
        now: Optional[int] = None,
    ) -> list[AttendanceRecordResponse]:
        async with self._transaction() as db:
            return await ApprovalService.approve_many(
                db, record_ids, approver_id, comment=comment, context=context, now=now,
            )

    async def reject(
        self,
        record_id: uuid.UUID,
        approver_id: uuid.UUID,
        reason: str,
        *,
        context: Optional[RequestContext] = None,
        now: Optional[int] = None,
    ) -> AttendanceRecordResponse:
        async with self._transaction() as db:
            return await ApprovalService.reject(
                db, record_id, approver_id, reason, context=context, now=now,
            )

    async def resolve_correction(
        self,
        correction_id: uuid.UUID,
        decision: CorrectionDecision,
        admin_id: uuid.UUID,
        *,
        admin_reason: Optional[str] = None,
        context: Optional[RequestContext] = None,
        now: Optional[int] = None,
    ) -> CorrectionResponse:
        async with self._transaction() as db:
            return await ApprovalService.resolve_correction(
                db, correction_id, decision, admin_id,
                admin_reason=admin_reason, context=context, now=now,
            )

    # ── Queries ─────────────────────────────────────────────────────

    async def get_record(self, record_id: uuid.UUID) -> AttendanceRecordResponse:
        async with self._transaction() as db:
            return await AttendanceService.get_record(db, record_id)

    async def get_today_record(
        self, employee_id: uuid.UUID, *, now: Optional[int] = None,
    ) -> Optional[AttendanceRecordResponse]:
        async with self._transaction() as db:
            return await AttendanceService.get_today_record(db, employee_id, now=now)

    async def get_events_for_record(
        self, record_id: uuid.UUID,
    ) -> list[TimerEventResponse]:
        async with self._transaction() as db:
            return await AttendanceService.get_events_for_record(db, record_id)

    async def get_stats_for_record(self, record_id: uuid.UUID) -> LedgerStatsResponse:
        async with self._transaction() as db:
            return await AttendanceService.get_stats_for_record(db, record_id)

    async def get_live_status(
        self, record_id: uuid.UUID, *, now: Optional[int] = None,
    ) -> LiveStatusResponse:
        async with self._transaction() as db:
            return await AttendanceService.get_live_status(db, record_id, now=now)

    async def get_logs_for_record(
        self, record_id: uuid.UUID,
    ) -> list[OperationLogResponse]:
        async with self._transaction() as db:
            return await AttendanceService.get_logs_for_record(db, record_id)

    async def list_corrections(
        self,
        *,
        record_id: Optional[uuid.UUID] = None,
        employee_id: Optional[uuid.UUID] = None,
        status: Optional[ApprovalStatus] = None,
    ) -> list[CorrectionResponse]:
        async with self._transaction() as db:
            return await AttendanceService.list_corrections(
                db, record_id=record_id, employee_id=employee_id, status=status,
            )

    async def list_pending(
        self, *, page: int = 1, page_size: int = DEFAULT_PAGE_SIZE,
    ) -> PaginatedResponse:
        params = PaginationParams(page=page, page_size=page_size)
        async with self._transaction() as db:
            return await ApprovalService.list_pending(db, params)

    async def approval_stats(self, *, now: Optional[int] = None) -> ApprovalStatsResponse:
        async with self._transaction() as db:
            return await ApprovalService.approval_stats(db, now=now)

    async def approved_work_summary(
        self, employee_id: uuid.UUID, from_date: date, to_date: date,
    ) -> ApprovedWorkSummary:
        async with self._transaction() as db:
            return await ApprovalService.approved_work_summary(
                db, employee_id, from_date, to_date,
            )
