"""Operation log model, typed change payloads and async helpers.

Every successful mutation of an attendance record appends exactly one
``OperationLog`` in the same transaction. Entries are never edited or
deleted; ORM listeners refuse both.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Optional, Sequence, Union

import sqlalchemy as sa
from pydantic import BaseModel, Field
from sqlalchemy import event, func, select
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from timekeeper.common.constants import (
    ApprovalStatus,
    CorrectionDecision,
    CorrectionField,
    EventType,
    OperationAction,
    RecordStatus,
    enum_values,
)
from timekeeper.common.exceptions import InvalidStateError
from timekeeper.database import Base


# ── Request context ─────────────────────────────────────────────────

@dataclass(frozen=True)
class RequestContext:
    """Where a command came from; copied onto every log entry."""

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


# ── Immutable operation-log table ───────────────────────────────────

class OperationLog(Base):
    """Append-only log of every state change to an attendance record."""

    __tablename__ = "operation_logs"

    id: Mapped[int] = mapped_column(
        sa.BigInteger().with_variant(sa.Integer(), "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    attendance_record_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid,
        sa.ForeignKey("attendance_records.id", ondelete="CASCADE"),
        nullable=False,
    )
    actor_id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, nullable=False)
    action: Mapped[OperationAction] = mapped_column(
        sa.Enum(
            OperationAction,
            name="operation_action",
            native_enum=False,
            length=32,
            values_callable=enum_values,
        ),
        nullable=False,
    )
    old_value: Mapped[Optional[dict[str, Any]]] = mapped_column(
        sa.JSON().with_variant(JSONB(), "postgresql")
    )
    new_value: Mapped[Optional[dict[str, Any]]] = mapped_column(
        sa.JSON().with_variant(JSONB(), "postgresql")
    )
    ip_address: Mapped[Optional[str]] = mapped_column(sa.String(45))
    user_agent: Mapped[Optional[str]] = mapped_column(sa.Text)
    timestamp: Mapped[int] = mapped_column(sa.BigInteger, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        sa.Index("ix_operation_logs_record", "attendance_record_id", "timestamp"),
        sa.Index("ix_operation_logs_actor_id", "actor_id"),
        sa.Index("ix_operation_logs_action", "action"),
    )

    def __repr__(self) -> str:
        return (
            f"<OperationLog {self.action.value} "
            f"record/{self.attendance_record_id} by {self.actor_id}>"
        )


@event.listens_for(OperationLog, "before_update")
def _refuse_update(mapper, connection, target: OperationLog) -> None:
    raise InvalidStateError("Operation log entries cannot be modified.")


@event.listens_for(OperationLog, "before_delete")
def _refuse_delete(mapper, connection, target: OperationLog) -> None:
    raise InvalidStateError("Operation log entries cannot be deleted.")


# ── Typed change payloads (one per action) ──────────────────────────

class _Change(BaseModel):
    """Base for per-action payloads; subclasses pick the old/new halves."""

    def old_value(self) -> Optional[dict[str, Any]]:
        return None

    def new_value(self) -> Optional[dict[str, Any]]:
        return None


class CheckInChange(_Change):
    action: Literal[OperationAction.check_in] = OperationAction.check_in
    date: str
    check_in_time: int

    def new_value(self) -> dict[str, Any]:
        return {"date": self.date, "check_in_time": self.check_in_time}


class TimerEventChange(_Change):
    action: Literal[OperationAction.timer_event] = OperationAction.timer_event
    event_id: uuid.UUID
    event_type: EventType
    timestamp: int
    closed_event_id: Optional[uuid.UUID] = None

    def old_value(self) -> Optional[dict[str, Any]]:
        if self.closed_event_id is None:
            return None
        return {"open_event_id": str(self.closed_event_id)}

    def new_value(self) -> dict[str, Any]:
        return {
            "event_id": str(self.event_id),
            "event_type": self.event_type.value,
            "timestamp": self.timestamp,
        }


class CheckOutChange(_Change):
    action: Literal[OperationAction.check_out] = OperationAction.check_out
    old_check_out: Optional[int] = None
    new_check_out: int
    old_minutes: int = 0
    new_minutes: int

    def old_value(self) -> dict[str, Any]:
        return {
            "check_out_time": self.old_check_out,
            "total_work_minutes": self.old_minutes,
        }

    def new_value(self) -> dict[str, Any]:
        return {
            "check_out_time": self.new_check_out,
            "total_work_minutes": self.new_minutes,
        }


class CancelCheckoutChange(_Change):
    action: Literal[OperationAction.cancel_checkout] = OperationAction.cancel_checkout
    old_check_out: int
    old_minutes: int
    old_status: RecordStatus
    cancel_number: int
    resumed_event_id: Optional[uuid.UUID] = None
    resumed_event_type: Optional[EventType] = None

    def old_value(self) -> dict[str, Any]:
        return {
            "check_out_time": self.old_check_out,
            "total_work_minutes": self.old_minutes,
            "status": self.old_status.value,
        }

    def new_value(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "check_out_time": None,
            "total_work_minutes": 0,
            "status": RecordStatus.in_progress.value,
            "cancel_number": self.cancel_number,
        }
        if self.resumed_event_id is not None:
            body["resumed_event_id"] = str(self.resumed_event_id)
            body["resumed_event_type"] = self.resumed_event_type.value
        return body


class MemoUpdateChange(_Change):
    action: Literal[OperationAction.memo_update] = OperationAction.memo_update
    event_id: uuid.UUID
    old_memo: Optional[str] = None
    new_memo: Optional[str] = None

    def old_value(self) -> dict[str, Any]:
        return {"event_id": str(self.event_id), "memo": self.old_memo}

    def new_value(self) -> dict[str, Any]:
        return {"event_id": str(self.event_id), "memo": self.new_memo}


class CorrectionRequestChange(_Change):
    action: Literal[OperationAction.request_correction] = (
        OperationAction.request_correction
    )
    correction_id: uuid.UUID
    field_name: CorrectionField
    before_value: int
    after_value: int

    def old_value(self) -> dict[str, Any]:
        return {self.field_name.value: self.before_value}

    def new_value(self) -> dict[str, Any]:
        return {
            "correction_id": str(self.correction_id),
            self.field_name.value: self.after_value,
        }


class EditTimeChange(_Change):
    action: Literal[OperationAction.edit_time] = OperationAction.edit_time
    correction_id: uuid.UUID
    decision: CorrectionDecision
    field_name: CorrectionField
    before_value: Optional[int]
    after_value: int
    old_minutes: Optional[int] = None
    new_minutes: Optional[int] = None

    def old_value(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "correction_id": str(self.correction_id),
            self.field_name.value: self.before_value,
        }
        if self.old_minutes is not None:
            body["total_work_minutes"] = self.old_minutes
        return body

    def new_value(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "decision": self.decision.value,
            self.field_name.value: self.after_value,
        }
        if self.new_minutes is not None:
            body["total_work_minutes"] = self.new_minutes
        return body


class ApproveChange(_Change):
    action: Literal[OperationAction.approve_attendance] = (
        OperationAction.approve_attendance
    )
    old_status: ApprovalStatus = ApprovalStatus.pending
    approved_by: uuid.UUID
    approved_at: int
    comment: Optional[str] = None

    def old_value(self) -> dict[str, Any]:
        return {"approval_status": self.old_status.value}

    def new_value(self) -> dict[str, Any]:
        return {
            "approval_status": ApprovalStatus.approved.value,
            "approved_by": str(self.approved_by),
            "approved_at": self.approved_at,
            "approval_comment": self.comment,
        }


class RejectChange(_Change):
    action: Literal[OperationAction.reject_attendance] = (
        OperationAction.reject_attendance
    )
    old_status: ApprovalStatus = ApprovalStatus.pending
    rejection_reason: str

    def old_value(self) -> dict[str, Any]:
        return {"approval_status": self.old_status.value}

    def new_value(self) -> dict[str, Any]:
        return {
            "approval_status": ApprovalStatus.rejected.value,
            "rejection_reason": self.rejection_reason,
        }


AuditChange = Annotated[
    Union[
        CheckInChange,
        TimerEventChange,
        CheckOutChange,
        CancelCheckoutChange,
        MemoUpdateChange,
        CorrectionRequestChange,
        EditTimeChange,
        ApproveChange,
        RejectChange,
    ],
    Field(discriminator="action"),
]


# ── Helpers ─────────────────────────────────────────────────────────

async def create_operation_log(
    session: AsyncSession,
    *,
    record_id: uuid.UUID,
    actor_id: uuid.UUID,
    change: AuditChange,
    timestamp: int,
    context: Optional[RequestContext] = None,
    reason: Optional[str] = None,
) -> OperationLog:
    """
    Create and flush an operation-log entry.

    Args:
        session: Async SQLAlchemy session (the mutation's own transaction).
        record_id: Attendance record the change belongs to.
        actor_id: Employee or admin performing the action.
        change: Typed payload; its ``action`` tag becomes the log action.
        timestamp: Epoch seconds of the mutation.
        context: Client IP / user-agent.
        reason: Free-text justification, if the action carries one.
    """
    context = context or RequestContext()
    entry = OperationLog(
        attendance_record_id=record_id,
        actor_id=actor_id,
        action=change.action,
        old_value=change.old_value(),
        new_value=change.new_value(),
        ip_address=context.ip_address,
        user_agent=context.user_agent,
        timestamp=timestamp,
        reason=reason,
    )
    session.add(entry)
    await session.flush()
    return entry


async def list_logs_for_record(
    session: AsyncSession,
    record_id: uuid.UUID,
) -> Sequence[OperationLog]:
    """All entries for *record_id*, newest first."""
    result = await session.execute(
        select(OperationLog)
        .where(OperationLog.attendance_record_id == record_id)
        .order_by(OperationLog.timestamp.desc(), OperationLog.id.desc())
    )
    return result.scalars().all()


async def count_actions(
    session: AsyncSession,
    record_id: uuid.UUID,
    action: OperationAction,
) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(OperationLog)
        .where(
            OperationLog.attendance_record_id == record_id,
            OperationLog.action == action,
        )
    )
    return result.scalar_one()
