"""Attendance ORM models: AttendanceRecord, TimerEvent, TimeCorrection."""

from __future__ import annotations

import uuid
import datetime as dt
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from timekeeper.common.constants import (
    ApprovalStatus,
    CorrectionField,
    EventType,
    RecordStatus,
    enum_values,
)
from timekeeper.database import Base


def _enum(enum_cls, name: str) -> sa.Enum:
    return sa.Enum(
        enum_cls,
        name=name,
        native_enum=False,
        length=32,
        values_callable=enum_values,
    )


class AttendanceRecord(Base):
    __tablename__ = "attendance_records"
    __table_args__ = (
        sa.UniqueConstraint("employee_id", "date", name="uq_attendance_emp_date"),
        sa.Index("ix_attendance_records_approval_status", "approval_status"),
        sa.Index("ix_attendance_records_date", "date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, nullable=False, index=True)
    date: Mapped[dt.date] = mapped_column(sa.Date, nullable=False)
    check_in_time: Mapped[int] = mapped_column(sa.BigInteger, nullable=False)
    check_out_time: Mapped[Optional[int]] = mapped_column(sa.BigInteger)
    total_work_minutes: Mapped[int] = mapped_column(
        sa.Integer, nullable=False, default=0
    )
    status: Mapped[RecordStatus] = mapped_column(
        _enum(RecordStatus, "record_status"),
        nullable=False,
        default=RecordStatus.in_progress,
    )
    approval_status: Mapped[ApprovalStatus] = mapped_column(
        _enum(ApprovalStatus, "approval_status"),
        nullable=False,
        default=ApprovalStatus.pending,
    )
    approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(sa.Uuid)
    approved_at: Mapped[Optional[int]] = mapped_column(sa.BigInteger)
    approval_comment: Mapped[Optional[str]] = mapped_column(sa.Text)
    rejection_reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    notes: Mapped[Optional[str]] = mapped_column(sa.Text)
    version: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=1)
    created_at: Mapped[dt.datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: dt.datetime.now(dt.timezone.utc)
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: dt.datetime.now(dt.timezone.utc)
    )

    # Relationships
    timer_events: Mapped[list[TimerEvent]] = relationship(
        back_populates="attendance_record",
        order_by="TimerEvent.sequence",
    )
    time_corrections: Mapped[list[TimeCorrection]] = relationship(
        back_populates="attendance_record",
    )

    @property
    def is_checked_out(self) -> bool:
        return self.check_out_time is not None

    def __repr__(self) -> str:
        return (
            f"<AttendanceRecord {self.employee_id}/{self.date} "
            f"{self.status.value}/{self.approval_status.value}>"
        )


class TimerEvent(Base):
    __tablename__ = "timer_events"

    id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    attendance_record_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid,
        sa.ForeignKey("attendance_records.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, nullable=False, index=True)
    # Position in append order; breaks ties between equal timestamps.
    sequence: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    event_type: Mapped[EventType] = mapped_column(
        _enum(EventType, "timer_event_type"), nullable=False
    )
    timestamp: Mapped[int] = mapped_column(sa.BigInteger, nullable=False, index=True)
    end_timestamp: Mapped[Optional[int]] = mapped_column(sa.BigInteger)
    memo: Mapped[Optional[str]] = mapped_column(sa.Text)
    notes: Mapped[Optional[str]] = mapped_column(sa.Text)
    created_at: Mapped[dt.datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: dt.datetime.now(dt.timezone.utc)
    )

    # Relationships
    attendance_record: Mapped[AttendanceRecord] = relationship(
        back_populates="timer_events"
    )


class TimeCorrection(Base):
    __tablename__ = "time_corrections"

    id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    attendance_record_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid,
        sa.ForeignKey("attendance_records.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, nullable=False, index=True)
    field_name: Mapped[CorrectionField] = mapped_column(
        _enum(CorrectionField, "correction_field"), nullable=False
    )
    before_value: Mapped[int] = mapped_column(sa.BigInteger, nullable=False)
    after_value: Mapped[int] = mapped_column(sa.BigInteger, nullable=False)
    reason: Mapped[str] = mapped_column(sa.Text, nullable=False)
    approval_status: Mapped[ApprovalStatus] = mapped_column(
        _enum(ApprovalStatus, "approval_status"),
        nullable=False,
        default=ApprovalStatus.pending,
        index=True,
    )
    reviewed_by: Mapped[Optional[uuid.UUID]] = mapped_column(sa.Uuid)
    reviewed_at: Mapped[Optional[int]] = mapped_column(sa.BigInteger)
    version: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=1)
    created_at: Mapped[dt.datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: dt.datetime.now(dt.timezone.utc)
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: dt.datetime.now(dt.timezone.utc)
    )

    # Relationships
    attendance_record: Mapped[AttendanceRecord] = relationship(
        back_populates="time_corrections"
    )
