"""Shared test fixtures — async DB, engine facade, factories.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Point settings at SQLite before any import touches pydantic-settings
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("TIMEZONE", "UTC")

import uuid
from datetime import date, datetime, timezone
from typing import AsyncGenerator, Optional

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from timekeeper.attendance.models import AttendanceRecord, TimerEvent
from timekeeper.common.audit import OperationLog
from timekeeper.common.constants import (
    ApprovalStatus,
    EventType,
    OperationAction,
    RecordStatus,
)
from timekeeper.common.timeutils import to_epoch
from timekeeper.core import Timekeeper
from timekeeper.database import Base

# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)

# Monday 2026-03-02 09:00:00 UTC
T0 = to_epoch(datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc))
DAY0 = date(2026, 3, 2)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


@pytest.fixture
def timekeeper() -> Timekeeper:
    """Engine facade bound to the test database."""
    return Timekeeper(session_factory=TestSessionFactory)


@pytest.fixture
def employee_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def admin_id() -> uuid.UUID:
    return uuid.uuid4()


# ── Model factories ─────────────────────────────────────────────────

def _make_record(
    *,
    employee_id: Optional[uuid.UUID] = None,
    day: date = DAY0,
    check_in_time: int = T0,
    check_out_time: Optional[int] = None,
    total_work_minutes: int = 0,
    status: Optional[RecordStatus] = None,
    approval_status: ApprovalStatus = ApprovalStatus.pending,
) -> dict:
    if status is None:
        status = RecordStatus.completed if check_out_time else RecordStatus.in_progress
    return dict(
        id=uuid.uuid4(),
        employee_id=employee_id or uuid.uuid4(),
        date=day,
        check_in_time=check_in_time,
        check_out_time=check_out_time,
        total_work_minutes=total_work_minutes,
        status=status,
        approval_status=approval_status,
        version=1,
    )


async def _seed_record(db: AsyncSession, **kwargs) -> AttendanceRecord:
    record = AttendanceRecord(**_make_record(**kwargs))
    db.add(record)
    await db.flush()
    return record


async def _seed_event(
    db: AsyncSession,
    record: AttendanceRecord,
    event_type: EventType,
    timestamp: int,
    *,
    sequence: int,
    end_timestamp: Optional[int] = None,
    memo: Optional[str] = None,
) -> TimerEvent:
    event = TimerEvent(
        id=uuid.uuid4(),
        attendance_record_id=record.id,
        employee_id=record.employee_id,
        sequence=sequence,
        event_type=event_type,
        timestamp=timestamp,
        end_timestamp=end_timestamp,
        memo=memo,
    )
    db.add(event)
    await db.flush()
    return event


async def _logs(
    db: AsyncSession,
    record_id: uuid.UUID,
    action: Optional[OperationAction] = None,
) -> list[OperationLog]:
    """Operation logs of a record in insertion order."""
    query = select(OperationLog).where(OperationLog.attendance_record_id == record_id)
    if action is not None:
        query = query.where(OperationLog.action == action)
    result = await db.execute(query.order_by(OperationLog.id))
    return list(result.scalars().all())
