"""End-to-end tests through the Timekeeper facade — transactions and races."""

from __future__ import annotations

import asyncio
import logging
import uuid

import pytest
from sqlalchemy import update

from timekeeper.approvals.service import ApprovalService
from timekeeper.attendance.models import AttendanceRecord
from timekeeper.attendance.service import AttendanceService
from timekeeper.common.audit import RequestContext
from timekeeper.common.constants import (
    ApprovalStatus,
    CorrectionDecision,
    CorrectionField,
    EventType,
    OperationAction,
    RecordStatus,
)
from timekeeper.common.exceptions import (
    ConflictError,
    DuplicateRecord,
    RecordApproved,
    RecordNotCompleted,
    to_problem_detail,
)
from timekeeper.common.logging import LOG_FORMAT, configure_logging
from tests.conftest import T0, TestSessionFactory

CTX = RequestContext(ip_address="10.1.2.3", user_agent="kiosk/2.1")


async def test_full_day_flow(timekeeper, employee_id, admin_id):
    record = await timekeeper.check_in(employee_id, context=CTX, now=T0)
    work = await timekeeper.record_event(record.id, employee_id, EventType.work, now=T0)
    await timekeeper.record_event(record.id, employee_id, EventType.rest, now=T0 + 1800)
    await timekeeper.record_event(record.id, employee_id, EventType.work, now=T0 + 2100)
    await timekeeper.update_memo(work.id, employee_id, "Sprint planning", now=T0 + 2200)

    closed = await timekeeper.check_out(record.id, employee_id, context=CTX, now=T0 + 5700)
    assert closed.total_work_minutes == 90

    stats = await timekeeper.get_stats_for_record(record.id)
    assert stats.total_work_seconds == 5400

    approved = await timekeeper.approve(record.id, admin_id, comment="Looks right", now=T0 + 9000)
    assert approved.approval_status == ApprovalStatus.approved

    with pytest.raises(RecordApproved):
        await timekeeper.update_memo(work.id, employee_id, "edited later", now=T0 + 9100)

    logs = await timekeeper.get_logs_for_record(record.id)
    assert [log.action for log in logs] == [
        OperationAction.approve_attendance,
        OperationAction.check_out,
        OperationAction.memo_update,
        OperationAction.timer_event,
        OperationAction.timer_event,
        OperationAction.timer_event,
        OperationAction.check_in,
    ]
    assert logs[-1].user_agent == "kiosk/2.1"

    summary = await timekeeper.approved_work_summary(employee_id, closed.date, closed.date)
    assert summary.total_work_minutes == 90


async def test_failed_command_rolls_back(timekeeper, employee_id):
    record = await timekeeper.check_in(employee_id, now=T0)
    with pytest.raises(DuplicateRecord):
        await timekeeper.check_in(employee_id, now=T0 + 5)

    logs = await timekeeper.get_logs_for_record(record.id)
    assert len(logs) == 1


async def test_approve_many_is_all_or_nothing(timekeeper, admin_id):
    done = await timekeeper.check_in(uuid.uuid4(), now=T0)
    await timekeeper.check_out(done.id, done.employee_id, now=T0 + 3600)
    open_day = await timekeeper.check_in(uuid.uuid4(), now=T0)

    with pytest.raises(RecordNotCompleted):
        await timekeeper.approve_many([done.id, open_day.id], admin_id, now=T0 + 9000)

    untouched = await timekeeper.get_record(done.id)
    assert untouched.approval_status == ApprovalStatus.pending
    logs = await timekeeper.get_logs_for_record(done.id)
    assert OperationAction.approve_attendance not in [log.action for log in logs]

    pending = await timekeeper.list_pending()
    assert [r.id for r in pending.data] == [done.id]


async def test_lost_race_raises_conflict_without_log(timekeeper, employee_id, admin_id, monkeypatch):
    record = await timekeeper.check_in(employee_id, now=T0)
    await timekeeper.check_out(record.id, employee_id, now=T0 + 3600)

    original = AttendanceService.load_record

    async def load_then_concurrent_write(db, record_id):
        loaded = await original(db, record_id)
        # Another writer commits between our read and our write
        await db.execute(
            update(AttendanceRecord)
            .where(AttendanceRecord.id == record_id)
            .values(version=AttendanceRecord.version + 1)
            .execution_options(synchronize_session=False)
        )
        return loaded

    monkeypatch.setattr(AttendanceService, "load_record", staticmethod(load_then_concurrent_write))

    with pytest.raises(ConflictError) as exc_info:
        await timekeeper.approve(record.id, admin_id, now=T0 + 9000)

    monkeypatch.undo()
    after = await timekeeper.get_record(record.id)
    assert after.approval_status == ApprovalStatus.pending
    logs = await timekeeper.get_logs_for_record(record.id)
    assert OperationAction.approve_attendance not in [log.action for log in logs]

    problem = to_problem_detail(exc_info.value, instance=f"/attendance/{record.id}")
    assert problem["status"] == 409
    assert problem["kind"] == "conflict"
    assert problem["instance"] == f"/attendance/{record.id}"


async def test_double_approval_from_two_sessions(timekeeper, employee_id, monkeypatch):
    record = await timekeeper.check_in(employee_id, now=T0)
    await timekeeper.check_out(record.id, employee_id, now=T0 + 3600)

    original = AttendanceService.load_record
    both_loaded = asyncio.Event()
    first_done = asyncio.Event()
    readers = []

    async def load_alongside_other_session(db, record_id):
        loaded = await original(db, record_id)
        readers.append(db)
        if len(readers) == 1:
            await both_loaded.wait()
        else:
            # Second reader holds its stale copy until the first has committed
            both_loaded.set()
            await first_done.wait()
        return loaded

    monkeypatch.setattr(AttendanceService, "load_record", staticmethod(load_alongside_other_session))

    async def approve_in_own_session(approver_id):
        try:
            async with TestSessionFactory() as session:
                result = await ApprovalService.approve(session, record.id, approver_id, now=T0 + 9000)
                await session.commit()
                return result
        finally:
            first_done.set()

    admins = [uuid.uuid4(), uuid.uuid4()]
    outcomes = await asyncio.gather(
        *(approve_in_own_session(a) for a in admins), return_exceptions=True,
    )
    monkeypatch.undo()

    winners = [o for o in outcomes if not isinstance(o, BaseException)]
    losers = [o for o in outcomes if isinstance(o, BaseException)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert isinstance(losers[0], ConflictError)

    after = await timekeeper.get_record(record.id)
    assert after.approval_status == ApprovalStatus.approved
    assert after.approved_by == winners[0].approved_by
    logs = await timekeeper.get_logs_for_record(record.id)
    approvals = [log for log in logs if log.action == OperationAction.approve_attendance]
    assert len(approvals) == 1
    assert approvals[0].actor_id == winners[0].approved_by


async def test_correction_cycle(timekeeper, employee_id, admin_id):
    record = await timekeeper.check_in(employee_id, now=T0)
    await timekeeper.record_event(record.id, employee_id, EventType.work, now=T0)
    await timekeeper.check_out(record.id, employee_id, now=T0 + 3600)

    correction = await timekeeper.request_correction(
        record.id, employee_id, CorrectionField.check_out_time, T0 + 4800,
        "Stayed late for a customer call", now=T0 + 7200,
    )
    listed = await timekeeper.list_corrections(employee_id=employee_id)
    assert [c.id for c in listed] == [correction.id]

    await timekeeper.resolve_correction(
        correction.id, CorrectionDecision.approve, admin_id, now=T0 + 8000,
    )

    corrected = await timekeeper.get_record(record.id)
    assert corrected.status == RecordStatus.corrected
    assert corrected.check_out_time == T0 + 4800
    assert corrected.total_work_minutes == 80

    stats = await timekeeper.approval_stats(now=T0 + 8000)
    assert stats.total_pending == 1


async def test_live_status_and_today(timekeeper, employee_id):
    record = await timekeeper.check_in(employee_id, now=T0)
    await timekeeper.record_event(record.id, employee_id, EventType.work, now=T0)

    today = await timekeeper.get_today_record(employee_id, now=T0 + 60)
    assert today.id == record.id
    status = await timekeeper.get_live_status(record.id, now=T0 + 600)
    assert status.ongoing_work_minutes == 10
    events = await timekeeper.get_events_for_record(record.id)
    assert len(events) == 1


def test_configure_logging_applies_level(monkeypatch):
    calls = {}
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.update(kwargs))

    configure_logging("debug")

    assert calls["level"] == logging.DEBUG
    assert calls["format"] == LOG_FORMAT
