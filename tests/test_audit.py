"""Tests for the operation log — typed changes, ordering, immutability."""

from __future__ import annotations

import uuid

import pytest
from pydantic import TypeAdapter

from timekeeper.common.audit import (
    AuditChange,
    CheckOutChange,
    MemoUpdateChange,
    RejectChange,
    RequestContext,
    count_actions,
    create_operation_log,
    list_logs_for_record,
)
from timekeeper.common.constants import OperationAction
from timekeeper.common.exceptions import InvalidStateError
from tests.conftest import T0, _seed_record


async def test_create_operation_log_from_typed_change(db, admin_id):
    record = await _seed_record(db)

    entry = await create_operation_log(
        db,
        record_id=record.id,
        actor_id=admin_id,
        change=RejectChange(rejection_reason="Shift was swapped"),
        timestamp=T0,
        context=RequestContext(ip_address="192.168.1.20", user_agent="curl/8"),
        reason="Shift was swapped",
    )

    assert entry.id is not None
    assert entry.action == OperationAction.reject_attendance
    assert entry.old_value == {"approval_status": "PENDING"}
    assert entry.new_value == {
        "approval_status": "REJECTED",
        "rejection_reason": "Shift was swapped",
    }
    assert entry.ip_address == "192.168.1.20"
    assert entry.reason == "Shift was swapped"


async def test_logs_listed_newest_first_ties_by_insertion(db, employee_id):
    record = await _seed_record(db, employee_id=employee_id)
    event_id = uuid.uuid4()
    for ts, memo in ((T0, "a"), (T0 + 10, "b"), (T0 + 10, "c")):
        await create_operation_log(
            db,
            record_id=record.id,
            actor_id=employee_id,
            change=MemoUpdateChange(event_id=event_id, new_memo=memo),
            timestamp=ts,
        )

    logs = await list_logs_for_record(db, record.id)
    assert [log.new_value["memo"] for log in logs] == ["c", "b", "a"]


async def test_count_actions(db, employee_id):
    record = await _seed_record(db, employee_id=employee_id)
    change = CheckOutChange(new_check_out=T0 + 60, new_minutes=1)
    await create_operation_log(db, record_id=record.id, actor_id=employee_id, change=change, timestamp=T0)
    await create_operation_log(db, record_id=record.id, actor_id=employee_id, change=change, timestamp=T0)

    assert await count_actions(db, record.id, OperationAction.check_out) == 2
    assert await count_actions(db, record.id, OperationAction.cancel_checkout) == 0


async def test_log_entries_cannot_be_modified(db, employee_id):
    record = await _seed_record(db, employee_id=employee_id)
    entry = await create_operation_log(
        db,
        record_id=record.id,
        actor_id=employee_id,
        change=CheckOutChange(new_check_out=T0 + 60, new_minutes=1),
        timestamp=T0,
    )

    entry.reason = "rewritten"
    with pytest.raises(InvalidStateError):
        await db.flush()
    await db.rollback()


async def test_log_entries_cannot_be_deleted(db, employee_id):
    record = await _seed_record(db, employee_id=employee_id)
    entry = await create_operation_log(
        db,
        record_id=record.id,
        actor_id=employee_id,
        change=CheckOutChange(new_check_out=T0 + 60, new_minutes=1),
        timestamp=T0,
    )

    await db.delete(entry)
    with pytest.raises(InvalidStateError):
        await db.flush()
    await db.rollback()


def test_audit_change_is_discriminated_by_action():
    adapter = TypeAdapter(AuditChange)

    change = adapter.validate_python(
        {"action": "CHECK_OUT", "new_check_out": 1000, "new_minutes": 16}
    )

    assert isinstance(change, CheckOutChange)
    assert change.new_value() == {"check_out_time": 1000, "total_work_minutes": 16}
    assert change.old_value() == {"check_out_time": None, "total_work_minutes": 0}
