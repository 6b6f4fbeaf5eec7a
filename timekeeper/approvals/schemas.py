"""Approval Pydantic v2 schemas — statistics and payroll-facing summaries."""


import uuid
from datetime import date
from typing import Optional

from pydantic import BaseModel


class EmployeePendingCount(BaseModel):
    employee_id: uuid.UUID
    pending_count: int


class ApprovalStatsResponse(BaseModel):
    """Approval dashboard figures; monthly counts use the month of ``now``."""

    total_pending: int
    total_approved: int
    total_rejected: int
    approval_rate: float
    employees_with_pending: list[EmployeePendingCount]
    oldest_pending: Optional[date] = None


class ApprovedWorkSummary(BaseModel):
    """Approved hours for one employee over a date range."""

    employee_id: uuid.UUID
    from_date: date
    to_date: date
    approved_days: int
    total_work_minutes: int
    total_work_hours: float
