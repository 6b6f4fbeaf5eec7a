"""Common module — shared utilities for Timekeeper."""

from timekeeper.common.audit import (
    AuditChange,
    OperationLog,
    RequestContext,
    count_actions,
    create_operation_log,
    list_logs_for_record,
)
from timekeeper.common.constants import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    ApprovalStatus,
    CorrectionDecision,
    CorrectionField,
    EventType,
    OperationAction,
    RecordStatus,
    TimerState,
)
from timekeeper.common.exceptions import (
    AppException,
    ConflictError,
    ForbiddenException,
    InvalidStateError,
    NotFoundException,
    PolicyViolation,
    ValidationException,
    to_problem_detail,
)
from timekeeper.common.pagination import (
    PaginatedResponse,
    PaginationMeta,
    PaginationParams,
    paginate,
)

__all__ = [
    # Audit
    "AuditChange",
    "OperationLog",
    "RequestContext",
    "count_actions",
    "create_operation_log",
    "list_logs_for_record",
    # Constants / Enums
    "ApprovalStatus",
    "CorrectionDecision",
    "CorrectionField",
    "EventType",
    "OperationAction",
    "RecordStatus",
    "TimerState",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    # Exceptions
    "AppException",
    "ConflictError",
    "ForbiddenException",
    "InvalidStateError",
    "NotFoundException",
    "PolicyViolation",
    "ValidationException",
    "to_problem_detail",
    # Pagination
    "PaginatedResponse",
    "PaginationMeta",
    "PaginationParams",
    "paginate",
]
