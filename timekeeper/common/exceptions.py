"""Domain exception hierarchy and RFC 7807 Problem Detail rendering.

Every failure is local and recoverable; transport layers translate an
``AppException`` with :func:`to_problem_detail` and the ``status_code`` hint.
"""

from __future__ import annotations

from typing import Any, Optional

BASE_ERROR_URI = "https://timekeeper.local/errors"


# ── Exception hierarchy ─────────────────────────────────────────────

class AppException(Exception):
    """Base for all domain exceptions."""

    kind: str = "error"

    def __init__(
        self,
        status_code: int,
        error_type: str,
        title: str,
        detail: str,
        errors: Optional[dict[str, Any]] = None,
    ) -> None:
        self.status_code = status_code
        self.error_type = error_type
        self.title = title
        self.detail = detail
        self.errors = errors
        super().__init__(detail)


class NotFoundException(AppException):
    """404 — record, event or correction not found."""

    kind = "not_found"

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(
            status_code=404,
            error_type="not-found",
            title=f"{entity_type} Not Found",
            detail=f"{entity_type} with id '{entity_id}' does not exist.",
        )


class ForbiddenException(AppException):
    """403 — the actor does not own the record."""

    kind = "forbidden"

    def __init__(
        self,
        detail: str = "You do not have permission to perform this action.",
    ) -> None:
        super().__init__(
            status_code=403,
            error_type="forbidden",
            title="Forbidden",
            detail=detail,
        )


class ValidationException(AppException):
    """422 — malformed field input."""

    kind = "validation"

    def __init__(self, errors: dict[str, list[str]]) -> None:
        super().__init__(
            status_code=422,
            error_type="validation-error",
            title="Validation Error",
            detail="One or more fields failed validation.",
            errors=errors,
        )


class ConflictError(AppException):
    """409 — lost a compare-and-swap race; re-read and re-evaluate."""

    kind = "conflict"

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(
            status_code=409,
            error_type="conflict",
            title="Conflict",
            detail=(
                f"{entity_type} '{entity_id}' was modified concurrently. "
                "Reload it and try again."
            ),
        )


# ── Invalid state ───────────────────────────────────────────────────

class InvalidStateError(AppException):
    """409 — operation attempted outside its legal state."""

    kind = "invalid_state"
    error_type = "invalid-state"
    title = "Invalid State"
    default_detail = "The operation is not allowed in the current state."

    def __init__(self, detail: Optional[str] = None) -> None:
        super().__init__(
            status_code=409,
            error_type=type(self).error_type,
            title=type(self).title,
            detail=detail or type(self).default_detail,
        )


class AlreadyCheckedOut(InvalidStateError):
    error_type = "already-checked-out"
    title = "Already Checked Out"
    default_detail = "This attendance record is already checked out."


class NothingToCancel(InvalidStateError):
    error_type = "nothing-to-cancel"
    title = "Nothing To Cancel"
    default_detail = "There is no check-out to cancel."


class NotPending(InvalidStateError):
    error_type = "not-pending"
    title = "Not Pending"
    default_detail = "This item is not in pending status."


class RecordApproved(InvalidStateError):
    error_type = "record-approved"
    title = "Record Approved"
    default_detail = "This attendance has been approved and can no longer be edited."


class RecordNotCompleted(InvalidStateError):
    error_type = "record-not-completed"
    title = "Record Not Completed"
    default_detail = "Only checked-out attendance records can be approved."


class DuplicateRecord(InvalidStateError):
    error_type = "duplicate-record"
    title = "Duplicate Record"
    default_detail = "An attendance record already exists for this day."


class StaleCorrection(InvalidStateError):
    error_type = "stale-correction"
    title = "Stale Correction"
    default_detail = (
        "The attendance record changed after this correction was requested."
    )


# ── Policy violations ───────────────────────────────────────────────

class PolicyViolation(AppException):
    """422 — a business-rule limit was exceeded."""

    kind = "policy_violation"
    error_type = "policy-violation"
    title = "Policy Violation"
    default_detail = "The request violates a business rule."

    def __init__(self, detail: Optional[str] = None) -> None:
        super().__init__(
            status_code=422,
            error_type=type(self).error_type,
            title=type(self).title,
            detail=detail or type(self).default_detail,
        )


class CancellationWindowExpired(PolicyViolation):
    error_type = "cancellation-window-expired"
    title = "Cancellation Window Expired"
    default_detail = "Cannot cancel check-out after 5 minutes."


class CancellationLimitReached(PolicyViolation):
    error_type = "cancellation-limit-reached"
    title = "Cancellation Limit Reached"
    default_detail = "Cancel limit reached (3 times per day)."


class MemoTooLong(PolicyViolation):
    error_type = "memo-too-long"
    title = "Memo Too Long"
    default_detail = "Memo must be 500 characters or less."


class ReasonTooShort(PolicyViolation):
    error_type = "reason-too-short"
    title = "Reason Too Short"
    default_detail = "Reason must be at least 10 characters."


class ReasonTooLong(PolicyViolation):
    error_type = "reason-too-long"
    title = "Reason Too Long"
    default_detail = "Reason must be 500 characters or less."


class CommentTooLong(PolicyViolation):
    error_type = "comment-too-long"
    title = "Comment Too Long"
    default_detail = "Comment must be 500 characters or less."


# ── RFC 7807 builder ────────────────────────────────────────────────

def to_problem_detail(exc: AppException, instance: Optional[str] = None) -> dict[str, Any]:
    """Render *exc* as an RFC 7807 problem document."""
    body: dict[str, Any] = {
        "type": f"{BASE_ERROR_URI}/{exc.error_type}",
        "title": exc.title,
        "status": exc.status_code,
        "detail": exc.detail,
        "kind": exc.kind,
    }
    if instance:
        body["instance"] = instance
    if exc.errors:
        body["errors"] = exc.errors
    return body
