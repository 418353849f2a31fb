"""Domain exception hierarchy for structured error responses."""

from __future__ import annotations


class AppException(Exception):
    """Base exception for all domain errors.

    Subclasses set ``code`` and ``status_code`` at the class level; callers
    provide ``message`` and an optional ``details`` list.
    """

    code: str = "APP_ERROR"
    status_code: int = 500

    def __init__(self, message: str, details: list[dict] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or []


class NotFoundException(AppException):
    code = "NOT_FOUND"
    status_code = 404


class ConflictException(AppException):
    code = "CONFLICT"
    status_code = 409


class ForbiddenException(AppException):
    code = "FORBIDDEN"
    status_code = 403


class UnauthorizedException(AppException):
    code = "UNAUTHORIZED"
    status_code = 401


class ValidationException(AppException):
    code = "VALIDATION_ERROR"
    status_code = 422


class BusinessRuleException(AppException):
    code = "BUSINESS_RULE_VIOLATION"
    status_code = 422


# ---------------------------------------------------------------------------
# Guaranteed-transaction errors
# ---------------------------------------------------------------------------


class InvalidTransitionException(BusinessRuleException):
    """A requested status change violates the transition graph."""

    code = "INVALID_TRANSITION"

    def __init__(self, previous: str, next_status: str, reason: str) -> None:
        super().__init__(
            f"Cannot transition from '{previous}' to '{next_status}': {reason}",
            details=[{"previous": previous, "next": next_status, "reason": reason}],
        )
        self.previous = previous
        self.next_status = next_status


class DuplicateReferenceException(ConflictException):
    code = "DUPLICATE_REFERENCE"


class ReferenceAllocationException(AppException):
    code = "REFERENCE_ALLOCATION_FAILED"
    status_code = 503


class DeliveryNotRecordedException(BusinessRuleException):
    code = "DELIVERY_NOT_RECORDED"


class DisputeWindowExpiredException(BusinessRuleException):
    code = "DISPUTE_WINDOW_EXPIRED"


class DuplicateDisputeException(ConflictException):
    code = "DUPLICATE_DISPUTE"
