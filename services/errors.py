"""
Compliance errors.

NotFound, Conflict and Validation errors are raised to the caller. Bulk
operations never raise for a single bad row: they report it in the result's
``errors`` list instead.
"""

from typing import Any, Dict, Optional

from sqlalchemy.exc import DataError, IntegrityError, OperationalError

# Store errors that operations turn into result entries. Anything else from
# SQLAlchemy (ProgrammingError, InvalidRequestError, ...) is a bug and propagates.
STORE_ERRORS = (IntegrityError, OperationalError, DataError)


class ComplianceError(Exception):
    """Base exception for all compliance engine errors."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "COMPLIANCE_ERROR"
        self.details = details or {}


class NotFoundError(ComplianceError):
    """Raised when a referenced entity does not exist."""

    def __init__(self, entity_type: str, entity_id: Any):
        super().__init__(
            message=f"{entity_type} with id '{entity_id}' not found",
            code="NOT_FOUND",
            details={"entity_type": entity_type, "entity_id": str(entity_id)}
        )


class ConflictError(ComplianceError):
    """Raised when a direct creation hits an existing row."""

    def __init__(self, message: str, entity_type: Optional[str] = None):
        super().__init__(
            message=message,
            code="CONFLICT",
            details={"entity_type": entity_type} if entity_type else {}
        )


class ValidationError(ComplianceError):
    """Raised when input is malformed; nothing has been written."""

    def __init__(self, message: str, field: Optional[str] = None, value: Any = None):
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            details={"field": field, "value": str(value) if value is not None else None}
        )


class ConcurrencyError(ComplianceError):
    """Raised when an opt-in optimistic lock check fails."""

    def __init__(self, entity_type: str, entity_id: Any, expected: Any):
        super().__init__(
            message=f"{entity_type} '{entity_id}' was modified by another user",
            code="CONCURRENCY_ERROR",
            details={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "expected_updated_at": str(expected),
            }
        )


def describe(exc: Exception) -> str:
    """Short one-line text for a result's error list."""
    orig = getattr(exc, "orig", None)
    return f"{type(exc).__name__}: {orig if orig is not None else exc}"
