"""
Base exception classes for application-wide error handling.

This module provides the exception hierarchy shared by the settlement,
ledger, appeal and audit apps:
- Consistent error payloads across API responses and task results
- Machine-readable error codes for client handling
- An HTTP status hint so views can map domain errors without guesswork

Exception Hierarchy:
    BaseApplicationError (base)
    ├── ValidationError - Malformed input or business rule violations (400)
    ├── NotFoundError - Resource not found (404)
    ├── PermissionDeniedError - Authorization failures (403)
    ├── ConflictError - State conflicts, invalid transitions, locking (409)
    └── ExternalServiceError - Payment gateway and other third-party failures (502)

Usage:
    from core.exceptions import ConflictError, ValidationError

    # Raise with message only
    raise ValidationError("Appointment price cannot be negative")

    # Raise with error code and details
    raise ConflictError(
        "Appeal is already closed",
        error_code="APPEAL_CLOSED",
        details={"appeal_id": str(appeal.id)},
    )

    # Convert to dict for API response
    try:
        ...
    except BaseApplicationError as e:
        return Response(e.to_dict(), status=e.http_status)

Note:
    These exceptions are for domain/business logic errors.
    DRF handles API-layer exceptions (serialization, authentication, etc.).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context (ids, amounts, states)
        http_status: Suggested HTTP status for API responses

    Example:
        try:
            SettlementService.settle_cancellation(appointment_id, ...)
        except BaseApplicationError as e:
            logger.warning("Settlement rejected", extra={"error_code": e.error_code})
            return Response(e.to_dict(), status=e.http_status)
    """

    default_error_code: str = "APPLICATION_ERROR"
    http_status: int = 400

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        """
        Initialize the exception.

        Args:
            message: Human-readable error description
            error_code: Machine-readable error code (defaults to class default)
            details: Additional error context
        """
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for API response.

        Returns:
            Dict with error, error_code, and details keys

        Example:
            {
                "error": "Appeal window has expired",
                "error_code": "APPEAL_WINDOW_EXPIRED",
                "details": {"appointment_id": "..."}
            }
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        """Return string representation with error code."""
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """
    Raised when input validation fails.

    Use for malformed appointment data, unknown enum values, out-of-range
    policy percentages and amounts that do not add up.

    Example:
        raise ValidationError(
            "Line item amount must be non-negative",
            error_code="INVALID_LINE_ITEM",
            details={"kind": "linens", "amount_cents": -100},
        )

    Note:
        For DRF serializer validation, use DRF's built-in validation.
        Use this for service-layer validation logic.
    """

    default_error_code: str = "VALIDATION_ERROR"
    http_status: int = 400


class NotFoundError(BaseApplicationError):
    """
    Raised when a requested resource is not found.

    Example:
        charge = AppointmentCharge.objects.filter(appointment_id=appointment_id).first()
        if not charge:
            raise NotFoundError(
                f"No charge recorded for appointment {appointment_id}",
                error_code="APPOINTMENT_NOT_FOUND",
                details={"appointment_id": str(appointment_id)},
            )
    """

    default_error_code: str = "NOT_FOUND"
    http_status: int = 404


class PermissionDeniedError(BaseApplicationError):
    """
    Raised when an actor lacks permission for an operation.

    Example:
        if not actor.is_staff:
            raise PermissionDeniedError(
                "Only staff may review appeals",
                error_code="STAFF_REQUIRED",
            )
    """

    default_error_code: str = "PERMISSION_DENIED"
    http_status: int = 403


class ConflictError(BaseApplicationError):
    """
    Raised when an operation conflicts with current resource state.

    Use for:
    - Duplicate submissions (an appeal is already open)
    - Concurrent modification conflicts (stale version, lock held)
    - Invalid state transitions

    Note:
        HTTP 409 Conflict is the appropriate status for these errors.
    """

    default_error_code: str = "CONFLICT"
    http_status: int = 409


class ExternalServiceError(BaseApplicationError):
    """
    Raised when an external service call fails.

    Use for payment gateway failures, network timeouts and unexpected
    gateway responses.

    Note:
        Log the original error for debugging but don't expose
        internal details to clients in production.
    """

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"
    http_status: int = 502
