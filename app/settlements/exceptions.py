"""
Settlement-specific exceptions.

Exception Hierarchy:
    SettlementError (base for settlement domain)
    ├── SettlementNotFound - Appointment charge or settlement lookup failures
    └── SettlementFailedError - Settlement aborted before any money moved

    PolicyComputationError - Malformed policy input (inherits ValidationError)

    GatewayCallError - Base for payment gateway failures (inherits ExternalServiceError)
    ├── GatewayTransientError - Rate limits, timeouts, 5xx (retry with backoff)
    └── GatewayPermanentError - Declines, invalid requests (never retry)
        ├── GatewayObjectNotFound - Unknown object id on retrieve
        └── InvalidWebhookSignature - Webhook payload failed verification

    StaleRecordError - Optimistic locking conflict (inherits ConflictError)
    LockAcquisitionError - Distributed lock timeout (inherits ConflictError)
    InvalidStateTransitionError - FSM transition not allowed (inherits ConflictError)

Usage:
    from settlements.exceptions import GatewayCallError, SettlementFailedError

    try:
        adapter.create_refund(...)
    except GatewayCallError as e:
        if e.is_retryable:
            time.sleep(backoff_delay(attempt))
        else:
            raise
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Settlement Domain Exceptions
# =============================================================================


class SettlementError(BaseApplicationError):
    """Base exception for settlement operations."""

    default_error_code: str = "SETTLEMENT_ERROR"


class SettlementNotFound(NotFoundError):
    """
    Raised when an appointment charge or settlement cannot be found.

    Example:
        raise SettlementNotFound(
            f"No charge recorded for appointment {appointment_id}",
            details={"appointment_id": str(appointment_id)},
        )
    """

    default_error_code: str = "SETTLEMENT_NOT_FOUND"


class SettlementFailedError(SettlementError):
    """
    Raised when a settlement is aborted before any money moved.

    The message is safe to show to the homeowner; the gateway error that
    caused it is kept in details for logs.
    """

    default_error_code: str = "SETTLEMENT_FAILED"
    http_status: int = 502

    USER_MESSAGE = "Unable to complete settlement. No charges were made."

    def __init__(
        self,
        message: str | None = None,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message or self.USER_MESSAGE, error_code, details)


class PolicyComputationError(ValidationError):
    """
    Raised when cancellation policy input is malformed.

    Negative prices, naive timestamps, unknown cancellers, out-of-range
    percentages and recorded shares that don't sum to the payout all end
    up here. No money moves when this is raised.
    """

    default_error_code: str = "POLICY_COMPUTATION_ERROR"


# =============================================================================
# Gateway Exceptions
# =============================================================================


class GatewayCallError(ExternalServiceError):
    """
    Base exception for payment gateway failures.

    Attributes:
        is_retryable: Whether the same call may succeed if repeated
        gateway_code: Gateway's own error code, when it reported one
        decline_code: Card decline code, when applicable
    """

    default_error_code: str = "GATEWAY_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        gateway_code: str | None = None,
        decline_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if gateway_code:
            details["gateway_code"] = gateway_code
        if decline_code:
            details["decline_code"] = decline_code
        super().__init__(message, error_code=error_code, details=details)
        self.gateway_code = gateway_code
        self.decline_code = decline_code


class GatewayTransientError(GatewayCallError):
    """
    Transient gateway failure: rate limit, timeout, connection error or 5xx.

    The call may have succeeded on the gateway's side. Retry with the same
    idempotency key so a duplicate is never created.
    """

    default_error_code: str = "GATEWAY_UNAVAILABLE"
    is_retryable: bool = True


class GatewayPermanentError(GatewayCallError):
    """
    Permanent gateway failure: card declined, invalid request, bad account.

    Retrying with the same parameters will never succeed.
    """

    default_error_code: str = "GATEWAY_REJECTED"
    is_retryable: bool = False


class GatewayObjectNotFound(GatewayPermanentError):
    """The gateway has no object with the requested id."""

    default_error_code: str = "GATEWAY_OBJECT_NOT_FOUND"


class InvalidWebhookSignature(GatewayPermanentError):
    """A webhook payload did not verify against the signing secret."""

    default_error_code: str = "INVALID_WEBHOOK_SIGNATURE"


# =============================================================================
# Concurrency Control Exceptions
# =============================================================================


class StaleRecordError(ConflictError):
    """
    Raised when optimistic locking detects concurrent modification.

    Attributes:
        details: Contains pk, expected_version, and current_version
    """

    default_error_code: str = "STALE_RECORD"


class LockAcquisitionError(ConflictError):
    """
    Raised when a distributed lock cannot be acquired.

    Attributes:
        details: Contains key and timeout information
    """

    default_error_code: str = "LOCK_ACQUISITION_FAILED"


class InvalidStateTransitionError(ConflictError):
    """
    Raised when a state machine transition is not allowed.

    Wraps django-fsm's TransitionNotAllowed in the standard error format.
    """

    default_error_code: str = "INVALID_STATE_TRANSITION"


__all__ = [
    "SettlementError",
    "SettlementNotFound",
    "SettlementFailedError",
    "PolicyComputationError",
    "GatewayCallError",
    "GatewayTransientError",
    "GatewayPermanentError",
    "GatewayObjectNotFound",
    "StaleRecordError",
    "LockAcquisitionError",
    "InvalidStateTransitionError",
]
