"""
State enums for settlement models.

This module defines the state enums used by settlement models with
django-fsm. These are Django TextChoices for database storage and admin
integration.

State Machines Overview:

Settlement States:
    pending → processing → completed
    pending/processing → failed (nothing moved at the gateway)
    processing → requires_attention (a gateway step exhausted its retries
                                      after earlier steps succeeded)
    requires_attention → processing (operator retry)

GatewayOperation States:
    pending → succeeded
    pending → failed (permanent gateway rejection)
    pending → exhausted (transient errors until retries ran out)
    exhausted → pending (operator retry)

Appointment charge, ledger posting, reconciliation run and webhook event
statuses are plain explicit state fields without transitions.
"""

from django.db import models


class SettlementState(models.TextChoices):
    """
    States for the Settlement model lifecycle.

    Terminal states: COMPLETED, FAILED

    State Flow:
        PENDING → PROCESSING → COMPLETED
        PENDING/PROCESSING → FAILED
        PROCESSING → REQUIRES_ATTENTION → PROCESSING (retry)
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    COMPLETED = "completed", "Completed"
    REQUIRES_ATTENTION = "requires_attention", "Requires Attention"
    FAILED = "failed", "Failed"


class GatewayOperationState(models.TextChoices):
    """
    States for a single gateway call.

    Terminal states: SUCCEEDED, FAILED

    State Flow:
        PENDING → SUCCEEDED
        PENDING → FAILED
        PENDING → EXHAUSTED → PENDING (retry)
    """

    PENDING = "pending", "Pending"
    SUCCEEDED = "succeeded", "Succeeded"
    FAILED = "failed", "Failed"
    EXHAUSTED = "exhausted", "Retries Exhausted"


class GatewayOperationKind(models.TextChoices):
    """
    Kind of money movement a gateway operation performs.

    NONE marks ledger-only steps (platform fee allocation) that never
    reach the gateway but still go through the same phase records.
    """

    CAPTURE = "capture", "Capture"
    CHARGE = "charge", "Charge"
    REFUND = "refund", "Refund"
    TRANSFER = "transfer", "Transfer"
    NONE = "none", "Ledger Only"


class LedgerPostingState(models.TextChoices):
    """
    Whether the ledger pair for a succeeded gateway operation exists.

    A SUCCEEDED + UNPOSTED operation is picked up by
    retry_unposted_operations and posted with its stored gateway reference.
    """

    UNPOSTED = "unposted", "Unposted"
    POSTED = "posted", "Posted"


class AppointmentChargeStatus(models.TextChoices):
    """Booking status of an appointment as seen by the settlement engine."""

    BOOKED = "booked", "Booked"
    CANCELLED = "cancelled", "Cancelled"


class ReconciliationRunStatus(models.TextChoices):
    """
    Status for ReconciliationRun.

    State Flow:
        RUNNING → COMPLETED
        RUNNING → FAILED
    """

    RUNNING = "running", "Running"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"


class WebhookEventStatus(models.TextChoices):
    """
    Processing status for WebhookEvent.

    State Flow:
        PENDING → PROCESSING → PROCESSED
        PROCESSING → FAILED (handler failure or exception)
        FAILED → PROCESSING (retry)
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"


__all__ = [
    "AppointmentChargeStatus",
    "GatewayOperationKind",
    "GatewayOperationState",
    "LedgerPostingState",
    "ReconciliationRunStatus",
    "SettlementState",
    "WebhookEventStatus",
]
