"""
Audit event model.

AuditEvent is the sole mechanism for reconstructing what happened to a
settlement, its ledger entries and any appeal against it. Rows are written
once and never updated or deleted.

Usage:
    from audit.models import AuditEvent, AuditEventType

    AuditEvent.objects.filter(appointment_id=appointment_id).order_by("occurred_at", "id")
"""

from __future__ import annotations

from django.core.serializers.json import DjangoJSONEncoder
from django.db import models
from django.utils import timezone

from audit.types import ActorType
from core.exceptions import ConflictError
from core.model_mixins import AppendOnlyMixin, UUIDPrimaryKeyMixin


class AuditEventType(models.TextChoices):
    """
    Closed set of audited events.

    Adding an event type requires a matching call site; nothing writes
    free-form event names.
    """

    # Cancellation settlement
    CANCELLATION_INITIATED = "cancellation_initiated", "Cancellation Initiated"
    CANCELLATION_POLICY_COMPUTED = (
        "cancellation_policy_computed",
        "Cancellation Policy Computed",
    )
    CANCELLATION_CONFIRMED = "cancellation_confirmed", "Cancellation Confirmed"
    SETTLEMENT_FAILED = "settlement_failed", "Settlement Failed"

    # Gateway money movement
    FEE_CHARGE_ATTEMPTED = "fee_charge_attempted", "Fee Charge Attempted"
    FEE_CHARGE_SUCCEEDED = "fee_charge_succeeded", "Fee Charge Succeeded"
    FEE_CHARGE_FAILED = "fee_charge_failed", "Fee Charge Failed"
    REFUND_INITIATED = "refund_initiated", "Refund Initiated"
    REFUND_COMPLETED = "refund_completed", "Refund Completed"
    REFUND_FAILED = "refund_failed", "Refund Failed"
    PAYOUT_INITIATED = "payout_initiated", "Payout Initiated"
    PAYOUT_COMPLETED = "payout_completed", "Payout Completed"
    PAYOUT_FAILED = "payout_failed", "Payout Failed"
    GATEWAY_OPERATION_EXHAUSTED = (
        "gateway_operation_exhausted",
        "Gateway Operation Exhausted",
    )

    # Ledger
    LEDGER_ENTRIES_POSTED = "ledger_entries_posted", "Ledger Entries Posted"
    LEDGER_INVARIANT_VIOLATION = (
        "ledger_invariant_violation",
        "Ledger Invariant Violation",
    )

    # Appeals
    APPEAL_SUBMITTED = "appeal_submitted", "Appeal Submitted"
    APPEAL_ASSIGNED = "appeal_assigned", "Appeal Assigned"
    APPEAL_STATUS_CHANGED = "appeal_status_changed", "Appeal Status Changed"
    APPEAL_RESOLVED = "appeal_resolved", "Appeal Resolved"
    APPEAL_RELIEF_POSTED = "appeal_relief_posted", "Appeal Relief Posted"
    APPEAL_SLA_BREACHED = "appeal_sla_breached", "Appeal SLA Breached"
    APPEAL_CLOSED = "appeal_closed", "Appeal Closed"

    # Reconciliation
    RECONCILIATION_MATCHED = "reconciliation_matched", "Reconciliation Matched"
    RECONCILIATION_DISCREPANCY_FLAGGED = (
        "reconciliation_discrepancy_flagged",
        "Reconciliation Discrepancy Flagged",
    )


class AuditSeverity(models.TextChoices):
    """How urgently an event needs human attention."""

    INFO = "info", "Info"
    WARNING = "warning", "Warning"
    CRITICAL = "critical", "Critical"


class AuditEvent(AppendOnlyMixin, UUIDPrimaryKeyMixin, models.Model):
    """
    Append-only audit record.

    Every mutating operation in the settlement, ledger and appeal services
    writes one of these with before/after snapshots, so state can be
    rebuilt by replaying events in (occurred_at, id) order.

    Fields:
        event_type: What happened (closed enumeration)
        severity: info / warning / critical
        actor_id / actor_type: Who did it (actor_id is null for system)
        appointment_id: Appointment the event concerns (plain UUID, no FK)
        appeal_id: Appeal the event concerns, if any (plain UUID, no FK)
        request_id: Correlation id shared by all events of one request
        ledger_entry_ids: Ledger entries written by this step
        event_data: Typed payload serialized to JSON
        previous_state / new_state: Snapshots around the change
        occurred_at: When the event happened (immutable)
        recorded_at: When the row was inserted

    Note:
        Appointment and appeal ids are stored without foreign keys so that
        deleting either parent can never cascade into the audit trail.
    """

    immutable_error_class = ConflictError

    event_type = models.CharField(
        max_length=64,
        choices=AuditEventType.choices,
        db_index=True,
        help_text="Type of audited event",
    )
    severity = models.CharField(
        max_length=10,
        choices=AuditSeverity.choices,
        default=AuditSeverity.INFO,
        db_index=True,
        help_text="How urgently a human should look at this event",
    )

    actor_id = models.UUIDField(
        null=True,
        blank=True,
        db_index=True,
        help_text="User who performed the action (null for system actions)",
    )
    actor_type = models.CharField(
        max_length=20,
        choices=ActorType.choices,
        help_text="Kind of actor",
    )

    appointment_id = models.UUIDField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Appointment this event concerns",
    )
    appeal_id = models.UUIDField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Appeal this event concerns",
    )
    request_id = models.CharField(
        max_length=64,
        blank=True,
        db_index=True,
        help_text="Correlation id shared by all events of one request",
    )
    ledger_entry_ids = models.JSONField(
        default=list,
        blank=True,
        encoder=DjangoJSONEncoder,
        help_text="Ledger entries written by this step",
    )

    event_data = models.JSONField(
        default=dict,
        blank=True,
        encoder=DjangoJSONEncoder,
        help_text="Typed event payload",
    )
    previous_state = models.JSONField(
        null=True,
        blank=True,
        encoder=DjangoJSONEncoder,
        help_text="Snapshot before the change",
    )
    new_state = models.JSONField(
        null=True,
        blank=True,
        encoder=DjangoJSONEncoder,
        help_text="Snapshot after the change",
    )

    occurred_at = models.DateTimeField(
        default=timezone.now,
        editable=False,
        db_index=True,
        help_text="When the event occurred",
    )
    recorded_at = models.DateTimeField(
        auto_now_add=True,
        help_text="When the event was written",
    )

    class Meta:
        ordering = ["occurred_at", "id"]
        verbose_name = "Audit event"
        verbose_name_plural = "Audit events"
        indexes = [
            models.Index(
                fields=["appointment_id", "occurred_at"],
                name="audit_audit_appoint_5c1e0a_idx",
            ),
            models.Index(
                fields=["appeal_id", "occurred_at"],
                name="audit_audit_appeal__8d2f41_idx",
            ),
            models.Index(
                fields=["event_type", "occurred_at"],
                name="audit_audit_event_t_3b7c92_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"AuditEvent({self.event_type}, {self.occurred_at:%Y-%m-%d %H:%M:%S})"
