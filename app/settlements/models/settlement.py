"""
Settlement and GatewayOperation models.

A Settlement records one cancellation settlement per appointment. Each
money movement inside it is a GatewayOperation: the phase-1 record
written before the gateway is called, so a crash between the gateway
call and the ledger write can be finished later from the stored gateway
reference without calling the gateway again.

State Flow (Settlement):
    PENDING -> PROCESSING -> COMPLETED
                          -> REQUIRES_ATTENTION -> PROCESSING (resume)
                                                -> COMPLETED (unposted work finished)
                          -> FAILED -> PROCESSING (retry; nothing moved)

State Flow (GatewayOperation):
    PENDING -> SUCCEEDED
            -> FAILED (permanent gateway error)
            -> EXHAUSTED (transient errors outlasted the retry budget)
    FAILED/EXHAUSTED -> PENDING (retry)
"""

from __future__ import annotations

import secrets

from django.db import models
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel
from settlements.ledger.models import EntryType, GatewayObjectType
from settlements.policy.types import CancelledBy
from settlements.state_machines import (
    GatewayOperationKind,
    GatewayOperationState,
    LedgerPostingState,
    SettlementState,
)


def generate_confirmation_id(at=None) -> str:
    """Return a confirmation id of the form CXL-YYYYMMDD-XXXXXX."""
    at = at or timezone.now()
    return f"CXL-{at:%Y%m%d}-{secrets.token_hex(3).upper()}"


class Settlement(VersionedMixin, UUIDPrimaryKeyMixin, BaseModel):
    """
    One cancellation settlement.

    Uses django-fsm for state management and a version column for
    optimistic locking.

    Fields:
        appointment_id: Appointment (unique; one settlement per appointment)
        charge: AppointmentCharge being settled
        confirmation_id: Homeowner-facing confirmation id
        cancelled_by / actor_id / requested_at: Who cancelled and when
        *_cents: Policy outcome amounts
        state: Current FSM state
        policy_outcome: Policy result the settlement was computed from
        breakdown: Serialized Breakdown, stored once the settlement completes
        appeal_window_expires_at: Last moment an appeal may be filed
    """

    appointment_id = models.UUIDField(
        unique=True,
        help_text="Appointment being settled",
    )
    charge = models.ForeignKey(
        "settlements.AppointmentCharge",
        on_delete=models.PROTECT,
        related_name="settlements",
        help_text="Charge being settled",
    )
    confirmation_id = models.CharField(
        max_length=32,
        unique=True,
        default=generate_confirmation_id,
        help_text="Cancellation confirmation id (CXL-YYYYMMDD-XXXXXX)",
    )

    cancelled_by = models.CharField(
        max_length=20,
        choices=CancelledBy.choices,
        help_text="Party that cancelled",
    )
    actor_id = models.UUIDField(
        null=True,
        blank=True,
        help_text="User who requested the cancellation",
    )
    requested_at = models.DateTimeField(
        help_text="When the cancellation was requested",
    )

    total_cents = models.PositiveBigIntegerField(default=0)
    refund_amount_cents = models.PositiveBigIntegerField(default=0)
    refund_percentage = models.PositiveSmallIntegerField(default=0)
    cancellation_fee_cents = models.PositiveBigIntegerField(default=0)
    cleaner_payout_cents = models.PositiveBigIntegerField(default=0)
    platform_fee_cents = models.PositiveBigIntegerField(default=0)
    days_until = models.IntegerField(
        default=0,
        help_text="Calendar days between the request and the appointment",
    )

    state = FSMField(
        default=SettlementState.PENDING,
        choices=SettlementState.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the settlement (managed by FSM)",
    )
    policy_outcome = models.JSONField(
        default=dict,
        blank=True,
        help_text="Serialized CancellationOutcome the settlement was computed from",
    )
    breakdown = models.JSONField(
        default=dict,
        blank=True,
        help_text="Serialized Breakdown",
    )
    appeal_window_expires_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Last moment an appeal may be submitted",
    )

    completed_at = models.DateTimeField(null=True, blank=True)
    failed_at = models.DateTimeField(null=True, blank=True)
    failure_reason = models.TextField(blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Settlement"
        indexes = [
            models.Index(fields=["state", "created_at"], name="settlement_state_idx"),
        ]

    def __str__(self) -> str:
        return f"Settlement({self.confirmation_id}, {self.state})"

    @transition(
        field=state,
        source=[
            SettlementState.PENDING,
            SettlementState.FAILED,
            SettlementState.REQUIRES_ATTENTION,
        ],
        target=SettlementState.PROCESSING,
    )
    def start_processing(self):
        self.failure_reason = ""

    @transition(
        field=state,
        source=[SettlementState.PROCESSING, SettlementState.REQUIRES_ATTENTION],
        target=SettlementState.COMPLETED,
    )
    def complete(self):
        self.completed_at = timezone.now()

    @transition(
        field=state,
        source=SettlementState.PROCESSING,
        target=SettlementState.REQUIRES_ATTENTION,
    )
    def require_attention(self, reason: str = ""):
        self.failure_reason = reason

    @transition(
        field=state,
        source=SettlementState.PROCESSING,
        target=SettlementState.FAILED,
    )
    def fail(self, reason: str = ""):
        self.failed_at = timezone.now()
        self.failure_reason = reason

    @property
    def is_completed(self) -> bool:
        return self.state == SettlementState.COMPLETED


class GatewayOperation(UUIDPrimaryKeyMixin, BaseModel):
    """
    Phase-1 record of a single gateway money movement.

    Written before the gateway is called. idempotency_key is derived from
    (appointment_id, entry_type, discriminator) and is sent to the gateway,
    so repeating an operation never moves money twice. Once the gateway
    succeeds, gateway_object_id is stored and the ledger pair can be posted
    from it as often as needed.

    Fields:
        settlement: Settlement this step belongs to (null for booking/appeal work)
        appointment_id / appeal_id: Correlation
        idempotency_key: Unique key, also used as the ledger pair key
        operation: capture / charge / refund / transfer / none (ledger only)
        entry_type: Ledger entry type the step posts
        amount_cents: Amount to move
        party_user_id: Homeowner or cleaner the money concerns
        destination: Payment intent (refunds) or connected account (transfers)
        state: FSM state of the gateway call
        attempt_count / last_error: Retry bookkeeping
        gateway_object_type / gateway_object_id: Result of the call
        ledger_state: unposted / posted
    """

    settlement = models.ForeignKey(
        Settlement,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="operations",
        help_text="Settlement this operation belongs to",
    )
    appointment_id = models.UUIDField(
        db_index=True,
        help_text="Appointment the money belongs to",
    )
    appeal_id = models.UUIDField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Appeal whose relief this operation moves",
    )

    idempotency_key = models.CharField(
        max_length=255,
        unique=True,
        help_text="Gateway and ledger idempotency key",
    )
    operation = models.CharField(
        max_length=20,
        choices=GatewayOperationKind.choices,
        help_text="Gateway call to make",
    )
    entry_type = models.CharField(
        max_length=50,
        choices=EntryType.choices,
        help_text="Ledger entry type to post once the call succeeds",
    )
    amount_cents = models.PositiveBigIntegerField(
        help_text="Amount in cents",
    )
    currency = models.CharField(max_length=3, default="usd")
    party_user_id = models.UUIDField(
        null=True,
        blank=True,
        help_text="Homeowner or cleaner the money concerns",
    )
    destination = models.CharField(
        max_length=255,
        blank=True,
        help_text="Payment intent or connected account the call targets",
    )
    description = models.CharField(max_length=255, blank=True)

    state = FSMField(
        default=GatewayOperationState.PENDING,
        choices=GatewayOperationState.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the gateway call (managed by FSM)",
    )
    attempt_count = models.PositiveIntegerField(default=0)
    last_error = models.TextField(blank=True)

    gateway_object_type = models.CharField(
        max_length=20,
        choices=GatewayObjectType.choices,
        blank=True,
        help_text="Type of gateway object created",
    )
    gateway_object_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Gateway object id returned by the call",
    )
    succeeded_at = models.DateTimeField(null=True, blank=True)

    ledger_state = models.CharField(
        max_length=10,
        choices=LedgerPostingState.choices,
        default=LedgerPostingState.UNPOSTED,
        db_index=True,
        help_text="Whether the ledger pair has been posted",
    )
    posted_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["created_at", "id"]
        verbose_name = "Gateway operation"
        indexes = [
            models.Index(
                fields=["state", "ledger_state"],
                name="gateway_op_unposted_idx",
            ),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount_cents__gt=0),
                name="gateway_operation_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"GatewayOperation({self.entry_type}, {self.amount_cents}, {self.state})"

    @transition(
        field=state,
        source=GatewayOperationState.PENDING,
        target=GatewayOperationState.SUCCEEDED,
    )
    def succeed(self, object_type: str = "", object_id: str | None = None):
        self.gateway_object_type = object_type
        self.gateway_object_id = object_id
        self.succeeded_at = timezone.now()
        self.last_error = ""

    @transition(
        field=state,
        source=GatewayOperationState.PENDING,
        target=GatewayOperationState.FAILED,
    )
    def fail(self, error: str = ""):
        self.last_error = error

    @transition(
        field=state,
        source=GatewayOperationState.PENDING,
        target=GatewayOperationState.EXHAUSTED,
    )
    def exhaust(self, error: str = ""):
        self.last_error = error

    @transition(
        field=state,
        source=[GatewayOperationState.FAILED, GatewayOperationState.EXHAUSTED],
        target=GatewayOperationState.PENDING,
    )
    def retry(self):
        pass

    def mark_posted(self) -> None:
        self.ledger_state = LedgerPostingState.POSTED
        self.posted_at = timezone.now()

    @property
    def is_succeeded(self) -> bool:
        return self.state == GatewayOperationState.SUCCEEDED

    @property
    def needs_posting(self) -> bool:
        return self.is_succeeded and self.ledger_state == LedgerPostingState.UNPOSTED
