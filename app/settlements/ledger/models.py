"""
Ledger models for per-appointment double-entry bookkeeping.

- LedgerEntry: One leg of a balanced pair; immutable once posted
- AppointmentLedger: Head row per appointment, locked to serialize posts

Every money movement is recorded as two legs of equal amount, one debit
and one credit, so for any appointment the sum of debits equals the sum
of credits.

Usage:
    from settlements.ledger.models import EntryType, LedgerEntry

    LedgerEntry.objects.for_appointment(appointment_id)
"""

from __future__ import annotations

from django.core.serializers.json import DjangoJSONEncoder
from django.db import models
from django.db.models import Q, Sum
from django.db.models.functions import Coalesce
from django.utils import timezone

from core.model_mixins import (
    AppendOnlyMixin,
    AppendOnlyQuerySet,
    UUIDPrimaryKeyMixin,
    VersionedMixin,
)
from core.models import BaseModel

from .exceptions import ImmutableEntryError
from .types import EntryMetadata


class EntryType(models.TextChoices):
    """
    Closed set of ledger entry types.

    Every member has exactly one posting rule in posting_rules.POSTING_RULES.
    """

    BOOKING_REVENUE = "booking_revenue", "Booking Revenue"
    ADDON_LINENS = "addon_linens", "Add-on: Linens"
    ADDON_TIME_WINDOW = "addon_time_window", "Add-on: Time Window"
    ADDON_HIGH_VOLUME = "addon_high_volume", "Add-on: High Volume"
    ADDON_LAST_MINUTE = "addon_last_minute", "Add-on: Last Minute"
    CANCELLATION_FEE_REVENUE = "cancellation_fee_revenue", "Cancellation Fee Revenue"
    CANCELLATION_REFUND = "cancellation_refund", "Cancellation Refund"
    CANCELLATION_PARTIAL_REFUND = (
        "cancellation_partial_refund",
        "Cancellation Partial Refund",
    )
    CLEANER_PAYOUT_JOB = "cleaner_payout_job", "Cleaner Payout (Job)"
    CLEANER_PAYOUT_CANCELLATION = (
        "cleaner_payout_cancellation",
        "Cleaner Payout (Cancellation)",
    )
    CLEANER_BONUS = "cleaner_bonus", "Cleaner Bonus"
    PLATFORM_FEE_STANDARD = "platform_fee_standard", "Platform Fee (Standard)"
    PLATFORM_FEE_BUSINESS_OWNER = (
        "platform_fee_business_owner",
        "Platform Fee (Business Owner)",
    )
    APPEAL_REFUND = "appeal_refund", "Appeal Refund"
    APPEAL_FEE_REVERSAL = "appeal_fee_reversal", "Appeal Fee Reversal"
    MANUAL_ADJUSTMENT = "manual_adjustment", "Manual Adjustment"
    STRIPE_FEE = "stripe_fee", "Stripe Fee"
    DISPUTE_CHARGEBACK = "dispute_chargeback", "Dispute Chargeback"
    DISPUTE_REVERSAL = "dispute_reversal", "Dispute Reversal"


class EntryDirection(models.TextChoices):
    DEBIT = "debit", "Debit"
    CREDIT = "credit", "Credit"


class AccountType(models.TextChoices):
    """Control accounts a leg can post to."""

    ACCOUNTS_RECEIVABLE = "accounts_receivable", "Accounts Receivable"
    REVENUE = "revenue", "Revenue"
    REFUNDS_PAYABLE = "refunds_payable", "Refunds Payable"
    PAYOUTS_PAYABLE = "payouts_payable", "Payouts Payable"
    PLATFORM_REVENUE = "platform_revenue", "Platform Revenue"
    STRIPE_FEES = "stripe_fees", "Stripe Fees"


class PartyType(models.TextChoices):
    HOMEOWNER = "homeowner", "Homeowner"
    CLEANER = "cleaner", "Cleaner"
    PLATFORM = "platform", "Platform"
    GATEWAY = "gateway", "Payment Gateway"


class GatewayObjectType(models.TextChoices):
    PAYMENT_INTENT = "payment_intent", "Payment Intent"
    CHARGE = "charge", "Charge"
    REFUND = "refund", "Refund"
    TRANSFER = "transfer", "Transfer"
    DISPUTE = "dispute", "Dispute"
    BALANCE_TRANSACTION = "balance_transaction", "Balance Transaction"


class TaxCategory(models.TextChoices):
    INCOME = "income", "Income"
    REFUND = "refund", "Refund"
    PAYOUT = "payout", "Payout"
    EXPENSE = "expense", "Expense"
    OTHER = "other", "Other"


class ReconciliationStatus(models.TextChoices):
    """
    Reconciliation state of a single entry.

    State Flow:
        UNRECONCILED → MATCHED
        UNRECONCILED → DISCREPANCY (left for manual review)
        UNRECONCILED → ERROR (gateway object missing)
    """

    UNRECONCILED = "unreconciled", "Unreconciled"
    MATCHED = "matched", "Matched"
    DISCREPANCY = "discrepancy", "Discrepancy"
    ERROR = "error", "Error"


def tax_period(effective_date) -> tuple[int, int]:
    """Return (tax_year, tax_quarter) for an effective date."""
    return effective_date.year, (effective_date.month - 1) // 3 + 1


class LedgerEntryQuerySet(AppendOnlyQuerySet):
    def for_appointment(self, appointment_id):
        return self.filter(appointment_id=appointment_id).order_by("posted_at", "id")

    def debits(self):
        return self.filter(direction=EntryDirection.DEBIT)

    def credits(self):
        return self.filter(direction=EntryDirection.CREDIT)

    def unreconciled_with_gateway(self):
        return self.filter(
            reconciliation_status=ReconciliationStatus.UNRECONCILED,
            gateway_object_id__isnull=False,
        ).exclude(gateway_object_id="")

    def totals(self) -> dict[str, int]:
        """Sum debits and credits in one query."""
        zero = models.Value(0, output_field=models.BigIntegerField())
        result = self.aggregate(
            debits=Coalesce(
                Sum("amount_cents", filter=Q(direction=EntryDirection.DEBIT)),
                zero,
            ),
            credits=Coalesce(
                Sum("amount_cents", filter=Q(direction=EntryDirection.CREDIT)),
                zero,
            ),
        )
        return {"debits": result["debits"], "credits": result["credits"]}


class LedgerEntry(AppendOnlyMixin, UUIDPrimaryKeyMixin, models.Model):
    """
    One leg of a balanced ledger pair.

    Entries are immutable once posted. Only the reconciliation fields listed
    in mutable_fields may change afterwards, and only via
    save(update_fields=...). Deletes always raise.

    Fields:
        appointment_id: Appointment this money movement belongs to (no FK)
        related_entry: For credit legs, the debit leg of the same pair
        entry_type: Closed EntryType
        amount_cents: Non-negative amount in minor units
        direction: debit / credit
        account_type / party_type / party_user_id: Where the leg posts
        gateway_object_type / gateway_object_id: Gateway correlation
        idempotency_key: Globally unique per leg
        tax_*: Tax period and classification
        reconciliation_*: Mutable reconciliation bookkeeping
        effective_date / posted_at: Economic event time vs. record time
        appeal_id: Appeal that caused this entry, if any
        metadata: Serialized EntryMetadata

    Constraints:
        - amount_cents >= 0
        - unique (gateway_object_id, entry_type, direction) when a gateway id is set
        - tax_quarter between 1 and 4
    """

    mutable_fields = (
        "reconciled",
        "reconciled_at",
        "reconciliation_status",
        "discrepancy_amount_cents",
        "discrepancy_notes",
        "reconciliation_batch",
    )
    immutable_error_class = ImmutableEntryError

    appointment_id = models.UUIDField(
        db_index=True,
        help_text="Appointment this entry belongs to",
    )
    related_entry = models.ForeignKey(
        "self",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="paired_entries",
        help_text="Debit leg of the pair this credit leg belongs to",
    )

    entry_type = models.CharField(
        max_length=50,
        choices=EntryType.choices,
        db_index=True,
        help_text="Category of this entry",
    )
    amount_cents = models.PositiveBigIntegerField(
        help_text="Amount in cents (never negative)",
    )
    currency = models.CharField(
        max_length=3,
        default="usd",
        help_text="ISO 4217 currency code",
    )
    direction = models.CharField(
        max_length=6,
        choices=EntryDirection.choices,
        help_text="Debit or credit leg",
    )
    account_type = models.CharField(
        max_length=32,
        choices=AccountType.choices,
        db_index=True,
        help_text="Control account this leg posts to",
    )

    party_type = models.CharField(
        max_length=16,
        choices=PartyType.choices,
        help_text="Party this leg concerns",
    )
    party_user_id = models.UUIDField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Homeowner or cleaner user id (null for platform/gateway)",
    )

    gateway_object_type = models.CharField(
        max_length=20,
        choices=GatewayObjectType.choices,
        blank=True,
        help_text="Type of gateway object backing this entry",
    )
    gateway_object_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Gateway object id (pi_, ch_, re_, tr_)",
    )
    idempotency_key = models.CharField(
        max_length=255,
        unique=True,
        help_text="Unique key to prevent duplicate entries",
    )

    tax_year = models.PositiveSmallIntegerField(
        db_index=True,
        help_text="Tax year derived from effective_date",
    )
    tax_quarter = models.PositiveSmallIntegerField(
        help_text="Tax quarter (1-4) derived from effective_date",
    )
    tax_reportable = models.BooleanField(
        default=False,
        help_text="Whether this entry appears on tax reports",
    )
    tax_category = models.CharField(
        max_length=10,
        choices=TaxCategory.choices,
        default=TaxCategory.OTHER,
        help_text="Tax classification",
    )
    form_1099_eligible = models.BooleanField(
        default=False,
        help_text="Whether this leg counts toward the party's 1099 total",
    )

    reconciliation_status = models.CharField(
        max_length=16,
        choices=ReconciliationStatus.choices,
        default=ReconciliationStatus.UNRECONCILED,
        db_index=True,
        help_text="Reconciliation state against the gateway",
    )
    reconciled = models.BooleanField(
        default=False,
        help_text="Whether the gateway record matched",
    )
    reconciled_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When reconciliation last examined this entry",
    )
    discrepancy_amount_cents = models.PositiveBigIntegerField(
        null=True,
        blank=True,
        help_text="Absolute difference from the gateway amount",
    )
    discrepancy_notes = models.TextField(
        blank=True,
        help_text="Why the entry was flagged",
    )
    reconciliation_batch = models.CharField(
        max_length=32,
        blank=True,
        db_index=True,
        help_text="Reconciliation batch that last examined this entry",
    )

    effective_date = models.DateTimeField(
        default=timezone.now,
        db_index=True,
        help_text="When the economic event occurred",
    )
    posted_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="When this entry was recorded",
    )

    appeal_id = models.UUIDField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Appeal that caused this entry",
    )
    description = models.TextField(
        blank=True,
        help_text="Human-readable description of this entry",
    )
    metadata = models.JSONField(
        default=dict,
        blank=True,
        encoder=DjangoJSONEncoder,
        help_text="Serialized EntryMetadata",
    )
    created_by = models.CharField(
        max_length=255,
        blank=True,
        help_text="Service or user that posted this entry",
    )

    objects = LedgerEntryQuerySet.as_manager()

    class Meta:
        ordering = ["posted_at", "id"]
        verbose_name_plural = "Ledger entries"
        indexes = [
            models.Index(
                fields=["appointment_id", "posted_at"],
                name="ledger_entry_appt_posted_idx",
            ),
            models.Index(
                fields=["tax_year", "tax_quarter"],
                name="ledger_entry_tax_period_idx",
            ),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(amount_cents__gte=0),
                name="ledger_entry_amount_non_negative",
            ),
            models.CheckConstraint(
                condition=Q(tax_quarter__gte=1) & Q(tax_quarter__lte=4),
                name="ledger_entry_tax_quarter_range",
            ),
            models.UniqueConstraint(
                fields=["gateway_object_id", "entry_type", "direction"],
                condition=Q(gateway_object_id__isnull=False),
                name="ledger_entry_unique_gateway_event",
            ),
        ]

    def __str__(self) -> str:
        return (
            f"{self.get_entry_type_display()} {self.direction} "
            f"{self.account_type}: {self.amount_cents} cents"
        )

    def save(self, *args, **kwargs) -> None:
        if self._state.adding and (self.tax_year is None or self.tax_quarter is None):
            self.tax_year, self.tax_quarter = tax_period(self.effective_date)
        super().save(*args, **kwargs)

    @property
    def typed_metadata(self) -> EntryMetadata:
        return EntryMetadata.from_dict(self.metadata)

    def mark_matched(self, batch_id: str) -> None:
        """Record a successful gateway match."""
        self.reconciled = True
        self.reconciled_at = timezone.now()
        self.reconciliation_status = ReconciliationStatus.MATCHED
        self.discrepancy_amount_cents = None
        self.reconciliation_batch = batch_id
        self.save(
            update_fields=[
                "reconciled",
                "reconciled_at",
                "reconciliation_status",
                "discrepancy_amount_cents",
                "reconciliation_batch",
            ]
        )

    def flag_discrepancy(
        self,
        batch_id: str,
        notes: str,
        amount_cents: int | None = None,
        status: str = ReconciliationStatus.DISCREPANCY,
    ) -> None:
        """Flag the entry for manual review; financial fields stay untouched."""
        self.reconciled = False
        self.reconciled_at = timezone.now()
        self.reconciliation_status = status
        self.discrepancy_amount_cents = amount_cents
        self.discrepancy_notes = notes
        self.reconciliation_batch = batch_id
        self.save(update_fields=list(self.mutable_fields))


class AppointmentLedger(VersionedMixin, UUIDPrimaryKeyMixin, BaseModel):
    """
    Head row for an appointment's ledger.

    Every posting locks this row with select_for_update, which serializes
    all ledger writes for one appointment. The running totals are checked
    against the entry sums after each post.

    Fields:
        appointment_id: Appointment (unique)
        entry_count: Number of legs posted
        debit_total_cents / credit_total_cents: Running totals
        last_posted_at: Time of the most recent post
    """

    appointment_id = models.UUIDField(
        unique=True,
        help_text="Appointment this head row serializes",
    )
    entry_count = models.PositiveIntegerField(
        default=0,
        help_text="Number of ledger legs posted",
    )
    debit_total_cents = models.BigIntegerField(
        default=0,
        help_text="Running sum of debit legs",
    )
    credit_total_cents = models.BigIntegerField(
        default=0,
        help_text="Running sum of credit legs",
    )
    last_posted_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the most recent pair was posted",
    )

    class Meta:
        verbose_name = "Appointment ledger"

    def __str__(self) -> str:
        return f"AppointmentLedger({self.appointment_id}, {self.entry_count} entries)"
