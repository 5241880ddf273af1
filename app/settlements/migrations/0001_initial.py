import uuid

import django.core.serializers.json
import django.db.models.deletion
import django.utils.timezone
import django_fsm
import settlements.models.settlement
from django.conf import settings
from django.db import migrations, models


ENTRY_TYPE_CHOICES = [
    ("booking_revenue", "Booking Revenue"),
    ("addon_linens", "Add-on: Linens"),
    ("addon_time_window", "Add-on: Time Window"),
    ("addon_high_volume", "Add-on: High Volume"),
    ("addon_last_minute", "Add-on: Last Minute"),
    ("cancellation_fee_revenue", "Cancellation Fee Revenue"),
    ("cancellation_refund", "Cancellation Refund"),
    ("cancellation_partial_refund", "Cancellation Partial Refund"),
    ("cleaner_payout_job", "Cleaner Payout (Job)"),
    ("cleaner_payout_cancellation", "Cleaner Payout (Cancellation)"),
    ("cleaner_bonus", "Cleaner Bonus"),
    ("platform_fee_standard", "Platform Fee (Standard)"),
    ("platform_fee_business_owner", "Platform Fee (Business Owner)"),
    ("appeal_refund", "Appeal Refund"),
    ("appeal_fee_reversal", "Appeal Fee Reversal"),
    ("manual_adjustment", "Manual Adjustment"),
    ("stripe_fee", "Stripe Fee"),
    ("dispute_chargeback", "Dispute Chargeback"),
    ("dispute_reversal", "Dispute Reversal"),
]

GATEWAY_OBJECT_TYPE_CHOICES = [
    ("payment_intent", "Payment Intent"),
    ("charge", "Charge"),
    ("refund", "Refund"),
    ("transfer", "Transfer"),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="AppointmentLedger",
            fields=[
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Version for optimistic locking - incremented on each save",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "appointment_id",
                    models.UUIDField(
                        help_text="Appointment this head row serializes",
                        unique=True,
                    ),
                ),
                (
                    "entry_count",
                    models.PositiveIntegerField(
                        default=0, help_text="Number of ledger legs posted"
                    ),
                ),
                (
                    "debit_total_cents",
                    models.BigIntegerField(default=0, help_text="Running sum of debit legs"),
                ),
                (
                    "credit_total_cents",
                    models.BigIntegerField(default=0, help_text="Running sum of credit legs"),
                ),
                (
                    "last_posted_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the most recent pair was posted",
                        null=True,
                    ),
                ),
            ],
            options={
                "verbose_name": "Appointment ledger",
            },
        ),
        migrations.CreateModel(
            name="LedgerEntry",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "appointment_id",
                    models.UUIDField(
                        db_index=True, help_text="Appointment this entry belongs to"
                    ),
                ),
                (
                    "entry_type",
                    models.CharField(
                        choices=ENTRY_TYPE_CHOICES,
                        db_index=True,
                        help_text="Category of this entry",
                        max_length=50,
                    ),
                ),
                (
                    "amount_cents",
                    models.PositiveBigIntegerField(
                        help_text="Amount in cents (never negative)"
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default="usd", help_text="ISO 4217 currency code", max_length=3
                    ),
                ),
                (
                    "direction",
                    models.CharField(
                        choices=[("debit", "Debit"), ("credit", "Credit")],
                        help_text="Debit or credit leg",
                        max_length=6,
                    ),
                ),
                (
                    "account_type",
                    models.CharField(
                        choices=[
                            ("accounts_receivable", "Accounts Receivable"),
                            ("revenue", "Revenue"),
                            ("refunds_payable", "Refunds Payable"),
                            ("payouts_payable", "Payouts Payable"),
                            ("platform_revenue", "Platform Revenue"),
                            ("stripe_fees", "Stripe Fees"),
                        ],
                        db_index=True,
                        help_text="Control account this leg posts to",
                        max_length=32,
                    ),
                ),
                (
                    "party_type",
                    models.CharField(
                        choices=[
                            ("homeowner", "Homeowner"),
                            ("cleaner", "Cleaner"),
                            ("platform", "Platform"),
                            ("gateway", "Payment Gateway"),
                        ],
                        help_text="Party this leg concerns",
                        max_length=16,
                    ),
                ),
                (
                    "party_user_id",
                    models.UUIDField(
                        blank=True,
                        db_index=True,
                        help_text="Homeowner or cleaner user id (null for platform/gateway)",
                        null=True,
                    ),
                ),
                (
                    "gateway_object_type",
                    models.CharField(
                        blank=True,
                        choices=GATEWAY_OBJECT_TYPE_CHOICES,
                        help_text="Type of gateway object backing this entry",
                        max_length=20,
                    ),
                ),
                (
                    "gateway_object_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Gateway object id (pi_, ch_, re_, tr_)",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "idempotency_key",
                    models.CharField(
                        help_text="Unique key to prevent duplicate entries",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "tax_year",
                    models.PositiveSmallIntegerField(
                        db_index=True, help_text="Tax year derived from effective_date"
                    ),
                ),
                (
                    "tax_quarter",
                    models.PositiveSmallIntegerField(
                        help_text="Tax quarter (1-4) derived from effective_date"
                    ),
                ),
                (
                    "tax_reportable",
                    models.BooleanField(
                        default=False,
                        help_text="Whether this entry appears on tax reports",
                    ),
                ),
                (
                    "tax_category",
                    models.CharField(
                        choices=[
                            ("income", "Income"),
                            ("refund", "Refund"),
                            ("payout", "Payout"),
                            ("expense", "Expense"),
                            ("other", "Other"),
                        ],
                        default="other",
                        help_text="Tax classification",
                        max_length=10,
                    ),
                ),
                (
                    "form_1099_eligible",
                    models.BooleanField(
                        default=False,
                        help_text="Whether this leg counts toward the party's 1099 total",
                    ),
                ),
                (
                    "reconciliation_status",
                    models.CharField(
                        choices=[
                            ("unreconciled", "Unreconciled"),
                            ("matched", "Matched"),
                            ("discrepancy", "Discrepancy"),
                            ("error", "Error"),
                        ],
                        db_index=True,
                        default="unreconciled",
                        help_text="Reconciliation state against the gateway",
                        max_length=16,
                    ),
                ),
                (
                    "reconciled",
                    models.BooleanField(
                        default=False, help_text="Whether the gateway record matched"
                    ),
                ),
                (
                    "reconciled_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When reconciliation last examined this entry",
                        null=True,
                    ),
                ),
                (
                    "discrepancy_amount_cents",
                    models.PositiveBigIntegerField(
                        blank=True,
                        help_text="Absolute difference from the gateway amount",
                        null=True,
                    ),
                ),
                (
                    "discrepancy_notes",
                    models.TextField(blank=True, help_text="Why the entry was flagged"),
                ),
                (
                    "reconciliation_batch",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Reconciliation batch that last examined this entry",
                        max_length=32,
                    ),
                ),
                (
                    "effective_date",
                    models.DateTimeField(
                        db_index=True,
                        default=django.utils.timezone.now,
                        help_text="When the economic event occurred",
                    ),
                ),
                (
                    "posted_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="When this entry was recorded",
                    ),
                ),
                (
                    "appeal_id",
                    models.UUIDField(
                        blank=True,
                        db_index=True,
                        help_text="Appeal that caused this entry",
                        null=True,
                    ),
                ),
                (
                    "description",
                    models.TextField(
                        blank=True, help_text="Human-readable description of this entry"
                    ),
                ),
                (
                    "metadata",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        encoder=django.core.serializers.json.DjangoJSONEncoder,
                        help_text="Serialized EntryMetadata",
                    ),
                ),
                (
                    "created_by",
                    models.CharField(
                        blank=True,
                        help_text="Service or user that posted this entry",
                        max_length=255,
                    ),
                ),
                (
                    "related_entry",
                    models.ForeignKey(
                        blank=True,
                        help_text="Debit leg of the pair this credit leg belongs to",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="paired_entries",
                        to="settlements.ledgerentry",
                    ),
                ),
            ],
            options={
                "verbose_name_plural": "Ledger entries",
                "ordering": ["posted_at", "id"],
                "indexes": [
                    models.Index(
                        fields=["appointment_id", "posted_at"],
                        name="ledger_entry_appt_posted_idx",
                    ),
                    models.Index(
                        fields=["tax_year", "tax_quarter"],
                        name="ledger_entry_tax_period_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount_cents__gte", 0)),
                        name="ledger_entry_amount_non_negative",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            ("tax_quarter__gte", 1), ("tax_quarter__lte", 4)
                        ),
                        name="ledger_entry_tax_quarter_range",
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(("gateway_object_id__isnull", False)),
                        fields=("gateway_object_id", "entry_type", "direction"),
                        name="ledger_entry_unique_gateway_event",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="AppointmentCharge",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "appointment_id",
                    models.UUIDField(
                        help_text="Appointment this charge belongs to", unique=True
                    ),
                ),
                (
                    "appointment_date",
                    models.DateField(help_text="Local calendar date of the appointment"),
                ),
                (
                    "timezone",
                    models.CharField(
                        default="America/New_York",
                        help_text="IANA timezone the appointment date is expressed in",
                        max_length=64,
                    ),
                ),
                (
                    "base_price_cents",
                    models.PositiveBigIntegerField(
                        help_text="Price before add-ons, in cents"
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default="usd",
                        help_text="ISO 4217 currency code (lowercase)",
                        max_length=3,
                    ),
                ),
                (
                    "payment_intent_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Captured Stripe PaymentIntent ID (pi_xxx)",
                        max_length=255,
                    ),
                ),
                (
                    "gateway_customer_id",
                    models.CharField(
                        blank=True,
                        help_text="Stripe Customer ID (cus_xxx) for off-session charges",
                        max_length=255,
                    ),
                ),
                (
                    "gateway_payment_method_id",
                    models.CharField(
                        blank=True,
                        help_text="Saved Stripe PaymentMethod ID (pm_xxx)",
                        max_length=255,
                    ),
                ),
                (
                    "payment_method_label",
                    models.CharField(
                        blank=True,
                        help_text="Display label for the payment method",
                        max_length=100,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[("booked", "Booked"), ("cancelled", "Cancelled")],
                        db_index=True,
                        default="booked",
                        help_text="Booking status as seen by the settlement engine",
                        max_length=50,
                    ),
                ),
                (
                    "cancelled_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the appointment was cancelled",
                        null=True,
                    ),
                ),
                (
                    "homeowner",
                    models.ForeignKey(
                        help_text="Homeowner who paid for the appointment",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="appointment_charges",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Appointment charge",
                "ordering": ["-created_at"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("base_price_cents__gte", 0)),
                        name="appointment_charge_price_non_negative",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="ChargeLineItem",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "kind",
                    models.CharField(
                        choices=[
                            ("linens", "Linens"),
                            ("time_window", "Time Window"),
                            ("high_volume", "High Volume"),
                            ("last_minute", "Last Minute"),
                        ],
                        help_text="Add-on kind",
                        max_length=20,
                    ),
                ),
                (
                    "amount_cents",
                    models.PositiveBigIntegerField(help_text="Add-on amount in cents"),
                ),
                (
                    "label",
                    models.CharField(blank=True, help_text="Display label", max_length=100),
                ),
                (
                    "charge",
                    models.ForeignKey(
                        help_text="Charge this add-on belongs to",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="line_items",
                        to="settlements.appointmentcharge",
                    ),
                ),
            ],
            options={
                "ordering": ["created_at", "id"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("charge", "kind"),
                        name="charge_line_item_unique_kind",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="CleanerAssignment",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "connected_account_id",
                    models.CharField(
                        blank=True,
                        help_text="Cleaner's Stripe Connect account ID (acct_xxx)",
                        max_length=255,
                    ),
                ),
                (
                    "share_cents",
                    models.PositiveBigIntegerField(
                        blank=True,
                        help_text="Recorded share of a cancellation payout",
                        null=True,
                    ),
                ),
                (
                    "charge",
                    models.ForeignKey(
                        help_text="Charge this assignment belongs to",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="cleaner_assignments",
                        to="settlements.appointmentcharge",
                    ),
                ),
                (
                    "cleaner",
                    models.ForeignKey(
                        help_text="Assigned cleaner",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="cleaner_assignments",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["created_at", "id"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("charge", "cleaner"),
                        name="cleaner_assignment_unique_cleaner",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="ReconciliationRun",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "batch_id",
                    models.CharField(
                        help_text="Batch id (RECON-YYYYMMDD-HHMMSS-xxxxxx)",
                        max_length=32,
                        unique=True,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("running", "Running"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="running",
                        max_length=20,
                    ),
                ),
                (
                    "started_at",
                    models.DateTimeField(default=django.utils.timezone.now),
                ),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("entries_checked", models.PositiveIntegerField(default=0)),
                ("matched", models.PositiveIntegerField(default=0)),
                ("mismatched", models.PositiveIntegerField(default=0)),
                ("errors", models.PositiveIntegerField(default=0)),
                ("error_message", models.TextField(blank=True)),
            ],
            options={
                "verbose_name": "Reconciliation run",
                "ordering": ["-started_at"],
            },
        ),
        migrations.CreateModel(
            name="Settlement",
            fields=[
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Version for optimistic locking - incremented on each save",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "appointment_id",
                    models.UUIDField(help_text="Appointment being settled", unique=True),
                ),
                (
                    "confirmation_id",
                    models.CharField(
                        default=settlements.models.settlement.generate_confirmation_id,
                        help_text="Cancellation confirmation id (CXL-YYYYMMDD-XXXXXX)",
                        max_length=32,
                        unique=True,
                    ),
                ),
                (
                    "cancelled_by",
                    models.CharField(
                        choices=[("homeowner", "Homeowner"), ("cleaner", "Cleaner")],
                        help_text="Party that cancelled",
                        max_length=20,
                    ),
                ),
                (
                    "actor_id",
                    models.UUIDField(
                        blank=True,
                        help_text="User who requested the cancellation",
                        null=True,
                    ),
                ),
                (
                    "requested_at",
                    models.DateTimeField(help_text="When the cancellation was requested"),
                ),
                ("total_cents", models.PositiveBigIntegerField(default=0)),
                ("refund_amount_cents", models.PositiveBigIntegerField(default=0)),
                ("refund_percentage", models.PositiveSmallIntegerField(default=0)),
                ("cancellation_fee_cents", models.PositiveBigIntegerField(default=0)),
                ("cleaner_payout_cents", models.PositiveBigIntegerField(default=0)),
                ("platform_fee_cents", models.PositiveBigIntegerField(default=0)),
                (
                    "days_until",
                    models.IntegerField(
                        default=0,
                        help_text="Calendar days between the request and the appointment",
                    ),
                ),
                (
                    "state",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("completed", "Completed"),
                            ("requires_attention", "Requires Attention"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current state of the settlement (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "policy_outcome",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Serialized CancellationOutcome the settlement was computed from",
                    ),
                ),
                (
                    "breakdown",
                    models.JSONField(
                        blank=True, default=dict, help_text="Serialized Breakdown"
                    ),
                ),
                (
                    "appeal_window_expires_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="Last moment an appeal may be submitted",
                        null=True,
                    ),
                ),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("failed_at", models.DateTimeField(blank=True, null=True)),
                ("failure_reason", models.TextField(blank=True)),
                (
                    "charge",
                    models.ForeignKey(
                        help_text="Charge being settled",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="settlements",
                        to="settlements.appointmentcharge",
                    ),
                ),
            ],
            options={
                "verbose_name": "Settlement",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["state", "created_at"], name="settlement_state_idx"
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="GatewayOperation",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "appointment_id",
                    models.UUIDField(
                        db_index=True, help_text="Appointment the money belongs to"
                    ),
                ),
                (
                    "appeal_id",
                    models.UUIDField(
                        blank=True,
                        db_index=True,
                        help_text="Appeal whose relief this operation moves",
                        null=True,
                    ),
                ),
                (
                    "idempotency_key",
                    models.CharField(
                        help_text="Gateway and ledger idempotency key",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "operation",
                    models.CharField(
                        choices=[
                            ("capture", "Capture"),
                            ("charge", "Charge"),
                            ("refund", "Refund"),
                            ("transfer", "Transfer"),
                            ("none", "Ledger Only"),
                        ],
                        help_text="Gateway call to make",
                        max_length=20,
                    ),
                ),
                (
                    "entry_type",
                    models.CharField(
                        choices=ENTRY_TYPE_CHOICES,
                        help_text="Ledger entry type to post once the call succeeds",
                        max_length=50,
                    ),
                ),
                ("amount_cents", models.PositiveBigIntegerField(help_text="Amount in cents")),
                ("currency", models.CharField(default="usd", max_length=3)),
                (
                    "party_user_id",
                    models.UUIDField(
                        blank=True,
                        help_text="Homeowner or cleaner the money concerns",
                        null=True,
                    ),
                ),
                (
                    "destination",
                    models.CharField(
                        blank=True,
                        help_text="Payment intent or connected account the call targets",
                        max_length=255,
                    ),
                ),
                ("description", models.CharField(blank=True, max_length=255)),
                (
                    "state",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("succeeded", "Succeeded"),
                            ("failed", "Failed"),
                            ("exhausted", "Retries Exhausted"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current state of the gateway call (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                ("attempt_count", models.PositiveIntegerField(default=0)),
                ("last_error", models.TextField(blank=True)),
                (
                    "gateway_object_type",
                    models.CharField(
                        blank=True,
                        choices=GATEWAY_OBJECT_TYPE_CHOICES,
                        help_text="Type of gateway object created",
                        max_length=20,
                    ),
                ),
                (
                    "gateway_object_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Gateway object id returned by the call",
                        max_length=255,
                        null=True,
                    ),
                ),
                ("succeeded_at", models.DateTimeField(blank=True, null=True)),
                (
                    "ledger_state",
                    models.CharField(
                        choices=[("unposted", "Unposted"), ("posted", "Posted")],
                        db_index=True,
                        default="unposted",
                        help_text="Whether the ledger pair has been posted",
                        max_length=10,
                    ),
                ),
                ("posted_at", models.DateTimeField(blank=True, null=True)),
                (
                    "settlement",
                    models.ForeignKey(
                        blank=True,
                        help_text="Settlement this operation belongs to",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="operations",
                        to="settlements.settlement",
                    ),
                ),
            ],
            options={
                "verbose_name": "Gateway operation",
                "ordering": ["created_at", "id"],
                "indexes": [
                    models.Index(
                        fields=["state", "ledger_state"],
                        name="gateway_op_unposted_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount_cents__gt", 0)),
                        name="gateway_operation_amount_positive",
                    ),
                ],
            },
        ),
    ]
