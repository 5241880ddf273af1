import uuid

import django.core.serializers.json
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="AuditEvent",
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
                    "event_type",
                    models.CharField(
                        choices=[
                            ("cancellation_initiated", "Cancellation Initiated"),
                            (
                                "cancellation_policy_computed",
                                "Cancellation Policy Computed",
                            ),
                            ("cancellation_confirmed", "Cancellation Confirmed"),
                            ("settlement_failed", "Settlement Failed"),
                            ("fee_charge_attempted", "Fee Charge Attempted"),
                            ("fee_charge_succeeded", "Fee Charge Succeeded"),
                            ("fee_charge_failed", "Fee Charge Failed"),
                            ("refund_initiated", "Refund Initiated"),
                            ("refund_completed", "Refund Completed"),
                            ("refund_failed", "Refund Failed"),
                            ("payout_initiated", "Payout Initiated"),
                            ("payout_completed", "Payout Completed"),
                            ("payout_failed", "Payout Failed"),
                            (
                                "gateway_operation_exhausted",
                                "Gateway Operation Exhausted",
                            ),
                            ("ledger_entries_posted", "Ledger Entries Posted"),
                            (
                                "ledger_invariant_violation",
                                "Ledger Invariant Violation",
                            ),
                            ("appeal_submitted", "Appeal Submitted"),
                            ("appeal_assigned", "Appeal Assigned"),
                            ("appeal_status_changed", "Appeal Status Changed"),
                            ("appeal_resolved", "Appeal Resolved"),
                            ("appeal_relief_posted", "Appeal Relief Posted"),
                            ("appeal_sla_breached", "Appeal SLA Breached"),
                            ("appeal_closed", "Appeal Closed"),
                            ("reconciliation_matched", "Reconciliation Matched"),
                            (
                                "reconciliation_discrepancy_flagged",
                                "Reconciliation Discrepancy Flagged",
                            ),
                        ],
                        db_index=True,
                        help_text="Type of audited event",
                        max_length=64,
                    ),
                ),
                (
                    "severity",
                    models.CharField(
                        choices=[
                            ("info", "Info"),
                            ("warning", "Warning"),
                            ("critical", "Critical"),
                        ],
                        db_index=True,
                        default="info",
                        help_text="How urgently a human should look at this event",
                        max_length=10,
                    ),
                ),
                (
                    "actor_id",
                    models.UUIDField(
                        blank=True,
                        db_index=True,
                        help_text="User who performed the action (null for system actions)",
                        null=True,
                    ),
                ),
                (
                    "actor_type",
                    models.CharField(
                        choices=[
                            ("homeowner", "Homeowner"),
                            ("cleaner", "Cleaner"),
                            ("staff", "Staff"),
                            ("system", "System"),
                        ],
                        help_text="Kind of actor",
                        max_length=20,
                    ),
                ),
                (
                    "appointment_id",
                    models.UUIDField(
                        blank=True,
                        db_index=True,
                        help_text="Appointment this event concerns",
                        null=True,
                    ),
                ),
                (
                    "appeal_id",
                    models.UUIDField(
                        blank=True,
                        db_index=True,
                        help_text="Appeal this event concerns",
                        null=True,
                    ),
                ),
                (
                    "request_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Correlation id shared by all events of one request",
                        max_length=64,
                    ),
                ),
                (
                    "ledger_entry_ids",
                    models.JSONField(
                        blank=True,
                        default=list,
                        encoder=django.core.serializers.json.DjangoJSONEncoder,
                        help_text="Ledger entries written by this step",
                    ),
                ),
                (
                    "event_data",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        encoder=django.core.serializers.json.DjangoJSONEncoder,
                        help_text="Typed event payload",
                    ),
                ),
                (
                    "previous_state",
                    models.JSONField(
                        blank=True,
                        encoder=django.core.serializers.json.DjangoJSONEncoder,
                        help_text="Snapshot before the change",
                        null=True,
                    ),
                ),
                (
                    "new_state",
                    models.JSONField(
                        blank=True,
                        encoder=django.core.serializers.json.DjangoJSONEncoder,
                        help_text="Snapshot after the change",
                        null=True,
                    ),
                ),
                (
                    "occurred_at",
                    models.DateTimeField(
                        db_index=True,
                        default=django.utils.timezone.now,
                        editable=False,
                        help_text="When the event occurred",
                    ),
                ),
                (
                    "recorded_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        help_text="When the event was written",
                    ),
                ),
            ],
            options={
                "verbose_name": "Audit event",
                "verbose_name_plural": "Audit events",
                "ordering": ["occurred_at", "id"],
                "indexes": [
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
                ],
            },
        ),
    ]
