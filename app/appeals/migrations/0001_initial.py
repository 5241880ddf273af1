import uuid

import django.db.models.deletion
import django.utils.timezone
import django_fsm
from django.conf import settings
from django.db import migrations, models


APPEAL_STATUS_CHOICES = [
    ("submitted", "Submitted"),
    ("under_review", "Under Review"),
    ("awaiting_documents", "Awaiting Documents"),
    ("escalated", "Escalated"),
    ("approved", "Approved"),
    ("partially_approved", "Partially Approved"),
    ("denied", "Denied"),
    ("closed", "Closed"),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Appeal",
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
                        db_index=True,
                        help_text="Cancelled appointment the appeal concerns",
                    ),
                ),
                (
                    "appealer_type",
                    models.CharField(
                        choices=[("homeowner", "Homeowner"), ("cleaner", "Cleaner")],
                        max_length=20,
                    ),
                ),
                (
                    "category",
                    models.CharField(
                        choices=[
                            ("medical_emergency", "Medical Emergency"),
                            ("family_emergency", "Family Emergency"),
                            ("natural_disaster", "Natural Disaster"),
                            ("property_issue", "Property Issue"),
                            ("transportation", "Transportation"),
                            ("scheduling_error", "Scheduling Error"),
                            ("other", "Other"),
                        ],
                        max_length=30,
                    ),
                ),
                (
                    "severity",
                    models.CharField(
                        choices=[
                            ("low", "Low"),
                            ("medium", "Medium"),
                            ("high", "High"),
                            ("critical", "Critical"),
                        ],
                        default="medium",
                        max_length=10,
                    ),
                ),
                (
                    "priority",
                    models.CharField(
                        choices=[("urgent", "Urgent"), ("high", "High"), ("normal", "Normal")],
                        db_index=True,
                        default="normal",
                        max_length=10,
                    ),
                ),
                ("description", models.TextField()),
                (
                    "supporting_documents",
                    models.JSONField(
                        blank=True,
                        default=list,
                        help_text="Serialized SupportingDocument list",
                    ),
                ),
                (
                    "contesting_items",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Serialized ContestingItems",
                    ),
                ),
                (
                    "original_penalty_amount_cents",
                    models.PositiveBigIntegerField(
                        default=0,
                        help_text="Collected cancellation fee not yet reversed when the appeal was submitted",
                    ),
                ),
                (
                    "original_refund_withheld_cents",
                    models.PositiveBigIntegerField(
                        default=0,
                        help_text="Withheld booking amount not yet returned when the appeal was submitted",
                    ),
                ),
                ("requested_relief", models.TextField(blank=True)),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=APPEAL_STATUS_CHOICES,
                        db_index=True,
                        default="submitted",
                        help_text="Current workflow status (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                ("sla_deadline", models.DateTimeField(db_index=True)),
                (
                    "sla_breached_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the SLA breach was first reported",
                        null=True,
                    ),
                ),
                (
                    "submitted_at",
                    models.DateTimeField(default=django.utils.timezone.now),
                ),
                ("assigned_at", models.DateTimeField(blank=True, null=True)),
                ("reviewed_at", models.DateTimeField(blank=True, null=True)),
                ("escalated_at", models.DateTimeField(blank=True, null=True)),
                ("closed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "last_activity_at",
                    models.DateTimeField(default=django.utils.timezone.now),
                ),
                ("escalation_reason", models.TextField(blank=True)),
                (
                    "resolution",
                    models.JSONField(
                        blank=True,
                        help_text="Serialized AppealResolution",
                        null=True,
                    ),
                ),
                ("resolution_notes", models.TextField(blank=True)),
                (
                    "relief_settlement_state",
                    models.CharField(
                        choices=[
                            ("not_required", "Not Required"),
                            ("pending", "Pending"),
                            ("posted", "Posted"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="not_required",
                        max_length=20,
                    ),
                ),
                (
                    "appealer",
                    models.ForeignKey(
                        help_text="User who submitted the appeal",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="appeals",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "assigned_to",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="assigned_appeals",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "reviewed_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="reviewed_appeals",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Appeal",
                "ordering": ["-submitted_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "sla_deadline"],
                        name="appeal_status_sla_idx",
                    ),
                    models.Index(
                        fields=["appealer", "submitted_at"],
                        name="appeal_appealer_idx",
                    ),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(
                            (
                                "status__in",
                                ["submitted", "under_review", "awaiting_documents", "escalated"],
                            )
                        ),
                        fields=("appointment_id",),
                        name="appeal_one_open_per_appointment",
                    ),
                ],
            },
        ),
    ]
