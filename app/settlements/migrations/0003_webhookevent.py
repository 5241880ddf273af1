import uuid

from django.db import migrations, models


GATEWAY_OBJECT_TYPE_CHOICES = [
    ("payment_intent", "Payment Intent"),
    ("charge", "Charge"),
    ("refund", "Refund"),
    ("transfer", "Transfer"),
    ("dispute", "Dispute"),
    ("balance_transaction", "Balance Transaction"),
]


class Migration(migrations.Migration):
    dependencies = [
        ("settlements", "0002_add_celery_beat_schedules"),
    ]

    operations = [
        migrations.AlterField(
            model_name="ledgerentry",
            name="gateway_object_type",
            field=models.CharField(
                blank=True,
                choices=GATEWAY_OBJECT_TYPE_CHOICES,
                help_text="Type of gateway object backing this entry",
                max_length=20,
            ),
        ),
        migrations.AlterField(
            model_name="gatewayoperation",
            name="gateway_object_type",
            field=models.CharField(
                blank=True,
                choices=GATEWAY_OBJECT_TYPE_CHOICES,
                help_text="Type of gateway object created",
                max_length=20,
            ),
        ),
        migrations.CreateModel(
            name="WebhookEvent",
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
                    "stripe_event_id",
                    models.CharField(
                        help_text="Stripe Event ID (evt_xxx)",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "event_type",
                    models.CharField(
                        db_index=True,
                        help_text="Stripe event type (e.g. 'charge.refunded')",
                        max_length=100,
                    ),
                ),
                (
                    "payload",
                    models.JSONField(help_text="Verified webhook payload"),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("processed", "Processed"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Processing status",
                        max_length=20,
                    ),
                ),
                (
                    "processed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the event was processed",
                        null=True,
                    ),
                ),
                (
                    "error_message",
                    models.TextField(
                        blank=True,
                        help_text="Error from the last failed attempt",
                    ),
                ),
                (
                    "retry_count",
                    models.PositiveSmallIntegerField(
                        default=0,
                        help_text="Number of processing attempts",
                    ),
                ),
            ],
            options={
                "verbose_name": "Webhook event",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "retry_count"],
                        name="webhook_event_retry_idx",
                    ),
                ],
            },
        ),
    ]
