"""
WebhookEvent model for Stripe webhook intake.

Every event Stripe delivers is stored once, keyed by its event id, so a
redelivered event never posts to the ledger twice.

Usage:
    from settlements.models import WebhookEvent

    event, created = WebhookEvent.objects.get_or_create(
        stripe_event_id="evt_123",
        defaults={"event_type": "charge.refunded", "payload": payload},
    )
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from settlements.state_machines import WebhookEventStatus


class WebhookEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    A Stripe webhook event and its processing status.

    Processing Flow:
        1. The intake view verifies the signature and stores the event
        2. An already processed event is acknowledged and skipped
        3. process_webhook_event marks it processing and dispatches it
        4. The event ends processed, or failed for retry_failed_webhooks

    Fields:
        stripe_event_id: Unique Stripe event id (evt_xxx)
        event_type: Stripe event type
        payload: Full verified event
        status: Processing status
        processed_at: When processing succeeded
        error_message: Why the last attempt failed
        retry_count: Processing attempts so far
    """

    stripe_event_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe Event ID (evt_xxx)",
    )
    event_type = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Stripe event type (e.g. 'charge.refunded')",
    )
    payload = models.JSONField(
        help_text="Verified webhook payload",
    )

    status = models.CharField(
        max_length=20,
        choices=WebhookEventStatus.choices,
        default=WebhookEventStatus.PENDING,
        db_index=True,
        help_text="Processing status",
    )
    processed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the event was processed",
    )
    error_message = models.TextField(
        blank=True,
        help_text="Error from the last failed attempt",
    )
    retry_count = models.PositiveSmallIntegerField(
        default=0,
        help_text="Number of processing attempts",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Webhook event"
        indexes = [
            models.Index(fields=["status", "retry_count"], name="webhook_event_retry_idx"),
        ]

    def __str__(self) -> str:
        return f"WebhookEvent({self.stripe_event_id}, {self.event_type})"

    @property
    def is_processed(self) -> bool:
        return self.status == WebhookEventStatus.PROCESSED

    def mark_processing(self) -> None:
        """Does not save."""
        self.status = WebhookEventStatus.PROCESSING
        self.retry_count += 1

    def mark_processed(self) -> None:
        """Does not save."""
        self.status = WebhookEventStatus.PROCESSED
        self.processed_at = timezone.now()
        self.error_message = ""

    def mark_failed(self, error_message: str) -> None:
        """Does not save."""
        self.status = WebhookEventStatus.FAILED
        self.error_message = error_message

    @property
    def data_object(self) -> dict:
        """The event's data.object, or an empty dict."""
        data = (self.payload or {}).get("data") or {}
        return data.get("object") or {}

    def get_object_id(self) -> str | None:
        return self.data_object.get("id")
