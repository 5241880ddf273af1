"""
Tests for webhook Celery tasks.

Tests cover:
- process_webhook_event task
- retry_failed_webhooks task
"""

from datetime import timedelta
from unittest.mock import patch
from uuid import uuid4

import pytest
from django.utils import timezone

from core.services import ServiceResult
from settlements.ledger.services import LedgerService
from settlements.models import WebhookEvent
from settlements.state_machines import WebhookEventStatus
from settlements.tasks import (
    MAX_WEBHOOK_RETRIES,
    STALE_PENDING_WEBHOOK_MINUTES,
    process_webhook_event,
    retry_failed_webhooks,
)

DISPATCH = "settlements.webhooks.handlers.dispatch_webhook"
DELAY = "settlements.tasks.process_webhook_event.delay"


# =============================================================================
# process_webhook_event
# =============================================================================


class TestProcessWebhookEvent:
    def test_process_pending_event(self, pending_webhook_event):
        with patch(DISPATCH, return_value=ServiceResult.success(None)):
            result = process_webhook_event(str(pending_webhook_event.id))

        assert result["status"] == "processed"
        assert result["stripe_event_id"] == pending_webhook_event.stripe_event_id
        pending_webhook_event.refresh_from_db()
        assert pending_webhook_event.status == WebhookEventStatus.PROCESSED
        assert pending_webhook_event.processed_at is not None
        assert pending_webhook_event.retry_count == 1

    def test_skip_already_processed_event(self, processed_webhook_event):
        with patch(DISPATCH) as mock_dispatch:
            result = process_webhook_event(str(processed_webhook_event.id))

        assert result["status"] == "already_processed"
        mock_dispatch.assert_not_called()

    def test_event_not_found(self, db):
        result = process_webhook_event(str(uuid4()))

        assert result["status"] == "not_found"

    def test_handler_failure_marks_event_failed(self, pending_webhook_event):
        with patch(
            DISPATCH,
            return_value=ServiceResult.failure(
                "No appointment charge for pi_x", error_code="CHARGE_NOT_FOUND"
            ),
        ):
            result = process_webhook_event(str(pending_webhook_event.id))

        assert result["status"] == "handler_failed"
        pending_webhook_event.refresh_from_db()
        assert pending_webhook_event.status == WebhookEventStatus.FAILED
        assert "pi_x" in pending_webhook_event.error_message

    def test_exception_marks_event_failed_and_raises(self, pending_webhook_event):
        with patch(DISPATCH, side_effect=Exception("Database connection lost")):
            with pytest.raises(Exception, match="Database connection lost"):
                process_webhook_event(str(pending_webhook_event.id))

        pending_webhook_event.refresh_from_db()
        assert pending_webhook_event.status == WebhookEventStatus.FAILED
        assert "Database connection lost" in pending_webhook_event.error_message

    def test_success_clears_previous_error(self, failed_webhook_event):
        failed_webhook_event.error_message = "Chargeback not posted yet"
        failed_webhook_event.save()

        with patch(DISPATCH, return_value=ServiceResult.success(None)):
            process_webhook_event(str(failed_webhook_event.id))

        failed_webhook_event.refresh_from_db()
        assert failed_webhook_event.status == WebhookEventStatus.PROCESSED
        assert failed_webhook_event.error_message == ""
        assert failed_webhook_event.retry_count == 2

    def test_booking_event_posts_ledger_pairs(
        self, make_event, mock_redis_lock, charge, intent_payload
    ):
        event = make_event("payment_intent.succeeded", intent_payload)

        result = process_webhook_event(str(event.id))

        assert result["status"] == "processed"
        assert LedgerService.get_summary(charge.appointment_id) == {
            "booking_revenue": 15000
        }


# =============================================================================
# retry_failed_webhooks
# =============================================================================


def _backdate(event, minutes):
    WebhookEvent.objects.filter(id=event.id).update(
        created_at=timezone.now() - timedelta(minutes=minutes)
    )


class TestRetryFailedWebhooks:
    def test_queues_failed_webhooks(self, failed_webhook_event):
        with patch(DELAY) as mock_task:
            result = retry_failed_webhooks()

        assert result["queued_count"] == 1
        mock_task.assert_called_once_with(str(failed_webhook_event.id))

    def test_skips_webhooks_at_max_retries(self, failed_webhook_event):
        failed_webhook_event.retry_count = MAX_WEBHOOK_RETRIES
        failed_webhook_event.save()

        with patch(DELAY) as mock_task:
            result = retry_failed_webhooks()

        assert result["queued_count"] == 0
        mock_task.assert_not_called()

    def test_queues_stale_pending_webhooks(self, pending_webhook_event):
        _backdate(pending_webhook_event, STALE_PENDING_WEBHOOK_MINUTES + 5)

        with patch(DELAY) as mock_task:
            result = retry_failed_webhooks()

        assert result["queued_count"] == 1
        mock_task.assert_called_once_with(str(pending_webhook_event.id))

    def test_leaves_fresh_pending_and_processed(
        self, pending_webhook_event, processed_webhook_event
    ):
        _backdate(processed_webhook_event, STALE_PENDING_WEBHOOK_MINUTES + 5)

        with patch(DELAY) as mock_task:
            result = retry_failed_webhooks()

        assert result["queued_count"] == 0
        mock_task.assert_not_called()

    def test_queueing_error_not_counted(self, failed_webhook_event):
        with patch(DELAY, side_effect=Exception("Celery error")):
            result = retry_failed_webhooks()

        assert result["queued_count"] == 0
