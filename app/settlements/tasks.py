"""
Celery tasks for settlements.

This module provides tasks for:
- Reconciling ledger entries against the payment gateway
- Posting ledger pairs for gateway operations that succeeded unposted
- Processing Stripe webhook events and retrying failed ones

Celery Beat Schedule (created by migrations 0002 and 0004):
    - reconcile_ledger: hourly
    - post_unposted_operations: every 10 minutes
    - retry_failed_webhooks: every 5 minutes

Usage:
    from settlements.tasks import reconcile_ledger

    reconcile_ledger.delay(batch_size=200)
"""

from __future__ import annotations

import logging
from datetime import timedelta
from uuid import UUID

from celery import shared_task
from django.conf import settings
from django.db.models import Q
from django.utils import timezone

from settlements.exceptions import LockAcquisitionError
from settlements.models import WebhookEvent
from settlements.state_machines import WebhookEventStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_UNPOSTED_LIMIT = 100

MAX_WEBHOOK_RETRIES = 5

# Pending events older than this were never queued
STALE_PENDING_WEBHOOK_MINUTES = 15


# =============================================================================
# Periodic Tasks
# =============================================================================


@shared_task(bind=True)
def reconcile_ledger(self, batch_size: int | None = None) -> dict:
    """
    Run one reconciliation batch.

    Returns:
        Dict with:
        - status: "completed" or "skipped" (another batch holds the lock)
        - batch_id and counters when completed

    Note:
        If another batch is running this task returns immediately with
        status "skipped" rather than waiting.
    """
    from settlements.services import ReconciliationService

    batch_size = batch_size or settings.RECONCILIATION_BATCH_SIZE
    logger.info("Starting scheduled reconciliation", extra={"batch_size": batch_size})

    try:
        result = ReconciliationService.run_reconciliation(batch_size=batch_size)
    except LockAcquisitionError:
        logger.info("Reconciliation already running, skipping")
        return {"status": "skipped"}

    return {
        "status": "completed",
        "batch_id": result.batch_id,
        "entries_checked": result.entries_checked,
        "matched": result.matched,
        "mismatched": result.mismatched,
        "errors": result.errors,
    }


@shared_task(
    bind=True,
    autoretry_for=(LockAcquisitionError,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": 3},
)
def post_unposted_operations(self, limit: int = DEFAULT_UNPOSTED_LIMIT) -> dict:
    """
    Post ledger pairs for gateway operations that succeeded but never
    reached the ledger. The gateway is not called again.

    Returns:
        Dict with posted/failed counts and completed settlement ids
    """
    from settlements.services import SettlementService

    result = SettlementService.retry_unposted_operations(limit=limit)
    if result.failed:
        logger.warning(
            "Some gateway operations are still unposted",
            extra={"posted": result.posted, "failed": result.failed},
        )
    return {
        "status": "completed",
        "posted": result.posted,
        "failed": result.failed,
        "completed_settlements": [str(pk) for pk in result.completed_settlements],
    }


# =============================================================================
# Webhook Processing Tasks
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": MAX_WEBHOOK_RETRIES},
    acks_late=True,
)
def process_webhook_event(self, webhook_event_id: str) -> dict:
    """
    Process a stored Stripe webhook event.

    Handlers post through LedgerService, which runs its own transactions,
    so dispatch is not wrapped in one here.

    Returns:
        Dict with status "processed", "handler_failed", "already_processed"
        or "not_found"

    Raises:
        Exception: Re-raised after marking the event failed so Celery retries
    """
    from settlements.webhooks.handlers import dispatch_webhook

    if isinstance(webhook_event_id, str):
        webhook_event_id = UUID(webhook_event_id)

    try:
        webhook_event = WebhookEvent.objects.get(id=webhook_event_id)
    except WebhookEvent.DoesNotExist:
        logger.error(
            "WebhookEvent not found",
            extra={"webhook_event_id": str(webhook_event_id)},
        )
        return {"status": "not_found", "webhook_event_id": str(webhook_event_id)}

    if webhook_event.is_processed:
        logger.info(
            "WebhookEvent already processed, skipping",
            extra={
                "webhook_event_id": str(webhook_event_id),
                "stripe_event_id": webhook_event.stripe_event_id,
            },
        )
        return {"status": "already_processed", "webhook_event_id": str(webhook_event_id)}

    webhook_event.mark_processing()
    webhook_event.save()

    try:
        result = dispatch_webhook(webhook_event)
    except Exception as e:
        error_msg = f"{type(e).__name__}: {e}"
        webhook_event.mark_failed(error_msg)
        webhook_event.save()
        logger.exception(
            "Webhook processing failed with exception",
            extra={
                "webhook_event_id": str(webhook_event_id),
                "stripe_event_id": webhook_event.stripe_event_id,
                "error": error_msg,
            },
        )
        raise

    if not result.success:
        error_msg = result.error or "Handler returned failure"
        webhook_event.mark_failed(error_msg)
        webhook_event.save()
        logger.warning(
            "Webhook handler failed",
            extra={
                "webhook_event_id": str(webhook_event_id),
                "stripe_event_id": webhook_event.stripe_event_id,
                "error": error_msg,
                "error_code": result.error_code,
            },
        )
        return {
            "status": "handler_failed",
            "webhook_event_id": str(webhook_event_id),
            "error": error_msg,
        }

    webhook_event.mark_processed()
    webhook_event.save()
    logger.info(
        "Webhook processed",
        extra={
            "webhook_event_id": str(webhook_event_id),
            "stripe_event_id": webhook_event.stripe_event_id,
            "event_type": webhook_event.event_type,
        },
    )
    return {
        "status": "processed",
        "webhook_event_id": str(webhook_event_id),
        "stripe_event_id": webhook_event.stripe_event_id,
    }


@shared_task
def retry_failed_webhooks(limit: int = 100) -> dict:
    """
    Re-queue failed webhook events that still have retries left, and
    events that were stored but never queued.

    Returns:
        Dict with the number of events queued
    """
    stale_before = timezone.now() - timedelta(minutes=STALE_PENDING_WEBHOOK_MINUTES)
    events = WebhookEvent.objects.filter(
        Q(status=WebhookEventStatus.FAILED, retry_count__lt=MAX_WEBHOOK_RETRIES)
        | Q(status=WebhookEventStatus.PENDING, created_at__lt=stale_before)
    ).order_by("created_at")[:limit]

    queued_count = 0
    for webhook_event in events:
        try:
            process_webhook_event.delay(str(webhook_event.id))
        except Exception:
            logger.error(
                "Failed to queue webhook for retry",
                extra={"webhook_event_id": str(webhook_event.id)},
                exc_info=True,
            )
            continue
        queued_count += 1
        logger.info(
            "Queued webhook for retry",
            extra={
                "webhook_event_id": str(webhook_event.id),
                "stripe_event_id": webhook_event.stripe_event_id,
                "retry_count": webhook_event.retry_count,
            },
        )

    return {"queued_count": queued_count}
