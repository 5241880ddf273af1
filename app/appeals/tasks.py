"""
Celery tasks for appeals.

Celery Beat Schedule (created by migration 0002):
    - escalate_sla_breaches: every 15 minutes

Usage:
    from appeals.tasks import escalate_sla_breaches

    escalate_sla_breaches.delay()
"""

from __future__ import annotations

import logging

from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task(bind=True)
def escalate_sla_breaches(self) -> dict:
    """
    Report appeals past their SLA deadline.

    Each breach is written to the audit log once at warning severity. With
    APPEAL_AUTO_ESCALATE_ON_SLA_BREACH enabled the appeal is also escalated.

    Returns:
        Dict with status and the ids reported by this run
    """
    from appeals.services import AppealService

    reported = AppealService.report_sla_breaches()
    if reported:
        logger.warning("Appeal SLA breaches reported", extra={"count": len(reported)})
    return {
        "status": "completed",
        "breached": [str(pk) for pk in reported],
    }
