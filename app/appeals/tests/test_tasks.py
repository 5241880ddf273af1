"""
Tests for appeal Celery tasks.
"""

from datetime import timedelta

import pytest
from django.utils import timezone
from freezegun import freeze_time

from appeals.models import Appeal, AppealStatus
from appeals.tasks import escalate_sla_breaches
from appeals.tests.factories import AppealFactory
from audit.models import AuditEvent, AuditEventType

pytestmark = [pytest.mark.django_db, pytest.mark.usefixtures("mock_redis_lock")]


class TestEscalateSlaBreaches:
    @freeze_time("2026-03-10 12:00:00")
    def test_reports_breaches(self, settings):
        settings.APPEAL_AUTO_ESCALATE_ON_SLA_BREACH = False
        overdue = AppealFactory(sla_deadline=timezone.now() - timedelta(hours=1))
        AppealFactory(sla_deadline=timezone.now() + timedelta(hours=1))

        result = escalate_sla_breaches.apply().get()

        assert result == {"status": "completed", "breached": [str(overdue.id)]}
        assert Appeal.objects.get(pk=overdue.pk).sla_breached_at == timezone.now()

    @freeze_time("2026-03-10 12:00:00")
    def test_auto_escalation(self, settings):
        settings.APPEAL_AUTO_ESCALATE_ON_SLA_BREACH = True
        overdue = AppealFactory(sla_deadline=timezone.now() - timedelta(hours=1))

        escalate_sla_breaches.apply().get()

        assert Appeal.objects.get(pk=overdue.pk).status == AppealStatus.ESCALATED
        assert AuditEvent.objects.filter(
            appeal_id=overdue.id, event_type=AuditEventType.APPEAL_STATUS_CHANGED
        ).exists()

    def test_nothing_overdue(self):
        AppealFactory()

        assert escalate_sla_breaches.apply().get() == {"status": "completed", "breached": []}
