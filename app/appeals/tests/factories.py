"""
Factory Boy factories for appeals.

Usage:
    from appeals.tests.factories import AppealFactory

    appeal = AppealFactory(status=AppealStatus.UNDER_REVIEW)
"""

import uuid
from datetime import timedelta

import factory
from django.utils import timezone

from accounts.tests.factories import UserFactory
from appeals.models import (
    Appeal,
    AppealCategory,
    AppealerType,
    AppealPriority,
    AppealSeverity,
)


class AppealFactory(factory.django.DjangoModelFactory):
    """
    Factory for Appeal.

    Default creates a submitted, normal-priority homeowner appeal due in
    48 hours, contesting the cancellation fee. Not tied to a settlement.
    """

    class Meta:
        model = Appeal
        skip_postgeneration_save = True

    appointment_id = factory.LazyFunction(uuid.uuid4)
    appealer = factory.SubFactory(UserFactory)
    appealer_type = AppealerType.HOMEOWNER
    category = AppealCategory.MEDICAL_EMERGENCY
    severity = AppealSeverity.MEDIUM
    priority = AppealPriority.NORMAL
    description = "Emergency room visit the night before the cleaning."
    contesting_items = factory.LazyFunction(lambda: {"fee": True})
    original_penalty_amount_cents = 2500
    original_refund_withheld_cents = 7500
    submitted_at = factory.LazyFunction(timezone.now)
    sla_deadline = factory.LazyAttribute(lambda o: o.submitted_at + timedelta(hours=48))
