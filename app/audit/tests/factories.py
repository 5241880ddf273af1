"""
Factory Boy factories for audit events.

Usage:
    from audit.tests.factories import AuditEventFactory

    event = AuditEventFactory(appointment_id=appointment_id)
"""

import uuid

import factory

from audit.models import AuditEvent, AuditEventType, AuditSeverity
from audit.types import ActorType


class AuditEventFactory(factory.django.DjangoModelFactory):
    """
    Factory for AuditEvent.

    Default creates an info-level cancellation_initiated event by a homeowner.
    """

    class Meta:
        model = AuditEvent
        skip_postgeneration_save = True

    event_type = AuditEventType.CANCELLATION_INITIATED
    severity = AuditSeverity.INFO
    actor_id = factory.LazyFunction(uuid.uuid4)
    actor_type = ActorType.HOMEOWNER
    appointment_id = factory.LazyFunction(uuid.uuid4)
    appeal_id = None
    request_id = factory.Sequence(lambda n: f"req-{n}")
    ledger_entry_ids = factory.LazyFunction(list)
    event_data = factory.LazyFunction(dict)
