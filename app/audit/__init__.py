"""
Audit app: append-only record of every settlement, ledger and appeal event.

Events are written by the services that mutate state and are never read
for control flow. Any ledger or appeal state can be reconstructed by
replaying events in occurred_at order.

Usage:
    from audit.services import AuditLog
    from audit.models import AuditEventType
    from audit.types import Actor

    AuditLog.record(
        AuditEventType.CANCELLATION_INITIATED,
        actor=Actor.homeowner(user_id),
        appointment_id=appointment_id,
    )
"""
