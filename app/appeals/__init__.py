"""
Appeals app: contesting cancellation penalties.

This app handles:
- Appeal submission within the appeal window of a settlement
- The staff review workflow (django-fsm state machine)
- SLA deadlines, queue ordering and breach escalation
- Handing approved relief to SettlementService

Related apps:
    - settlements: Settlement records, appeal windows and relief postings
    - audit: Every transition writes an AuditEvent

Usage:
    from appeals.services import AppealService

    result = AppealService.submit_appeal(
        appointment_id=appointment_id,
        appealer=user,
        category="medical_emergency",
        description="Hospitalized the night before",
    )
"""
