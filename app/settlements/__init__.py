"""
Settlements app: cancellation settlement and the double-entry ledger.

This app handles:
- Cancellation policy computation
- Refunds, cancellation fees and cleaner payouts through Stripe
- The append-only appointment ledger and its invariants
- Reconciliation against the gateway and tax reporting

Related apps:
    - audit: Every mutating operation writes an AuditEvent
    - appeals: Approved appeals post relief through SettlementService

Usage:
    from settlements.services import SettlementService

    breakdown = SettlementService.settle_cancellation(appointment_id, "homeowner")
"""
