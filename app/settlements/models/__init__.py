"""
Settlement models.

Ledger models live in settlements.ledger and are re-exported here so
Django registers them under the settlements app.
"""

from settlements.ledger.models import AppointmentLedger, LedgerEntry
from settlements.models.appointment import (
    AppointmentCharge,
    ChargeLineItem,
    CleanerAssignment,
)
from settlements.models.reconciliation import ReconciliationRun
from settlements.models.settlement import GatewayOperation, Settlement
from settlements.models.webhook_event import WebhookEvent

__all__ = [
    "AppointmentCharge",
    "AppointmentLedger",
    "ChargeLineItem",
    "CleanerAssignment",
    "GatewayOperation",
    "LedgerEntry",
    "ReconciliationRun",
    "Settlement",
    "WebhookEvent",
]
