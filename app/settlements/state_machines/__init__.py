"""
State machine enums for settlement models.

This module defines the state enums used by settlement models with django-fsm.
"""

from settlements.state_machines.states import (
    AppointmentChargeStatus,
    GatewayOperationKind,
    GatewayOperationState,
    LedgerPostingState,
    ReconciliationRunStatus,
    SettlementState,
    WebhookEventStatus,
)

__all__ = [
    "AppointmentChargeStatus",
    "GatewayOperationKind",
    "GatewayOperationState",
    "LedgerPostingState",
    "ReconciliationRunStatus",
    "SettlementState",
    "WebhookEventStatus",
]
