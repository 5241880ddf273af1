"""
Settlement services.

This module provides:
- SettlementService: Cancellation settlement, booking postings and appeal relief
- ReconciliationService: Matches ledger entries against gateway records
- ReportService: Reconciliation, tax and 1099 reports

Usage:
    from settlements.services import SettlementService

    breakdown = SettlementService.settle_cancellation(
        appointment_id=appointment_id,
        cancelled_by="homeowner",
        actor_id=user.id,
    )

    from settlements.services import ReconciliationService

    result = ReconciliationService.run_reconciliation(batch_size=100)
"""

from settlements.services.breakdown import Breakdown, FeeStatus
from settlements.services.reconciliation_service import (
    ReconciliationRunResult,
    ReconciliationService,
)
from settlements.services.report_service import (
    Form1099Report,
    ReconciliationReport,
    ReportService,
    TaxReport,
)
from settlements.services.settlement_service import (
    AppealReliefResult,
    ReliefAllowance,
    SettlementService,
    UnpostedRetryResult,
    appeal_window_open,
)

__all__ = [
    "AppealReliefResult",
    "Breakdown",
    "FeeStatus",
    "Form1099Report",
    "ReconciliationReport",
    "ReconciliationRunResult",
    "ReconciliationService",
    "ReliefAllowance",
    "ReportService",
    "SettlementService",
    "TaxReport",
    "UnpostedRetryResult",
    "appeal_window_open",
]
