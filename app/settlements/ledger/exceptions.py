"""
Ledger-specific exceptions.

Exception Hierarchy:
    LedgerError (base)
    ├── LedgerInvariantViolation - Debits and credits no longer balance
    ├── DuplicateEntryConflict - Idempotency key reused with a different payload
    └── MissingPostingRule - Entry type needs explicit accounts
    ImmutableEntryError - Attempt to change or delete a posted entry (409)

Usage:
    from settlements.ledger.exceptions import LedgerInvariantViolation

    if balance.debit_total_cents != balance.credit_total_cents:
        raise LedgerInvariantViolation(
            f"Appointment {appointment_id} ledger is unbalanced",
            details={"debits": balance.debit_total_cents, "credits": ...},
        )
"""

from __future__ import annotations

from core.exceptions import BaseApplicationError, ConflictError


class LedgerError(BaseApplicationError):
    """Base exception for all ledger operations."""

    default_error_code: str = "LEDGER_ERROR"


class LedgerInvariantViolation(LedgerError):
    """
    Raised when a posting would leave an appointment's ledger unbalanced.

    Raised inside the posting transaction so nothing commits. The posting
    service writes a critical audit event after the rollback and re-raises;
    callers must never swallow it.
    """

    default_error_code: str = "LEDGER_INVARIANT_VIOLATION"
    http_status: int = 500


class DuplicateEntryConflict(LedgerError):
    """
    Raised when an idempotency key or gateway object id is reused for a
    different amount, entry type or appointment.

    Replaying the exact same posting is not an error; it returns the
    existing pair.
    """

    default_error_code: str = "DUPLICATE_ENTRY_CONFLICT"
    http_status: int = 409


class MissingPostingRule(LedgerError):
    """Raised when an entry type without a fixed rule is posted without explicit accounts."""

    default_error_code: str = "MISSING_POSTING_RULE"


class ImmutableEntryError(ConflictError):
    """
    Raised on any attempt to update or delete a posted ledger entry.

    Only the reconciliation fields may change after insert. Corrections
    are new pairs referencing the original via metadata.reverses_entry_id.
    """

    default_error_code: str = "IMMUTABLE_LEDGER_ENTRY"
