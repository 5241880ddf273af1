"""
Data types for ledger operations.

Types:
    Money: A monetary amount in cents with currency
    EntryMetadata: Typed contents of LedgerEntry.metadata
    LegAccount: Explicit account/party for one leg (manual adjustments)
    RecordPairParams: Parameters for posting one balanced pair
    LedgerPair: The debit and credit legs of a posted pair
    LedgerBalance: Debit/credit totals for one appointment

Usage:
    from settlements.ledger.types import RecordPairParams

    params = RecordPairParams(
        appointment_id=appointment_id,
        entry_type=EntryType.CANCELLATION_REFUND,
        amount_cents=7500,
        idempotency_key="settlement:...:cancellation_refund",
        party_user_id=homeowner_id,
        gateway_object_type=GatewayObjectType.REFUND,
        gateway_object_id="re_123",
    )
"""

from __future__ import annotations

import dataclasses
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .models import AccountType, EntryType, GatewayObjectType, LedgerEntry, PartyType


@dataclass
class Money:
    """
    A monetary amount in the smallest currency unit.

    Example:
        amount = Money(cents=5000, currency="usd")
        print(amount)  # "$50.00 USD"
    """

    cents: int
    currency: str = "usd"

    def __str__(self) -> str:
        return f"${self.cents / 100:.2f} {self.currency.upper()}"

    def __add__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        if self.currency != other.currency:
            raise ValueError(
                f"Cannot add Money with different currencies: "
                f"{self.currency} and {other.currency}"
            )
        return Money(cents=self.cents + other.cents, currency=self.currency)

    def __sub__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        if self.currency != other.currency:
            raise ValueError(
                f"Cannot subtract Money with different currencies: "
                f"{self.currency} and {other.currency}"
            )
        return Money(cents=self.cents - other.cents, currency=self.currency)


@dataclass(frozen=True)
class EntryMetadata:
    """
    Typed contents of LedgerEntry.metadata.

    Attributes:
        reverses_entry_id: Entry this pair corrects or reverses
        settlement_id: Settlement that produced the pair
        gateway_operation_id: GatewayOperation phase record behind the pair
        confirmation_id: Cancellation confirmation id
        line_item_kind: Add-on kind for addon_* entries
        cleaner_id: Cleaner for payout entries
        reason: Free-text reason for adjustments and reversals
    """

    reverses_entry_id: uuid.UUID | None = None
    settlement_id: uuid.UUID | None = None
    gateway_operation_id: uuid.UUID | None = None
    confirmation_id: str | None = None
    line_item_kind: str | None = None
    cleaner_id: uuid.UUID | None = None
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize non-empty fields to JSON-safe values."""
        result: dict[str, Any] = {}
        for key, value in dataclasses.asdict(self).items():
            if value is None:
                continue
            result[key] = str(value) if isinstance(value, uuid.UUID) else value
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> EntryMetadata:
        data = data or {}
        known = {f.name for f in dataclasses.fields(cls)}
        values: dict[str, Any] = {}
        for key, value in data.items():
            if key not in known or value is None:
                continue
            if key.endswith("_id") and key != "confirmation_id":
                value = uuid.UUID(str(value))
            values[key] = value
        return cls(**values)


@dataclass(frozen=True)
class LegAccount:
    """Account and party for one leg when no posting rule applies."""

    account_type: AccountType
    party_type: PartyType


@dataclass
class RecordPairParams:
    """
    Parameters for posting one balanced debit/credit pair.

    Required Attributes:
        appointment_id: Appointment the money movement belongs to
        entry_type: Member of EntryType; selects the posting rule
        amount_cents: Amount in cents (positive)
        idempotency_key: Pair key; legs use "<key>:debit" and "<key>:credit"

    Optional Attributes:
        party_user_id: Homeowner or cleaner the pair concerns
        gateway_object_type / gateway_object_id: Gateway correlation
        effective_date: When the economic event happened (defaults to now)
        currency: ISO 4217 code
        appeal_id: Appeal that caused the pair
        description: Human-readable description
        metadata: Typed metadata
        created_by: Service or user that posted the pair
        debit_account / credit_account: Required for manual_adjustment only
    """

    appointment_id: uuid.UUID
    entry_type: EntryType | str
    amount_cents: int
    idempotency_key: str
    party_user_id: uuid.UUID | None = None
    gateway_object_type: GatewayObjectType | str | None = None
    gateway_object_id: str | None = None
    effective_date: datetime | None = None
    currency: str = "usd"
    appeal_id: uuid.UUID | None = None
    description: str = ""
    metadata: EntryMetadata = field(default_factory=EntryMetadata)
    created_by: str = ""
    debit_account: LegAccount | None = None
    credit_account: LegAccount | None = None


@dataclass(frozen=True)
class LedgerPair:
    """Both legs of a posted pair. created is False for an idempotent replay."""

    debit: LedgerEntry
    credit: LedgerEntry
    created: bool = True

    @property
    def entry_ids(self) -> list[uuid.UUID]:
        return [self.debit.id, self.credit.id]


@dataclass(frozen=True)
class LedgerBalance:
    appointment_id: uuid.UUID
    debit_total_cents: int
    credit_total_cents: int
    entry_count: int

    @property
    def is_balanced(self) -> bool:
        return self.debit_total_cents == self.credit_total_cents

    @property
    def difference_cents(self) -> int:
        return self.debit_total_cents - self.credit_total_cents
