"""
Posting rules: which accounts each entry type debits and credits.

POSTING_RULES has exactly one entry per EntryType. MANUAL_ADJUSTMENT maps
to None because adjustments must name both accounts explicitly.

Usage:
    from settlements.ledger.posting_rules import rule_for

    rule = rule_for(EntryType.CANCELLATION_REFUND)
    rule.debit.account_type   # refunds_payable
    rule.credit.account_type  # accounts_receivable
"""

from __future__ import annotations

from dataclasses import dataclass

from django.core.exceptions import ImproperlyConfigured

from .exceptions import MissingPostingRule
from .models import AccountType, EntryType, PartyType, TaxCategory
from .types import LegAccount


@dataclass(frozen=True)
class PostingRule:
    """
    Accounts and tax classification for one entry type.

    Attributes:
        debit / credit: Account and party for each leg
        tax_category: Classification on tax reports
        tax_reportable: Whether the entry appears on tax reports
        form_1099_eligible: Whether cleaner legs count toward 1099 totals
    """

    debit: LegAccount
    credit: LegAccount
    tax_category: TaxCategory
    tax_reportable: bool = True
    form_1099_eligible: bool = False


_AR_HOMEOWNER = LegAccount(AccountType.ACCOUNTS_RECEIVABLE, PartyType.HOMEOWNER)
_AR_GATEWAY = LegAccount(AccountType.ACCOUNTS_RECEIVABLE, PartyType.GATEWAY)
_REVENUE = LegAccount(AccountType.REVENUE, PartyType.PLATFORM)
_PLATFORM_REVENUE = LegAccount(AccountType.PLATFORM_REVENUE, PartyType.PLATFORM)
_REFUNDS_HOMEOWNER = LegAccount(AccountType.REFUNDS_PAYABLE, PartyType.HOMEOWNER)
_PAYOUTS_CLEANER = LegAccount(AccountType.PAYOUTS_PAYABLE, PartyType.CLEANER)

_BOOKING = PostingRule(_AR_HOMEOWNER, _REVENUE, TaxCategory.INCOME)
_REFUND = PostingRule(_REFUNDS_HOMEOWNER, _AR_GATEWAY, TaxCategory.REFUND)
_PAYOUT = PostingRule(
    _PAYOUTS_CLEANER,
    _AR_GATEWAY,
    TaxCategory.PAYOUT,
    form_1099_eligible=True,
)
_PLATFORM_FEE = PostingRule(_REVENUE, _PLATFORM_REVENUE, TaxCategory.INCOME)


POSTING_RULES: dict[EntryType, PostingRule | None] = {
    EntryType.BOOKING_REVENUE: _BOOKING,
    EntryType.ADDON_LINENS: _BOOKING,
    EntryType.ADDON_TIME_WINDOW: _BOOKING,
    EntryType.ADDON_HIGH_VOLUME: _BOOKING,
    EntryType.ADDON_LAST_MINUTE: _BOOKING,
    EntryType.CANCELLATION_FEE_REVENUE: PostingRule(
        _AR_HOMEOWNER, _PLATFORM_REVENUE, TaxCategory.INCOME
    ),
    EntryType.CANCELLATION_REFUND: _REFUND,
    EntryType.CANCELLATION_PARTIAL_REFUND: _REFUND,
    EntryType.CLEANER_PAYOUT_JOB: _PAYOUT,
    EntryType.CLEANER_PAYOUT_CANCELLATION: _PAYOUT,
    EntryType.CLEANER_BONUS: _PAYOUT,
    EntryType.PLATFORM_FEE_STANDARD: _PLATFORM_FEE,
    EntryType.PLATFORM_FEE_BUSINESS_OWNER: _PLATFORM_FEE,
    EntryType.APPEAL_REFUND: _REFUND,
    EntryType.APPEAL_FEE_REVERSAL: PostingRule(
        LegAccount(AccountType.PLATFORM_REVENUE, PartyType.HOMEOWNER),
        _AR_GATEWAY,
        TaxCategory.REFUND,
    ),
    EntryType.MANUAL_ADJUSTMENT: None,
    EntryType.STRIPE_FEE: PostingRule(
        LegAccount(AccountType.STRIPE_FEES, PartyType.GATEWAY),
        _AR_GATEWAY,
        TaxCategory.EXPENSE,
    ),
    EntryType.DISPUTE_CHARGEBACK: _REFUND,
    EntryType.DISPUTE_REVERSAL: PostingRule(
        _AR_GATEWAY, _REFUNDS_HOMEOWNER, TaxCategory.REFUND
    ),
}

_missing = set(EntryType) - set(POSTING_RULES)
if _missing:
    raise ImproperlyConfigured(
        f"Entry types without posting rules: {sorted(_missing)}"
    )

ADDON_ENTRY_TYPES: dict[str, EntryType] = {
    "linens": EntryType.ADDON_LINENS,
    "time_window": EntryType.ADDON_TIME_WINDOW,
    "high_volume": EntryType.ADDON_HIGH_VOLUME,
    "last_minute": EntryType.ADDON_LAST_MINUTE,
}


def rule_for(
    entry_type: EntryType | str,
    debit_account: LegAccount | None = None,
    credit_account: LegAccount | None = None,
) -> PostingRule:
    """
    Resolve the posting rule for an entry type.

    Explicit accounts override the fixed rule and are required for
    MANUAL_ADJUSTMENT.

    Raises:
        MissingPostingRule: If the type has no rule and accounts are missing
    """
    rule = POSTING_RULES[EntryType(entry_type)]
    if debit_account is not None and credit_account is not None:
        return PostingRule(
            debit=debit_account,
            credit=credit_account,
            tax_category=rule.tax_category if rule else TaxCategory.OTHER,
            tax_reportable=rule.tax_reportable if rule else False,
            form_1099_eligible=rule.form_1099_eligible if rule else False,
        )
    if rule is None:
        raise MissingPostingRule(
            f"{entry_type} requires explicit debit and credit accounts",
            details={"entry_type": str(entry_type)},
        )
    return rule
