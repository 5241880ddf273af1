"""
Per-appointment double-entry ledger.

Every money movement is posted as a balanced debit/credit pair through
LedgerService. Entries are immutable; corrections are new pairs.
"""
