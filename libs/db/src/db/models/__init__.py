"""Shared SQLAlchemy models registry for the workspace database.

Currently includes the ledger models used by ``spend_ledger``.
"""

from .ledger import (
    Base,
    LedgerCategory,
    LedgerRateSnapshot,
    LedgerSourceRow,
    LedgerTransaction,
)

__all__ = [
    "Base",
    "LedgerCategory",
    "LedgerRateSnapshot",
    "LedgerSourceRow",
    "LedgerTransaction",
]
