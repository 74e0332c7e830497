"""Data models for ``spend_ledger``.

The canonical :class:`Transaction` is a mutable record owned by the
orchestrators while a run is in progress. Snapshots and patterns are
immutable values; per-source results are filled in while a source is read.
Amounts are ``Decimal`` with two decimal places; sign lives in
``transaction_type`` so ``original_amount_value`` is always non-negative.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import StrEnum

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class ProcessingStatus(StrEnum):
    UNPROCESSED = "UNPROCESSED"
    NORMALISED = "NORMALISED"
    CATEGORISED = "CATEGORISED"
    ERROR = "ERROR"


class TransactionType(StrEnum):
    DEBIT = "DEBIT"
    CREDIT = "CREDIT"


# Currencies accepted at the source-mapping boundary.
SUPPORTED_CURRENCIES: frozenset[str] = frozenset(
    {
        "GBP",
        "USD",
        "EUR",
        "CAD",
        "AUD",
        "JPY",
        "MAD",
        "THB",
        "SGD",
        "HKD",
        "ZAR",
        "NOK",
        "CNY",
        "SEK",
    }
)


def utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Core records
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class Transaction:
    """A normalized bank transaction.

    ``original_transaction_id`` is the identity used for deduplication: the
    bank-native id when the source has one, otherwise a deterministic hash of
    stable fields (never the amount). ``id`` is the internal id assigned at
    normalization time.
    """

    id: str
    original_transaction_id: str
    bank_source_id: str
    transaction_date: datetime
    transaction_type: TransactionType
    description: str
    original_amount_value: Decimal
    original_amount_currency: str
    notes: str | None = None
    country: str | None = None
    reporting_amount_value: Decimal | None = None
    # None when the original currency already is the reporting currency.
    exchange_rate_value: Decimal | None = None
    category_ai_id: str | None = None
    category_ai_name: str | None = None
    category_confidence_score: int | None = None
    category_manual_id: str | None = None
    category_manual_name: str | None = None
    processing_status: ProcessingStatus = ProcessingStatus.UNPROCESSED
    error_message: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    modified_at: datetime = field(default_factory=utcnow)
    normalised_at: datetime | None = None
    categorised_at: datetime | None = None

    @property
    def has_manual_override(self) -> bool:
        return self.category_manual_id is not None or bool(self.category_manual_name)

    @property
    def is_categorized(self) -> bool:
        return self.has_manual_override or self.category_ai_id is not None

    def effective_category(self) -> tuple[str | None, str | None]:
        """Return ``(category_id, category_name)``; a manual override always wins."""

        if self.has_manual_override:
            return self.category_manual_id, self.category_manual_name
        return self.category_ai_id, self.category_ai_name


@dataclass(frozen=True, slots=True)
class Category:
    id: str
    name: str
    description: str = ""
    examples: tuple[str, ...] = ()
    is_active: bool = True


@dataclass(frozen=True, slots=True)
class HistoricalPattern:
    """Read-only projection of a categorized transaction used for matching."""

    transaction_id: str
    description: str
    category_id: str
    category_name: str
    was_manual_override: bool
    confidence_score: int
    amount: Decimal
    transaction_date: datetime

    @classmethod
    def from_transaction(cls, tx: Transaction) -> HistoricalPattern:
        category_id, category_name = tx.effective_category()
        amount = tx.reporting_amount_value
        if amount is None:
            amount = tx.original_amount_value
        return cls(
            transaction_id=tx.id,
            description=tx.description,
            category_id=category_id or "",
            category_name=category_name or "",
            was_manual_override=tx.has_manual_override,
            confidence_score=tx.category_confidence_score or 0,
            amount=abs(amount),
            transaction_date=tx.transaction_date,
        )

    @property
    def category_key(self) -> str:
        """The category id, or the folded name of a custom category stored without one."""

        return self.category_id or self.category_name.casefold()


@dataclass(frozen=True, slots=True)
class ExchangeRateSnapshot:
    """Audit record of the single rate used for one currency in one run."""

    from_currency: str
    to_currency: str
    rate: Decimal
    provider: str
    fetched_at: datetime
    processing_run_id: str


# ---------------------------------------------------------------------------
# Run results
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class SourceNormalizationResult:
    source_id: str
    total_rows: int = 0
    normalized: int = 0
    duplicates: int = 0
    errors: int = 0
    error_messages: list[str] = field(default_factory=list)

    def record_error(self, message: str) -> None:
        self.errors += 1
        self.error_messages.append(message)


@dataclass(frozen=True, slots=True)
class NormalizationResult:
    processing_run_id: str
    sources: tuple[SourceNormalizationResult, ...]
    started_at: datetime
    finished_at: datetime

    @property
    def total_rows(self) -> int:
        return sum(s.total_rows for s in self.sources)

    @property
    def total_normalized(self) -> int:
        return sum(s.normalized for s in self.sources)

    @property
    def total_duplicates(self) -> int:
        return sum(s.duplicates for s in self.sources)

    @property
    def total_errors(self) -> int:
        return sum(s.errors for s in self.sources)

    @property
    def success(self) -> bool:
        return self.total_errors == 0


@dataclass(frozen=True, slots=True)
class CategorizationResult:
    processing_run_id: str
    processed: int
    categorized: int
    failed: int
    skipped: int
    error_messages: tuple[str, ...]
    started_at: datetime
    finished_at: datetime

    @property
    def success(self) -> bool:
        return self.failed == 0


__all__ = [
    "SUPPORTED_CURRENCIES",
    "CategorizationResult",
    "Category",
    "ExchangeRateSnapshot",
    "HistoricalPattern",
    "NormalizationResult",
    "ProcessingStatus",
    "SourceNormalizationResult",
    "Transaction",
    "TransactionType",
    "utcnow",
]
