"""In-memory ports and transaction factories shared by the unit tests."""

from __future__ import annotations

import copy
from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from spend_ledger.errors import RateNotFoundError
from spend_ledger.exchange_rates import ExchangeRate
from spend_ledger.models import (
    Category,
    ExchangeRateSnapshot,
    HistoricalPattern,
    ProcessingStatus,
    Transaction,
    TransactionType,
)

FETCHED_AT = datetime(2025, 1, 15, 12, 0, tzinfo=UTC)


def make_tx(
    tx_id: str,
    *,
    description: str = "Coffee",
    amount: str = "10.00",
    currency: str = "GBP",
    date: datetime = datetime(2025, 1, 15),
    status: ProcessingStatus = ProcessingStatus.NORMALISED,
    original_id: str | None = None,
    source: str = "monzo",
    **fields: Any,
) -> Transaction:
    return Transaction(
        id=tx_id,
        original_transaction_id=original_id or f"orig-{tx_id}",
        bank_source_id=source,
        transaction_date=date,
        transaction_type=TransactionType.DEBIT,
        description=description,
        original_amount_value=Decimal(amount),
        original_amount_currency=currency,
        processing_status=status,
        **fields,
    )


CATEGORIES: tuple[Category, ...] = (
    Category("cat-groceries", "Groceries", "Supermarkets and food shops"),
    Category("cat-eating-out", "Eating Out", "Restaurants and cafes"),
    Category("cat-transport", "Transport", "Trains, buses and taxis"),
    Category("cat-retired", "Retired", is_active=False),
)


class StaticRates:
    """``ExchangeRatePort`` answering from a fixed table; records every call."""

    def __init__(
        self,
        rates: Mapping[str, str | Decimal],
        *,
        errors: Sequence[Exception] = (),
        provider: str = "static",
    ) -> None:
        self._rates = {k: Decimal(str(v)) for k, v in rates.items()}
        self._errors = list(errors)
        self.provider = provider
        self.calls: list[tuple[str, tuple[str, ...], str]] = []

    def _maybe_fail(self) -> None:
        if self._errors:
            raise self._errors.pop(0)

    def get_rate(self, from_currency: str, to_currency: str) -> ExchangeRate:
        self.calls.append(("get_rate", (from_currency,), to_currency))
        self._maybe_fail()
        if from_currency not in self._rates:
            raise RateNotFoundError(from_currency, to_currency)
        return ExchangeRate(self._rates[from_currency], self.provider, FETCHED_AT)

    def get_rates_batch(
        self, from_currencies: Sequence[str], to_currency: str
    ) -> dict[str, ExchangeRate]:
        self.calls.append(("get_rates_batch", tuple(from_currencies), to_currency))
        self._maybe_fail()
        return {
            c: ExchangeRate(self._rates[c], self.provider, FETCHED_AT)
            for c in from_currencies
            if c in self._rates
        }


class ScriptedClassifier:
    """``ClassifierPort`` built from a per-transaction decision function.

    ``decide`` maps a transaction to ``(category_id, confidence)`` or to
    ``None`` to omit its result. ``errors`` are raised, in order, by the first
    calls before any batch is answered.
    """

    def __init__(
        self,
        decide: Callable[[Transaction], tuple[str, float] | None],
        *,
        errors: Sequence[Exception] = (),
    ) -> None:
        self._decide = decide
        self._errors = list(errors)
        self.batches: list[list[str]] = []
        self.examples: list[list[HistoricalPattern]] = []

    def classify(
        self,
        transactions: Sequence[Transaction],
        categories: Sequence[Category],
        examples: Sequence[HistoricalPattern] = (),
    ) -> list[Mapping[str, Any]]:
        self.batches.append([tx.id for tx in transactions])
        self.examples.append(list(examples))
        if self._errors:
            raise self._errors.pop(0)
        out: list[Mapping[str, Any]] = []
        for tx in transactions:
            decision = self._decide(tx)
            if decision is None:
                continue
            cid, confidence = decision
            out.append(
                {
                    "transaction_id": tx.id,
                    "category_id": cid,
                    "category_name": "",
                    "confidence": confidence,
                    "reasoning": "scripted",
                }
            )
        return out


class InMemoryStore:
    """``LedgerStore`` over dicts; stored transactions are copied in and out."""

    def __init__(
        self,
        *,
        rows: Mapping[str, Iterable[Mapping[str, Any]]] | None = None,
        transactions: Iterable[Transaction] = (),
        categories: Iterable[Category] = (),
    ) -> None:
        self.rows = {k: [dict(r) for r in v] for k, v in (rows or {}).items()}
        self.transactions: dict[str, Transaction] = {
            tx.id: copy.copy(tx) for tx in transactions
        }
        self.categories = list(categories)
        self.snapshots: list[ExchangeRateSnapshot] = []
        self.write_calls = 0
        self.fail_reads: set[str] = set()

    def read_source_rows(self, source_id: str) -> list[dict[str, Any]]:
        if source_id in self.fail_reads:
            raise OSError(f"cannot read {source_id}")
        return [dict(r) for r in self.rows.get(source_id, [])]

    def find_by_status(self, status: ProcessingStatus) -> list[Transaction]:
        return [
            copy.copy(tx) for tx in self.transactions.values() if tx.processing_status == status
        ]

    def write_batch(self, transactions: Sequence[Transaction]) -> None:
        self.write_calls += 1
        for tx in transactions:
            self.transactions[tx.id] = copy.copy(tx)

    def update_category(
        self,
        transaction_id: str,
        category_id: str | None,
        category_name: str | None,
        is_manual: bool,
        confidence: int | None = None,
    ) -> None:
        tx = self.transactions[transaction_id]
        if is_manual:
            tx.category_manual_id = category_id
            tx.category_manual_name = category_name
        else:
            tx.category_ai_id = category_id
            tx.category_ai_name = category_name
            tx.category_confidence_score = confidence
            tx.processing_status = ProcessingStatus.CATEGORISED
            tx.error_message = None

    def read_categories(self) -> list[Category]:
        return list(self.categories)

    def save_rate_snapshots(self, snapshots: Sequence[ExchangeRateSnapshot]) -> None:
        self.snapshots.extend(snapshots)


def no_sleep(_seconds: float) -> None:
    return None
