# ruff: noqa: I001
"""Persistence integration for spend_ledger.

The orchestrators depend only on the :class:`LedgerStore` protocol. The
shipped implementation, :class:`SqlLedgerStore`, writes to the shared database
owned by ``libs/db`` through the SQLAlchemy ORM models in
``db.models.ledger`` and sessions from ``db.client``.

Scope:
- Stage raw bank rows and read them back in import order.
- Load and write canonical transactions (batch upsert by internal id).
- Update AI or manual category fields of one transaction.
- Read the category list and persist exchange-rate snapshots for audit.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any, Protocol

from sqlalchemy import func, select

from db.client import session_scope
from db.models.ledger import (
    LedgerCategory,
    LedgerRateSnapshot,
    LedgerSourceRow,
    LedgerTransaction,
)
from .models import (
    Category,
    ExchangeRateSnapshot,
    ProcessingStatus,
    Transaction,
    TransactionType,
    utcnow,
)


class LedgerStore(Protocol):
    def read_source_rows(self, source_id: str) -> list[dict[str, Any]]: ...

    def find_by_status(self, status: ProcessingStatus) -> list[Transaction]: ...

    def write_batch(self, transactions: Sequence[Transaction]) -> None: ...

    def update_category(
        self,
        transaction_id: str,
        category_id: str | None,
        category_name: str | None,
        is_manual: bool,
        confidence: int | None = None,
    ) -> None: ...

    def read_categories(self) -> list[Category]: ...

    def save_rate_snapshots(self, snapshots: Sequence[ExchangeRateSnapshot]) -> None: ...


# ---------------------------------------------------------------------------
# Row <-> model mapping
# ---------------------------------------------------------------------------

_TX_FIELDS: tuple[str, ...] = (
    "id",
    "original_transaction_id",
    "bank_source_id",
    "transaction_date",
    "description",
    "notes",
    "country",
    "original_amount_value",
    "original_amount_currency",
    "reporting_amount_value",
    "exchange_rate_value",
    "category_ai_id",
    "category_ai_name",
    "category_confidence_score",
    "category_manual_id",
    "category_manual_name",
    "error_message",
    "created_at",
    "modified_at",
    "normalised_at",
    "categorised_at",
)


def _to_row(tx: Transaction) -> LedgerTransaction:
    row = LedgerTransaction(**{name: getattr(tx, name) for name in _TX_FIELDS})
    row.transaction_type = str(tx.transaction_type)
    row.processing_status = str(tx.processing_status)
    return row


def _from_row(row: LedgerTransaction) -> Transaction:
    values = {name: getattr(row, name) for name in _TX_FIELDS}
    return Transaction(
        **values,
        transaction_type=TransactionType(row.transaction_type),
        processing_status=ProcessingStatus(row.processing_status),
    )


def _category_from_row(row: LedgerCategory) -> Category:
    return Category(
        id=row.id,
        name=row.name,
        description=row.description or "",
        examples=tuple(row.examples or ()),
        is_active=bool(row.is_active),
    )


# ---------------------------------------------------------------------------
# SQL implementation
# ---------------------------------------------------------------------------


class SqlLedgerStore:
    """``LedgerStore`` on SQLAlchemy; one short transaction per call."""

    def __init__(self, database_url: str) -> None:
        self.database_url = database_url

    # ---- staging ---------------------------------------------------------------

    def append_source_rows(self, source_id: str, rows: Iterable[Mapping[str, Any]]) -> int:
        """Stage raw rows for ``source_id``; returns the number appended."""

        count = 0
        with session_scope(database_url=self.database_url) as session:
            for r in rows:
                session.add(LedgerSourceRow(source_id=source_id, raw_record=dict(r)))
                count += 1
        return count

    def read_source_rows(self, source_id: str) -> list[dict[str, Any]]:
        with session_scope(database_url=self.database_url) as session:
            stmt = (
                select(LedgerSourceRow.raw_record)
                .where(LedgerSourceRow.source_id == source_id)
                .order_by(LedgerSourceRow.id)
            )
            return [dict(r) for r in session.execute(stmt).scalars()]

    # ---- transactions --------------------------------------------------------

    def find_by_status(self, status: ProcessingStatus) -> list[Transaction]:
        with session_scope(database_url=self.database_url) as session:
            stmt = (
                select(LedgerTransaction)
                .where(LedgerTransaction.processing_status == str(status))
                .order_by(LedgerTransaction.created_at, LedgerTransaction.id)
            )
            return [_from_row(r) for r in session.execute(stmt).scalars()]

    def get_transaction(self, transaction_id: str) -> Transaction | None:
        with session_scope(database_url=self.database_url) as session:
            row = session.get(LedgerTransaction, transaction_id)
            return _from_row(row) if row is not None else None

    def count_transactions(self) -> int:
        with session_scope(database_url=self.database_url) as session:
            return session.execute(
                select(func.count()).select_from(LedgerTransaction)
            ).scalar_one()

    def write_batch(self, transactions: Sequence[Transaction]) -> None:
        """Insert or replace ``transactions`` by internal id in one commit."""

        if not transactions:
            return
        with session_scope(database_url=self.database_url) as session:
            for tx in transactions:
                session.merge(_to_row(tx))

    def update_category(
        self,
        transaction_id: str,
        category_id: str | None,
        category_name: str | None,
        is_manual: bool,
        confidence: int | None = None,
    ) -> None:
        """Write AI or manual category fields.

        AI updates also advance the row to CATEGORISED. Manual updates only
        touch the manual fields; passing ``None`` for both clears the override.
        """

        now = utcnow()
        with session_scope(database_url=self.database_url) as session:
            row = session.get(LedgerTransaction, transaction_id)
            if row is None:
                raise KeyError(f"unknown transaction id: {transaction_id!r}")
            if is_manual:
                row.category_manual_id = category_id
                row.category_manual_name = category_name
            else:
                row.category_ai_id = category_id
                row.category_ai_name = category_name
                row.category_confidence_score = confidence
                row.processing_status = str(ProcessingStatus.CATEGORISED)
                row.categorised_at = now
                row.error_message = None
            row.modified_at = now

    # ---- reference data ------------------------------------------------------

    def read_categories(self) -> list[Category]:
        with session_scope(database_url=self.database_url) as session:
            stmt = select(LedgerCategory).order_by(LedgerCategory.name)
            return [_category_from_row(r) for r in session.execute(stmt).scalars()]

    def upsert_categories(self, categories: Iterable[Category]) -> int:
        count = 0
        with session_scope(database_url=self.database_url) as session:
            for c in categories:
                session.merge(
                    LedgerCategory(
                        id=c.id,
                        name=c.name,
                        description=c.description,
                        examples=list(c.examples),
                        is_active=c.is_active,
                    )
                )
                count += 1
        return count

    # ---- audit ---------------------------------------------------------------

    def save_rate_snapshots(self, snapshots: Sequence[ExchangeRateSnapshot]) -> None:
        if not snapshots:
            return
        with session_scope(database_url=self.database_url) as session:
            for s in snapshots:
                session.add(
                    LedgerRateSnapshot(
                        processing_run_id=s.processing_run_id,
                        from_currency=s.from_currency,
                        to_currency=s.to_currency,
                        rate=s.rate,
                        provider=s.provider,
                        fetched_at=s.fetched_at,
                    )
                )

    def rate_snapshots(self, processing_run_id: str) -> list[ExchangeRateSnapshot]:
        with session_scope(database_url=self.database_url) as session:
            stmt = (
                select(LedgerRateSnapshot)
                .where(LedgerRateSnapshot.processing_run_id == processing_run_id)
                .order_by(LedgerRateSnapshot.id)
            )
            return [
                ExchangeRateSnapshot(
                    from_currency=r.from_currency,
                    to_currency=r.to_currency,
                    rate=r.rate,
                    provider=r.provider,
                    fetched_at=r.fetched_at,
                    processing_run_id=r.processing_run_id,
                )
                for r in session.execute(stmt).scalars()
            ]


__all__ = [
    "LedgerStore",
    "SqlLedgerStore",
]
