from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    CHAR,
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# BIGINT ids on Postgres; SQLite only autoincrements INTEGER PRIMARY KEY.
_BigId = BigInteger().with_variant(Integer, "sqlite")


def _now() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    pass


# ---------------------------
# Reference: ledger_categories
# ---------------------------


class LedgerCategory(Base):
    __tablename__ = "ledger_categories"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    # Example merchant strings shown to the classifier.
    examples: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now, onupdate=_now
    )


# ---------------------------
# Staging: ledger_source_rows
# ---------------------------


class LedgerSourceRow(Base):
    """A raw bank-export row staged for normalization, kept verbatim."""

    __tablename__ = "ledger_source_rows"

    id: Mapped[int] = mapped_column(_BigId, primary_key=True, autoincrement=True)
    source_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    raw_record: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    imported_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )


# ---------------------------
# Core: ledger_transactions
# ---------------------------


class LedgerTransaction(Base):
    __tablename__ = "ledger_transactions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    original_transaction_id: Mapped[str] = mapped_column(String, nullable=False)
    bank_source_id: Mapped[str] = mapped_column(String, nullable=False)
    transaction_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(6), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    country: Mapped[str | None] = mapped_column(String, nullable=True)
    original_amount_value: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    original_amount_currency: Mapped[str] = mapped_column(CHAR(3), nullable=False)
    reporting_amount_value: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    exchange_rate_value: Mapped[Decimal | None] = mapped_column(Numeric(18, 6), nullable=True)
    category_ai_id: Mapped[str | None] = mapped_column(String, nullable=True)
    category_ai_name: Mapped[str | None] = mapped_column(String, nullable=True)
    category_confidence_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # Manual override always wins over the AI fields for reporting.
    category_manual_id: Mapped[str | None] = mapped_column(String, nullable=True)
    category_manual_name: Mapped[str | None] = mapped_column(String, nullable=True)
    processing_status: Mapped[str] = mapped_column(String(16), nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )
    modified_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )
    normalised_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    categorised_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "processing_status IN ('UNPROCESSED','NORMALISED','CATEGORISED','ERROR')",
            name="ck_ledger_tx_status",
        ),
        CheckConstraint(
            "category_confidence_score IS NULL OR "
            "(category_confidence_score >= 0 AND category_confidence_score <= 100)",
            name="ck_ledger_tx_confidence_range",
        ),
        Index("ix_ledger_tx_original_id", "original_transaction_id"),
        Index("ix_ledger_tx_status", "processing_status"),
    )


# ---------------------------
# Audit: ledger_rate_snapshots
# ---------------------------


class LedgerRateSnapshot(Base):
    __tablename__ = "ledger_rate_snapshots"

    id: Mapped[int] = mapped_column(_BigId, primary_key=True, autoincrement=True)
    processing_run_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    from_currency: Mapped[str] = mapped_column(CHAR(3), nullable=False)
    to_currency: Mapped[str] = mapped_column(CHAR(3), nullable=False)
    rate: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    provider: Mapped[str] = mapped_column(String, nullable=False)
    fetched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
