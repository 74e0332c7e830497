"""Raw bank rows -> canonical :class:`~spend_ledger.models.Transaction`.

Each supported bank is described by a :class:`BankSource` with an explicit
:class:`ColumnMapping`; :class:`TransactionNormalizer` dispatches a raw row to
the normalizer for its source. Supported sources:

- Monzo: native transaction ids, separate ``Date`` and ``Time`` columns,
  notes.
- Revolut: no native ids, ``Started Date`` and ``Completed Date`` (the
  completed date wins when present).
- Yonder: no native ids, GBP only, explicit ``Debit or Credit`` column,
  country.

Sources without native ids get a deterministic ``original_transaction_id``
derived from stable fields only (source, date, time of day and the first 50
characters of the description). The amount is never part of the hash so
re-imports after rounding or currency changes still deduplicate.
"""

from __future__ import annotations

import hashlib
import json
import uuid
from collections.abc import Callable, Mapping
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict

from .errors import ValidationError
from .models import Transaction, TransactionType
from .validation import (
    optional_text,
    parse_amount,
    parse_currency,
    parse_datetime,
    parse_time,
    require_text,
    sanitize_text,
)

_ID_DESCRIPTION_CHARS: int = 50
_CENT = Decimal("0.01")

# ---------------------------------------------------------------------------
# Source configuration
# ---------------------------------------------------------------------------


class ColumnMapping(BaseModel):
    """Column names of one bank export. ``None`` means the bank lacks it."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    date: str
    description: str
    amount: str
    transaction_id: str | None = None
    time: str | None = None
    completed_date: str | None = None
    currency: str | None = None
    type: str | None = None
    notes: str | None = None
    country: str | None = None


class BankSource(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    display_name: str
    columns: ColumnMapping
    has_native_transaction_id: bool
    default_currency: str | None = None
    is_active: bool = True


MONZO = BankSource(
    id="monzo",
    display_name="Monzo",
    has_native_transaction_id=True,
    columns=ColumnMapping(
        transaction_id="Transaction ID",
        date="Date",
        time="Time",
        description="Name",
        amount="Amount",
        currency="Currency",
        type="Type",
        notes="Notes and #tags",
    ),
)

REVOLUT = BankSource(
    id="revolut",
    display_name="Revolut",
    has_native_transaction_id=False,
    columns=ColumnMapping(
        date="Started Date",
        completed_date="Completed Date",
        description="Description",
        amount="Amount",
        currency="Currency",
        type="Type",
    ),
)

YONDER = BankSource(
    id="yonder",
    display_name="Yonder",
    has_native_transaction_id=False,
    default_currency="GBP",
    columns=ColumnMapping(
        date="Date/Time of transaction",
        description="Description",
        amount="Amount (GBP)",
        currency="Currency",
        type="Debit or Credit",
        country="Country",
    ),
)

BANK_SOURCES: dict[str, BankSource] = {s.id: s for s in (MONZO, REVOLUT, YONDER)}


def get_bank_source(source_id: str) -> BankSource:
    key = source_id.strip().lower()
    try:
        return BANK_SOURCES[key]
    except KeyError:
        raise ValueError(f"unknown bank source: {source_id!r}") from None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def generate_original_id(
    *, source_id: str, transaction_date: datetime, description: str
) -> str:
    """Return a stable SHA-256 id over the row's non-monetary fields."""

    payload = {
        "source": source_id.strip().lower(),
        "date": transaction_date.date().isoformat(),
        "time": transaction_date.time().replace(microsecond=0).isoformat(),
        "description": description.strip()[:_ID_DESCRIPTION_CHARS],
    }
    blob = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return hashlib.sha256(blob).hexdigest()


def _cell(row: Mapping[str, Any], column: str | None) -> Any:
    if column is None:
        return None
    return row.get(column)


def _type_from_sign(amount: Decimal) -> TransactionType:
    return TransactionType.DEBIT if amount < 0 else TransactionType.CREDIT


def _explicit_type(raw: Any, amount: Decimal) -> TransactionType:
    s = (optional_text(raw) or "").upper()
    if s == "DEBIT":
        return TransactionType.DEBIT
    if s == "CREDIT":
        return TransactionType.CREDIT
    return _type_from_sign(amount)


def _build(
    source: BankSource,
    row: Mapping[str, Any],
    *,
    transaction_date: datetime,
    id_date: datetime | None = None,
    transaction_type: TransactionType | None = None,
    notes: str | None = None,
    country: str | None = None,
) -> Transaction:
    cols = source.columns
    description = sanitize_text(require_text(_cell(row, cols.description), "description"))
    amount = parse_amount(_cell(row, cols.amount))
    currency = parse_currency(_cell(row, cols.currency), default=source.default_currency)

    if source.has_native_transaction_id:
        original_id = require_text(_cell(row, cols.transaction_id), "transaction_id")
    else:
        original_id = generate_original_id(
            source_id=source.id,
            transaction_date=id_date or transaction_date,
            description=description,
        )

    return Transaction(
        id=uuid.uuid4().hex,
        original_transaction_id=original_id,
        bank_source_id=source.id,
        transaction_date=transaction_date,
        transaction_type=transaction_type or _type_from_sign(amount),
        description=description,
        notes=notes,
        country=country,
        original_amount_value=abs(amount).quantize(_CENT, rounding=ROUND_HALF_UP),
        original_amount_currency=currency,
    )


# ---------------------------------------------------------------------------
# Per-source normalizers
# ---------------------------------------------------------------------------


def _normalize_monzo(source: BankSource, row: Mapping[str, Any]) -> Transaction:
    cols = source.columns
    day = parse_datetime(_cell(row, cols.date))
    clock = parse_time(_cell(row, cols.time))
    when = datetime.combine(day.date(), clock) if clock is not None else day
    notes = optional_text(_cell(row, cols.notes))
    return _build(
        source,
        row,
        transaction_date=when,
        notes=sanitize_text(notes) if notes else None,
    )


def _normalize_revolut(source: BankSource, row: Mapping[str, Any]) -> Transaction:
    cols = source.columns
    started = parse_datetime(_cell(row, cols.date))
    completed_raw = optional_text(_cell(row, cols.completed_date))
    when = parse_datetime(completed_raw, "completed_date") if completed_raw else started
    # Started Date is set from the first export on; Completed Date appears later.
    return _build(source, row, transaction_date=when, id_date=started)


def _normalize_yonder(source: BankSource, row: Mapping[str, Any]) -> Transaction:
    cols = source.columns
    when = parse_datetime(_cell(row, cols.date))
    amount = parse_amount(_cell(row, cols.amount))
    return _build(
        source,
        row,
        transaction_date=when,
        transaction_type=_explicit_type(_cell(row, cols.type), amount),
        country=optional_text(_cell(row, cols.country)),
    )


_NORMALIZERS: dict[str, Callable[[BankSource, Mapping[str, Any]], Transaction]] = {
    MONZO.id: _normalize_monzo,
    REVOLUT.id: _normalize_revolut,
    YONDER.id: _normalize_yonder,
}


class TransactionNormalizer:
    """Dispatch raw rows to the normalizer of their bank source.

    Usage
    -----
    tx = TransactionNormalizer().normalize(row, "monzo")  # -> Transaction (UNPROCESSED)
    """

    def __init__(self, sources: Mapping[str, BankSource] | None = None) -> None:
        self._sources = dict(sources or BANK_SOURCES)

    def source(self, source_id: str) -> BankSource:
        try:
            return self._sources[source_id]
        except KeyError:
            raise ValidationError(
                f"unknown bank source: {source_id!r}", field="source", value=source_id
            ) from None

    def normalize(self, row: Mapping[str, Any], source_id: str) -> Transaction:
        """Return an UNPROCESSED transaction for ``row``.

        Raises
        ------
        ValidationError
            When a required column is missing or malformed.
        """

        source = self.source(source_id)
        fn = _NORMALIZERS.get(source.id)
        if fn is None:
            raise ValidationError(f"no normalizer for source {source.id!r}", field="source")
        return fn(source, row)


__all__ = [
    "BANK_SOURCES",
    "MONZO",
    "REVOLUT",
    "YONDER",
    "BankSource",
    "ColumnMapping",
    "TransactionNormalizer",
    "generate_original_id",
    "get_bank_source",
]
