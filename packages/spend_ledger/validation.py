"""Raw cell parsing and validation at the source-mapping boundary.

Every helper raises :class:`~spend_ledger.errors.ValidationError` naming the
offending field and value; normalization of a single row fails, the run does
not.
"""

from __future__ import annotations

import re
from datetime import UTC, date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Any

from .errors import ValidationError
from .models import SUPPORTED_CURRENCIES

_DATE_FORMATS: tuple[str, ...] = (
    "%Y-%m-%d",
    "%d/%m/%Y",
    "%d-%m-%Y",
    "%d.%m.%Y",
)
_DATETIME_FORMATS: tuple[str, ...] = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M",
)
_TIME_FORMATS: tuple[str, ...] = ("%H:%M:%S", "%H:%M")
_AMOUNT_STRIP_RE = re.compile(r"[,\s£$€]")
# Leading characters a spreadsheet would evaluate as a formula.
_FORMULA_PREFIXES = ("=", "+", "-", "@")


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def is_blank_row(row: dict[str, Any]) -> bool:
    return all(_text(v) == "" for v in row.values())


def require_text(value: Any, field: str) -> str:
    s = _text(value)
    if not s:
        raise ValidationError(f"{field} is required", field=field, value=value)
    return s


def optional_text(value: Any) -> str | None:
    s = _text(value)
    return s or None


def parse_datetime(value: Any, field: str = "date") -> datetime:
    """Parse ISO 8601, ``DD/MM/YYYY`` or ``DD-MM-YYYY`` (optionally with a time)."""

    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time())
    s = _text(value)
    if not s:
        raise ValidationError(f"{field} is required", field=field, value=value)
    try:
        parsed = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        pass
    else:
        # Transaction dates are stored naive (UTC) so they compare across sources.
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(UTC).replace(tzinfo=None)
        return parsed
    for fmt in (*_DATETIME_FORMATS, *_DATE_FORMATS):
        try:
            return datetime.strptime(s, fmt)
        except ValueError:
            continue
    raise ValidationError(f"invalid {field}: {s!r}", field=field, value=value)


def parse_time(value: Any, field: str = "time") -> time | None:
    s = _text(value)
    if not s:
        return None
    for fmt in _TIME_FORMATS:
        try:
            return datetime.strptime(s, fmt).time()
        except ValueError:
            continue
    raise ValidationError(f"invalid {field}: {s!r}", field=field, value=value)


def parse_amount(value: Any, field: str = "amount") -> Decimal:
    """Parse a signed amount, stripping currency symbols and thousands separators.

    Parentheses denote a negative amount, e.g. ``(12.50)``.
    """

    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return Decimal(str(value))
    s = _text(value)
    if not s:
        raise ValidationError(f"{field} is required", field=field, value=value)
    negative = False
    if s.startswith("(") and s.endswith(")"):
        negative = True
        s = s[1:-1]
    s = _AMOUNT_STRIP_RE.sub("", s)
    try:
        d = Decimal(s)
    except InvalidOperation as exc:
        raise ValidationError(f"invalid {field}: {value!r}", field=field, value=value) from exc
    if not d.is_finite():
        raise ValidationError(f"invalid {field}: {value!r}", field=field, value=value)
    return -abs(d) if negative else d


def parse_currency(value: Any, field: str = "currency", default: str | None = None) -> str:
    s = _text(value).upper()
    if not s:
        if default is None:
            raise ValidationError(f"{field} is required", field=field, value=value)
        return default
    if s not in SUPPORTED_CURRENCIES:
        raise ValidationError(f"unsupported currency: {s!r}", field=field, value=value)
    return s


def sanitize_text(value: str) -> str:
    """Neutralize spreadsheet formula prefixes in free text."""

    if value.startswith(_FORMULA_PREFIXES) and not _looks_numeric(value):
        return "'" + value
    return value


def _looks_numeric(value: str) -> bool:
    try:
        Decimal(value)
    except InvalidOperation:
        return False
    return True


__all__ = [
    "is_blank_row",
    "optional_text",
    "parse_amount",
    "parse_currency",
    "parse_datetime",
    "parse_time",
    "require_text",
    "sanitize_text",
]
