"""Category name helpers and manual override operations.

Exports
-------
- ``normalize_name(...)`` and ``validate_name(...)``: trim/collapse and
  lightweight validation of user-typed category names.
- ``resolve_category_name(...)``: case-insensitive lookup of a typed name
  among the active categories.
- ``apply_manual_override(...)``: record a user's category for one
  transaction. Unknown names are stored as a custom category without an id;
  an empty name clears the override.
- ``load_categories_from_json(...)``: read a category list for seeding.
"""

from __future__ import annotations

import json
import re
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .logging_setup import LoggerLike, get_logger
from .models import Category
from .storage import LedgerStore

_ALLOWED_RE = re.compile(r"^[\w &\-/,.'()]+$")

_logger = get_logger("spend_ledger.categories")

# ---------------------------
# Name normalization/validation
# ---------------------------


def normalize_name(name: str) -> str:
    """Return a trimmed, single-spaced representation of ``name``.

    Does not change case.
    """

    return " ".join(name.strip().split())


@dataclass(frozen=True, slots=True)
class NameValidation:
    ok: bool
    reason: str | None = None


def validate_name(name: str, *, min_len: int = 1, max_len: int = 64) -> NameValidation:
    """Check length bounds and allowed characters of a category name."""

    s = normalize_name(name)
    if len(s) < min_len:
        return NameValidation(False, "Name is required.")
    if len(s) > max_len:
        return NameValidation(False, f"Name must be at most {max_len} characters.")
    if not _ALLOWED_RE.fullmatch(s):
        return NameValidation(False, "Name contains unsupported characters.")
    return NameValidation(True)


# ---------------------------
# Resolution and overrides
# ---------------------------


def resolve_category_name(name: str, categories: Sequence[Category]) -> Category | None:
    """Return the active category whose name matches ``name`` ignoring case."""

    wanted = normalize_name(name).casefold()
    if not wanted:
        return None
    for c in categories:
        if c.is_active and normalize_name(c.name).casefold() == wanted:
            return c
    return None


@dataclass(frozen=True, slots=True)
class ManualOverrideResult:
    transaction_id: str
    category_id: str | None
    category_name: str | None
    cleared: bool = False
    warning: str | None = None


def apply_manual_override(
    store: LedgerStore,
    transaction_id: str,
    category_name: str | None,
    categories: Sequence[Category],
    *,
    logger: LoggerLike | None = None,
) -> ManualOverrideResult:
    """Persist a manual category for ``transaction_id``.

    The AI category is left untouched; reporting prefers the manual one.

    Raises
    ------
    ValueError
        When a non-empty name fails :func:`validate_name`.
    KeyError
        When the store does not know ``transaction_id``.
    """

    log = logger or _logger
    name = normalize_name(category_name or "")
    if not name:
        store.update_category(transaction_id, None, None, True)
        log.info("override:cleared tx_id=%s", transaction_id)
        return ManualOverrideResult(transaction_id, None, None, cleared=True)

    check = validate_name(name)
    if not check.ok:
        raise ValueError(f"Invalid category name {name!r}: {check.reason}")

    match = resolve_category_name(name, categories)
    if match is None:
        warning = (
            f"Custom category name {name!r} not found among active categories; "
            "stored without a category id"
        )
        store.update_category(transaction_id, None, name, True)
        log.warning("override:custom_category tx_id=%s name=%r", transaction_id, name)
        return ManualOverrideResult(transaction_id, None, name, warning=warning)

    store.update_category(transaction_id, match.id, match.name, True)
    log.info("override:applied tx_id=%s category_id=%s", transaction_id, match.id)
    return ManualOverrideResult(transaction_id, match.id, match.name)


def load_categories_from_json(path: Path) -> list[Category]:
    """Read ``[{"id", "name", "description"?, "examples"?, "is_active"?}, ...]``."""

    with path.open("r", encoding="utf-8") as f:
        data: list[dict[str, Any]] = json.load(f)
    out: list[Category] = []
    for item in data:
        cid = str(item.get("id") or "").strip()
        name = normalize_name(str(item.get("name") or ""))
        if not cid or not name:
            raise ValueError(f"category entries need 'id' and 'name': {item!r}")
        out.append(
            Category(
                id=cid,
                name=name,
                description=str(item.get("description") or ""),
                examples=tuple(str(e) for e in item.get("examples") or ()),
                is_active=bool(item.get("is_active", True)),
            )
        )
    return out


__all__ = [
    "ManualOverrideResult",
    "NameValidation",
    "apply_manual_override",
    "load_categories_from_json",
    "normalize_name",
    "resolve_category_name",
    "validate_name",
]
