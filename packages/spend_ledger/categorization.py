"""Input validation and result parsing for categorization.

Classifier ports return plain mappings (one per transaction). This module
turns those into typed :class:`ClassifierDecision` values, checking each one
against the active category list. Problems with a single result raise
:class:`~spend_ledger.errors.CategorizationError` for that transaction only;
problems with the response body as a whole fail the batch.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

import pydantic
from pydantic import BaseModel, ConfigDict, ValidationInfo, field_validator

from .errors import CategorizationError
from .models import Category, ProcessingStatus, Transaction

# ---------------------------------------------------------------------------
# Input validation (pre-request)
# ---------------------------------------------------------------------------


def active_categories(categories: Sequence[Category]) -> list[Category]:
    """Return the active categories, raising when there are none."""

    active = [c for c in categories if c.is_active]
    if not active:
        raise CategorizationError("No active categories available for categorization")
    return active


def ensure_categorizable(transactions: Sequence[Transaction]) -> None:
    """Reject transactions that were never normalized.

    Raises ``CategorizationError`` on the first offending item, naming its id.
    """

    for tx in transactions:
        if tx.processing_status is ProcessingStatus.UNPROCESSED:
            raise CategorizationError(
                f"Transaction {tx.id} must be normalised before categorisation"
            )


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------


class ClassifierDecision(BaseModel):
    """Typed view of a single classifier result.

    Validators read ``ValidationInfo.context["categories"]``, a mapping of
    active category id to :class:`Category`, to reject unknown ids and to
    fill in the canonical category name.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", str_strip_whitespace=True)

    transaction_id: str
    category_id: str
    category_name: str = ""
    confidence: float
    reasoning: str | None = None

    @field_validator("category_id")
    @classmethod
    def _category_known(cls, v: str, info: ValidationInfo) -> str:
        categories = info.context.get("categories") if info.context else None
        if categories is not None and v not in categories:
            raise ValueError(f"unknown category id: {v!r}")
        return v

    @field_validator("category_name")
    @classmethod
    def _canonical_name(cls, v: str, info: ValidationInfo) -> str:
        categories = info.context.get("categories") if info.context else None
        cid = info.data.get("category_id")
        if categories is not None and cid in categories:
            return categories[cid].name
        return v

    @field_validator("confidence")
    @classmethod
    def _confidence_in_range(cls, v: float) -> float:
        if 0.0 <= float(v) <= 100.0:
            return float(v)
        raise ValueError("confidence must be in [0,100]")

    @property
    def confidence_score(self) -> int:
        return int(self.confidence + 0.5)


def extract_results(body: Any) -> list[Mapping[str, Any]]:
    """Return the ``results`` list of a classifier response body.

    Raises ``CategorizationError`` when the body is not an object with a
    ``results`` list of objects.
    """

    if not isinstance(body, Mapping):
        raise CategorizationError("Invalid response: expected a JSON object at top level")
    results = body.get("results")
    if not isinstance(results, list):
        raise CategorizationError("Invalid response: missing or non-list 'results'")
    if not all(isinstance(item, Mapping) for item in results):
        raise CategorizationError("Invalid response: each result must be an object")
    return results


def index_results(
    raw: Sequence[Mapping[str, Any]], transaction_ids: Sequence[str]
) -> tuple[dict[str, Mapping[str, Any]], set[str]]:
    """Align raw results to the requested ids.

    Returns ``(by_id, ambiguous)`` where ``ambiguous`` holds ids that received
    more than one result. Results for ids that were not requested are dropped.
    """

    wanted = set(transaction_ids)
    by_id: dict[str, Mapping[str, Any]] = {}
    ambiguous: set[str] = set()
    for item in raw:
        tid = str(item.get("transaction_id") or "").strip()
        if tid not in wanted:
            continue
        if tid in by_id:
            ambiguous.add(tid)
            continue
        by_id[tid] = item
    for tid in ambiguous:
        by_id.pop(tid, None)
    return by_id, ambiguous


def validate_decision(
    item: Mapping[str, Any], categories: Mapping[str, Category]
) -> ClassifierDecision:
    """Validate one raw result against the active categories.

    Raises
    ------
    CategorizationError
        For unknown category ids, out-of-range confidence or missing fields.
    """

    try:
        return ClassifierDecision.model_validate(item, context={"categories": categories})
    except pydantic.ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise CategorizationError(f"Invalid categorization result: {problems}") from e


__all__ = [
    "ClassifierDecision",
    "active_categories",
    "ensure_categorizable",
    "extract_results",
    "index_results",
    "validate_decision",
]
