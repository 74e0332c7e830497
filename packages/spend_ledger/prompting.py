"""Prompt construction and transaction serialization for categorization.

This module builds:
- A deterministic JSON serialization of the transactions in a batch with a
  fixed field order.
- The system instructions and the user content (category list, historical
  examples, delimited transactions).
- The strict JSON Schema text format for the OpenAI Responses API.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

from openai.types.responses.response_format_text_json_schema_config_param import (
    ResponseFormatTextJSONSchemaConfigParam,
)

from .models import Category, HistoricalPattern, Transaction

TX_FIELD_ORDER: tuple[str, ...] = (
    "transaction_id",
    "date",
    "description",
    "amount",
    "currency",
    "type",
    "notes",
)

BEGIN = "BEGIN_TRANSACTIONS_JSON\n"
END = "\nEND_TRANSACTIONS_JSON"

_MAX_EXAMPLES_PER_CATEGORY: int = 3


def _tx_view(tx: Transaction) -> dict[str, Any]:
    amount = tx.reporting_amount_value
    if amount is None:
        amount = tx.original_amount_value
    return {
        "transaction_id": tx.id,
        "date": tx.transaction_date.date().isoformat(),
        "description": tx.description,
        "amount": f"{amount:.2f}",
        "currency": tx.original_amount_currency,
        "type": str(tx.transaction_type),
        "notes": tx.notes,
    }


def serialize_transactions_to_json(transactions: Sequence[Transaction]) -> str:
    """Serialize transactions to a JSON array with a fixed field order."""

    arr: list[dict[str, Any]] = []
    for tx in transactions:
        view = _tx_view(tx)
        arr.append({key: view[key] for key in TX_FIELD_ORDER})
    return json.dumps(arr, ensure_ascii=False)


def build_system_instructions() -> str:
    return (
        "You are a financial transaction categorization assistant. Assign exactly one "
        "category from the provided list to every transaction, using the category id "
        "verbatim. Never invent categories. Give a confidence from 0 to 100 and a short "
        "reason. Historical examples marked (manual) were corrected by the user and are "
        "the most reliable signal. Output JSON only that conforms to the specified schema."
    )


def build_user_content(
    transactions: Sequence[Transaction],
    categories: Sequence[Category],
    examples: Sequence[HistoricalPattern] = (),
) -> str:
    """Build user content with categories, examples and delimited transactions.

    - Categories are listed as ``- name (ID: id): description``, with up to
      three example strings each.
    - Historical examples are listed as ``"description" -> name`` and flagged
      ``(manual)`` when they came from a user override.
    - Transactions are embedded between ``BEGIN_TRANSACTIONS_JSON`` and
      ``END_TRANSACTIONS_JSON`` markers.
    """

    lines: list[str] = ["Categories:"]
    for c in categories:
        line = f"- {c.name} (ID: {c.id})"
        if c.description:
            line += f": {c.description}"
        if c.examples:
            line += ". Examples: " + ", ".join(c.examples[:_MAX_EXAMPLES_PER_CATEGORY])
        lines.append(line)

    if examples:
        lines.append("")
        lines.append("Previously categorized similar transactions:")
        for ex in examples:
            flag = " (manual)" if ex.was_manual_override else ""
            lines.append(f'- "{ex.description}" -> {ex.category_name} (ID: {ex.category_id}){flag}')

    lines.append("")
    lines.append(
        "Return one result per transaction with fields transaction_id, category_id, "
        "category_name, confidence and reasoning."
    )
    lines.append("")
    return "\n".join(lines) + "\n" + BEGIN + serialize_transactions_to_json(transactions) + END


def build_response_format() -> ResponseFormatTextJSONSchemaConfigParam:
    """Return the strict JSON Schema text format for the Responses API."""

    item_schema: dict[str, Any] = {
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "transaction_id": {"type": "string"},
            "category_id": {"type": "string"},
            "category_name": {"type": "string"},
            "confidence": {"type": "number"},
            "reasoning": {"type": "string"},
        },
        "required": ["transaction_id", "category_id", "category_name", "confidence", "reasoning"],
    }
    return {
        "type": "json_schema",
        "name": "transaction_categorization",
        "strict": True,
        "schema": {
            "type": "object",
            "additionalProperties": False,
            "properties": {"results": {"type": "array", "items": item_schema}},
            "required": ["results"],
        },
    }


__all__ = [
    "BEGIN",
    "END",
    "TX_FIELD_ORDER",
    "build_response_format",
    "build_system_instructions",
    "build_user_content",
    "serialize_transactions_to_json",
]
