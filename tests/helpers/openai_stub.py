"""Fake OpenAI client for classifier tests.

``OpenAIStub`` answers ``client.responses.create(**kwargs)`` by reading the
transactions embedded in the user content and asking a ``decide`` callable for
``(category_id, confidence, reasoning)`` per item. Every call's kwargs are
recorded so tests can assert on the model, schema and prompt.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from types import SimpleNamespace
from typing import Any

BEGIN = "BEGIN_TRANSACTIONS_JSON\n"
END = "\nEND_TRANSACTIONS_JSON"

Decide = Callable[[dict[str, Any]], tuple[str, float, str]]


def extract_transactions_from_user_content(user_content: str) -> list[dict[str, Any]]:
    start = user_content.find(BEGIN)
    stop = user_content.rfind(END)
    if start == -1 or stop <= start:
        raise AssertionError("user content has no BEGIN/END_TRANSACTIONS_JSON block")
    return json.loads(user_content[start + len(BEGIN) : stop])


class _FakeResponses:
    def __init__(self, decide: Decide, calls: list[dict[str, Any]]) -> None:
        self._decide = decide
        self._calls = calls

    def create(self, **kwargs: Any) -> SimpleNamespace:
        self._calls.append(kwargs)
        results = []
        for item in extract_transactions_from_user_content(kwargs["input"]):
            category_id, confidence, reasoning = self._decide(item)
            results.append(
                {
                    "transaction_id": item["transaction_id"],
                    "category_id": category_id,
                    "category_name": "",
                    "confidence": float(confidence),
                    "reasoning": reasoning,
                }
            )
        return SimpleNamespace(output_text=json.dumps({"results": results}))


class OpenAIStub:
    """Stand-in for ``openai.OpenAI`` exposing only ``responses.create``."""

    def __init__(self, decide: Decide, calls_out: list[dict[str, Any]] | None = None) -> None:
        self.calls: list[dict[str, Any]] = calls_out if calls_out is not None else []
        self.responses = _FakeResponses(decide, self.calls)
