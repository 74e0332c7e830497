"""AI classification port and its OpenAI Responses API adapter.

A classifier receives one batch of transactions, the active categories and
optional historical examples, and returns one raw result mapping per
transaction (``transaction_id``, ``category_id``, ``category_name``,
``confidence``, ``reasoning``). Per-result validation happens in
:mod:`spend_ledger.categorization`; adapters only raise for failures of the
call itself (transport, HTTP status, undecodable body).
"""

from __future__ import annotations

import json
import time
from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from openai import OpenAI
from openai.types.responses import ResponseTextConfigParam

from . import prompting
from .categorization import extract_results
from .errors import CategorizationError
from .logging_setup import LoggerLike, get_logger
from .models import Category, HistoricalPattern, Transaction

_MODEL_DEFAULT: str = "gpt-4o-mini"
_TEMPERATURE_DEFAULT: float = 0.3
_MAX_OUTPUT_TOKENS_DEFAULT: int = 2000

_logger = get_logger("spend_ledger.classifier")


class ClassifierPort(Protocol):
    def classify(
        self,
        transactions: Sequence[Transaction],
        categories: Sequence[Category],
        examples: Sequence[HistoricalPattern] = (),
    ) -> list[Mapping[str, Any]]: ...


def _extract_response_json_mapping(resp: Any) -> Mapping[str, Any]:
    """Decode the JSON mapping from an OpenAI Responses SDK result.

    Prefers ``resp.output_text`` and falls back to
    ``resp.output[0].content[0].text``. Raises ``CategorizationError`` when no
    text is found or it is not valid JSON.
    """

    text: str | None = getattr(resp, "output_text", None)
    if not text:
        output = getattr(resp, "output", None)
        if output:
            content = getattr(output[0], "content", None)
            if content:
                txt_obj = getattr(content[0], "text", None)
                if isinstance(txt_obj, str):
                    text = txt_obj
                else:
                    # Some SDK versions expose text as an object with a ``value``.
                    maybe_val = getattr(txt_obj, "value", None)
                    if isinstance(maybe_val, str):
                        text = maybe_val
    if not text or not isinstance(text, str):
        raise CategorizationError("Unexpected Responses API shape; unable to locate text output")

    try:
        decoded = json.loads(text)
    except json.JSONDecodeError as e:
        raise CategorizationError("Model output was not valid JSON per the requested schema") from e
    if not isinstance(decoded, Mapping):
        raise CategorizationError("Invalid response: expected a JSON object at top level")
    return decoded


class OpenAIClassifier:
    """``ClassifierPort`` backed by the OpenAI Responses API.

    Parameters
    ----------
    client:
        An ``openai.OpenAI`` instance. Created lazily from ``api_key`` when
        omitted.
    api_key:
        API key used when ``client`` is not supplied.
    model, temperature, max_output_tokens:
        Request parameters. ``temperature=None`` omits the parameter for models
        that reject it.
    """

    def __init__(
        self,
        *,
        client: OpenAI | None = None,
        api_key: str | None = None,
        model: str = _MODEL_DEFAULT,
        temperature: float | None = _TEMPERATURE_DEFAULT,
        max_output_tokens: int = _MAX_OUTPUT_TOKENS_DEFAULT,
        logger: LoggerLike | None = None,
    ) -> None:
        self._client = client
        self._api_key = api_key
        self.model = model
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self._log = logger or _logger

    def _get_client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(api_key=self._api_key)
        return self._client

    def classify(
        self,
        transactions: Sequence[Transaction],
        categories: Sequence[Category],
        examples: Sequence[HistoricalPattern] = (),
    ) -> list[Mapping[str, Any]]:
        text_cfg: ResponseTextConfigParam = {"format": prompting.build_response_format()}
        kwargs: dict[str, Any] = {
            "model": self.model,
            "instructions": prompting.build_system_instructions(),
            "input": prompting.build_user_content(transactions, categories, examples),
            "text": text_cfg,
            "max_output_tokens": self.max_output_tokens,
        }
        if self.temperature is not None:
            kwargs["temperature"] = self.temperature

        t0 = time.perf_counter()
        resp = self._get_client().responses.create(**kwargs)
        results = extract_results(_extract_response_json_mapping(resp))
        self._log.info(
            "classifier:batch_done model=%s num_transactions=%d num_results=%d latency_ms=%.2f",
            self.model,
            len(transactions),
            len(results),
            (time.perf_counter() - t0) * 1000.0,
        )
        return results


__all__ = [
    "ClassifierPort",
    "OpenAIClassifier",
]
