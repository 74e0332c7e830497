"""Exchange-rate provider port and an HTTP implementation.

``HttpExchangeRates`` performs a non-streaming GET against an
exchangerate-api style endpoint: ``<base_url><TARGET>`` returns
``{"rates": {"EUR": 1.16, ...}}`` quoting how much of each currency one unit
of the target buys, so the conversion rate *into* the target is
``1 / rates[FROM]``. One request serves every source currency, which is how
:meth:`HttpExchangeRates.get_rates_batch` answers a whole batch at once.
"""

from __future__ import annotations

import json
import socket
import urllib.error
import urllib.request
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol

from .errors import RateNotFoundError, TransientServiceError
from .models import utcnow

DEFAULT_RATES_URL = "https://api.exchangerate-api.com/v4/latest/"
_RATE_PLACES = Decimal("0.000001")


@dataclass(frozen=True, slots=True)
class ExchangeRate:
    rate: Decimal
    provider: str
    fetched_at: datetime


class ExchangeRatePort(Protocol):
    def get_rate(self, from_currency: str, to_currency: str) -> ExchangeRate:
        """Return the rate converting ``from_currency`` into ``to_currency``.

        Raises ``RateNotFoundError`` for unknown pairs and
        ``TransientServiceError`` for network/HTTP failures.
        """
        ...

    def get_rates_batch(
        self, from_currencies: Iterable[str], to_currency: str
    ) -> Mapping[str, ExchangeRate]:
        """Return rates for every known currency; unknown ones are omitted."""
        ...


class HttpExchangeRates:
    """``ExchangeRatePort`` backed by a public JSON rates endpoint."""

    def __init__(
        self,
        base_url: str = DEFAULT_RATES_URL,
        *,
        timeout: float = 10.0,
        provider: str = "exchangerate-api",
    ) -> None:
        self._base_url = base_url if base_url.endswith("/") else base_url + "/"
        self._timeout = timeout
        self._provider = provider

    def _fetch_table(self, to_currency: str) -> Mapping[str, Any]:
        url = self._base_url + to_currency.upper()
        req = urllib.request.Request(url, method="GET")
        req.add_header("Accept", "application/json")
        try:
            with urllib.request.urlopen(req, timeout=self._timeout) as resp:
                body = resp.read()
        except urllib.error.HTTPError as e:
            raise TransientServiceError(
                f"Exchange rate API error: {e.code} {e.reason}", status_code=e.code
            ) from e
        except (urllib.error.URLError, socket.timeout, ConnectionError) as e:
            raise TransientServiceError(f"Exchange rate API network error: {e}") from e

        try:
            decoded = json.loads(body.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise TransientServiceError("Exchange rate API returned invalid JSON") from e
        rates = decoded.get("rates") if isinstance(decoded, Mapping) else None
        if not isinstance(rates, Mapping):
            raise TransientServiceError("Exchange rate API response has no 'rates' object")
        return rates

    def _invert(self, quoted: Any) -> Decimal | None:
        try:
            value = Decimal(str(quoted))
        except (InvalidOperation, ValueError):
            return None
        if value <= 0:
            return None
        return (Decimal(1) / value).quantize(_RATE_PLACES)

    def get_rate(self, from_currency: str, to_currency: str) -> ExchangeRate:
        rates = self._fetch_table(to_currency)
        rate = self._invert(rates.get(from_currency.upper()))
        if rate is None:
            raise RateNotFoundError(from_currency, to_currency)
        return ExchangeRate(rate=rate, provider=self._provider, fetched_at=utcnow())

    def get_rates_batch(
        self, from_currencies: Iterable[str], to_currency: str
    ) -> dict[str, ExchangeRate]:
        rates = self._fetch_table(to_currency)
        fetched_at = utcnow()
        out: dict[str, ExchangeRate] = {}
        for c in from_currencies:
            rate = self._invert(rates.get(c.upper()))
            if rate is not None:
                out[c.upper()] = ExchangeRate(
                    rate=rate, provider=self._provider, fetched_at=fetched_at
                )
        return out


__all__ = [
    "DEFAULT_RATES_URL",
    "ExchangeRate",
    "ExchangeRatePort",
    "HttpExchangeRates",
]
