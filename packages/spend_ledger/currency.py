"""Conversion of transaction amounts into the reporting currency.

One :class:`CurrencyConverter` lives for one processing run. It fetches each
distinct foreign currency at most once (through :class:`RetryPolicy`), keeps
an :class:`ExchangeRateSnapshot` per currency for the audit trail, and
remembers failures so a currency that could not be fetched fails fast for the
rest of the run without hiding other currencies.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from .errors import ConversionError, RateNotFoundError, RetryExhaustedError
from .exchange_rates import ExchangeRatePort
from .logging_setup import LoggerLike, get_logger
from .models import ExchangeRateSnapshot, Transaction
from .retry import RetryPolicy, is_transient_error

_CENT = Decimal("0.01")

_logger = get_logger("spend_ledger.currency")


def to_reporting_amount(amount: Decimal, rate: Decimal) -> Decimal:
    """Return ``amount * rate`` rounded half-up to two decimal places."""

    return (amount * rate).quantize(_CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True, slots=True)
class ConversionResult:
    amount: Decimal
    # None when no conversion was needed.
    rate: Decimal | None
    snapshot: ExchangeRateSnapshot | None = None


@dataclass(slots=True)
class BatchConversion:
    results: dict[str, ConversionResult] = field(default_factory=dict)
    errors: dict[str, ConversionError] = field(default_factory=dict)


class CurrencyConverter:
    """Per-run converter with a rate cache keyed by source currency.

    Parameters
    ----------
    port:
        Exchange-rate provider.
    processing_run_id:
        Run id stamped on every snapshot.
    reporting_currency:
        Target currency; amounts already in it are passed through unchanged.
    retry_policy:
        Policy for provider calls. Only transient errors are retried by
        default.
    """

    def __init__(
        self,
        port: ExchangeRatePort,
        *,
        processing_run_id: str,
        reporting_currency: str = "GBP",
        retry_policy: RetryPolicy | None = None,
        logger: LoggerLike | None = None,
    ) -> None:
        self._port = port
        self._run_id = processing_run_id
        self._target = reporting_currency.upper()
        self._log = logger or _logger
        self._retry = retry_policy or RetryPolicy(is_retryable=is_transient_error, logger=self._log)
        self._cache: dict[str, ExchangeRateSnapshot] = {}
        self._failed: dict[str, str] = {}

    @property
    def reporting_currency(self) -> str:
        return self._target

    # ---- single conversion ---------------------------------------------------

    def convert(self, tx: Transaction) -> ConversionResult:
        """Convert one transaction.

        Raises
        ------
        ConversionError
            When the rate for the transaction's currency is unavailable.
        """

        currency = tx.original_amount_currency.upper()
        if currency == self._target:
            return ConversionResult(amount=tx.original_amount_value, rate=None)
        snapshot = self._snapshot_for(currency)
        return ConversionResult(
            amount=to_reporting_amount(tx.original_amount_value, snapshot.rate),
            rate=snapshot.rate,
            snapshot=snapshot,
        )

    def apply(self, tx: Transaction) -> ConversionResult:
        """Convert ``tx`` and write the reporting amount and rate onto it."""

        result = self.convert(tx)
        tx.reporting_amount_value = result.amount
        tx.exchange_rate_value = result.rate
        return result

    def _snapshot_for(self, currency: str) -> ExchangeRateSnapshot:
        cached = self._cache.get(currency)
        if cached is not None:
            return cached
        if currency in self._failed:
            raise ConversionError(self._failed[currency], currency=currency)
        try:
            rate = self._retry.call(
                lambda: self._port.get_rate(currency, self._target),
                label=f"exchange_rate:{currency}",
            )
        except (RateNotFoundError, RetryExhaustedError) as e:
            raise self._remember_failure(currency, e) from e
        return self._store(currency, rate.rate, rate.provider, rate.fetched_at)

    # ---- batch conversion ----------------------------------------------------

    def convert_batch(self, transactions: Iterable[Transaction]) -> BatchConversion:
        """Convert many transactions with one provider call for missing rates.

        Failures are reported per transaction in ``errors``; transactions in
        currencies that were fetched successfully are unaffected.
        """

        txs = list(transactions)
        missing = sorted(
            {
                c
                for c in (t.original_amount_currency.upper() for t in txs)
                if c != self._target and c not in self._cache and c not in self._failed
            }
        )
        if missing:
            self._fetch_many(missing)

        out = BatchConversion()
        for tx in txs:
            try:
                out.results[tx.id] = self.convert(tx)
            except ConversionError as e:
                out.errors[tx.id] = e
        return out

    def _fetch_many(self, currencies: list[str]) -> None:
        self._log.info(
            "currency:batch_fetch currencies=%s target=%s", ",".join(currencies), self._target
        )
        try:
            rates = self._retry.call(
                lambda: self._port.get_rates_batch(currencies, self._target),
                label="exchange_rate:batch",
            )
        except (RateNotFoundError, RetryExhaustedError) as e:
            for c in currencies:
                self._remember_failure(c, e)
            return
        for c in currencies:
            rate = rates.get(c)
            if rate is None:
                self._remember_failure(c, RateNotFoundError(c, self._target))
            else:
                self._store(c, rate.rate, rate.provider, rate.fetched_at)

    # ---- cache bookkeeping ---------------------------------------------------

    def _store(
        self, currency: str, rate: Decimal, provider: str, fetched_at: datetime
    ) -> ExchangeRateSnapshot:
        snapshot = ExchangeRateSnapshot(
            from_currency=currency,
            to_currency=self._target,
            rate=rate,
            provider=provider,
            fetched_at=fetched_at,
            processing_run_id=self._run_id,
        )
        self._cache[currency] = snapshot
        self._log.info(
            "currency:rate_cached from=%s to=%s rate=%s provider=%s",
            currency,
            self._target,
            rate,
            provider,
        )
        return snapshot

    def _remember_failure(self, currency: str, error: Exception) -> ConversionError:
        message = f"No exchange rate for {currency} -> {self._target}: {error}"
        self._failed[currency] = message
        return ConversionError(message, currency=currency)

    def snapshots(self) -> list[ExchangeRateSnapshot]:
        """Return this run's snapshots in fetch order."""

        return list(self._cache.values())

    def failed_currencies(self) -> set[str]:
        return set(self._failed)

    def clear(self) -> None:
        self._cache.clear()
        self._failed.clear()

    def __len__(self) -> int:
        return len(self._cache)


__all__ = [
    "BatchConversion",
    "ConversionResult",
    "CurrencyConverter",
    "to_reporting_amount",
]
