from __future__ import annotations

from decimal import Decimal

import pytest

from spend_ledger.currency import CurrencyConverter, to_reporting_amount
from spend_ledger.errors import ConversionError, TransientServiceError
from spend_ledger.retry import RetryPolicy, is_transient_error

from tests.helpers.fakes import StaticRates, make_tx, no_sleep


def _converter(rates: StaticRates, **kwargs) -> CurrencyConverter:
    policy = RetryPolicy(is_retryable=is_transient_error, sleep=no_sleep)
    return CurrencyConverter(rates, processing_run_id="run-test", retry_policy=policy, **kwargs)


def test_reporting_currency_passes_through_without_lookup():
    rates = StaticRates({})
    conv = _converter(rates)
    tx = make_tx("t1", amount="12.34", currency="GBP")

    result = conv.apply(tx)

    assert result.amount == Decimal("12.34")
    assert result.rate is None
    assert tx.reporting_amount_value == Decimal("12.34")
    assert tx.exchange_rate_value is None
    assert rates.calls == []


def test_eur_amount_is_converted_at_fetched_rate():
    conv = _converter(StaticRates({"EUR": "0.86"}))
    tx = make_tx("t1", amount="50.00", currency="EUR")

    conv.apply(tx)

    assert tx.reporting_amount_value == Decimal("43.00")
    assert tx.exchange_rate_value == Decimal("0.86")


def test_rounding_is_half_up_to_cents():
    assert to_reporting_amount(Decimal("1.00"), Decimal("0.125")) == Decimal("0.13")
    assert to_reporting_amount(Decimal("2.50"), Decimal("0.333333")) == Decimal("0.83")


def test_one_lookup_per_currency_per_run():
    rates = StaticRates({"EUR": "0.86", "USD": "0.79"})
    conv = _converter(rates)
    for i, cur in enumerate(["EUR", "EUR", "USD", "EUR", "USD"]):
        conv.apply(make_tx(f"t{i}", currency=cur))

    assert [c[1] for c in rates.calls] == [("EUR",), ("USD",)]
    assert len(conv) == 2
    snapshots = conv.snapshots()
    assert [s.from_currency for s in snapshots] == ["EUR", "USD"]
    assert {s.processing_run_id for s in snapshots} == {"run-test"}
    assert {s.to_currency for s in snapshots} == {"GBP"}


def test_missing_rate_fails_only_that_currency():
    rates = StaticRates({"EUR": "0.86"})
    conv = _converter(rates)

    with pytest.raises(ConversionError) as info:
        conv.apply(make_tx("bad", currency="JPY"))
    assert info.value.currency == "JPY"

    good = make_tx("good", amount="10.00", currency="EUR")
    conv.apply(good)
    assert good.reporting_amount_value == Decimal("8.60")

    with pytest.raises(ConversionError):
        conv.apply(make_tx("bad-2", currency="JPY"))
    assert [c[1] for c in rates.calls].count(("JPY",)) == 1
    assert conv.failed_currencies() == {"JPY"}


def test_transient_provider_error_is_retried():
    rates = StaticRates(
        {"USD": "0.80"}, errors=[TransientServiceError("HTTP 503", status_code=503)]
    )
    conv = _converter(rates)
    tx = make_tx("t1", amount="5.00", currency="USD")

    conv.apply(tx)

    assert tx.reporting_amount_value == Decimal("4.00")
    assert len(rates.calls) == 2


def test_exhausted_retries_become_conversion_error():
    errors = [TransientServiceError("timeout") for _ in range(5)]
    conv = _converter(StaticRates({"USD": "0.80"}, errors=errors))
    with pytest.raises(ConversionError):
        conv.apply(make_tx("t1", currency="USD"))


def test_batch_conversion_fetches_missing_currencies_once():
    rates = StaticRates({"EUR": "0.86", "USD": "0.79"})
    conv = _converter(rates)
    txs = [
        make_tx("a", amount="50.00", currency="EUR"),
        make_tx("b", amount="10.00", currency="GBP"),
        make_tx("c", amount="20.00", currency="USD"),
        make_tx("d", amount="1.00", currency="SEK"),
    ]

    out = conv.convert_batch(txs)

    assert rates.calls == [("get_rates_batch", ("EUR", "SEK", "USD"), "GBP")]
    assert out.results["a"].amount == Decimal("43.00")
    assert out.results["b"].rate is None
    assert out.results["c"].amount == Decimal("15.80")
    assert set(out.errors) == {"d"}

    conv.convert_batch([make_tx("e", currency="EUR"), make_tx("f", currency="SEK")])
    assert len(rates.calls) == 1


def test_custom_reporting_currency():
    rates = StaticRates({"GBP": "1.17"})
    conv = _converter(rates, reporting_currency="eur")
    assert conv.reporting_currency == "EUR"
    tx = make_tx("t1", amount="100.00", currency="GBP")
    conv.apply(tx)
    assert tx.reporting_amount_value == Decimal("117.00")
    assert rates.calls == [("get_rate", ("GBP",), "EUR")]
