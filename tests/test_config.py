from __future__ import annotations

import pytest

from spend_ledger.config import Settings
from spend_ledger.errors import ConfigurationError
from spend_ledger.exchange_rates import DEFAULT_RATES_URL


def test_defaults_from_empty_environment():
    s = Settings.from_env({})

    assert s.database_url is None
    assert s.openai_api_key is None
    assert s.model == "gpt-4o-mini"
    assert s.reporting_currency == "GBP"
    assert s.exchange_rate_url == DEFAULT_RATES_URL
    assert s.batch_size == 10
    assert s.lookback_days == 90
    assert s.enabled_sources == ("monzo", "revolut", "yonder")


def test_values_are_read_and_coerced():
    s = Settings.from_env(
        {
            "DATABASE_URL": " sqlite:///ledger.db ",
            "OPENAI_API_KEY": "sk-test",
            "SPEND_LEDGER_REPORTING_CURRENCY": "eur",
            "SPEND_LEDGER_BATCH_SIZE": "25",
            "SPEND_LEDGER_EXCHANGE_RATE_TIMEOUT": "2.5",
            "SPEND_LEDGER_REVOLUT_ENABLED": "false",
            "SPEND_LEDGER_YONDER_ENABLED": "Off",
        }
    )

    assert s.database_url == "sqlite:///ledger.db"
    assert s.require_openai_api_key() == "sk-test"
    assert s.reporting_currency == "EUR"
    assert s.batch_size == 25
    assert s.exchange_rate_timeout == 2.5
    assert s.enabled_sources == ("monzo",)


def test_from_env_reads_process_environment(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("SPEND_LEDGER_LOOKBACK_DAYS", "30")
    assert Settings.from_env().lookback_days == 30


@pytest.mark.parametrize(
    ("var", "value"),
    [
        ("SPEND_LEDGER_BATCH_SIZE", "0"),
        ("SPEND_LEDGER_BATCH_SIZE", "ten"),
        ("SPEND_LEDGER_LOOKBACK_DAYS", "-5"),
        ("SPEND_LEDGER_EXCHANGE_RATE_TIMEOUT", "0"),
        ("SPEND_LEDGER_REPORTING_CURRENCY", "BTC"),
    ],
)
def test_malformed_values_are_configuration_errors(var: str, value: str):
    with pytest.raises(ConfigurationError):
        Settings.from_env({var: value})


def test_required_values_raise_configuration_error():
    s = Settings.from_env({})
    with pytest.raises(ConfigurationError, match="DATABASE_URL"):
        s.require_database_url()
    with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
        s.require_openai_api_key()
