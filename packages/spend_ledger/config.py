"""Runtime settings read from the environment.

Entry points call :meth:`Settings.from_env` after ``python-dotenv`` has loaded
a local ``.env``. Missing credentials are reported lazily through the
``require_*`` helpers so that a run can fail with
:class:`~spend_ledger.errors.ConfigurationError` before it writes anything.

Environment variables
---------------------
``DATABASE_URL``, ``OPENAI_API_KEY``, ``SPEND_LEDGER_MODEL``,
``SPEND_LEDGER_REPORTING_CURRENCY``, ``SPEND_LEDGER_EXCHANGE_RATE_URL``,
``SPEND_LEDGER_EXCHANGE_RATE_TIMEOUT``, ``SPEND_LEDGER_BATCH_SIZE``,
``SPEND_LEDGER_LOOKBACK_DAYS`` and ``SPEND_LEDGER_<SOURCE>_ENABLED`` (one per
bank source, default true).
"""

from __future__ import annotations

import os
from collections.abc import Mapping

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import ConfigurationError
from .exchange_rates import DEFAULT_RATES_URL
from .models import SUPPORTED_CURRENCIES
from .normalizers import BANK_SOURCES

_PREFIX = "SPEND_LEDGER_"
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    database_url: str | None = None
    openai_api_key: str | None = None
    model: str = "gpt-4o-mini"
    reporting_currency: str = "GBP"
    exchange_rate_url: str = DEFAULT_RATES_URL
    exchange_rate_timeout: float = Field(default=10.0, gt=0)
    batch_size: int = Field(default=10, ge=1)
    lookback_days: int = Field(default=90, ge=1)
    enabled_sources: tuple[str, ...] = tuple(BANK_SOURCES)

    @field_validator("reporting_currency")
    @classmethod
    def _known_currency(cls, v: str) -> str:
        code = v.strip().upper()
        if code not in SUPPORTED_CURRENCIES:
            raise ValueError(f"unsupported reporting currency: {v!r}")
        return code

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Build settings from ``environ`` (``os.environ`` by default).

        Raises ``ConfigurationError`` when a value is present but malformed.
        """

        env = os.environ if environ is None else environ

        def get(name: str) -> str | None:
            raw = env.get(name)
            if raw is None or not raw.strip():
                return None
            return raw.strip()

        values: dict[str, object] = {
            "database_url": get("DATABASE_URL"),
            "openai_api_key": get("OPENAI_API_KEY"),
        }
        for field, var in (
            ("model", "MODEL"),
            ("reporting_currency", "REPORTING_CURRENCY"),
            ("exchange_rate_url", "EXCHANGE_RATE_URL"),
            ("exchange_rate_timeout", "EXCHANGE_RATE_TIMEOUT"),
            ("batch_size", "BATCH_SIZE"),
            ("lookback_days", "LOOKBACK_DAYS"),
        ):
            raw = get(_PREFIX + var)
            if raw is not None:
                values[field] = raw

        values["enabled_sources"] = tuple(
            sid
            for sid in BANK_SOURCES
            if (get(f"{_PREFIX}{sid.upper()}_ENABLED") or "true").lower() not in _FALSE_VALUES
        )

        try:
            return cls.model_validate(values)
        except pydantic.ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise ConfigurationError(f"Invalid configuration: {problems}") from e

    def require_database_url(self) -> str:
        if not self.database_url:
            raise ConfigurationError("DATABASE_URL is required")
        return self.database_url

    def require_openai_api_key(self) -> str:
        if not self.openai_api_key:
            raise ConfigurationError("OPENAI_API_KEY is required for categorization")
        return self.openai_api_key


__all__ = ["Settings"]
