"""Typed exceptions raised across ``spend_ledger``.

Low-level components (converter, matcher, classifier adapters) raise these
without logging; orchestrators catch them per item, log once with context and
continue. Only :class:`ConfigurationError` is allowed to abort a run.
"""

from __future__ import annotations

from typing import Any


class LedgerError(Exception):
    """Base class for all ``spend_ledger`` errors."""


class ConfigurationError(LedgerError):
    """Required configuration is missing or malformed (fatal, pre-run)."""


class ValidationError(LedgerError):
    """A raw input value failed validation at the source-mapping boundary."""

    def __init__(self, message: str, *, field: str | None = None, value: Any = None) -> None:
        super().__init__(message)
        self.field = field
        self.value = value


class ConversionError(LedgerError):
    """A transaction could not be converted to the reporting currency."""

    def __init__(self, message: str, *, currency: str | None = None) -> None:
        super().__init__(message)
        self.currency = currency


class CategorizationError(LedgerError):
    """Invalid categorization input or an unusable classifier result."""


class RateNotFoundError(LedgerError):
    """The rate provider does not quote the requested currency pair."""

    def __init__(self, from_currency: str, to_currency: str) -> None:
        super().__init__(f"Exchange rate not found for {from_currency} -> {to_currency}")
        self.from_currency = from_currency
        self.to_currency = to_currency


class TransientServiceError(LedgerError):
    """An external service failed in a way that may succeed on retry."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RetryExhaustedError(LedgerError):
    """All attempts of a retried operation failed.

    ``last_error`` keeps the final underlying exception; the instance is also
    raised ``from`` it so tracebacks show the chain.
    """

    def __init__(self, message: str, *, attempts: int, last_error: BaseException) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class InvalidStatusTransitionError(LedgerError):
    """A processing-status change that the lifecycle does not allow."""

    def __init__(self, current: Any, target: Any) -> None:
        super().__init__(f"Invalid status transition: {current} -> {target}")
        self.current = current
        self.target = target


__all__ = [
    "CategorizationError",
    "ConfigurationError",
    "ConversionError",
    "InvalidStatusTransitionError",
    "LedgerError",
    "RateNotFoundError",
    "RetryExhaustedError",
    "TransientServiceError",
    "ValidationError",
]
