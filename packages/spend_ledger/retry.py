"""Retry with exponential backoff for calls to external services.

Public API:
    - :class:`RetryPolicy` and its :meth:`RetryPolicy.call`
    - :func:`retry` (one-shot convenience wrapper)
    - :func:`is_transient_error` (default retry predicate for service ports)

The delay before attempt ``k`` (``k >= 2``) is
``min(initial_delay * multiplier ** (k - 2), max_delay)``; the first attempt
is never delayed. With the defaults the waits are 2s, 4s, 8s, 16s and the
schedule is capped at 32s.
"""

from __future__ import annotations

import re
import socket
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Any, TypeVar

from .errors import RateNotFoundError, RetryExhaustedError, TransientServiceError, ValidationError
from .logging_setup import LoggerLike, get_logger

# ---- Tunables (private) ------------------------------------------------------

_MAX_ATTEMPTS_DEFAULT: int = 5
_INITIAL_DELAY_SEC: float = 2.0
_MULTIPLIER: float = 2.0
_MAX_DELAY_SEC: float = 32.0

# Messages that indicate a network-level or throttling failure.
_TRANSIENT_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"network",
        r"timeout",
        r"timed out",
        r"connection (error|reset|refused|aborted)",
        r"ECONNREFUSED",
        r"ECONNRESET",
        r"ETIMEDOUT",
        r"ENOTFOUND",
        r"rate limit",
        r"\b429\b",
        r"\b50[0234]\b",
    )
)

T = TypeVar("T")

_logger = get_logger("spend_ledger.retry")


def _always(_exc: BaseException) -> bool:
    return True


def is_transient_error(exc: BaseException) -> bool:
    """Return True for failures worth retrying.

    HTTP 429 and 5xx (via a ``status_code`` attribute), timeouts, connection
    errors and :class:`TransientServiceError` are transient. Missing rates and
    validation failures are terminal regardless of their message.
    """

    if isinstance(exc, (RateNotFoundError, ValidationError)):
        return False
    if isinstance(exc, TransientServiceError):
        return True
    sc = getattr(exc, "status_code", None)
    if isinstance(sc, int):
        return sc == 429 or 500 <= sc < 600
    if isinstance(exc, (TimeoutError, ConnectionError, socket.timeout)):
        return True
    message = str(exc)
    return any(p.search(message) for p in _TRANSIENT_PATTERNS)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Bounded exponential backoff.

    Parameters
    ----------
    max_attempts:
        Total attempts including the first one (>= 1).
    initial_delay, multiplier, max_delay:
        Backoff schedule in seconds.
    is_retryable:
        Predicate deciding whether an exception is worth another attempt.
        Non-retryable exceptions propagate immediately and unchanged.
    sleep:
        Injectable sleeper (``time.sleep`` by default) so tests can observe the
        schedule without waiting.
    on_retry:
        Optional callback ``(next_attempt, error, delay_seconds)`` invoked
        before each wait.
    logger:
        Logger for ``retry:scheduled`` warnings; defaults to the module logger.
    """

    max_attempts: int = _MAX_ATTEMPTS_DEFAULT
    initial_delay: float = _INITIAL_DELAY_SEC
    multiplier: float = _MULTIPLIER
    max_delay: float = _MAX_DELAY_SEC
    is_retryable: Callable[[BaseException], bool] = _always
    sleep: Callable[[float], None] = time.sleep
    on_retry: Callable[[int, BaseException, float], None] | None = None
    logger: LoggerLike | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")

    def delay_for_attempt(self, attempt: int) -> float:
        """Return the wait in seconds before ``attempt`` (1-based)."""

        if attempt <= 1:
            return 0.0
        return min(self.initial_delay * self.multiplier ** (attempt - 2), self.max_delay)

    def schedule(self) -> list[float]:
        """Return the waits before attempts ``2..max_attempts``."""

        return [self.delay_for_attempt(k) for k in range(2, self.max_attempts + 1)]

    def with_overrides(self, **changes: Any) -> RetryPolicy:
        return replace(self, **changes)

    def call(self, operation: Callable[[], T], *, label: str = "operation") -> T:
        """Run ``operation`` until it succeeds or attempts are exhausted.

        Raises
        ------
        RetryExhaustedError
            When every attempt failed with a retryable error; chained from the
            last error and carrying ``attempts`` and ``last_error``.
        Exception
            Any non-retryable error, re-raised immediately.
        """

        log = self.logger or _logger
        attempt = 1
        while True:
            try:
                return operation()
            except Exception as e:  # noqa: BLE001 - classified below
                if not self.is_retryable(e):
                    raise
                if attempt >= self.max_attempts:
                    log.error(
                        "retry:exhausted label=%s attempts=%d error=%s",
                        label,
                        attempt,
                        e.__class__.__name__,
                    )
                    raise RetryExhaustedError(
                        f"{label} failed after {attempt} attempts: {e}",
                        attempts=attempt,
                        last_error=e,
                    ) from e
                attempt += 1
                delay = self.delay_for_attempt(attempt)
                log.warning(
                    "retry:scheduled label=%s attempt=%d/%d delay_ms=%d error=%s",
                    label,
                    attempt,
                    self.max_attempts,
                    round(delay * 1000),
                    e.__class__.__name__,
                )
                if self.on_retry is not None:
                    self.on_retry(attempt, e, delay)
                self.sleep(delay)


def retry(
    operation: Callable[[], T],
    policy: RetryPolicy | None = None,
    *,
    label: str = "operation",
    **overrides: Any,
) -> T:
    """Call ``operation`` under ``policy`` (default policy when omitted).

    Keyword ``overrides`` replace individual policy fields, e.g.
    ``retry(fn, max_attempts=3)``.
    """

    base = policy or RetryPolicy()
    if overrides:
        base = base.with_overrides(**overrides)
    return base.call(operation, label=label)


__all__ = [
    "RetryPolicy",
    "is_transient_error",
    "retry",
]
