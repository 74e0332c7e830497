"""Centralized logging configuration for the ``spend_ledger`` package.

Public helpers:

- ``configure_logging(...)``: attach a single ``StreamHandler`` to the package
  root logger (``"spend_ledger"``). Called once by entrypoints (the CLI).
- ``get_logger(name)``: acquire a logger by name, making sure the package root
  logger has at least a ``NullHandler`` when nothing was configured.
- ``run_logger(name, run_id)``: a ``LoggerAdapter`` that appends
  ``run_id=<id>`` to every message so all lines of one processing run can be
  correlated.

Library modules never attach their own handlers. Components accept an
optional ``logger`` argument and fall back to
``get_logger("spend_ledger.<module>")``.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import MutableMapping
from typing import IO, Any, TypeAlias

_PKG_LOGGER_NAME = "spend_ledger"
_LEVEL_ENV = "SPEND_LEDGER_LOG_LEVEL"
_DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"
_CONFIGURED = False

# Either a plain logger or a run-scoped adapter; both expose the same methods.
LoggerLike: TypeAlias = logging.Logger | logging.LoggerAdapter[Any]


def _resolve_level(level: int | str | None) -> int:
    if level is None:
        level = os.getenv(_LEVEL_ENV) or logging.INFO
    if isinstance(level, int):
        return level
    name = level.strip().upper()
    if name.isdigit():
        return int(name)
    # Unknown names resolve to INFO.
    return logging.getLevelNamesMapping().get(name, logging.INFO)


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] = sys.stderr,
) -> None:
    """Attach the package's single stream handler; later calls are no-ops.

    Parameters
    ----------
    level:
        ``int`` or level name such as ``"DEBUG"``. ``None`` reads
        ``SPEND_LEDGER_LOG_LEVEL`` and falls back to ``INFO``.
    fmt:
        Format string for the handler; timestamp, logger name and level
        precede the message by default.
    stream:
        Where records are written (``sys.stderr`` by default).
    """

    global _CONFIGURED
    if _CONFIGURED:
        return

    pkg = logging.getLogger(_PKG_LOGGER_NAME)
    for stale in [h for h in pkg.handlers if isinstance(h, logging.NullHandler)]:
        pkg.removeHandler(stale)

    resolved = _resolve_level(level)
    handler = logging.StreamHandler(stream)
    handler.setLevel(resolved)
    handler.setFormatter(logging.Formatter(fmt or _DEFAULT_FORMAT))
    pkg.setLevel(resolved)
    pkg.addHandler(handler)
    # Records stop at the package logger; the root logger never sees them.
    pkg.propagate = False
    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    """Return ``logging.getLogger(name)``, silent until :func:`configure_logging` runs."""

    pkg = logging.getLogger(_PKG_LOGGER_NAME)
    if not (_CONFIGURED or pkg.handlers):
        pkg.addHandler(logging.NullHandler())
    return logging.getLogger(name)


class _RunAdapter(logging.LoggerAdapter):
    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        return f"{msg} run_id={self.extra['run_id']}", kwargs


def run_logger(name: str, run_id: str) -> logging.LoggerAdapter[Any]:
    """Return a logger that tags each message with ``run_id=<run_id>``."""

    return _RunAdapter(get_logger(name), {"run_id": run_id})


__all__ = [
    "LoggerLike",
    "configure_logging",
    "get_logger",
    "run_logger",
]
