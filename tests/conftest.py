"""Pytest configuration for test isolation.

Puts the workspace ``packages/`` and ``libs/db/src`` dirs (and the repo root,
for ``tests.helpers``) on ``sys.path`` so the suite runs from a plain checkout.

Settings are read from the environment, so a developer's ``DATABASE_URL`` or
``OPENAI_API_KEY`` could leak into a test and send it to a real database or
the real API. An autouse fixture removes every variable the package reads.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

_ROOT = Path(__file__).resolve().parents[1]
sys.path[:0] = [
    p
    for p in (str(_ROOT / "packages"), str(_ROOT / "libs" / "db" / "src"), str(_ROOT))
    if p not in sys.path
]

_ENV_VARS: tuple[str, ...] = (
    "DATABASE_URL",
    "OPENAI_API_KEY",
    "SPEND_LEDGER_LOG_LEVEL",
    "SPEND_LEDGER_MODEL",
    "SPEND_LEDGER_REPORTING_CURRENCY",
    "SPEND_LEDGER_EXCHANGE_RATE_URL",
    "SPEND_LEDGER_EXCHANGE_RATE_TIMEOUT",
    "SPEND_LEDGER_BATCH_SIZE",
    "SPEND_LEDGER_LOOKBACK_DAYS",
    "SPEND_LEDGER_MONZO_ENABLED",
    "SPEND_LEDGER_REVOLUT_ENABLED",
    "SPEND_LEDGER_YONDER_ENABLED",
)


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
