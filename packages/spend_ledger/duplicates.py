"""In-run duplicate detection keyed by ``original_transaction_id``.

Public surface:
- ``DuplicateIndex``: built once per normalization run from every existing
  NORMALISED and CATEGORISED transaction, then extended with each transaction
  accepted during the run.
- ``DuplicateCheck``: result of a single lookup (never an exception).
- ``DuplicateStats``: running counters for the run summary.

Keys are compared verbatim (case-sensitive, no trimming); a transaction whose
key is absent from the index is not a duplicate.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from .logging_setup import LoggerLike, get_logger
from .models import Transaction

_logger = get_logger("spend_ledger.duplicates")


@dataclass(frozen=True, slots=True)
class DuplicateCheck:
    is_duplicate: bool
    existing: Transaction | None = None
    message: str | None = None


@dataclass(frozen=True, slots=True)
class DuplicateStats:
    checked: int
    found: int
    unique: int


class DuplicateIndex:
    """Mapping of ``original_transaction_id`` to the first transaction seen."""

    def __init__(
        self,
        existing: Iterable[Transaction] = (),
        *,
        logger: LoggerLike | None = None,
    ) -> None:
        self._log = logger or _logger
        self._by_key: dict[str, Transaction] = {}
        for tx in existing:
            self._by_key.setdefault(tx.original_transaction_id, tx)
        self._checked = 0
        self._found = 0
        self._log.debug("duplicates:index_built size=%d", len(self._by_key))

    def check(self, tx: Transaction) -> DuplicateCheck:
        self._checked += 1
        existing = self._by_key.get(tx.original_transaction_id)
        if existing is None:
            return DuplicateCheck(is_duplicate=False)
        self._found += 1
        return DuplicateCheck(
            is_duplicate=True,
            existing=existing,
            message=(
                f"Duplicate of transaction {existing.id} "
                f"(original id {tx.original_transaction_id}, source {existing.bank_source_id})"
            ),
        )

    def register(self, tx: Transaction) -> None:
        """Add ``tx`` to the index. Registering an existing key is a no-op."""

        self._by_key.setdefault(tx.original_transaction_id, tx)

    def filter(self, transactions: Iterable[Transaction]) -> list[Transaction]:
        """Return the non-duplicates in order, registering each as it is kept.

        Later copies of a key already seen in the same input are dropped too.
        """

        kept: list[Transaction] = []
        for tx in transactions:
            if self.check(tx).is_duplicate:
                continue
            self.register(tx)
            kept.append(tx)
        return kept

    def get(self, original_transaction_id: str) -> Transaction | None:
        return self._by_key.get(original_transaction_id)

    @property
    def stats(self) -> DuplicateStats:
        return DuplicateStats(
            checked=self._checked,
            found=self._found,
            unique=self._checked - self._found,
        )

    def reset_stats(self) -> None:
        self._checked = 0
        self._found = 0

    def clear(self) -> None:
        self._by_key.clear()
        self.reset_stats()

    def __contains__(self, original_transaction_id: object) -> bool:
        return original_transaction_id in self._by_key

    def __len__(self) -> int:
        return len(self._by_key)


__all__ = [
    "DuplicateCheck",
    "DuplicateIndex",
    "DuplicateStats",
]
