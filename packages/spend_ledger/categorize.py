"""Batch categorization of normalized transactions.

Public API:
    - :class:`Categorizer` (``categorize``, ``recategorize``,
      ``filter_uncategorized``)
    - :class:`CategorizerConfig`, :class:`CategorizationOutcome`,
      :class:`FailedCategorization`

Transactions are sent to the classifier in batches (default 10), in load
order. Each batch optionally carries historical examples chosen by
:class:`~spend_ledger.patterns.HistoricalPatternMatcher`. The classifier call
goes through :class:`~spend_ledger.retry.RetryPolicy`; a batch whose call
fails marks every transaction in it as failed and the next batch still runs.
A failed transaction keeps its NORMALISED status so the next run retries it.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field

from .categorization import (
    active_categories,
    ensure_categorizable,
    index_results,
    validate_decision,
)
from .classifier import ClassifierPort
from .errors import LedgerError, RetryExhaustedError
from .logging_setup import LoggerLike, get_logger
from .models import Category, HistoricalPattern, ProcessingStatus, Transaction
from .patterns import HistoricalPatternMatcher
from .retry import RetryPolicy, is_transient_error
from .status import mark_categorised, reset_ai_category

# ---- Tunables (private) ------------------------------------------------------

_BATCH_SIZE_DEFAULT: int = 10
_HISTORICAL_CONTEXT_SIZE_DEFAULT: int = 5

_NO_RESULT_MESSAGE = "No categorization result returned from AI"
_AMBIGUOUS_MESSAGE = "Ambiguous categorization: multiple results returned"

_logger = get_logger("spend_ledger.categorize")


@dataclass(frozen=True, slots=True)
class CategorizerConfig:
    batch_size: int = _BATCH_SIZE_DEFAULT
    use_historical_context: bool = True
    historical_context_size: int = _HISTORICAL_CONTEXT_SIZE_DEFAULT

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if self.historical_context_size < 0:
            raise ValueError("historical_context_size must be >= 0")


@dataclass(frozen=True, slots=True)
class FailedCategorization:
    transaction: Transaction
    error: str


@dataclass(slots=True)
class CategorizationOutcome:
    categorized: list[Transaction] = field(default_factory=list)
    failed: list[FailedCategorization] = field(default_factory=list)
    skipped: list[Transaction] = field(default_factory=list)

    @property
    def total_processed(self) -> int:
        return len(self.categorized) + len(self.failed)

    @property
    def error_messages(self) -> list[str]:
        return [f"{f.transaction.id}: {f.error}" for f in self.failed]


def _batches(
    items: Sequence[Transaction], size: int
) -> Iterable[tuple[int, Sequence[Transaction]]]:
    for k in range(math.ceil(len(items) / size)):
        yield k, items[k * size : (k + 1) * size]


class Categorizer:
    """Assign AI categories to transactions, batch by batch.

    Parameters
    ----------
    classifier:
        The AI classification port.
    config:
        Batch size and historical-context settings.
    matcher:
        Pattern matcher used to select historical examples.
    history:
        Zero-argument callable returning the pool of categorized transactions.
        Called at most once, on the first batch that needs context.
    retry_policy:
        Policy for classifier calls; retries transient errors by default.
    """

    def __init__(
        self,
        classifier: ClassifierPort,
        *,
        config: CategorizerConfig | None = None,
        matcher: HistoricalPatternMatcher | None = None,
        history: Callable[[], Iterable[Transaction]] | None = None,
        retry_policy: RetryPolicy | None = None,
        logger: LoggerLike | None = None,
    ) -> None:
        self._classifier = classifier
        self.config = config or CategorizerConfig()
        self._log = logger or _logger
        self._matcher = matcher or HistoricalPatternMatcher(logger=self._log)
        self._history_loader = history
        self._history: list[Transaction] | None = None
        self._retry = retry_policy or RetryPolicy(is_retryable=is_transient_error, logger=self._log)

    # ---- selection -------------------------------------------------------------

    @staticmethod
    def filter_uncategorized(transactions: Iterable[Transaction]) -> list[Transaction]:
        """Return transactions that still need an AI category, in order."""

        return [
            tx
            for tx in transactions
            if tx.processing_status in (ProcessingStatus.NORMALISED, ProcessingStatus.CATEGORISED)
            and not tx.has_manual_override
            and tx.category_ai_id is None
        ]

    # ---- historical context ----------------------------------------------------

    def _history_pool(self) -> list[Transaction]:
        if self._history is None:
            self._history = list(self._history_loader()) if self._history_loader else []
            self._log.debug("categorize:history_loaded size=%d", len(self._history))
        return self._history

    def _historical_context(self, batch: Sequence[Transaction]) -> list[HistoricalPattern]:
        size = self.config.historical_context_size
        if not self.config.use_historical_context or size == 0:
            return []
        pool = self._history_pool()
        if not pool:
            return []

        seen: set[tuple[str, str]] = set()
        examples: list[HistoricalPattern] = []
        for tx in batch:
            matches = self._matcher.find_similar(tx, pool, limit=size)
            suggestion = self._matcher.suggest_category(matches)
            if suggestion is not None:
                self._log.debug(
                    "categorize:suggestion tx_id=%s category_id=%s confidence=%d",
                    tx.id,
                    suggestion.category_id,
                    suggestion.confidence,
                )
            for m in matches:
                key = (m.pattern.description, m.pattern.category_key)
                if key in seen:
                    continue
                seen.add(key)
                examples.append(m.pattern)
        return examples[: size * len(batch)]

    # ---- categorization ----------------------------------------------------------

    def categorize(
        self, transactions: Sequence[Transaction], categories: Sequence[Category]
    ) -> CategorizationOutcome:
        """Categorize ``transactions`` against the active ``categories``.

        Raises
        ------
        CategorizationError
            When there is work to do but no category is active, or a
            transaction was never normalized.
            Per-transaction problems never raise; they are returned in
            ``failed``.
        """

        outcome = CategorizationOutcome()
        if not transactions:
            return outcome
        active = active_categories(categories)
        ensure_categorizable(transactions)
        by_id = {c.id: c for c in active}

        self._log.info(
            "categorize:start num_transactions=%d batch_size=%d categories=%d",
            len(transactions),
            self.config.batch_size,
            len(active),
        )
        for batch_index, batch in _batches(transactions, self.config.batch_size):
            self._categorize_batch(batch_index, batch, active, by_id, outcome)

        self._log.info(
            "categorize:done categorized=%d failed=%d",
            len(outcome.categorized),
            len(outcome.failed),
        )
        return outcome

    def _fail(self, outcome: CategorizationOutcome, tx: Transaction, message: str) -> None:
        tx.error_message = message
        outcome.failed.append(FailedCategorization(transaction=tx, error=message))

    def _categorize_batch(
        self,
        batch_index: int,
        batch: Sequence[Transaction],
        active: Sequence[Category],
        by_id: dict[str, Category],
        outcome: CategorizationOutcome,
    ) -> None:
        examples = self._historical_context(batch)
        try:
            raw = self._retry.call(
                lambda: self._classifier.classify(batch, active, examples),
                label=f"classify:batch_{batch_index}",
            )
        except Exception as e:  # noqa: BLE001 - the whole batch is recorded as failed
            if isinstance(e, RetryExhaustedError):
                cause: BaseException = e.last_error
                tries = "attempt" if e.attempts == 1 else "attempts"
                message = f"Classifier call failed after {e.attempts} {tries}: {cause}"
            else:
                cause = e
                message = f"Classifier call failed: {cause}"
            self._log.error(
                "categorize:batch_failed batch_index=%d num_transactions=%d error=%s",
                batch_index,
                len(batch),
                cause.__class__.__name__,
            )
            for tx in batch:
                self._fail(outcome, tx, message)
            return

        results, ambiguous = index_results(raw, [tx.id for tx in batch])
        for tx in batch:
            if tx.id in ambiguous:
                self._fail(outcome, tx, _AMBIGUOUS_MESSAGE)
                continue
            item = results.get(tx.id)
            if item is None:
                self._fail(outcome, tx, _NO_RESULT_MESSAGE)
                continue
            try:
                decision = validate_decision(item, by_id)
                tx.category_ai_id = decision.category_id
                tx.category_ai_name = decision.category_name
                tx.category_confidence_score = decision.confidence_score
                mark_categorised(tx)
            except LedgerError as e:
                self._fail(outcome, tx, str(e))
                continue
            outcome.categorized.append(tx)

        self._log.info(
            "categorize:batch_done batch_index=%d num_transactions=%d examples=%d",
            batch_index,
            len(batch),
            len(examples),
        )

    def recategorize(
        self, transactions: Sequence[Transaction], categories: Sequence[Category]
    ) -> CategorizationOutcome:
        """Reset and resubmit every transaction without a manual override.

        Manually overridden transactions are returned untouched in ``skipped``.
        """

        targets = [tx for tx in transactions if not tx.has_manual_override]
        skipped = [tx for tx in transactions if tx.has_manual_override]
        if targets:
            active_categories(categories)
        for tx in targets:
            reset_ai_category(tx)
        outcome = self.categorize(targets, categories)
        outcome.skipped.extend(skipped)
        return outcome


__all__ = [
    "CategorizationOutcome",
    "Categorizer",
    "CategorizerConfig",
    "FailedCategorization",
]
