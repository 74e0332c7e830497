"""Entry points that wire settings, storage and ports into one processing run.

Each function builds its per-run collaborators (run logger, duplicate index,
rate cache, pattern matcher) and discards them when the run ends. Tests and
callers may inject any port; the defaults are the SQL store, the HTTP rates
provider and the OpenAI classifier built from :class:`~spend_ledger.config.Settings`.

Configuration problems raise :class:`~spend_ledger.errors.ConfigurationError`
before anything is written.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from datetime import datetime

from .categories import ManualOverrideResult
from .categories import apply_manual_override as _apply_override
from .categorize import CategorizationOutcome, Categorizer, CategorizerConfig
from .classifier import ClassifierPort, OpenAIClassifier
from .config import Settings
from .currency import CurrencyConverter
from .duplicates import DuplicateIndex
from .exchange_rates import ExchangeRatePort, HttpExchangeRates
from .logging_setup import LoggerLike, run_logger
from .models import (
    CategorizationResult,
    Category,
    NormalizationResult,
    ProcessingStatus,
    Transaction,
    utcnow,
)
from .normalize import NormalizationRun
from .normalizers import TransactionNormalizer
from .patterns import HistoricalPatternMatcher, MatcherConfig
from .retry import RetryPolicy
from .storage import LedgerStore, SqlLedgerStore


def new_run_id(prefix: str = "run") -> str:
    """Return ``<prefix>-YYYYmmddHHMMSS-<6 hex>``."""

    return f"{prefix}-{utcnow():%Y%m%d%H%M%S}-{uuid.uuid4().hex[:6]}"


def _store_for(settings: Settings, store: LedgerStore | None) -> LedgerStore:
    if store is not None:
        return store
    return SqlLedgerStore(settings.require_database_url())


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def run_normalization(
    settings: Settings,
    *,
    store: LedgerStore | None = None,
    rates: ExchangeRatePort | None = None,
    normalizer: TransactionNormalizer | None = None,
    retry_policy: RetryPolicy | None = None,
    source_ids: Sequence[str] | None = None,
) -> NormalizationResult:
    """Normalize the staged rows of every enabled bank source.

    Transactions already NORMALISED or CATEGORISED seed the duplicate index,
    so re-running over the same staged rows writes nothing new.
    """

    ledger = _store_for(settings, store)
    run_id = new_run_id("run")
    log = run_logger("spend_ledger.normalize", run_id)

    existing: list[Transaction] = []
    for status in (ProcessingStatus.NORMALISED, ProcessingStatus.CATEGORISED):
        existing.extend(ledger.find_by_status(status))
    failed = ledger.find_by_status(ProcessingStatus.ERROR)

    converter = CurrencyConverter(
        rates
        or HttpExchangeRates(settings.exchange_rate_url, timeout=settings.exchange_rate_timeout),
        processing_run_id=run_id,
        reporting_currency=settings.reporting_currency,
        retry_policy=retry_policy,
        logger=log,
    )
    run = NormalizationRun(
        ledger,
        normalizer=normalizer or TransactionNormalizer(),
        converter=converter,
        duplicate_index=DuplicateIndex(existing, logger=log),
        processing_run_id=run_id,
        failed=failed,
        logger=log,
    )
    sources = tuple(source_ids) if source_ids is not None else settings.enabled_sources
    log.info(
        "normalize:run_start sources=%s existing=%d failed=%d",
        ",".join(sources),
        len(existing),
        len(failed),
    )
    result = run.process_all(sources)
    log.info(
        "normalize:run_done rows=%d normalized=%d duplicates=%d errors=%d",
        result.total_rows,
        result.total_normalized,
        result.total_duplicates,
        result.total_errors,
    )
    return result


# ---------------------------------------------------------------------------
# Categorization
# ---------------------------------------------------------------------------


NO_CATEGORIES_MESSAGE = "No categories found"


def _categorizer(
    settings: Settings,
    ledger: LedgerStore,
    classifier: ClassifierPort | None,
    retry_policy: RetryPolicy | None,
    log: LoggerLike,
) -> Categorizer:
    if classifier is None:
        classifier = OpenAIClassifier(
            api_key=settings.require_openai_api_key(), model=settings.model, logger=log
        )
    return Categorizer(
        classifier,
        config=CategorizerConfig(batch_size=settings.batch_size),
        matcher=HistoricalPatternMatcher(
            MatcherConfig(lookback_days=settings.lookback_days), logger=log
        ),
        history=lambda: ledger.find_by_status(ProcessingStatus.CATEGORISED),
        retry_policy=retry_policy,
        logger=log,
    )


def _persist_outcome(
    ledger: LedgerStore, outcome: CategorizationOutcome, log: LoggerLike
) -> list[str]:
    """Save each categorized transaction and the failed batch.

    Returns one message per categorized transaction that could not be saved;
    a failed write never stops the remaining ones.
    """

    unsaved: list[str] = []
    for tx in outcome.categorized:
        try:
            ledger.update_category(
                tx.id,
                tx.category_ai_id,
                tx.category_ai_name,
                False,
                tx.category_confidence_score,
            )
        except Exception as e:  # noqa: BLE001 - reported on the run result
            log.warning("categorize:save_failed tx_id=%s error=%s", tx.id, e)
            unsaved.append(f"{tx.id}: failed to save category: {e}")
    ledger.write_batch([f.transaction for f in outcome.failed])
    return unsaved


def _result(
    run_id: str,
    outcome: CategorizationOutcome,
    started_at: datetime,
    *,
    skipped: int = 0,
    unsaved: Sequence[str] = (),
) -> CategorizationResult:
    return CategorizationResult(
        processing_run_id=run_id,
        processed=outcome.total_processed,
        categorized=len(outcome.categorized) - len(unsaved),
        failed=len(outcome.failed) + len(unsaved),
        skipped=skipped,
        error_messages=tuple(outcome.error_messages) + tuple(unsaved),
        started_at=started_at,
        finished_at=utcnow(),
    )


def _without_categories(
    run_id: str, pending: int, started_at: datetime, *, skipped: int
) -> CategorizationResult:
    return CategorizationResult(
        processing_run_id=run_id,
        processed=pending,
        categorized=0,
        failed=pending,
        skipped=skipped,
        error_messages=(NO_CATEGORIES_MESSAGE,),
        started_at=started_at,
        finished_at=utcnow(),
    )


def _has_active(categories: Sequence[Category]) -> bool:
    return any(c.is_active for c in categories)


def run_categorization(
    settings: Settings,
    *,
    store: LedgerStore | None = None,
    classifier: ClassifierPort | None = None,
    retry_policy: RetryPolicy | None = None,
) -> CategorizationResult:
    """Categorize every NORMALISED transaction that still lacks a category.

    NORMALISED transactions that already carry a category are counted as
    skipped. When transactions are pending but no active category exists,
    nothing is sent to the classifier and every pending transaction is
    reported as failed with ``"No categories found"``.

    Raises
    ------
    ConfigurationError
        When the database URL or (without an injected classifier) the OpenAI
        API key is missing.
    """

    started = utcnow()
    ledger = _store_for(settings, store)
    run_id = new_run_id("cat")
    log = run_logger("spend_ledger.categorize", run_id)
    categorizer = _categorizer(settings, ledger, classifier, retry_policy, log)

    loaded = ledger.find_by_status(ProcessingStatus.NORMALISED)
    pending = Categorizer.filter_uncategorized(loaded)
    skipped = len(loaded) - len(pending)
    if not pending:
        log.info("categorize:nothing_pending skipped=%d", skipped)
        return _result(run_id, CategorizationOutcome(), started, skipped=skipped)

    categories = ledger.read_categories()
    if not _has_active(categories):
        log.error("categorize:no_categories pending=%d", len(pending))
        return _without_categories(run_id, len(pending), started, skipped=skipped)

    outcome = categorizer.categorize(pending, categories)
    unsaved = _persist_outcome(ledger, outcome, log)
    return _result(run_id, outcome, started, skipped=skipped, unsaved=unsaved)


def recategorize_all(
    settings: Settings,
    *,
    store: LedgerStore | None = None,
    classifier: ClassifierPort | None = None,
    retry_policy: RetryPolicy | None = None,
) -> CategorizationResult:
    """Re-run AI categorization over CATEGORISED transactions.

    Transactions with a manual override are skipped and keep their AI fields.
    Without an active category nothing is reset and every other transaction is
    reported as failed.
    """

    started = utcnow()
    ledger = _store_for(settings, store)
    run_id = new_run_id("cat")
    log = run_logger("spend_ledger.categorize", run_id)
    categorizer = _categorizer(settings, ledger, classifier, retry_policy, log)

    transactions = ledger.find_by_status(ProcessingStatus.CATEGORISED)
    manual = sum(1 for tx in transactions if tx.has_manual_override)
    targets = len(transactions) - manual
    categories = ledger.read_categories()
    if targets and not _has_active(categories):
        log.error("categorize:no_categories pending=%d", targets)
        return _without_categories(run_id, targets, started, skipped=manual)

    outcome = categorizer.recategorize(transactions, categories)
    ledger.write_batch(outcome.categorized + [f.transaction for f in outcome.failed])
    return _result(run_id, outcome, started, skipped=len(outcome.skipped))


# ---------------------------------------------------------------------------
# Manual overrides
# ---------------------------------------------------------------------------


def apply_manual_override(
    settings: Settings,
    transaction_id: str,
    category_name: str | None,
    *,
    store: LedgerStore | None = None,
) -> ManualOverrideResult:
    """Set (or clear, with an empty name) the manual category of one transaction."""

    ledger = _store_for(settings, store)
    return _apply_override(ledger, transaction_id, category_name, ledger.read_categories())


__all__ = [
    "apply_manual_override",
    "new_run_id",
    "recategorize_all",
    "run_categorization",
    "run_normalization",
]
