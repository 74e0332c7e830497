from __future__ import annotations

from collections.abc import Iterator
from decimal import Decimal
from pathlib import Path

import pytest

from db.client import dispose_engines
from spend_ledger.api import (
    apply_manual_override,
    recategorize_all,
    run_categorization,
    run_normalization,
)
from spend_ledger.config import Settings
from spend_ledger.errors import ConfigurationError
from spend_ledger.models import ProcessingStatus
from spend_ledger.retry import RetryPolicy
from spend_ledger.storage import SqlLedgerStore

from tests.helpers.db import bootstrap_sqlite_db, seed_categories
from tests.helpers.fakes import (
    CATEGORIES,
    InMemoryStore,
    ScriptedClassifier,
    StaticRates,
    make_tx,
    no_sleep,
)

NO_RETRY = RetryPolicy(max_attempts=1, sleep=no_sleep)


def _monzo(tx_id: str, name: str, amount: str, currency: str = "GBP") -> dict[str, str]:
    return {
        "Transaction ID": tx_id,
        "Date": "15/01/2025",
        "Time": "12:00:00",
        "Type": "Card payment",
        "Name": name,
        "Amount": amount,
        "Currency": currency,
        "Notes and #tags": "",
    }


@pytest.fixture(autouse=True)
def _dispose() -> Iterator[None]:
    yield
    dispose_engines()


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    return bootstrap_sqlite_db(tmp_path / "ledger.db")


@pytest.fixture
def store(db_url: str) -> SqlLedgerStore:
    return seed_categories(db_url, CATEGORIES)


@pytest.fixture
def settings(db_url: str) -> Settings:
    return Settings(database_url=db_url, enabled_sources=("monzo",))


def _normalize(settings: Settings, rates: StaticRates):
    return run_normalization(settings, rates=rates, retry_policy=NO_RETRY)


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def test_rerun_over_same_rows_is_idempotent(settings: Settings, store: SqlLedgerStore):
    store.append_source_rows("monzo", [_monzo("tx-1", "Cafe de Paris", "-100.00", "EUR")])
    rates = StaticRates({"EUR": "0.86"})

    first = _normalize(settings, rates)

    assert first.total_normalized == 1
    assert first.total_duplicates == 0
    [tx] = store.find_by_status(ProcessingStatus.NORMALISED)
    assert tx.original_transaction_id == "tx-1"
    assert tx.reporting_amount_value == Decimal("86.00")
    assert tx.exchange_rate_value == Decimal("0.86")
    snapshots = store.rate_snapshots(first.processing_run_id)
    assert [(s.from_currency, s.to_currency, s.rate) for s in snapshots] == [
        ("EUR", "GBP", Decimal("0.86"))
    ]

    second = _normalize(settings, rates)

    assert second.total_normalized == 0
    assert second.total_duplicates == 1
    assert store.count_transactions() == 1


def test_missing_rate_is_stored_as_error_and_retried_in_place(
    settings: Settings, store: SqlLedgerStore
):
    store.append_source_rows(
        "monzo",
        [
            _monzo("tx-eur", "Louvre", "-20.00", "EUR"),
            _monzo("tx-thb", "Bangkok Market", "-500.00", "THB"),
        ],
    )

    first = _normalize(settings, StaticRates({"EUR": "0.86"}))

    assert first.total_normalized == 1
    assert first.total_errors == 1
    [failed] = store.find_by_status(ProcessingStatus.ERROR)
    assert failed.original_transaction_id == "tx-thb"
    assert failed.reporting_amount_value is None
    assert failed.error_message

    second = _normalize(settings, StaticRates({"EUR": "0.86", "THB": "0.022"}))

    assert second.total_normalized == 1
    assert second.total_duplicates == 1
    assert store.count_transactions() == 2
    assert store.find_by_status(ProcessingStatus.ERROR) == []
    retried = store.get_transaction(failed.id)
    assert retried is not None
    assert retried.processing_status is ProcessingStatus.NORMALISED
    assert retried.reporting_amount_value == Decimal("11.00")
    assert retried.error_message is None


def test_invalid_and_blank_rows(settings: Settings, store: SqlLedgerStore):
    bad = _monzo("tx-bad", "Broken", "not-a-number")
    blank = {k: "" for k in bad}
    store.append_source_rows("monzo", [_monzo("tx-ok", "Tesco", "-5.00"), blank, bad])

    result = _normalize(settings, StaticRates({}))

    [source] = result.sources
    assert source.total_rows == 2
    assert source.normalized == 1
    assert source.errors == 1
    assert source.error_messages[0].startswith("monzo row 3:")
    assert store.count_transactions() == 1


def test_unreadable_source_does_not_stop_other_sources():
    mem = InMemoryStore(
        rows={"revolut": [], "monzo": [_monzo("tx-1", "Tesco", "-5.00")]},
    )
    mem.fail_reads.add("revolut")

    result = run_normalization(
        Settings(enabled_sources=("revolut", "monzo")),
        store=mem,
        rates=StaticRates({}),
        retry_policy=NO_RETRY,
    )

    by_source = {s.source_id: s for s in result.sources}
    assert by_source["revolut"].errors == 1
    assert "failed to read rows" in by_source["revolut"].error_messages[0]
    assert by_source["monzo"].normalized == 1
    assert len(mem.transactions) == 1


def test_missing_database_url_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        run_normalization(Settings(), rates=StaticRates({}))


# ---------------------------------------------------------------------------
# Categorization
# ---------------------------------------------------------------------------


def _by_name(tx) -> tuple[str, float] | None:
    if "Uber" in tx.description:
        return "cat-transport", 91.6
    if "Tesco" in tx.description:
        return "cat-groceries", 77.0
    return None


@pytest.fixture
def normalized(settings: Settings, store: SqlLedgerStore) -> SqlLedgerStore:
    store.append_source_rows(
        "monzo",
        [
            _monzo("tx-uber", "Uber", "-14.20"),
            _monzo("tx-tesco", "Tesco", "-31.05"),
            _monzo("tx-mystery", "ZZ 0042", "-3.00"),
        ],
    )
    _normalize(settings, StaticRates({}))
    return store


def test_categorization_persists_results(settings: Settings, normalized: SqlLedgerStore):
    result = run_categorization(
        settings, classifier=ScriptedClassifier(_by_name), retry_policy=NO_RETRY
    )

    assert result.processed == 3
    assert result.categorized == 2
    assert result.failed == 1
    assert not result.success

    categorised = {
        t.original_transaction_id: t
        for t in normalized.find_by_status(ProcessingStatus.CATEGORISED)
    }
    assert categorised["tx-uber"].category_ai_id == "cat-transport"
    assert categorised["tx-uber"].category_ai_name == "Transport"
    assert categorised["tx-uber"].category_confidence_score == 92
    assert categorised["tx-tesco"].categorised_at is not None

    [pending] = normalized.find_by_status(ProcessingStatus.NORMALISED)
    assert pending.original_transaction_id == "tx-mystery"
    assert pending.error_message == "No categorization result returned from AI"

    again = run_categorization(
        settings, classifier=ScriptedClassifier(_by_name), retry_policy=NO_RETRY
    )
    assert again.processed == 1


def test_categorization_without_api_key_fails_before_writing(
    settings: Settings, normalized: SqlLedgerStore
):
    with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
        run_categorization(settings)

    assert len(normalized.find_by_status(ProcessingStatus.NORMALISED)) == 3
    assert normalized.find_by_status(ProcessingStatus.CATEGORISED) == []


def test_manual_override_survives_recategorization(
    settings: Settings, normalized: SqlLedgerStore
):
    run_categorization(settings, classifier=ScriptedClassifier(_by_name), retry_policy=NO_RETRY)
    tesco = next(
        t
        for t in normalized.find_by_status(ProcessingStatus.CATEGORISED)
        if t.original_transaction_id == "tx-tesco"
    )

    override = apply_manual_override(settings, tesco.id, "eating out")
    assert override.category_id == "cat-eating-out"

    clf = ScriptedClassifier(lambda _tx: ("cat-groceries", 55))
    result = recategorize_all(settings, classifier=clf, retry_policy=NO_RETRY)

    assert result.skipped == 1
    assert result.categorized == 1
    assert len(clf.batches) == 1
    assert tesco.id not in clf.batches[0]

    stored = normalized.get_transaction(tesco.id)
    assert stored is not None
    assert stored.category_manual_id == "cat-eating-out"
    assert stored.category_ai_id == "cat-groceries"
    assert stored.category_confidence_score == 77
    assert stored.effective_category() == ("cat-eating-out", "Eating Out")

    uber = next(
        t
        for t in normalized.find_by_status(ProcessingStatus.CATEGORISED)
        if t.original_transaction_id == "tx-uber"
    )
    assert uber.category_ai_id == "cat-groceries"
    assert uber.category_confidence_score == 55


def test_already_categorized_normalised_rows_count_as_skipped():
    mem = InMemoryStore(
        transactions=[
            make_tx("n1", description="Tesco"),
            make_tx(
                "n2",
                description="Pret",
                category_manual_id="cat-eating-out",
                category_manual_name="Eating Out",
            ),
        ],
        categories=CATEGORIES,
    )
    clf = ScriptedClassifier(lambda _tx: ("cat-groceries", 80))

    result = run_categorization(Settings(), store=mem, classifier=clf, retry_policy=NO_RETRY)

    assert result.processed == 1
    assert result.categorized == 1
    assert result.skipped == 1
    assert clf.batches == [["n1"]]


def test_nothing_pending_needs_no_categories():
    mem = InMemoryStore(transactions=[], categories=[])
    clf = ScriptedClassifier(lambda _tx: ("cat-groceries", 80))

    result = run_categorization(Settings(), store=mem, classifier=clf, retry_policy=NO_RETRY)

    assert (result.processed, result.categorized, result.failed, result.skipped) == (0, 0, 0, 0)
    assert result.success
    assert clf.batches == []

    again = recategorize_all(Settings(), store=mem, classifier=clf, retry_policy=NO_RETRY)
    assert again.processed == 0
    assert again.success


def test_pending_transactions_without_categories_are_reported_failed():
    retired = [c for c in CATEGORIES if not c.is_active]
    mem = InMemoryStore(
        transactions=[make_tx("n1", description="Tesco"), make_tx("n2", description="Uber")],
        categories=retired,
    )
    clf = ScriptedClassifier(lambda _tx: ("cat-groceries", 80))

    result = run_categorization(Settings(), store=mem, classifier=clf, retry_policy=NO_RETRY)

    assert result.failed == 2
    assert result.categorized == 0
    assert result.error_messages == ("No categories found",)
    assert clf.batches == []
    assert mem.write_calls == 0


def test_recategorization_without_categories_leaves_rows_untouched():
    mem = InMemoryStore(
        transactions=[
            make_tx(
                "c1",
                description="Tesco",
                status=ProcessingStatus.CATEGORISED,
                category_ai_id="cat-groceries",
                category_ai_name="Groceries",
            ),
            make_tx(
                "c2",
                description="Pret",
                status=ProcessingStatus.CATEGORISED,
                category_manual_id="cat-eating-out",
                category_manual_name="Eating Out",
            ),
        ],
        categories=[],
    )
    clf = ScriptedClassifier(lambda _tx: ("cat-transport", 80))

    result = recategorize_all(Settings(), store=mem, classifier=clf, retry_policy=NO_RETRY)

    assert result.failed == 1
    assert result.skipped == 1
    assert result.error_messages == ("No categories found",)
    assert mem.transactions["c1"].category_ai_id == "cat-groceries"
    assert mem.write_calls == 0


class _UnsavableStore(InMemoryStore):
    def __init__(self, *, lost: str, **kwargs) -> None:
        super().__init__(**kwargs)
        self.lost = lost

    def update_category(self, transaction_id, *args, **kwargs) -> None:
        if transaction_id == self.lost:
            raise KeyError(transaction_id)
        super().update_category(transaction_id, *args, **kwargs)


def test_one_unsaved_category_does_not_stop_the_others():
    mem = _UnsavableStore(
        lost="n1",
        transactions=[
            make_tx("n1", description="Tesco"),
            make_tx("n2", description="Tesco Metro"),
            make_tx("n3", description="Tesco Express"),
        ],
        categories=CATEGORIES,
    )
    clf = ScriptedClassifier(lambda _tx: ("cat-groceries", 80))

    result = run_categorization(Settings(), store=mem, classifier=clf, retry_policy=NO_RETRY)

    assert result.processed == 3
    assert result.categorized == 2
    assert result.failed == 1
    [message] = result.error_messages
    assert message.startswith("n1: failed to save category")
    assert mem.transactions["n2"].processing_status is ProcessingStatus.CATEGORISED
    assert mem.transactions["n3"].processing_status is ProcessingStatus.CATEGORISED
    assert mem.transactions["n1"].processing_status is ProcessingStatus.NORMALISED
