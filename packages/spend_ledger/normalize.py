"""One normalization pass over the staged rows of each bank source.

Per row, in read order: skip blank rows, normalize, skip duplicates, convert
currency, mark NORMALISED and register the transaction in the run's
duplicate index. A row that fails validation is counted as an error and
dropped; a transaction whose currency cannot be converted is stored with
status ERROR. A later run that sees the same row again retries it under the
stored id, so the ERROR row is overwritten rather than duplicated. Each
source's transactions are written with a single ``write_batch`` call at the
end of the source.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from .currency import CurrencyConverter
from .duplicates import DuplicateIndex
from .errors import ConversionError, LedgerError
from .logging_setup import LoggerLike, get_logger
from .models import NormalizationResult, SourceNormalizationResult, Transaction, utcnow
from .normalizers import TransactionNormalizer
from .status import mark_error, mark_normalised
from .storage import LedgerStore
from .validation import is_blank_row

_logger = get_logger("spend_ledger.normalize")


class NormalizationRun:
    """Drive normalization for one processing run.

    The converter and duplicate index passed in must be scoped to this run;
    neither is shared between runs. ``failed`` holds the stored ERROR
    transactions that this run may retry.
    """

    def __init__(
        self,
        store: LedgerStore,
        *,
        normalizer: TransactionNormalizer,
        converter: CurrencyConverter,
        duplicate_index: DuplicateIndex,
        processing_run_id: str,
        failed: Iterable[Transaction] = (),
        logger: LoggerLike | None = None,
    ) -> None:
        self._store = store
        self._failed = {tx.original_transaction_id: tx for tx in failed}
        self._normalizer = normalizer
        self._converter = converter
        self._index = duplicate_index
        self.processing_run_id = processing_run_id
        self._log = logger or _logger

    def _process_row(
        self,
        row_number: int,
        row: Mapping[str, Any],
        source_id: str,
        result: SourceNormalizationResult,
        out: list[Transaction],
    ) -> None:
        try:
            tx = self._normalizer.normalize(row, source_id)
        except LedgerError as e:
            message = f"{source_id} row {row_number}: {e}"
            self._log.error(
                "normalize:row_invalid source=%s row=%d error=%s", source_id, row_number, e
            )
            result.record_error(message)
            return

        check = self._index.check(tx)
        if check.is_duplicate:
            result.duplicates += 1
            self._log.debug(
                "normalize:duplicate source=%s row=%d original_id=%s",
                source_id,
                row_number,
                tx.original_transaction_id,
            )
            return

        previous = self._failed.pop(tx.original_transaction_id, None)
        if previous is not None:
            # Overwrite the stored ERROR row instead of adding a second copy.
            tx.id = previous.id
            tx.created_at = previous.created_at
            self._log.info(
                "normalize:retry_error source=%s row=%d tx_id=%s", source_id, row_number, tx.id
            )

        try:
            self._converter.apply(tx)
        except ConversionError as e:
            message = f"{source_id} row {row_number}: {e}"
            self._log.error(
                "normalize:conversion_failed source=%s row=%d currency=%s",
                source_id,
                row_number,
                e.currency,
            )
            mark_error(tx, str(e))
            result.record_error(message)
            out.append(tx)
            self._index.register(tx)
            return

        mark_normalised(tx)
        out.append(tx)
        self._index.register(tx)
        result.normalized += 1

    def process_source(self, source_id: str) -> SourceNormalizationResult:
        """Normalize every staged row of ``source_id``.

        Never raises for per-row problems; a failure to read or write the
        source is recorded as one error on the returned result.
        """

        result = SourceNormalizationResult(source_id=source_id)
        try:
            rows = self._store.read_source_rows(source_id)
        except Exception as e:  # noqa: BLE001 - reported on the source result
            self._log.exception("normalize:source_read_failed source=%s", source_id)
            result.record_error(f"{source_id}: failed to read rows: {e}")
            return result

        self._log.info("normalize:source_start source=%s rows=%d", source_id, len(rows))
        batch: list[Transaction] = []
        for row_number, row in enumerate(rows, start=1):
            if is_blank_row(row):
                continue
            result.total_rows += 1
            self._process_row(row_number, row, source_id, result, batch)

        try:
            self._store.write_batch(batch)
        except Exception as e:  # noqa: BLE001 - reported on the source result
            self._log.exception("normalize:write_failed source=%s count=%d", source_id, len(batch))
            result.record_error(f"{source_id}: failed to write {len(batch)} transactions: {e}")
            result.normalized = 0

        self._log.info(
            "normalize:source_done source=%s total=%d normalized=%d duplicates=%d errors=%d",
            source_id,
            result.total_rows,
            result.normalized,
            result.duplicates,
            result.errors,
        )
        return result

    def process_all(self, source_ids: Iterable[str]) -> NormalizationResult:
        started = utcnow()
        sources = tuple(self.process_source(s) for s in source_ids)
        try:
            self._store.save_rate_snapshots(self._converter.snapshots())
        except Exception:  # noqa: BLE001 - audit trail only
            self._log.exception("normalize:snapshot_write_failed")
        return NormalizationResult(
            processing_run_id=self.processing_run_id,
            sources=sources,
            started_at=started,
            finished_at=utcnow(),
        )


__all__ = ["NormalizationRun"]
