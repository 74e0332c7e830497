"""Processing-status lifecycle for :class:`~spend_ledger.models.Transaction`.

Allowed moves::

    UNPROCESSED -> NORMALISED -> CATEGORISED
    any         -> ERROR
    ERROR       -> NORMALISED            (retry)
    CATEGORISED -> CATEGORISED           (re-categorization in place)

CATEGORISED only goes back to NORMALISED through :func:`reset_ai_category`,
which clears AI fields and never touches a manual override.
"""

from __future__ import annotations

from .errors import InvalidStatusTransitionError
from .models import ProcessingStatus, Transaction, utcnow

_ALLOWED: dict[ProcessingStatus, frozenset[ProcessingStatus]] = {
    ProcessingStatus.UNPROCESSED: frozenset({ProcessingStatus.NORMALISED, ProcessingStatus.ERROR}),
    ProcessingStatus.NORMALISED: frozenset({ProcessingStatus.CATEGORISED, ProcessingStatus.ERROR}),
    ProcessingStatus.CATEGORISED: frozenset(
        {ProcessingStatus.CATEGORISED, ProcessingStatus.ERROR}
    ),
    ProcessingStatus.ERROR: frozenset({ProcessingStatus.NORMALISED, ProcessingStatus.ERROR}),
}


def can_transition(current: ProcessingStatus, target: ProcessingStatus) -> bool:
    return target in _ALLOWED.get(current, frozenset())


def _transition(tx: Transaction, target: ProcessingStatus) -> None:
    if not can_transition(tx.processing_status, target):
        raise InvalidStatusTransitionError(tx.processing_status, target)
    tx.processing_status = target
    tx.modified_at = utcnow()


def mark_normalised(tx: Transaction) -> None:
    _transition(tx, ProcessingStatus.NORMALISED)
    tx.normalised_at = tx.modified_at
    tx.error_message = None


def mark_categorised(tx: Transaction) -> None:
    _transition(tx, ProcessingStatus.CATEGORISED)
    tx.categorised_at = tx.modified_at
    tx.error_message = None


def mark_error(tx: Transaction, message: str) -> None:
    _transition(tx, ProcessingStatus.ERROR)
    tx.error_message = message


def retry_from_error(tx: Transaction) -> None:
    """Move an ERROR transaction back to NORMALISED so it can be reprocessed."""

    if tx.processing_status is not ProcessingStatus.ERROR:
        raise InvalidStatusTransitionError(tx.processing_status, ProcessingStatus.NORMALISED)
    mark_normalised(tx)


def reset_ai_category(tx: Transaction) -> None:
    """Clear the AI category and return a CATEGORISED transaction to NORMALISED.

    Manual override fields are preserved untouched. Transactions in any other
    status only have their AI fields cleared.
    """

    tx.category_ai_id = None
    tx.category_ai_name = None
    tx.category_confidence_score = None
    tx.categorised_at = None
    if tx.processing_status is ProcessingStatus.CATEGORISED:
        tx.processing_status = ProcessingStatus.NORMALISED
    tx.modified_at = utcnow()


__all__ = [
    "can_transition",
    "mark_categorised",
    "mark_error",
    "mark_normalised",
    "reset_ai_category",
    "retry_from_error",
]
