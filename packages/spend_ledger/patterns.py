"""Historical pattern matching for categorization context.

Public API:
    - :class:`HistoricalPatternMatcher` with :meth:`find_similar` and
      :meth:`suggest_category`
    - :func:`normalize_description`, :func:`jaccard`, :func:`weighted_score`

Given a new transaction and a pool of already-categorized transactions the
matcher scores candidates three ways (exact description, fuzzy token overlap,
amount range), boosts manual overrides, and keeps the best match per
historical transaction. Suggestions are advisory: they feed the classifier's
prompt context and never assign a category on their own.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from enum import StrEnum

from .logging_setup import LoggerLike, get_logger
from .models import HistoricalPattern, ProcessingStatus, Transaction

_PUNCT_RE = re.compile(r"[^\w\s]")
_WS_RE = re.compile(r"\s+")

_logger = get_logger("spend_ledger.patterns")


class MatchType(StrEnum):
    EXACT = "exact"
    FUZZY = "fuzzy"
    AMOUNT_RANGE = "amount_range"


# Lower rank wins when one historical transaction matches several ways.
_MATCH_RANK: dict[MatchType, int] = {
    MatchType.EXACT: 1,
    MatchType.FUZZY: 2,
    MatchType.AMOUNT_RANGE: 3,
}


@dataclass(frozen=True, slots=True)
class MatcherConfig:
    lookback_days: int = 90
    manual_override_weight: float = 2.0
    fuzzy_threshold: int = 60
    amount_tolerance: float = 0.10


@dataclass(frozen=True, slots=True)
class SimilarityMatch:
    pattern: HistoricalPattern
    match_type: MatchType
    similarity_score: int
    weighted_score: float


@dataclass(frozen=True, slots=True)
class CategorySuggestion:
    category_id: str
    category_name: str
    confidence: int
    match_count: int
    has_manual_override: bool


# ---------------------------------------------------------------------------
# Scoring helpers
# ---------------------------------------------------------------------------


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def normalize_description(text: str) -> str:
    """Lowercase, drop punctuation, collapse whitespace and numeric tokens.

    Purely numeric tokens (store or terminal numbers such as ``TESCO STORES
    123``) are removed unless nothing else would remain.
    """

    s = _PUNCT_RE.sub("", text.lower())
    s = _WS_RE.sub(" ", s).strip()
    tokens = s.split(" ") if s else []
    wordy = [t for t in tokens if not t.isdigit()]
    return " ".join(wordy or tokens)


def jaccard(a: str, b: str) -> int:
    """Token-set Jaccard similarity of two normalized strings, 0..100.

    Two empty inputs score 0.
    """

    ta = set(a.split())
    tb = set(b.split())
    union = ta | tb
    if not union:
        return 0
    return _round_half_up(len(ta & tb) / len(union) * 100)


def weighted_score(score: float, was_manual_override: bool, weight: float = 2.0) -> float:
    return score * weight if was_manual_override else float(score)


def _is_eligible(
    tx: Transaction, candidate: Transaction, lookback: timedelta
) -> bool:
    if candidate.id == tx.id:
        return False
    if not candidate.is_categorized:
        return False
    if candidate.processing_status in (ProcessingStatus.ERROR, ProcessingStatus.UNPROCESSED):
        return False
    return candidate.transaction_date >= tx.transaction_date - lookback


def _amount_of(tx: Transaction) -> Decimal:
    amount = tx.reporting_amount_value
    if amount is None:
        amount = tx.original_amount_value
    return abs(amount)


# ---------------------------------------------------------------------------
# Matcher
# ---------------------------------------------------------------------------


class HistoricalPatternMatcher:
    """Score historical transactions against a new one.

    Parameters
    ----------
    config:
        Lookback window, manual-override weight, fuzzy threshold and amount
        tolerance.
    """

    def __init__(
        self, config: MatcherConfig | None = None, *, logger: LoggerLike | None = None
    ) -> None:
        self.config = config or MatcherConfig()
        self._log = logger or _logger

    def eligible_patterns(
        self, tx: Transaction, pool: Iterable[Transaction]
    ) -> list[HistoricalPattern]:
        lookback = timedelta(days=self.config.lookback_days)
        return [
            HistoricalPattern.from_transaction(c) for c in pool if _is_eligible(tx, c, lookback)
        ]

    def _weighted(self, score: int, pattern: HistoricalPattern) -> float:
        return weighted_score(
            score, pattern.was_manual_override, self.config.manual_override_weight
        )

    def _exact(self, norm: str, patterns: Sequence[HistoricalPattern]) -> list[SimilarityMatch]:
        return [
            SimilarityMatch(p, MatchType.EXACT, 100, self._weighted(100, p))
            for p in patterns
            if normalize_description(p.description) == norm
        ]

    def _fuzzy(self, norm: str, patterns: Sequence[HistoricalPattern]) -> list[SimilarityMatch]:
        out: list[SimilarityMatch] = []
        for p in patterns:
            score = jaccard(norm, normalize_description(p.description))
            if self.config.fuzzy_threshold <= score < 100:
                out.append(SimilarityMatch(p, MatchType.FUZZY, score, self._weighted(score, p)))
        return out

    def _amount_range(
        self, amount: Decimal, patterns: Sequence[HistoricalPattern]
    ) -> list[SimilarityMatch]:
        tolerance = amount * Decimal(str(self.config.amount_tolerance))
        out: list[SimilarityMatch] = []
        for p in patterns:
            diff = abs(p.amount - amount)
            if diff > tolerance:
                continue
            if tolerance == 0:
                score = 100
            else:
                score = _round_half_up(100 * (1 - float(diff / tolerance)))
            out.append(SimilarityMatch(p, MatchType.AMOUNT_RANGE, score, self._weighted(score, p)))
        return out

    def find_similar(
        self, tx: Transaction, pool: Iterable[Transaction], *, limit: int = 5
    ) -> list[SimilarityMatch]:
        """Return up to ``limit`` matches sorted by weighted score, best first.

        Each historical transaction appears at most once, under its strongest
        match type (exact, then fuzzy, then amount range), and at equal type
        under its higher weighted score.
        """

        patterns = self.eligible_patterns(tx, pool)
        if not patterns:
            return []

        norm = normalize_description(tx.description)
        candidates = [
            *self._exact(norm, patterns),
            *self._fuzzy(norm, patterns),
            *self._amount_range(_amount_of(tx), patterns),
        ]

        best: dict[str, SimilarityMatch] = {}
        for m in candidates:
            key = m.pattern.transaction_id
            current = best.get(key)
            if current is None:
                best[key] = m
                continue
            rank_new = _MATCH_RANK[m.match_type]
            rank_cur = _MATCH_RANK[current.match_type]
            if rank_new < rank_cur or (
                rank_new == rank_cur and m.weighted_score > current.weighted_score
            ):
                best[key] = m

        ranked = sorted(best.values(), key=lambda m: m.weighted_score, reverse=True)[:limit]
        self._log.debug(
            "patterns:find_similar tx_id=%s eligible=%d matches=%d",
            tx.id,
            len(patterns),
            len(ranked),
        )
        return ranked

    def suggest_category(self, matches: Sequence[SimilarityMatch]) -> CategorySuggestion | None:
        """Pick the category with the highest summed weighted score.

        Confidence combines category agreement (50 points), the average raw
        similarity of the winning matches (40 points) and a 10 point bonus when
        any of them is a manual override; capped at 100.
        """

        if not matches:
            return None

        groups: dict[str, list[SimilarityMatch]] = {}
        for m in matches:
            groups.setdefault(m.pattern.category_key, []).append(m)

        _, winner = max(
            groups.items(), key=lambda kv: sum(m.weighted_score for m in kv[1])
        )
        agreement = len(winner) / len(matches)
        avg_score = sum(m.similarity_score for m in winner) / len(winner)
        has_manual = any(m.pattern.was_manual_override for m in winner)
        confidence = min(
            100,
            _round_half_up(agreement * 50 + (avg_score / 100) * 40 + (10 if has_manual else 0)),
        )
        return CategorySuggestion(
            category_id=winner[0].pattern.category_id,
            category_name=winner[0].pattern.category_name,
            confidence=confidence,
            match_count=len(winner),
            has_manual_override=has_manual,
        )


__all__ = [
    "CategorySuggestion",
    "HistoricalPatternMatcher",
    "MatchType",
    "MatcherConfig",
    "SimilarityMatch",
    "jaccard",
    "normalize_description",
    "weighted_score",
]
