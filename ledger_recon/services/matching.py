"""Statement line scoring and best-match selection.

Scores are an additive point budget rather than a weighted probability, so
every total can be explained from its parts:

    amount       40  exact (within tolerance) or nothing
    date         30  same day, 25 / 20 for one / two days of posting lag
    description  30  banded Levenshtein similarity

Everything here is pure: no database access, no shared state.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any

from rapidfuzz.distance import Levenshtein

from ledger_recon.config import settings
from ledger_recon.models import MatchConfidence, Transaction

AMOUNT_POINTS = 40
DATE_POINTS = {0: 30, 1: 25, 2: 20}
# (exclusive lower bound on similarity, points), checked in order
DESCRIPTION_BANDS: tuple[tuple[float, int], ...] = (
    (0.8, 30),
    (0.6, 25),
    (0.4, 20),
    (0.2, 15),
)
MAX_SCORE = 100


@dataclass(frozen=True)
class MatchingConfig:
    """Runtime configuration for statement matching."""

    threshold: int
    amount_tolerance: Decimal


DEFAULT_CONFIG = MatchingConfig(threshold=60, amount_tolerance=Decimal("0.01"))


def load_matching_config() -> MatchingConfig:
    """Build the matching config from application settings."""
    return MatchingConfig(
        threshold=settings.reconciliation_match_threshold,
        amount_tolerance=settings.reconciliation_amount_tolerance,
    )


@dataclass(frozen=True)
class StatementEntry:
    """A validated bank statement line, before it is persisted."""

    amount: Decimal
    txn_date: date
    description: str
    reference_number: str | None = None


@dataclass(frozen=True)
class MatchDetails:
    """How a score was put together, stored with the line for audit."""

    amount_match: bool
    date_match: bool
    date_difference: int
    description_similarity: float

    def as_dict(self) -> dict[str, Any]:
        return {
            "amountMatch": self.amount_match,
            "dateMatch": self.date_match,
            "dateDifference": self.date_difference,
            "descriptionSimilarity": self.description_similarity,
        }


@dataclass(frozen=True)
class MatchScore:
    total: int
    details: MatchDetails


@dataclass(frozen=True)
class MatchResult:
    """Winning candidate for a statement line."""

    transaction: Transaction
    confidence: MatchConfidence
    score: int
    details: MatchDetails


def amounts_match(
    line_amount: Decimal,
    candidate_amount: Decimal,
    tolerance: Decimal = DEFAULT_CONFIG.amount_tolerance,
) -> bool:
    """Compare absolute amounts; statement and ledger signs differ by convention."""
    return abs(abs(candidate_amount) - abs(line_amount)) < tolerance


def date_points(day_difference: int) -> int:
    return DATE_POINTS.get(abs(day_difference), 0)


def description_similarity(a: str, b: str) -> float:
    """Case-insensitive edit-distance similarity in [0, 1].

    similarity = (len(longer) - levenshtein(longer, shorter)) / len(longer)
    """
    first = a.lower()
    second = b.lower()
    longer, shorter = (first, second) if len(first) >= len(second) else (second, first)
    if not longer:
        return 1.0
    distance = Levenshtein.distance(longer, shorter)
    return (len(longer) - distance) / len(longer)


def description_points(similarity: float) -> int:
    for lower_bound, points in DESCRIPTION_BANDS:
        if similarity > lower_bound:
            return points
    return 0


def score_match(
    line: StatementEntry,
    candidate: Transaction,
    config: MatchingConfig = DEFAULT_CONFIG,
) -> MatchScore:
    """Score one statement line against one ledger transaction (0-100)."""
    amount_match = amounts_match(line.amount, candidate.amount, config.amount_tolerance)
    day_difference = abs((candidate.txn_date - line.txn_date).days)
    similarity = description_similarity(candidate.description or "", line.description or "")

    total = (
        (AMOUNT_POINTS if amount_match else 0)
        + date_points(day_difference)
        + description_points(similarity)
    )
    details = MatchDetails(
        amount_match=amount_match,
        date_match=day_difference == 0,
        date_difference=day_difference,
        description_similarity=similarity,
    )
    return MatchScore(total=total, details=details)


def confidence_for_score(score: int) -> MatchConfidence:
    """Map a computed score to its tier.

    LOW only appears when the acceptance threshold is configured below 60;
    with the default threshold automatic matching never produces it.
    """
    if score >= MAX_SCORE:
        return MatchConfidence.EXACT
    if score >= 80:
        return MatchConfidence.HIGH
    if score >= 60:
        return MatchConfidence.MEDIUM
    return MatchConfidence.LOW


def find_best_match(
    line: StatementEntry,
    candidates: Sequence[Transaction],
    config: MatchingConfig = DEFAULT_CONFIG,
) -> MatchResult | None:
    """Pick the highest scoring candidate, or None below the threshold.

    Ties keep the earliest candidate in ``candidates`` order.
    """
    best: Transaction | None = None
    best_score: MatchScore | None = None

    for candidate in candidates:
        scored = score_match(line, candidate, config)
        if best_score is None or scored.total > best_score.total:
            best = candidate
            best_score = scored

    if best is None or best_score is None or best_score.total < config.threshold:
        return None

    return MatchResult(
        transaction=best,
        confidence=confidence_for_score(best_score.total),
        score=best_score.total,
        details=best_score.details,
    )


def match_statement_lines(
    lines: Sequence[StatementEntry],
    candidates: Sequence[Transaction],
    config: MatchingConfig = DEFAULT_CONFIG,
) -> list[MatchResult | None]:
    """Match every line independently against the same candidate pool.

    A ledger transaction is not removed from the pool once matched, so two
    statement lines may end up pointing at the same transaction.
    """
    return [find_best_match(line, candidates, config) for line in lines]
