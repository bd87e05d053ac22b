"""Percentile statistics over head-to-head totals.

Pure functions, no database access:

- ``line_percentile``: inclusive rank of a line against historical totals
- ``summarize``: nearest-rank P05/P95, median, min and max
- ``is_sufficient_sample``: the display threshold check
- ``classify_edge``: over / under / none from a line percentile
- ``grade_outcome`` and ``tally_edge_results``: hit/miss grading with pushes excluded
"""
import math
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Sequence

from app.core.config import settings


class EdgeDirection(str, Enum):
    OVER = "over"
    UNDER = "under"
    NONE = "none"


class Outcome(str, Enum):
    OVER = "over"
    UNDER = "under"
    PUSH = "push"


@dataclass(frozen=True)
class TotalsSummary:
    n_games: int
    p05: float
    p95: float
    median: float
    min_total: float
    max_total: float


def line_percentile(totals: Sequence[float], line: float) -> Optional[float]:
    """
    Percentage of historical totals at or below the line.

    Ties count as "at or below". Returns None only when there are no
    totals; small samples still get a number (see ``is_sufficient_sample``).

    Examples:
        >>> line_percentile([180, 190, 200, 210, 220], 200)
        60.0
        >>> line_percentile([180, 190, 200, 210, 220], 150)
        0.0
        >>> line_percentile([], 200) is None
        True
    """
    if not totals:
        return None
    at_or_below = sum(1 for total in totals if total <= line)
    return at_or_below * 100 / len(totals)


def nearest_rank(sorted_totals: Sequence[float], quantile: float) -> float:
    """
    Nearest-rank order statistic: ``sorted[max(1, ceil(q * n)) - 1]``.

    Raises:
        ValueError: If the sequence is empty
    """
    if not sorted_totals:
        raise ValueError("nearest_rank requires at least one value")
    rank = max(1, math.ceil(quantile * len(sorted_totals)))
    return sorted_totals[rank - 1]


def median(sorted_totals: Sequence[float]) -> float:
    """Median; the mean of the two middle values for an even count."""
    if not sorted_totals:
        raise ValueError("median requires at least one value")
    n = len(sorted_totals)
    mid = n // 2
    if n % 2 == 1:
        return float(sorted_totals[mid])
    return (sorted_totals[mid - 1] + sorted_totals[mid]) / 2


def summarize(totals: Iterable[float]) -> Optional[TotalsSummary]:
    """
    Order statistics over a set of totals, or None for an empty set.

    Example:
        >>> summarize([220, 180, 200, 190, 210])
        TotalsSummary(n_games=5, p05=180, p95=220, median=200.0, min_total=180, max_total=220)
    """
    ordered = sorted(totals)
    if not ordered:
        return None
    return TotalsSummary(
        n_games=len(ordered),
        p05=nearest_rank(ordered, 0.05),
        p95=nearest_rank(ordered, 0.95),
        median=median(ordered),
        min_total=ordered[0],
        max_total=ordered[-1],
    )


def is_sufficient_sample(n_games: int, minimum: Optional[int] = None) -> bool:
    """True when a matchup has enough history to be shown to users."""
    threshold = settings.MIN_SAMPLE_SIZE if minimum is None else minimum
    return n_games >= threshold


def classify_edge(
    percentile: Optional[float],
    over_threshold: Optional[float] = None,
    under_threshold: Optional[float] = None,
) -> EdgeDirection:
    """
    Edge direction implied by a line percentile.

    A low percentile means the line sits below most historical totals,
    so the prediction is "over"; a high percentile predicts "under".

    Examples:
        >>> classify_edge(20.0)
        <EdgeDirection.OVER: 'over'>
        >>> classify_edge(70.0)
        <EdgeDirection.UNDER: 'under'>
        >>> classify_edge(50.0)
        <EdgeDirection.NONE: 'none'>
    """
    if percentile is None:
        return EdgeDirection.NONE

    over_at = settings.EDGE_OVER_PERCENTILE if over_threshold is None else over_threshold
    under_at = settings.EDGE_UNDER_PERCENTILE if under_threshold is None else under_threshold

    if percentile <= over_at:
        return EdgeDirection.OVER
    if percentile >= under_at:
        return EdgeDirection.UNDER
    return EdgeDirection.NONE


def grade_outcome(final_total: float, line: float) -> Outcome:
    """Actual result of a total against a line; equality is a push."""
    if final_total > line:
        return Outcome.OVER
    if final_total < line:
        return Outcome.UNDER
    return Outcome.PUSH


@dataclass
class EdgeTally:
    over_hits: int = 0
    over_misses: int = 0
    under_hits: int = 0
    under_misses: int = 0
    pushes: int = 0

    @property
    def graded(self) -> int:
        return self.over_hits + self.over_misses + self.under_hits + self.under_misses

    @property
    def hits(self) -> int:
        return self.over_hits + self.under_hits

    @property
    def hit_rate(self) -> Optional[float]:
        if not self.graded:
            return None
        return self.hits * 100 / self.graded

    def as_dict(self) -> dict:
        return {
            "over": {"hits": self.over_hits, "misses": self.over_misses},
            "under": {"hits": self.under_hits, "misses": self.under_misses},
            "pushes": self.pushes,
            "graded": self.graded,
            "hit_rate": self.hit_rate,
        }


def tally_edge_results(results: Iterable[tuple]) -> EdgeTally:
    """
    Tally (direction, final_total, line) triples into hits and misses.

    Pushes are counted separately and excluded from hit/miss; rows with
    no edge direction are ignored.
    """
    tally = EdgeTally()
    for direction, final_total, line in results:
        direction = EdgeDirection(direction)
        if direction is EdgeDirection.NONE:
            continue

        outcome = grade_outcome(final_total, line)
        if outcome is Outcome.PUSH:
            tally.pushes += 1
        elif direction is EdgeDirection.OVER:
            if outcome is Outcome.OVER:
                tally.over_hits += 1
            else:
                tally.over_misses += 1
        else:
            if outcome is Outcome.UNDER:
                tally.under_hits += 1
            else:
                tally.under_misses += 1
    return tally
