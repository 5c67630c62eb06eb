"""Weighted median over predicted dates."""

from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional, Sequence

import structlog

from observability import metrics

logger = structlog.get_logger()


@dataclass(frozen=True)
class WeightedDate:
    date: date
    weight: float


def simple_median(dates: Sequence[date]) -> Optional[date]:
    """Unweighted median; the lower middle value for even counts."""
    if not dates:
        return None
    ordered = sorted(dates)
    return ordered[(len(ordered) - 1) // 2]


def compute_median(records: Iterable[WeightedDate], fallback: date) -> date:
    """Weighted median date of ``records``.

    Walks the records in date order and returns the first date whose
    cumulative weight reaches half the total. On an exact half-weight
    boundary the earlier date wins.

    Args:
        records: Dates with their weights, any order.
        fallback: Returned when there are no records.
    """
    ordered = sorted(records, key=lambda r: r.date)
    if not ordered:
        return fallback

    total_weight = sum(r.weight for r in ordered)
    if total_weight <= 0:
        # Weights are floored at 0.1 so this only happens on corrupt rows.
        logger.warning("median.unweighted_fallback", records=len(ordered))
        metrics.counter("median.unweighted_fallback")
        return simple_median([r.date for r in ordered])

    target = total_weight / 2
    cumulative = 0.0
    for record in ordered:
        cumulative += record.weight
        if cumulative >= target:
            return record.date

    # Float drift can leave cumulative a hair under target.
    return ordered[-1].date
