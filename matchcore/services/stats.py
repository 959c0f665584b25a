from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from typing import Any

DISTRIBUTION_BUCKETS = [(0, 20), (20, 40), (40, 60), (60, 80), (80, 100)]
SUMMARY_PERCENTILES = (10, 25, 50, 75, 90)


def _percentile(values: list[float], p: float) -> float | None:
    """Linear interpolation between the closest ranks."""
    if not values:
        return None
    ordered = sorted(values)
    rank = (len(ordered) - 1) * p
    lower, upper = math.floor(rank), math.ceil(rank)
    if lower == upper:
        return round(ordered[lower], 6)
    return round(ordered[lower] + (ordered[upper] - ordered[lower]) * (rank - lower), 6)


def percentile_summary(values: list[float]) -> dict[str, float | None]:
    return {f"p{pct}": _percentile(values, pct / 100) for pct in SUMMARY_PERCENTILES}


def match_score_summary(scores: list[float]) -> dict[str, float]:
    """Median (upper middle), min and max of the final match scores; zeros when there are none."""
    if not scores:
        return {"median": 0.0, "min": 0.0, "max": 0.0}
    ordered = sorted(scores)
    return {"median": ordered[len(ordered) // 2], "min": ordered[0], "max": ordered[-1]}


def score_distribution(values: list[float]) -> list[dict[str, Any]]:
    """Counts per 20-point band; 100 falls in the top band."""
    out = []
    for lo, hi in DISTRIBUTION_BUCKETS:
        top = hi == DISTRIBUTION_BUCKETS[-1][1]
        count = sum(1 for v in values if lo <= v < hi or (top and v == hi))
        out.append({"range": f"{lo}-{hi}", "count": count})
    return out


@dataclass
class MatchingStats:
    total_users: int = 0
    eligible_users: int = 0
    ineligible_users: int = 0
    ineligible_reasons: dict[str, str] = field(default_factory=dict)
    preassigned_pairs_skipped: int = 0
    pairs_evaluated: int = 0
    hard_filtered: int = 0
    hard_filter_breakdown: dict[str, int] = field(default_factory=dict)
    dealbreaker_filtered: int = 0
    below_threshold: int = 0
    relative_threshold_filtered: int = 0
    eligible_pairs: int = 0
    final_matches: int = 0
    primary_matches: int = 0
    fallback_matches: int = 0
    matched_users: int = 0
    unmatched_users: int = 0
    average_score: float = 0.0
    median_score: float = 0.0
    min_score: float = 0.0
    max_score: float = 0.0
    average_pair_score: float = 0.0
    score_percentiles: dict[str, float | None] = field(default_factory=dict)
    score_distribution: list[dict[str, Any]] = field(default_factory=list)
    unmatched: list[dict[str, Any]] = field(default_factory=list)
    duration_ms: int = 0

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)
