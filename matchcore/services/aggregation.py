from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from matchcore.config import REJECTED_SCORE, MatchingConfig
from matchcore.questionnaire import Catalogue
from matchcore.schemas import MatchingUser, QuestionResponse
from matchcore.services.scoring import is_dealbreaker_violated, score_directional

logger = logging.getLogger(__name__)

LOW_SCORE_CUTOFF = 0.3
ASYMMETRY_CUTOFF = 0.4


@dataclass(frozen=True)
class ScoringProfile:
    """A user plus their normalized responses, built once per run."""

    user: MatchingUser
    responses: dict[str, QuestionResponse]

    @property
    def user_id(self) -> str:
        return self.user.user_id


@dataclass(frozen=True)
class QuestionContribution:
    question_id: str
    section: str
    score_a_to_b: float | None
    score_b_to_a: float | None
    weight_a: float
    weight_b: float


@dataclass
class PairScore:
    user_a: str
    user_b: str
    score_a_to_b: float
    score_b_to_a: float
    total_score: float
    bidirectional_score: float
    hard_filtered: bool = False
    reasons: list[str] = field(default_factory=list)
    meets_threshold: bool = False
    contributions: list[QuestionContribution] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "user_a": self.user_a,
            "user_b": self.user_b,
            "score_a_to_b": self.score_a_to_b,
            "score_b_to_a": self.score_b_to_a,
            "total_score": self.total_score,
            "bidirectional_score": self.bidirectional_score,
            "hard_filtered": self.hard_filtered,
            "reasons": list(self.reasons),
            "meets_threshold": self.meets_threshold,
        }


def canonical_pair(user_a: str, user_b: str) -> tuple[str, str]:
    return tuple(sorted((user_a, user_b)))


def combine_directional(a_to_b: float, b_to_a: float, cfg: MatchingConfig) -> float:
    mean = (a_to_b + b_to_a) / 2.0
    if cfg.score_combiner == "min":
        return min(a_to_b, b_to_a)
    if cfg.score_combiner == "mutuality":
        return cfg.mutuality_alpha * min(a_to_b, b_to_a) + (1.0 - cfg.mutuality_alpha) * mean
    return mean


def _section_total(sums: dict[str, list[float]], cfg: MatchingConfig) -> float:
    """Scale per-section weighted means into one 0-100 directional score.

    Sections where nothing could be scored drop out and the remaining section
    weights are renormalized.
    """
    numerator = 0.0
    weight_total = 0.0
    for section, (weighted, weights) in sums.items():
        if weights <= 0:
            continue
        section_weight = cfg.section_weights.get(section, 0.0)
        numerator += section_weight * (weighted / weights)
        weight_total += section_weight
    if weight_total <= 0:
        return 0.0
    return max(0.0, min(100.0, 100.0 * numerator / weight_total))


def score_pair(
    profile_a: ScoringProfile,
    profile_b: ScoringProfile,
    catalogue: Catalogue,
    cfg: MatchingConfig,
) -> PairScore:
    """Score an unordered pair in both directions and combine.

    Arguments are put in canonical order first, so score_pair(a, b) and
    score_pair(b, a) produce the same PairScore.
    """
    if profile_b.user_id < profile_a.user_id:
        profile_a, profile_b = profile_b, profile_a

    reasons: list[str] = []
    sums_ab: dict[str, list[float]] = {}
    sums_ba: dict[str, list[float]] = {}
    contributions: list[QuestionContribution] = []

    for question in catalogue:
        resp_a = profile_a.responses.get(question.id)
        resp_b = profile_b.responses.get(question.id)

        if is_dealbreaker_violated(question, resp_a, resp_b, cfg):
            reasons.append(f"dealbreaker:{question.id}:{profile_a.user_id}")
        if is_dealbreaker_violated(question, resp_b, resp_a, cfg):
            reasons.append(f"dealbreaker:{question.id}:{profile_b.user_id}")
        if resp_a is None or resp_b is None:
            continue

        ab = score_directional(question, resp_a, resp_b, cfg)
        ba = score_directional(question, resp_b, resp_a, cfg)
        # doesn't-matter answers count at the baseline multiplier
        w_a = 1.0 if resp_a.preference.doesnt_matter else cfg.multiplier(resp_a.importance)
        w_b = 1.0 if resp_b.preference.doesnt_matter else cfg.multiplier(resp_b.importance)
        if ab is not None:
            acc = sums_ab.setdefault(question.section, [0.0, 0.0])
            acc[0] += ab * w_a
            acc[1] += w_a
        if ba is not None:
            acc = sums_ba.setdefault(question.section, [0.0, 0.0])
            acc[0] += ba * w_b
            acc[1] += w_b
        contributions.append(QuestionContribution(question.id, question.section, ab, ba, w_a, w_b))

    a_to_b = _section_total(sums_ab, cfg)
    b_to_a = _section_total(sums_ba, cfg)
    total = (a_to_b + b_to_a) / 2.0

    if reasons:
        return PairScore(
            user_a=profile_a.user_id,
            user_b=profile_b.user_id,
            score_a_to_b=round(a_to_b, 6),
            score_b_to_a=round(b_to_a, 6),
            total_score=round(total, 6),
            bidirectional_score=REJECTED_SCORE,
            hard_filtered=True,
            reasons=reasons,
            meets_threshold=False,
            contributions=contributions,
        )

    combined = round(combine_directional(a_to_b, b_to_a, cfg), 6)
    return PairScore(
        user_a=profile_a.user_id,
        user_b=profile_b.user_id,
        score_a_to_b=round(a_to_b, 6),
        score_b_to_a=round(b_to_a, 6),
        total_score=round(total, 6),
        bidirectional_score=combined,
        meets_threshold=combined >= cfg.min_match_score,
        contributions=contributions,
    )


def best_pair_scores(pair_scores: Iterable[PairScore]) -> dict[str, float]:
    """Each user's highest combined score over the pairs that survived hard filters."""
    best: dict[str, float] = {}
    for p in pair_scores:
        if p.hard_filtered:
            continue
        for user_id in (p.user_a, p.user_b):
            if p.bidirectional_score > best.get(user_id, 0.0):
                best[user_id] = p.bidirectional_score
    return best


def passes_relative_threshold(pair: PairScore, best: dict[str, float], beta: float) -> bool:
    """Neither side settles for much less than their own best option.

    Requires a->b >= beta * best(a) and b->a >= beta * best(b).
    """
    if beta <= 0:
        return True
    return (
        pair.score_a_to_b >= beta * best.get(pair.user_a, 0.0)
        and pair.score_b_to_a >= beta * best.get(pair.user_b, 0.0)
    )


def pair_diagnostics(pair: PairScore) -> dict[str, Any]:
    low: list[dict[str, Any]] = []
    asymmetric: list[dict[str, Any]] = []
    for c in pair.contributions:
        scores = [s for s in (c.score_a_to_b, c.score_b_to_a) if s is not None]
        avg = sum(scores) / len(scores) if scores else None
        if avg is not None and avg < LOW_SCORE_CUTOFF:
            low.append({"question_id": c.question_id, "score": round(avg, 4)})
        if c.score_a_to_b is not None and c.score_b_to_a is not None:
            if abs(c.score_a_to_b - c.score_b_to_a) > ASYMMETRY_CUTOFF:
                asymmetric.append(
                    {
                        "question_id": c.question_id,
                        "score_a_to_b": round(c.score_a_to_b, 4),
                        "score_b_to_a": round(c.score_b_to_a, 4),
                    }
                )
    low.sort(key=lambda d: d["score"])
    return {
        "question_count": len(pair.contributions),
        "dealbreakers": [r for r in pair.reasons if r.startswith("dealbreaker:")],
        "low_score_questions": low,
        "asymmetric_preferences": asymmetric,
    }
