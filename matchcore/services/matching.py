from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Iterable

from matchcore import repo
from matchcore.config import MatchingConfig, load_matching_config, validate_catalogue
from matchcore.questionnaire import Catalogue, load_catalogue
from matchcore.schemas import MatchingUser
from matchcore.services.aggregation import (
    PairScore,
    ScoringProfile,
    best_pair_scores,
    canonical_pair,
    passes_relative_threshold,
    score_pair,
)
from matchcore.services.blossom import (
    SOURCE_FALLBACK,
    Match,
    UnmatchedUser,
    build_edges,
    run_blossom_with_fallback,
    unmatched_report,
    validate_matching,
)
from matchcore.services.eligibility import check_pair_eligibility, check_user_eligibility
from matchcore.services.normalizer import normalize_responses
from matchcore.services.stats import MatchingStats, match_score_summary, percentile_summary, score_distribution

logger = logging.getLogger(__name__)


@dataclass
class MatchingRunResult:
    matches: list[Match]
    pair_scores: list[PairScore]
    stats: MatchingStats
    ineligible: dict[str, str] = field(default_factory=dict)
    unmatched: list[UnmatchedUser] = field(default_factory=list)


def build_scoring_profiles(
    users: Iterable[MatchingUser],
    catalogue: Catalogue,
    cfg: MatchingConfig,
) -> tuple[list[ScoringProfile], dict[str, str]]:
    """Normalize every eligible user once; ineligible users come back with their reason."""
    profiles: list[ScoringProfile] = []
    ineligible: dict[str, str] = {}
    seen: set[str] = set()
    for user in sorted(users, key=lambda u: u.user_id):
        if user.user_id in seen:
            logger.warning("[MATCHING] duplicate user %s ignored", user.user_id)
            continue
        seen.add(user.user_id)
        ok, reason = check_user_eligibility(user, catalogue, cfg)
        if not ok:
            ineligible[user.user_id] = reason or "ineligible"
            continue
        responses = normalize_responses(user.responses, catalogue, user_id=user.user_id, fallback_age=user.age)
        profiles.append(ScoringProfile(user=user, responses=responses))
    return profiles, ineligible


def _score_chunk(
    chunk: list[tuple[ScoringProfile, ScoringProfile]],
    catalogue: Catalogue,
    cfg: MatchingConfig,
) -> list[PairScore]:
    return [score_pair(a, b, catalogue, cfg) for a, b in chunk]


def score_candidate_pairs(
    profiles: list[ScoringProfile],
    catalogue: Catalogue,
    cfg: MatchingConfig,
    stats: MatchingStats,
    preassigned_pairs: set[tuple[str, str]] | None = None,
) -> list[PairScore]:
    """Hard-filter the i<j candidate space, then score survivors.

    Scores come back in candidate order whether or not the thread pool is used.
    """
    preassigned_pairs = preassigned_pairs or set()
    candidates: list[tuple[ScoringProfile, ScoringProfile]] = []

    for i in range(len(profiles)):
        for j in range(i + 1, len(profiles)):
            a = profiles[i]
            b = profiles[j]
            if canonical_pair(a.user_id, b.user_id) in preassigned_pairs:
                stats.preassigned_pairs_skipped += 1
                continue
            ok, reason = check_pair_eligibility(a.user, b.user, cfg, catalogue, a.responses, b.responses)
            if not ok:
                stats.hard_filtered += 1
                stats.hard_filter_breakdown[reason] = stats.hard_filter_breakdown.get(reason, 0) + 1
                continue
            candidates.append((a, b))

    size = cfg.scoring_chunk_size
    chunks = [candidates[k : k + size] for k in range(0, len(candidates), size)]
    if cfg.parallel_scoring and len(chunks) > 1:
        with ThreadPoolExecutor(max_workers=cfg.max_concurrent_scoring) as pool:
            scored_chunks = list(pool.map(lambda c: _score_chunk(c, catalogue, cfg), chunks))
    else:
        scored_chunks = [_score_chunk(c, catalogue, cfg) for c in chunks]

    scores = [p for chunk in scored_chunks for p in chunk]
    stats.pairs_evaluated = len(scores)
    best = best_pair_scores(scores)
    for p in scores:
        if p.hard_filtered:
            stats.dealbreaker_filtered += 1
        elif not p.meets_threshold:
            stats.below_threshold += 1
        elif not passes_relative_threshold(p, best, cfg.relative_threshold_beta):
            stats.relative_threshold_filtered += 1
        else:
            stats.eligible_pairs += 1
    return scores


def run_matching(
    users: list[MatchingUser],
    cfg: MatchingConfig | None = None,
    catalogue: Catalogue | None = None,
    preassigned_pairs: set[tuple[str, str]] | None = None,
) -> MatchingRunResult:
    """Score every eligible pair and assign matches. Pure: no persistence."""
    started = time.perf_counter()
    cfg = cfg or load_matching_config()
    catalogue = catalogue or load_catalogue()
    validate_catalogue(cfg, catalogue.sections)

    stats = MatchingStats(total_users=len({u.user_id for u in users}))
    profiles, ineligible = build_scoring_profiles(users, catalogue, cfg)
    stats.eligible_users = len(profiles)
    stats.ineligible_users = len(ineligible)
    stats.ineligible_reasons = dict(ineligible)
    logger.info(
        "[MATCHING] users=%s eligible=%s ineligible=%s",
        stats.total_users,
        stats.eligible_users,
        stats.ineligible_users,
    )

    pair_scores = score_candidate_pairs(profiles, catalogue, cfg, stats, preassigned_pairs)

    # every scoring task is finished before the matcher starts
    edges = build_edges(pair_scores, cfg.relative_threshold_beta)
    user_ids = [p.user_id for p in profiles]
    matches = run_blossom_with_fallback(edges, user_ids, cfg.matches_per_user) if user_ids else []
    errors = validate_matching(matches, cfg.matches_per_user)
    if errors:
        logger.error("[MATCHING] invalid match set: %s", "; ".join(errors))
        raise RuntimeError(f"matcher produced an invalid match set: {errors[0]}")
    unmatched = unmatched_report(edges, user_ids, matches)

    scored = [p.bidirectional_score for p in pair_scores if not p.hard_filtered]
    matched_users = {m.user_a for m in matches} | {m.user_b for m in matches}
    stats.final_matches = len(matches)
    stats.fallback_matches = sum(1 for m in matches if m.source == SOURCE_FALLBACK)
    stats.primary_matches = stats.final_matches - stats.fallback_matches
    stats.matched_users = len(matched_users)
    stats.unmatched_users = stats.eligible_users - stats.matched_users
    stats.average_score = round(sum(m.score for m in matches) / len(matches), 4) if matches else 0.0
    summary = match_score_summary([m.score for m in matches])
    stats.median_score = summary["median"]
    stats.min_score = summary["min"]
    stats.max_score = summary["max"]
    stats.average_pair_score = round(sum(scored) / len(scored), 4) if scored else 0.0
    stats.score_percentiles = percentile_summary(scored)
    stats.score_distribution = score_distribution(scored)
    stats.unmatched = [u.as_dict() for u in unmatched]
    stats.duration_ms = int((time.perf_counter() - started) * 1000)

    if not matches:
        logger.info("[MATCHING] no matches produced (eligible_pairs=%s)", stats.eligible_pairs)
    else:
        logger.info(
            "[MATCHING] matches=%s primary=%s fallback=%s matched_users=%s avg_score=%s",
            stats.final_matches,
            stats.primary_matches,
            stats.fallback_matches,
            stats.matched_users,
            stats.average_score,
        )
    return MatchingRunResult(
        matches=matches,
        pair_scores=pair_scores,
        stats=stats,
        ineligible=ineligible,
        unmatched=unmatched,
    )


def run_batch(
    db,
    batch_number: int,
    cfg: MatchingConfig | None = None,
    catalogue: Catalogue | None = None,
    dry_run: bool = False,
) -> MatchingRunResult:
    """Load the pool, match it and atomically replace the batch's stored matches."""
    cfg = cfg or load_matching_config()
    users = repo.fetch_matching_users(db)
    preassigned = repo.fetch_preassigned_pairs(db, batch_number)
    result = run_matching(users, cfg, catalogue, preassigned)
    if dry_run:
        logger.info("[MATCHING] batch=%s dry run, nothing persisted", batch_number)
        return result

    try:
        repo.replace_batch_matches(db, batch_number, result.matches)
    except Exception:
        repo.record_batch_run(db, batch_number, "failed", result.stats.as_dict())
        raise
    repo.record_batch_run(db, batch_number, "completed", result.stats.as_dict())
    return result
