from __future__ import annotations

from typing import Any

from matchcore.config import MatchingConfig
from matchcore.questionnaire import Catalogue
from matchcore.schemas import MatchingUser, QuestionResponse
from matchcore.services.scoring import score_directional

ANYONE = "anyone"
GENDER_TO_PREFERENCE = {
    "man": "men",
    "woman": "women",
    "non-binary": "non-binary",
}

REASON_SELF_PAIR = "self_pair"
REASON_GENDER = "gender_preference"
REASON_CAMPUS = "campus"
REASON_AGE = "age_range"


def _normalize_gender(value: Any) -> str | None:
    if value is None:
        return None
    v = str(value).strip().lower().replace("_", "-")
    if v == "nonbinary":
        v = "non-binary"
    return v or None


def _parse_preferences(values: Any) -> set[str]:
    if not isinstance(values, (list, tuple, set, frozenset)):
        return set()
    out: set[str] = set()
    for item in values:
        g = _normalize_gender(item)
        if g:
            out.add(g)
    return out


def accepts_gender(preferences: Any, gender: Any) -> bool:
    """Whether a preference list (``women``, ``men``, ``non-binary``, ``anyone``) accepts a gender."""
    prefs = _parse_preferences(preferences)
    g = _normalize_gender(gender)
    if not prefs or not g:
        return False
    if ANYONE in prefs:
        return True
    return g in prefs or GENDER_TO_PREFERENCE.get(g) in prefs


def gender_compatible(a: MatchingUser, b: MatchingUser) -> bool:
    return accepts_gender(a.interested_in, b.gender) and accepts_gender(b.interested_in, a.gender)


def campus_compatible(a: MatchingUser, b: MatchingUser, cfg: MatchingConfig) -> bool:
    campus_a = (a.campus or "").strip().lower()
    campus_b = (b.campus or "").strip().lower()
    if not campus_a or not campus_b or campus_a == campus_b:
        return True
    if cfg.cross_campus_policy == "both":
        return a.ok_cross_campus and b.ok_cross_campus
    return a.ok_cross_campus or b.ok_cross_campus


def _answered(user: MatchingUser, question_id: str) -> bool:
    raw = user.responses.get(question_id)
    if not isinstance(raw, dict):
        return False
    own = raw.get("ownAnswer", raw.get("answer"))
    return own not in (None, "", [], {})


def check_user_eligibility(user: MatchingUser, catalogue: Catalogue, cfg: MatchingConfig) -> tuple[bool, str | None]:
    """Decide whether a user enters the matching pool; the reason is reported, never raised."""
    if not user.questionnaire_submitted:
        return False, "questionnaire_not_submitted"
    if not _normalize_gender(user.gender):
        return False, "missing_gender"
    if not _parse_preferences(user.interested_in):
        return False, "missing_gender_preference"
    if user.age is None:
        return False, "missing_age"
    age_question = catalogue.age_question
    missing = [
        qid
        for qid in catalogue.required_ids
        if not _answered(user, qid) and not (age_question is not None and qid == age_question.id)
    ]
    if missing:
        return False, f"missing_required_answers:{','.join(missing)}"
    answered = sum(1 for q in catalogue if _answered(user, q.id))
    if answered < cfg.min_answered_questions:
        return False, f"too_few_answers:{answered}"
    return True, None


def _age_window_satisfied(
    catalogue: Catalogue,
    responses_a: dict[str, QuestionResponse],
    responses_b: dict[str, QuestionResponse],
    cfg: MatchingConfig,
) -> bool:
    q = catalogue.age_question
    if q is None:
        return True
    ra, rb = responses_a.get(q.id), responses_b.get(q.id)
    if ra is None or rb is None:
        return True
    for asker, other in ((ra, rb), (rb, ra)):
        score = score_directional(q, asker, other, cfg, strict=True)
        if score is not None and score < 1.0:
            return False
    return True


def check_pair_eligibility(
    a: MatchingUser,
    b: MatchingUser,
    cfg: MatchingConfig,
    catalogue: Catalogue | None = None,
    responses_a: dict[str, QuestionResponse] | None = None,
    responses_b: dict[str, QuestionResponse] | None = None,
) -> tuple[bool, str | None]:
    """Zero-cost hard filters applied before any scoring, in a fixed order."""
    if a.user_id == b.user_id:
        return False, REASON_SELF_PAIR
    if not gender_compatible(a, b):
        return False, REASON_GENDER
    if not campus_compatible(a, b, cfg):
        return False, REASON_CAMPUS
    if cfg.age_hard_filter and catalogue is not None:
        if not _age_window_satisfied(catalogue, responses_a or {}, responses_b or {}, cfg):
            return False, REASON_AGE
    return True, None
