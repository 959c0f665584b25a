"""Directional per-question scoring.

Every scorer answers one question: how well does the other user's own answer
satisfy the asker's stated preference? Results are in [0, 1]. ``None`` means
the pair of answers cannot be compared (for example, data drift left the two
users with different answer kinds) and the question is skipped.
"""
from __future__ import annotations

import logging
from typing import Callable

from matchcore.config import MatchingConfig
from matchcore.questionnaire import QuestionDefinition
from matchcore.schemas import (
    AgeAnswer,
    AnswerKind,
    CategoricalAnswer,
    CompoundAnswer,
    LikertAnswer,
    LoveLanguagesAnswer,
    MultiSelectAnswer,
    OrdinalAnswer,
    PreferenceRelation as Rel,
    QuestionResponse,
)

logger = logging.getLogger(__name__)

NEUTRAL = 0.5
MULTI_SELECT_OVERLAP_FLOOR = 0.5
CATEGORICAL_SIMILAR_MISS = 0.5
MATRIX_MISSING_CELL = 0.5


def _clamp(v: float) -> float:
    return max(0.0, min(1.0, float(v)))


def jaccard(a: frozenset[str] | set[str], b: frozenset[str] | set[str]) -> float:
    union = a | b
    if not union:
        return NEUTRAL
    return len(a & b) / len(union)


def coverage(wanted: frozenset[str] | set[str], offered: frozenset[str] | set[str]) -> float:
    """Share of ``wanted`` present in ``offered``; neutral when nothing is wanted."""
    if not wanted:
        return NEUTRAL
    return len(wanted & offered) / len(wanted)


def closeness(own: int, other: int, max_diff: int) -> float:
    if max_diff <= 0:
        return 1.0
    return _clamp(1.0 - abs(own - other) / max_diff)


def directional(own: int, other: int, max_diff: int, want_more: bool) -> float:
    """Full credit when the other is strictly on the wanted side; half credit at a tie, falling to zero."""
    if max_diff <= 0:
        return 1.0
    diff = other - own if want_more else own - other
    if diff > 0:
        return 1.0
    return _clamp(0.5 * (1.0 - abs(diff) / max_diff))


def _scale_score(relation: Rel | None, own: int, other: int, max_diff: int, values, other_label: str) -> float:
    if relation == Rel.DIFFERENT:
        return 1.0 - closeness(own, other, max_diff)
    if relation == Rel.MORE:
        return directional(own, other, max_diff, want_more=True)
    if relation == Rel.LESS:
        return directional(own, other, max_diff, want_more=False)
    if relation == Rel.SPECIFIC_VALUES:
        return 1.0 if other_label in values else 0.0
    return closeness(own, other, max_diff)


def _score_categorical(q, asker, own: CategoricalAnswer, other: CategoricalAnswer, cfg, strict) -> float:
    relation = asker.preference.relation
    if q.wildcard and q.wildcard in (own.value, other.value) and relation != Rel.SPECIFIC_VALUES:
        return 1.0
    if relation == Rel.DIFFERENT:
        return 0.0 if own.value == other.value else 1.0
    if relation == Rel.SPECIFIC_VALUES:
        return 1.0 if other.value in asker.preference.values else 0.0
    if relation == Rel.COMPATIBLE:
        if not q.compatibility:
            return 1.0 if own.value == other.value else 0.0
        row = q.compatibility.get(own.value) or {}
        return _clamp(row.get(other.value, MATRIX_MISSING_CELL))
    if relation == Rel.SIMILAR:
        a, b = q.position(own.value), q.position(other.value)
        if q.ordered and a is not None and b is not None:
            return closeness(a, b, len(q.ordered_options) - 1)
        return 1.0 if own.value == other.value else CATEGORICAL_SIMILAR_MISS
    return 1.0 if own.value == other.value else 0.0


def _score_multi_select(q, asker, own: MultiSelectAnswer, other: MultiSelectAnswer, cfg, strict) -> float:
    relation = asker.preference.relation
    reference = asker.preference.values or own.values
    if relation == Rel.SPECIFIC_VALUES:
        return 1.0 if reference & other.values else 0.0
    if relation == Rel.DIFFERENT:
        if not (own.values | other.values):
            return NEUTRAL
        return 1.0 - jaccard(own.values, other.values)
    score = jaccard(reference, other.values)
    if relation == Rel.SIMILAR and reference & other.values:
        score = max(score, MULTI_SELECT_OVERLAP_FLOOR)
    return score


def _score_likert(q, asker, own: LikertAnswer, other: LikertAnswer, cfg, strict) -> float:
    return _scale_score(
        asker.preference.relation,
        own.value,
        other.value,
        q.scale_max - q.scale_min,
        asker.preference.values,
        str(other.value),
    )


def _score_ordinal(q, asker, own: OrdinalAnswer, other: OrdinalAnswer, cfg, strict) -> float:
    relation = asker.preference.relation
    if relation == Rel.SPECIFIC_VALUES:
        return 1.0 if other.value in asker.preference.values else 0.0
    if q.wildcard and q.wildcard in (own.value, other.value):
        return 1.0
    return _scale_score(relation, own.position, other.position, len(q.ordered_options) - 1, frozenset(), other.value)


def _score_compound(q, asker, own: CompoundAnswer, other: CompoundAnswer, cfg: MatchingConfig, strict) -> float:
    relation = asker.preference.relation
    abstain = q.abstain_option
    own_abstains = abstain is not None and own.substances == {abstain}
    other_abstains = abstain is not None and other.substances == {abstain}

    if relation == Rel.SPECIFIC_VALUES:
        if other_abstains:
            return 1.0
        used = other.substances - ({abstain} if abstain else set())
        return len(used & asker.preference.values) / len(used) if used else 1.0

    if own_abstains and other_abstains:
        alike = 1.0
    elif own_abstains or other_abstains:
        alike = 0.0
    else:
        substance_score = jaccard(own.substances, other.substances)
        a = q.frequency_options.index(own.frequency) if own.frequency in q.frequency_options else None
        b = q.frequency_options.index(other.frequency) if other.frequency in q.frequency_options else None
        frequency_score = closeness(a, b, len(q.frequency_options) - 1) if a is not None and b is not None else NEUTRAL
        w = cfg.compound_substance_weight
        alike = w * substance_score + (1.0 - w) * frequency_score
    return 1.0 - alike if relation == Rel.DIFFERENT else alike


def _score_age(q, asker, own: AgeAnswer, other: AgeAnswer, cfg: MatchingConfig, strict) -> float:
    window = asker.preference.age_range
    if window is None:
        return 1.0
    distance = window.distance(other.age)
    if distance == 0:
        return 1.0
    if strict:
        return 0.0
    return _clamp(1.0 - distance / (cfg.age_falloff_years + 1))


def _score_love_languages(q, asker, own: LoveLanguagesAnswer, other: LoveLanguagesAnswer, cfg: MatchingConfig, strict) -> float:
    wants = asker.preference.values or own.receive
    w = cfg.love_language_receive_weight
    return _clamp(w * coverage(wants, other.show) + (1.0 - w) * coverage(other.receive, own.show))


_SCORERS: dict[AnswerKind, tuple[type, Callable[..., float]]] = {
    AnswerKind.CATEGORICAL: (CategoricalAnswer, _score_categorical),
    AnswerKind.MULTI_SELECT: (MultiSelectAnswer, _score_multi_select),
    AnswerKind.LIKERT: (LikertAnswer, _score_likert),
    AnswerKind.ORDINAL: (OrdinalAnswer, _score_ordinal),
    AnswerKind.COMPOUND: (CompoundAnswer, _score_compound),
    AnswerKind.AGE: (AgeAnswer, _score_age),
    AnswerKind.LOVE_LANGUAGES: (LoveLanguagesAnswer, _score_love_languages),
}


def score_directional(
    question: QuestionDefinition,
    asker: QuestionResponse,
    other: QuestionResponse,
    cfg: MatchingConfig,
    strict: bool = False,
) -> float | None:
    """How well ``other``'s own answer satisfies ``asker``'s preference on ``question``."""
    if asker.preference.doesnt_matter:
        return 1.0
    answer_type, scorer = _SCORERS[question.kind]
    if not isinstance(asker.answer, answer_type) or not isinstance(other.answer, answer_type):
        logger.warning(
            "[SCORING] question=%s answer kinds %s/%s do not match %s",
            question.id,
            asker.answer.kind,
            other.answer.kind,
            question.kind.value,
        )
        return None
    return _clamp(scorer(question, asker, asker.answer, other.answer, cfg, strict))


def is_dealbreaker_violated(
    question: QuestionDefinition,
    asker: QuestionResponse | None,
    other: QuestionResponse | None,
    cfg: MatchingConfig,
) -> bool:
    """True when the asker marked this question a dealbreaker and the other user fails it.

    An other user without a usable answer (skipped, malformed or "prefer not to
    answer") is treated as absent: the dealbreaker is not checked and the pair
    is scored on the remaining questions.
    """
    if asker is None or other is None or not asker.dealbreaker or asker.preference.doesnt_matter:
        return False
    score = score_directional(question, asker, other, cfg, strict=True)
    if score is None:
        return False
    return score < cfg.dealbreaker_threshold
