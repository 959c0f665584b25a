from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from matchcore.questionnaire import Catalogue, QuestionDefinition
from matchcore.schemas import (
    AgeAnswer,
    AgeRange,
    AnswerKind,
    CategoricalAnswer,
    CompoundAnswer,
    LikertAnswer,
    LoveLanguagesAnswer,
    MultiSelectAnswer,
    OrdinalAnswer,
    Preference,
    PreferenceRelation,
    QuestionResponse,
)

logger = logging.getLogger(__name__)

NEUTRAL_IMPORTANCE = 3
PREFER_NOT_TO_ANSWER = "prefer-not-to-answer"

# Relations each answer kind can be asked about; anything else is malformed.
ALLOWED_RELATIONS: dict[AnswerKind, set[PreferenceRelation]] = {
    AnswerKind.CATEGORICAL: {
        PreferenceRelation.SAME,
        PreferenceRelation.SIMILAR,
        PreferenceRelation.DIFFERENT,
        PreferenceRelation.COMPATIBLE,
        PreferenceRelation.SPECIFIC_VALUES,
    },
    AnswerKind.MULTI_SELECT: {
        PreferenceRelation.SAME,
        PreferenceRelation.SIMILAR,
        PreferenceRelation.DIFFERENT,
        PreferenceRelation.SPECIFIC_VALUES,
    },
    AnswerKind.LIKERT: {
        PreferenceRelation.SAME,
        PreferenceRelation.SIMILAR,
        PreferenceRelation.DIFFERENT,
        PreferenceRelation.MORE,
        PreferenceRelation.LESS,
        PreferenceRelation.SPECIFIC_VALUES,
    },
    AnswerKind.ORDINAL: {
        PreferenceRelation.SAME,
        PreferenceRelation.SIMILAR,
        PreferenceRelation.DIFFERENT,
        PreferenceRelation.MORE,
        PreferenceRelation.LESS,
        PreferenceRelation.SPECIFIC_VALUES,
    },
    AnswerKind.COMPOUND: {
        PreferenceRelation.SAME,
        PreferenceRelation.SIMILAR,
        PreferenceRelation.DIFFERENT,
        PreferenceRelation.SPECIFIC_VALUES,
    },
    AnswerKind.AGE: set(),
    AnswerKind.LOVE_LANGUAGES: {PreferenceRelation.SPECIFIC_VALUES, PreferenceRelation.SAME},
}

DEFAULT_RELATION: dict[AnswerKind, PreferenceRelation | None] = {
    AnswerKind.CATEGORICAL: PreferenceRelation.SAME,
    AnswerKind.MULTI_SELECT: PreferenceRelation.SIMILAR,
    AnswerKind.LIKERT: PreferenceRelation.SIMILAR,
    AnswerKind.ORDINAL: PreferenceRelation.SIMILAR,
    AnswerKind.COMPOUND: PreferenceRelation.SIMILAR,
    AnswerKind.AGE: None,
    AnswerKind.LOVE_LANGUAGES: None,
}


class MalformedResponse(ValueError):
    pass


def _label(value: Any) -> str:
    if not isinstance(value, (str, int)) or isinstance(value, bool):
        raise MalformedResponse(f"expected a label, got {type(value).__name__}")
    label = str(value).strip().lower()
    if not label:
        raise MalformedResponse("empty label")
    return label


def _label_set(value: Any) -> frozenset[str]:
    if isinstance(value, (str, int)) and not isinstance(value, bool):
        return frozenset({_label(value)})
    if not isinstance(value, (list, tuple, set, frozenset)):
        raise MalformedResponse(f"expected a list of labels, got {type(value).__name__}")
    return frozenset(_label(v) for v in value)


def _int(value: Any) -> int:
    if isinstance(value, bool):
        raise MalformedResponse("booleans are not numeric answers")
    if isinstance(value, float) and not value.is_integer():
        raise MalformedResponse(f"expected a whole number, got {value}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise MalformedResponse(f"expected a number, got {value!r}") from exc


def _normalize_answer(question: QuestionDefinition, raw: Any, fallback_age: int | None):
    kind = question.kind
    if kind == AnswerKind.CATEGORICAL:
        value = _label(raw)
        if question.options and value not in question.options:
            raise MalformedResponse(f"{value!r} is not an option")
        return CategoricalAnswer(value=value)
    if kind == AnswerKind.MULTI_SELECT:
        values = _label_set(raw)
        unknown = values - set(question.options) if question.options else set()
        if unknown:
            raise MalformedResponse(f"unknown options {sorted(unknown)}")
        return MultiSelectAnswer(values=values)
    if kind == AnswerKind.LIKERT:
        value = _int(raw)
        if not question.scale_min <= value <= question.scale_max:
            raise MalformedResponse(f"{value} outside {question.scale_min}..{question.scale_max}")
        return LikertAnswer(value=value)
    if kind == AnswerKind.ORDINAL:
        value = _label(raw)
        if value == question.wildcard:
            return OrdinalAnswer(value=value, position=0)
        pos = question.position(value)
        if pos is None:
            raise MalformedResponse(f"{value!r} is not an ordered option")
        return OrdinalAnswer(value=value, position=pos)
    if kind == AnswerKind.COMPOUND:
        if not isinstance(raw, dict):
            raise MalformedResponse("compound answers need substances and frequency")
        substances = _label_set(raw.get("substances") or [])
        frequency = raw.get("frequency")
        frequency = _label(frequency) if frequency not in (None, "") else None
        if frequency is not None and question.frequency_options and frequency not in question.frequency_options:
            raise MalformedResponse(f"unknown frequency {frequency!r}")
        if not substances:
            raise MalformedResponse("compound answer without substances")
        return CompoundAnswer(substances=substances, frequency=frequency)
    if kind == AnswerKind.AGE:
        if raw is None and fallback_age is not None:
            raw = fallback_age
        return AgeAnswer(age=_int(raw))
    if kind == AnswerKind.LOVE_LANGUAGES:
        if not isinstance(raw, dict):
            raise MalformedResponse("love language answers need show and receive")
        return LoveLanguagesAnswer(
            show=_label_set(raw.get("show") or []),
            receive=_label_set(raw.get("receive") or []),
        )
    raise MalformedResponse(f"unsupported kind {kind}")


def _normalize_preference(question: QuestionDefinition, raw: Any) -> Preference:
    if raw is None:
        return Preference(relation=DEFAULT_RELATION[question.kind])
    if not isinstance(raw, dict):
        raise MalformedResponse("preference must be an object")
    doesnt_matter = bool(raw.get("doesntMatter"))
    if doesnt_matter:
        return Preference(doesnt_matter=True)

    value = raw.get("value")
    if question.kind == AnswerKind.AGE:
        if value is None:
            return Preference()
        if not isinstance(value, dict):
            raise MalformedResponse("age preference must be {min, max}")
        lo, hi = _int(value.get("min")), _int(value.get("max"))
        if hi < lo:
            raise MalformedResponse(f"age range {lo}..{hi} is inverted")
        return Preference(age_range=AgeRange(min_age=lo, max_age=hi))

    raw_type = raw.get("type")
    if raw_type in (None, ""):
        relation = PreferenceRelation.SPECIFIC_VALUES if value else DEFAULT_RELATION[question.kind]
    else:
        try:
            relation = PreferenceRelation(str(raw_type).strip().lower().replace("-", "_"))
        except ValueError as exc:
            raise MalformedResponse(f"unknown preference type {raw_type!r}") from exc
    if relation is not None and relation not in ALLOWED_RELATIONS[question.kind]:
        raise MalformedResponse(f"{relation.value} does not apply to {question.kind.value} questions")

    values = _label_set(value) if value not in (None, "", []) else frozenset()
    if relation == PreferenceRelation.SPECIFIC_VALUES and not values and question.kind != AnswerKind.LOVE_LANGUAGES:
        raise MalformedResponse("specific_values preference without values")
    return Preference(relation=relation, values=values)


def normalize_response(
    question: QuestionDefinition,
    raw: Any,
    fallback_age: int | None = None,
) -> QuestionResponse:
    """Turn one raw response payload into a typed QuestionResponse.

    Raises MalformedResponse (or pydantic's ValidationError) for payloads that
    cannot be scored; callers decide whether to skip or propagate.
    """
    if not isinstance(raw, dict):
        raise MalformedResponse("response must be an object")
    own = raw.get("ownAnswer", raw.get("answer"))
    if own is None and not (question.kind == AnswerKind.AGE and fallback_age is not None):
        raise MalformedResponse("missing ownAnswer")
    if isinstance(own, str) and own.strip().lower() == PREFER_NOT_TO_ANSWER:
        raise MalformedResponse("prefer not to answer")

    answer = _normalize_answer(question, own, fallback_age)
    preference = _normalize_preference(question, raw.get("preference"))

    if preference.doesnt_matter:
        importance, dealbreaker = NEUTRAL_IMPORTANCE, False
    else:
        importance = _int(raw.get("importance", NEUTRAL_IMPORTANCE))
        dealbreaker = bool(raw.get("dealbreaker", False))
    return QuestionResponse(
        question_id=question.id,
        answer=answer,
        preference=preference,
        importance=importance,
        dealbreaker=dealbreaker,
    )


def normalize_responses(
    raw_responses: dict[str, Any],
    catalogue: Catalogue,
    user_id: str = "",
    fallback_age: int | None = None,
) -> dict[str, QuestionResponse]:
    """Normalize every catalogue question a user answered; malformed ones are dropped and logged."""
    out: dict[str, QuestionResponse] = {}
    raw_responses = raw_responses or {}
    for question in catalogue:
        raw = raw_responses.get(question.id)
        if raw is None:
            if question.kind == AnswerKind.AGE and fallback_age is not None:
                raw = {"ownAnswer": fallback_age}
            else:
                continue
        try:
            out[question.id] = normalize_response(question, raw, fallback_age)
        except (MalformedResponse, ValidationError) as exc:
            logger.warning("[NORMALIZER] user=%s question=%s excluded: %s", user_id, question.id, exc)
    return out
