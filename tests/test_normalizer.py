import logging

import pytest

from matchcore.questionnaire import Catalogue, QuestionDefinition, load_catalogue
from matchcore.schemas import AnswerKind, PreferenceRelation
from matchcore.services.normalizer import MalformedResponse, normalize_response, normalize_responses


LIKERT = QuestionDefinition(id="q7", section="lifestyle", kind=AnswerKind.LIKERT)
CATEGORICAL = QuestionDefinition(id="q11", section="lifestyle", kind=AnswerKind.CATEGORICAL, options=("mono", "open", "poly"))
MULTI = QuestionDefinition(id="q13", section="lifestyle", kind=AnswerKind.MULTI_SELECT, options=("casual", "serious", "friends"))
ORDINAL = QuestionDefinition(
    id="q26",
    section="personality",
    kind=AnswerKind.ORDINAL,
    options=("minimal", "moderate", "constant", "whatever"),
    wildcard="whatever",
)
COMPOUND = QuestionDefinition(
    id="q9",
    section="lifestyle",
    kind=AnswerKind.COMPOUND,
    options=("cannabis", "vaping", "none"),
    abstain_option="none",
    frequency_options=("rarely", "occasionally", "regularly", "frequently"),
)
AGE = QuestionDefinition(id="q4", section="lifestyle", kind=AnswerKind.AGE)
LOVE = QuestionDefinition(id="q21", section="personality", kind=AnswerKind.LOVE_LANGUAGES, options=("words", "time", "touch"))


def test_likert_answer_and_relation():
    r = normalize_response(LIKERT, {"ownAnswer": 4, "preference": {"type": "more"}, "importance": 5, "dealbreaker": True})
    assert r.answer.kind == "likert"
    assert r.answer.value == 4
    assert r.preference.relation == PreferenceRelation.MORE
    assert r.importance == 5
    assert r.dealbreaker is True


def test_likert_outside_scale_is_malformed():
    with pytest.raises(MalformedResponse):
        normalize_response(LIKERT, {"ownAnswer": 9})


def test_categorical_labels_are_normalized():
    r = normalize_response(CATEGORICAL, {"ownAnswer": "  MONO ", "preference": {"type": "same"}})
    assert r.answer.value == "mono"


def test_specific_values_inferred_from_value_list():
    r = normalize_response(CATEGORICAL, {"ownAnswer": "mono", "preference": {"value": ["mono", "open"]}})
    assert r.preference.relation == PreferenceRelation.SPECIFIC_VALUES
    assert r.preference.values == frozenset({"mono", "open"})


def test_hyphenated_relation_names_accepted():
    r = normalize_response(CATEGORICAL, {"ownAnswer": "mono", "preference": {"type": "specific-values", "value": ["open"]}})
    assert r.preference.relation == PreferenceRelation.SPECIFIC_VALUES


def test_relation_not_valid_for_kind_is_malformed():
    with pytest.raises(MalformedResponse):
        normalize_response(MULTI, {"ownAnswer": ["casual"], "preference": {"type": "more"}})


def test_doesnt_matter_resets_importance_and_dealbreaker():
    r = normalize_response(
        LIKERT,
        {"ownAnswer": 2, "preference": {"type": "same", "doesntMatter": True}, "importance": 5, "dealbreaker": True},
    )
    assert r.preference.doesnt_matter is True
    assert r.importance == 3
    assert r.dealbreaker is False


def test_ordinal_position_skips_wildcard():
    r = normalize_response(ORDINAL, {"ownAnswer": "constant"})
    assert r.answer.position == 2
    wildcard = normalize_response(ORDINAL, {"ownAnswer": "whatever"})
    assert wildcard.answer.value == "whatever"


def test_compound_answer_shape():
    r = normalize_response(COMPOUND, {"ownAnswer": {"substances": ["Cannabis"], "frequency": "rarely"}})
    assert r.answer.substances == frozenset({"cannabis"})
    assert r.answer.frequency == "rarely"
    with pytest.raises(MalformedResponse):
        normalize_response(COMPOUND, {"ownAnswer": ["cannabis"]})


def test_age_range_preference():
    r = normalize_response(AGE, {"ownAnswer": 21, "preference": {"value": {"min": 19, "max": 24}}})
    assert r.answer.age == 21
    assert r.preference.age_range.min_age == 19
    assert r.preference.age_range.max_age == 24


def test_inverted_age_range_is_malformed():
    with pytest.raises(MalformedResponse):
        normalize_response(AGE, {"ownAnswer": 21, "preference": {"value": {"min": 30, "max": 20}}})


def test_age_falls_back_to_profile_age():
    out = normalize_responses({}, Catalogue([AGE]), user_id="u1", fallback_age=23)
    assert out["q4"].answer.age == 23


def test_love_languages_sets():
    r = normalize_response(LOVE, {"ownAnswer": {"show": ["words"], "receive": ["time", "touch"]}})
    assert r.answer.show == frozenset({"words"})
    assert r.answer.receive == frozenset({"time", "touch"})


def test_prefer_not_to_answer_is_excluded():
    with pytest.raises(MalformedResponse):
        normalize_response(CATEGORICAL, {"ownAnswer": "prefer-not-to-answer"})


def test_malformed_answers_are_dropped_and_logged(caplog):
    catalogue = Catalogue([LIKERT, CATEGORICAL, MULTI])
    raw = {
        "q7": {"ownAnswer": "lots"},
        "q11": {"ownAnswer": "mono"},
        "q13": "not-an-object",
        "q999": {"ownAnswer": 1},
    }
    with caplog.at_level(logging.WARNING, logger="matchcore.services.normalizer"):
        out = normalize_responses(raw, catalogue, user_id="u1")
    assert set(out) == {"q11"}
    assert "q7" in caplog.text
    assert "q13" in caplog.text


def test_importance_out_of_range_is_dropped():
    out = normalize_responses({"q7": {"ownAnswer": 3, "importance": 9}}, Catalogue([LIKERT]), user_id="u1")
    assert out == {}


def test_packaged_catalogue_loads():
    catalogue = load_catalogue()
    assert len(catalogue) > 20
    assert catalogue.sections == {"lifestyle", "personality"}
    assert catalogue.age_question.id == "q4"
    assert "q29" in catalogue.required_ids
    assert catalogue.get("q25").compatibility["direct"]["space"] == 0.3
