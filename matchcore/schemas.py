from __future__ import annotations

from enum import Enum
from typing import Any, Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class AnswerKind(str, Enum):
    CATEGORICAL = "categorical"
    MULTI_SELECT = "multi_select"
    LIKERT = "likert"
    ORDINAL = "ordinal"
    COMPOUND = "compound"
    AGE = "age"
    LOVE_LANGUAGES = "love_languages"


class PreferenceRelation(str, Enum):
    SAME = "same"
    SIMILAR = "similar"
    DIFFERENT = "different"
    MORE = "more"
    LESS = "less"
    COMPATIBLE = "compatible"
    SPECIFIC_VALUES = "specific_values"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class CategoricalAnswer(_Frozen):
    kind: Literal["categorical"] = "categorical"
    value: str


class MultiSelectAnswer(_Frozen):
    kind: Literal["multi_select"] = "multi_select"
    values: frozenset[str]


class LikertAnswer(_Frozen):
    kind: Literal["likert"] = "likert"
    value: int


class OrdinalAnswer(_Frozen):
    kind: Literal["ordinal"] = "ordinal"
    value: str
    position: int = Field(ge=0)


class CompoundAnswer(_Frozen):
    kind: Literal["compound"] = "compound"
    substances: frozenset[str]
    frequency: str | None = None


class AgeAnswer(_Frozen):
    kind: Literal["age"] = "age"
    age: int = Field(ge=0, le=130)


class LoveLanguagesAnswer(_Frozen):
    kind: Literal["love_languages"] = "love_languages"
    show: frozenset[str]
    receive: frozenset[str]


Answer = Annotated[
    Union[
        CategoricalAnswer,
        MultiSelectAnswer,
        LikertAnswer,
        OrdinalAnswer,
        CompoundAnswer,
        AgeAnswer,
        LoveLanguagesAnswer,
    ],
    Field(discriminator="kind"),
]


class AgeRange(_Frozen):
    min_age: int = Field(ge=0)
    max_age: int = Field(ge=0)

    def distance(self, age: int) -> int:
        if age < self.min_age:
            return self.min_age - age
        if age > self.max_age:
            return age - self.max_age
        return 0


class Preference(_Frozen):
    relation: PreferenceRelation | None = None
    values: frozenset[str] = frozenset()
    age_range: AgeRange | None = None
    doesnt_matter: bool = False


class QuestionResponse(_Frozen):
    """One user's normalized answer, preference and weighting for one question."""

    question_id: str
    answer: Answer
    preference: Preference = Field(default_factory=Preference)
    importance: int = Field(default=3, ge=1, le=5)
    dealbreaker: bool = False


class MatchingUser(BaseModel):
    """Matching-relevant projection of a user with raw questionnaire payloads."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    gender: str | None = None
    interested_in: list[str] = Field(default_factory=list)
    age: int | None = None
    campus: str | None = None
    ok_cross_campus: bool = False
    questionnaire_submitted: bool = False
    responses: dict[str, Any] = Field(default_factory=dict)
