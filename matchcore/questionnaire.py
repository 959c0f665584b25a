from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .config import QUESTIONS_PATH
from .schemas import AnswerKind


class QuestionDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    section: str
    kind: AnswerKind
    text: str = ""
    options: tuple[str, ...] = ()
    required: bool = False
    scale_min: int = 1
    scale_max: int = 5
    ordered: bool = False
    wildcard: str | None = None
    abstain_option: str | None = None
    frequency_options: tuple[str, ...] = ()
    compatibility: dict[str, dict[str, float]] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_shape(self) -> "QuestionDefinition":
        if self.scale_max < self.scale_min:
            raise ValueError(f"{self.id}: scale_max below scale_min")
        if self.kind == AnswerKind.ORDINAL and not self.options:
            raise ValueError(f"{self.id}: ordinal questions need ordered options")
        if self.wildcard and self.options and self.wildcard not in self.options:
            raise ValueError(f"{self.id}: wildcard {self.wildcard!r} is not one of the options")
        return self

    @property
    def ordered_options(self) -> tuple[str, ...]:
        """Options that carry an order, with the wildcard removed."""
        return tuple(o for o in self.options if o != self.wildcard)

    def position(self, value: str) -> int | None:
        try:
            return self.ordered_options.index(value)
        except ValueError:
            return None


class Catalogue:
    """Ordered, id-indexed view over the scored questions of a questionnaire."""

    def __init__(self, questions: list[QuestionDefinition], slug: str = "custom", version: int = 1):
        seen: set[str] = set()
        for q in questions:
            if q.id in seen:
                raise ValueError(f"duplicate question id {q.id}")
            seen.add(q.id)
        self.slug = slug
        self.version = version
        self.questions = tuple(questions)
        self._by_id = {q.id: q for q in self.questions}

    def __iter__(self):
        return iter(self.questions)

    def __len__(self) -> int:
        return len(self.questions)

    def __contains__(self, question_id: object) -> bool:
        return question_id in self._by_id

    def get(self, question_id: str) -> QuestionDefinition | None:
        return self._by_id.get(question_id)

    @property
    def sections(self) -> set[str]:
        return {q.section for q in self.questions}

    @property
    def required_ids(self) -> list[str]:
        return [q.id for q in self.questions if q.required]

    @property
    def age_question(self) -> QuestionDefinition | None:
        for q in self.questions:
            if q.kind == AnswerKind.AGE:
                return q
        return None

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Catalogue":
        items = payload.get("questions") if isinstance(payload.get("questions"), list) else []
        return cls(
            [QuestionDefinition(**item) for item in items],
            slug=str(payload.get("slug") or "custom"),
            version=int(payload.get("version") or 1),
        )


@lru_cache(maxsize=4)
def _load_cached(path: str) -> Catalogue:
    with Path(path).open("r", encoding="utf-8") as f:
        return Catalogue.from_dict(json.load(f))


def load_catalogue(path: Path | str | None = None) -> Catalogue:
    return _load_cached(str(path or QUESTIONS_PATH))
