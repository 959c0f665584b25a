from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

_default_questions = Path(__file__).resolve().parent / "questions.json"
QUESTIONS_PATH = Path(os.getenv("QUESTIONS_PATH", str(_default_questions)))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

SECTION_WEIGHT_TOLERANCE = 0.001
REJECTED_SCORE = -1.0


class ConfigurationError(ValueError):
    """Raised when the matching configuration would corrupt every score computed with it."""


DEFAULT_MATCHING_CONFIG: dict[str, Any] = {
    "section_weights": {
        "lifestyle": float(os.getenv("LIFESTYLE_SECTION_W", "0.65")),
        "personality": float(os.getenv("PERSONALITY_SECTION_W", "0.35")),
    },
    "importance_multipliers": {1: 0.5, 2: 0.75, 3: 1.0, 4: 1.5, 5: 2.0},
    "min_match_score": float(os.getenv("MIN_MATCH_SCORE", "30")),
    "relative_threshold_beta": float(os.getenv("RELATIVE_THRESHOLD_BETA", "0.6")),
    "matches_per_user": int(os.getenv("MATCHES_PER_USER", "3")),
    "dealbreaker_threshold": float(os.getenv("DEALBREAKER_THRESHOLD", "0.000001")),
    "score_combiner": os.getenv("SCORE_COMBINER", "mean"),
    "mutuality_alpha": float(os.getenv("MUTUALITY_ALPHA", "0.65")),
    "age_falloff_years": int(os.getenv("AGE_FALLOFF_YEARS", "2")),
    "age_hard_filter": os.getenv("AGE_HARD_FILTER", "false").lower() == "true",
    "cross_campus_policy": os.getenv("CROSS_CAMPUS_POLICY", "either"),
    "compound_substance_weight": float(os.getenv("COMPOUND_SUBSTANCE_W", "0.5")),
    "love_language_receive_weight": float(os.getenv("LOVE_LANGUAGE_RECEIVE_W", "0.6")),
    "min_answered_questions": int(os.getenv("MIN_ANSWERED_QUESTIONS", "0")),
    "parallel_scoring": os.getenv("PARALLEL_SCORING", "false").lower() == "true",
    "max_concurrent_scoring": int(os.getenv("MAX_CONCURRENT_SCORING", "10")),
    "scoring_chunk_size": int(os.getenv("SCORING_CHUNK_SIZE", "500")),
}


class MatchingConfig(BaseModel):
    """Immutable tuning knobs for one matching run.

    Instances are passed explicitly into every stage so runs with different
    settings can coexist in the same process.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    section_weights: dict[str, float]
    importance_multipliers: dict[int, float]
    min_match_score: float = Field(default=30.0, ge=0.0, le=100.0)
    relative_threshold_beta: float = Field(default=0.6, ge=0.0, le=1.0)
    matches_per_user: int = Field(default=3, ge=1)
    dealbreaker_threshold: float = Field(default=1e-6, ge=0.0, le=1.0)
    score_combiner: Literal["mean", "min", "mutuality"] = "mean"
    mutuality_alpha: float = Field(default=0.65, ge=0.0, le=1.0)
    age_falloff_years: int = Field(default=2, ge=0)
    age_hard_filter: bool = False
    cross_campus_policy: Literal["either", "both"] = "either"
    compound_substance_weight: float = Field(default=0.5, ge=0.0, le=1.0)
    love_language_receive_weight: float = Field(default=0.6, ge=0.0, le=1.0)
    min_answered_questions: int = Field(default=0, ge=0)
    parallel_scoring: bool = False
    max_concurrent_scoring: int = Field(default=10, ge=1)
    scoring_chunk_size: int = Field(default=500, ge=1)

    @field_validator("section_weights")
    @classmethod
    def _check_section_weights(cls, weights: dict[str, float]) -> dict[str, float]:
        if not weights:
            raise ConfigurationError("section_weights must name at least one section")
        negative = sorted(name for name, w in weights.items() if w < 0)
        if negative:
            raise ConfigurationError(f"section weights must be non-negative: {negative}")
        total = sum(weights.values())
        if abs(total - 1.0) > SECTION_WEIGHT_TOLERANCE:
            raise ConfigurationError(f"section weights must sum to 1.0, got {total:.4f}")
        return weights

    @field_validator("importance_multipliers")
    @classmethod
    def _check_importance(cls, table: dict[int, float]) -> dict[int, float]:
        if sorted(table) != [1, 2, 3, 4, 5]:
            raise ConfigurationError("importance_multipliers must define levels 1 through 5")
        values = [table[level] for level in range(1, 6)]
        if values[0] <= 0 or any(b <= a for a, b in zip(values, values[1:])):
            raise ConfigurationError("importance_multipliers must be positive and strictly increasing")
        return table

    def multiplier(self, importance: int) -> float:
        return self.importance_multipliers.get(int(importance), 1.0)


def _env_overrides() -> dict[str, Any]:
    raw = os.getenv("MATCHING_CONFIG_JSON")
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"MATCHING_CONFIG_JSON is not valid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ConfigurationError("MATCHING_CONFIG_JSON must be a JSON object")
    return parsed


def load_matching_config(overrides: dict[str, Any] | None = None) -> MatchingConfig:
    """Build the run configuration from defaults, MATCHING_CONFIG_JSON and explicit overrides.

    Fails fast with ConfigurationError on any invalid value.
    """
    values = dict(DEFAULT_MATCHING_CONFIG)
    values.update(_env_overrides())
    values.update(overrides or {})
    try:
        return MatchingConfig(**values)
    except ValidationError as exc:
        raise ConfigurationError(str(exc)) from exc


def validate_catalogue(config: MatchingConfig, sections: set[str]) -> None:
    missing = sorted(s for s in sections if s not in config.section_weights)
    if missing:
        raise ConfigurationError(f"questionnaire sections without a configured weight: {missing}")
