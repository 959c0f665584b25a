import pytest
from pydantic import ValidationError

import matchcore.config as config_module
from matchcore.config import ConfigurationError, MatchingConfig, load_matching_config, validate_catalogue


def test_default_config_is_valid():
    cfg = load_matching_config()
    assert abs(sum(cfg.section_weights.values()) - 1.0) < 1e-9
    assert cfg.importance_multipliers == {1: 0.5, 2: 0.75, 3: 1.0, 4: 1.5, 5: 2.0}
    assert cfg.matches_per_user == 3
    assert cfg.score_combiner == "mean"


def test_section_weights_must_sum_to_one():
    with pytest.raises(ConfigurationError):
        load_matching_config({"section_weights": {"lifestyle": 0.6, "personality": 0.6}})


def test_section_weights_within_tolerance_accepted():
    cfg = load_matching_config({"section_weights": {"lifestyle": 0.6505, "personality": 0.35}})
    assert cfg.section_weights["lifestyle"] == 0.6505


def test_direct_construction_fails_fast():
    with pytest.raises(ValidationError):
        MatchingConfig(section_weights={"a": 0.2}, importance_multipliers={1: 0.5, 2: 0.75, 3: 1.0, 4: 1.5, 5: 2.0})


def test_importance_table_must_increase():
    with pytest.raises(ConfigurationError):
        load_matching_config({"importance_multipliers": {1: 1.0, 2: 1.0, 3: 1.0, 4: 1.5, 5: 2.0}})


def test_importance_table_needs_all_levels():
    with pytest.raises(ConfigurationError):
        load_matching_config({"importance_multipliers": {1: 0.5, 3: 1.0, 5: 2.0}})


def test_quota_must_be_positive():
    with pytest.raises(ConfigurationError):
        load_matching_config({"matches_per_user": 0})


def test_relative_threshold_must_be_a_fraction():
    assert load_matching_config().relative_threshold_beta == 0.6
    with pytest.raises(ConfigurationError):
        load_matching_config({"relative_threshold_beta": 1.5})


def test_env_json_override(monkeypatch):
    monkeypatch.setenv("MATCHING_CONFIG_JSON", '{"min_match_score": 5, "importance_multipliers": {"1": 0.1, "2": 0.2, "3": 0.3, "4": 0.4, "5": 0.5}}')
    cfg = load_matching_config()
    assert cfg.min_match_score == 5
    assert cfg.multiplier(5) == 0.5


def test_env_json_malformed_is_fatal(monkeypatch):
    monkeypatch.setenv("MATCHING_CONFIG_JSON", "{not json")
    with pytest.raises(ConfigurationError):
        load_matching_config()


def test_explicit_overrides_beat_env(monkeypatch):
    monkeypatch.setenv("MATCHING_CONFIG_JSON", '{"matches_per_user": 2}')
    cfg = load_matching_config({"matches_per_user": 1})
    assert cfg.matches_per_user == 1


def test_defaults_are_not_mutated_by_overrides():
    before = dict(config_module.DEFAULT_MATCHING_CONFIG)
    load_matching_config({"min_match_score": 77})
    assert config_module.DEFAULT_MATCHING_CONFIG == before


def test_config_is_immutable():
    cfg = load_matching_config()
    with pytest.raises(ValidationError):
        cfg.min_match_score = 1


def test_unknown_section_in_catalogue_rejected():
    cfg = load_matching_config()
    with pytest.raises(ConfigurationError):
        validate_catalogue(cfg, {"lifestyle", "values"})
