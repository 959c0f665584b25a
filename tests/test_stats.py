import pytest

import matchcore.services.matching as m
from matchcore.config import load_matching_config
from matchcore.schemas import MatchingUser
from matchcore.services.stats import MatchingStats, match_score_summary, percentile_summary, score_distribution


def test_percentile_summary_deterministic():
    out = percentile_summary([0.1, 0.2, 0.3, 0.4, 0.5])
    assert out["p50"] == 0.3
    assert out["p90"] == 0.46


def test_percentile_summary_empty_and_single():
    assert percentile_summary([]) == {"p10": None, "p25": None, "p50": None, "p75": None, "p90": None}
    assert percentile_summary([42.0])["p10"] == 42.0


def test_score_distribution_buckets():
    out = score_distribution([0.0, 19.9, 20.0, 55.0, 80.0, 100.0])
    assert out == [
        {"range": "0-20", "count": 2},
        {"range": "20-40", "count": 1},
        {"range": "40-60", "count": 1},
        {"range": "60-80", "count": 0},
        {"range": "80-100", "count": 2},
    ]


def test_match_score_summary():
    assert match_score_summary([50.0, 70.0, 90.0, 60.0]) == {"median": 70.0, "min": 50.0, "max": 90.0}
    assert match_score_summary([]) == {"median": 0.0, "min": 0.0, "max": 0.0}


def test_stats_as_dict_is_independent_copy():
    s = MatchingStats(total_users=3, hard_filter_breakdown={"campus": 1})
    data = s.as_dict()
    data["hard_filter_breakdown"]["campus"] = 9
    assert s.hard_filter_breakdown == {"campus": 1}


def _user(user_id):
    return MatchingUser(
        user_id=user_id,
        gender="woman",
        interested_in=["anyone"],
        age=21,
        questionnaire_submitted=True,
        responses={},
    )


def test_run_batch_records_failure_and_reraises(monkeypatch):
    calls = []
    monkeypatch.setattr(m.repo, "fetch_matching_users", lambda db: [_user("u1"), _user("u2")])
    monkeypatch.setattr(m.repo, "fetch_preassigned_pairs", lambda db, batch: set())

    def boom(db, batch, matches):
        raise RuntimeError("db down")

    monkeypatch.setattr(m.repo, "replace_batch_matches", boom)
    monkeypatch.setattr(m.repo, "record_batch_run", lambda db, batch, status, stats: calls.append((batch, status, stats)))

    with pytest.raises(RuntimeError):
        m.run_batch(object(), 5, load_matching_config())
    assert [(b, s) for b, s, _ in calls] == [(5, "failed")]
    assert calls[0][2]["total_users"] == 2


def test_run_batch_records_completion(monkeypatch):
    calls = []
    stored = []
    monkeypatch.setattr(m.repo, "fetch_matching_users", lambda db: [])
    monkeypatch.setattr(m.repo, "fetch_preassigned_pairs", lambda db, batch: set())
    monkeypatch.setattr(m.repo, "replace_batch_matches", lambda db, batch, matches: stored.append(matches) or 0)
    monkeypatch.setattr(m.repo, "record_batch_run", lambda db, batch, status, stats: calls.append((batch, status)))

    result = m.run_batch(object(), 6, load_matching_config())
    assert result.matches == []
    assert stored == [[]]
    assert calls == [(6, "completed")]
