import random
from datetime import datetime, timezone
from typing import Any

from matchcore.models import MatchingProfile, QuestionnaireResponse
from matchcore.questionnaire import Catalogue, QuestionDefinition, load_catalogue
from matchcore.schemas import AnswerKind, MatchingUser

GENDER_WEIGHTS = {"woman": 0.46, "man": 0.44, "non-binary": 0.10}
INTERESTED_IN_PROFILES: dict[str, list[list[str]]] = {
    "woman": [["men"], ["men"], ["women"], ["men", "women"], ["anyone"]],
    "man": [["women"], ["women"], ["men"], ["women", "men"], ["anyone"]],
    "non-binary": [["anyone"], ["women", "non-binary"], ["men", "non-binary"], ["non-binary"]],
}
CAMPUS_WEIGHTS = {"vancouver": 0.85, "okanagan": 0.15}
LIKERT_RELATIONS = ["similar", "similar", "same", "more", "less", "different"]


def _weighted_key(rng: random.Random, weights: dict[str, float]) -> str:
    names = list(weights.keys())
    return rng.choices(names, weights=[weights[n] for n in names], k=1)[0]


def _bounded_likert(v: float, lo: int, hi: int) -> int:
    return max(lo, min(hi, int(round(v))))


def _preference(rng: random.Random, relation: str, value: Any = None) -> dict[str, Any]:
    if rng.random() < 0.12:
        return {"doesntMatter": True}
    pref: dict[str, Any] = {"type": relation}
    if value is not None:
        pref["value"] = value
    return pref


def _generate_response(q: QuestionDefinition, rng: random.Random, age: int) -> dict[str, Any]:
    if q.kind == AnswerKind.CATEGORICAL:
        own = rng.choice(list(q.options))
        if q.compatibility:
            pref = _preference(rng, "compatible")
        elif rng.random() < 0.3:
            pref = _preference(rng, "specific_values", rng.sample(list(q.options), min(2, len(q.options))))
        else:
            pref = _preference(rng, "same")
    elif q.kind == AnswerKind.MULTI_SELECT:
        own = rng.sample(list(q.options), rng.randint(1, min(2, len(q.options))))
        pref = _preference(rng, rng.choice(["similar", "same", "specific_values"]), own if rng.random() < 0.5 else None)
        if pref.get("type") == "specific_values" and "value" not in pref:
            pref["value"] = own
    elif q.kind == AnswerKind.LIKERT:
        own = _bounded_likert(rng.normalvariate((q.scale_min + q.scale_max) / 2, 0.9), q.scale_min, q.scale_max)
        pref = _preference(rng, rng.choice(LIKERT_RELATIONS))
    elif q.kind == AnswerKind.ORDINAL:
        own = rng.choice(list(q.options))
        pref = _preference(rng, "similar")
    elif q.kind == AnswerKind.COMPOUND:
        if q.abstain_option and rng.random() < 0.5:
            own = {"substances": [q.abstain_option], "frequency": None}
        else:
            used = [o for o in q.options if o != q.abstain_option]
            own = {
                "substances": rng.sample(used, rng.randint(1, min(2, len(used)))),
                "frequency": rng.choice(list(q.frequency_options)) if q.frequency_options else None,
            }
        pref = _preference(rng, "similar")
    elif q.kind == AnswerKind.AGE:
        own = age
        pref = _preference(rng, "range", {"min": max(18, age - rng.randint(1, 4)), "max": age + rng.randint(1, 4)})
        pref.pop("type", None)
    else:
        own = {
            "show": rng.sample(list(q.options), 2),
            "receive": rng.sample(list(q.options), 2),
        }
        pref = None

    doesnt_matter = bool(pref and pref.get("doesntMatter"))
    return {
        "ownAnswer": own,
        "preference": pref,
        "importance": rng.randint(1, 5),
        "dealbreaker": (not doesnt_matter) and rng.random() < 0.03,
    }


def generate_user(index: int, rng: random.Random, catalogue: Catalogue) -> MatchingUser:
    gender = _weighted_key(rng, GENDER_WEIGHTS)
    age = rng.randint(18, 28)
    responses = {q.id: _generate_response(q, rng, age) for q in catalogue}
    return MatchingUser(
        user_id=f"seed-{index:05d}",
        gender=gender,
        interested_in=rng.choice(INTERESTED_IN_PROFILES[gender]),
        age=age,
        campus=_weighted_key(rng, CAMPUS_WEIGHTS),
        ok_cross_campus=rng.random() < 0.3,
        questionnaire_submitted=True,
        responses=responses,
    )


def generate_pool(n_users: int, seed: int = 42, catalogue: Catalogue | None = None) -> list[MatchingUser]:
    """Deterministic synthetic pool: the same seed always yields the same users."""
    rng = random.Random(seed)
    catalogue = catalogue or load_catalogue()
    return [generate_user(i, rng, catalogue) for i in range(n_users)]


def seed_pool(db, n_users: int, seed: int = 42, reset: bool = False, catalogue: Catalogue | None = None) -> dict[str, Any]:
    if reset:
        db.query(QuestionnaireResponse).filter(QuestionnaireResponse.user_id.like("seed-%")).delete(synchronize_session="fetch")
        db.query(MatchingProfile).filter(MatchingProfile.user_id.like("seed-%")).delete(synchronize_session="fetch")

    users = generate_pool(n_users, seed=seed, catalogue=catalogue)
    now = datetime.now(timezone.utc)
    for u in users:
        db.merge(
            MatchingProfile(
                user_id=u.user_id,
                gender=u.gender,
                interested_in=list(u.interested_in),
                age=u.age,
                campus=u.campus,
                ok_cross_campus=u.ok_cross_campus,
                is_being_matched=True,
            )
        )
        db.merge(
            QuestionnaireResponse(
                user_id=u.user_id,
                responses=u.responses,
                is_submitted=True,
                submitted_at=now,
            )
        )
    db.commit()
    return {"users_seeded": len(users), "seed": seed, "reset": reset}
