import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import text

from matchcore.schemas import MatchingUser
from matchcore.services.blossom import Match

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _json_value(value: Any, default: Any) -> Any:
    # JSONB columns come back decoded; plain JSON on sqlite comes back as text
    if isinstance(value, (str, bytes)):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return default
    return value if isinstance(value, type(default)) else default


def _normalize_labels(values: Any) -> list[str]:
    if not isinstance(values, list):
        return []
    out: list[str] = []
    for value in values:
        v = str(value or "").strip().lower()
        if v and v not in out:
            out.append(v)
    return sorted(out)


def fetch_matching_users(db) -> list[MatchingUser]:
    """Every profile opted into matching, joined with its questionnaire, ordered by user id."""
    rows = db.execute(
        text(
            """
            SELECT
              p.user_id,
              p.gender,
              p.interested_in,
              p.age,
              p.campus,
              p.ok_cross_campus,
              r.responses,
              r.is_submitted
            FROM matching_profile p
            LEFT JOIN questionnaire_response r
              ON r.user_id = p.user_id
            WHERE p.is_being_matched = :active
            ORDER BY p.user_id
            """
        ),
        {"active": True},
    ).mappings().all()

    users: list[MatchingUser] = []
    for row in rows:
        gender = str(row["gender"]).strip().lower() if row["gender"] else None
        users.append(
            MatchingUser(
                user_id=str(row["user_id"]),
                gender=gender or None,
                interested_in=_normalize_labels(_json_value(row["interested_in"], [])),
                age=int(row["age"]) if row["age"] is not None else None,
                campus=row["campus"],
                ok_cross_campus=bool(row["ok_cross_campus"]),
                questionnaire_submitted=bool(row["is_submitted"]),
                responses=_json_value(row["responses"], {}),
            )
        )
    return users


def fetch_preassigned_pairs(db, batch_number: int) -> set[tuple[str, str]]:
    rows = db.execute(
        text(
            """
            SELECT user_id, matched_user_id
            FROM batch_match
            WHERE batch_number = :batch_number
              AND match_source = 'preassigned'
            """
        ),
        {"batch_number": batch_number},
    ).mappings().all()
    return {tuple(sorted((str(r["user_id"]), str(r["matched_user_id"])))) for r in rows}


def replace_batch_matches(db, batch_number: int, matches: list[Match]) -> int:
    """Swap the stored algorithm matches of a batch for ``matches`` in one transaction.

    Each pair is stored in both directions. Preassigned rows are left alone.
    """
    created = 0
    try:
        db.execute(
            text(
                """
                DELETE FROM batch_match
                WHERE batch_number = :batch_number
                  AND match_source <> 'preassigned'
                """
            ),
            {"batch_number": batch_number},
        )
        now = _now_utc()
        for m in matches:
            for user_id, matched_user_id in [(m.user_a, m.user_b), (m.user_b, m.user_a)]:
                db.execute(
                    text(
                        """
                        INSERT INTO batch_match
                        (id, batch_number, user_id, matched_user_id, compatibility_score, match_source, created_at)
                        VALUES (:id, :batch_number, :user_id, :matched_user_id, :score, :source, :created_at)
                        """
                    ),
                    {
                        "id": str(uuid.uuid4()),
                        "batch_number": batch_number,
                        "user_id": user_id,
                        "matched_user_id": matched_user_id,
                        "score": float(m.score),
                        "source": m.source,
                        "created_at": now,
                    },
                )
                created += 1
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("[MATCHING] batch=%s match replacement rolled back", batch_number)
        raise
    return created


def clear_batch_matches(db, batch_number: int) -> int:
    result = db.execute(
        text("DELETE FROM batch_match WHERE batch_number = :batch_number"),
        {"batch_number": batch_number},
    )
    db.commit()
    return int(result.rowcount or 0)


def list_batch_matches(db, batch_number: int) -> list[dict[str, Any]]:
    rows = db.execute(
        text(
            """
            SELECT user_id, matched_user_id, compatibility_score, match_source
            FROM batch_match
            WHERE batch_number = :batch_number
            ORDER BY user_id, matched_user_id
            """
        ),
        {"batch_number": batch_number},
    ).mappings().all()
    return [dict(r) for r in rows]


def record_batch_run(db, batch_number: int, status: str, stats: dict[str, Any]) -> None:
    db.execute(
        text(
            """
            INSERT INTO matching_batch
            (batch_number, status, total_users, eligible_users, total_matches, stats_json, completed_at)
            VALUES (:batch_number, :status, :total_users, :eligible_users, :total_matches, :stats_json, :completed_at)
            ON CONFLICT (batch_number)
            DO UPDATE SET
              status = excluded.status,
              total_users = excluded.total_users,
              eligible_users = excluded.eligible_users,
              total_matches = excluded.total_matches,
              stats_json = excluded.stats_json,
              completed_at = excluded.completed_at
            """
        ),
        {
            "batch_number": batch_number,
            "status": status,
            "total_users": int(stats.get("total_users") or 0),
            "eligible_users": int(stats.get("eligible_users") or 0),
            "total_matches": int(stats.get("final_matches") or 0),
            "stats_json": json.dumps(stats, sort_keys=True),
            "completed_at": _now_utc() if status == "completed" else None,
        },
    )
    db.commit()


def get_batch(db, batch_number: int) -> dict[str, Any] | None:
    row = db.execute(
        text(
            """
            SELECT batch_number, status, total_users, eligible_users, total_matches, stats_json, completed_at
            FROM matching_batch
            WHERE batch_number = :batch_number
            """
        ),
        {"batch_number": batch_number},
    ).mappings().first()
    if not row:
        return None
    out = dict(row)
    out["stats"] = _json_value(out.pop("stats_json"), {})
    return out
