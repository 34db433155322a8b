from __future__ import annotations

import math
from datetime import datetime
from typing import Any

from backend import settings
from backend.auth import require_user, safe_text
from backend.db import DB_ERRORS, db_connection, now_utc_iso
from backend.errors import InvalidInput, PersistenceFailure

logger = settings.logger.getChild("assessments")


def clamp_float(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def record_assessment(
    identity: str | None,
    category: str,
    quiz_score: float,
    improvement_tip: str | None = None,
    created_at: str | None = None,
) -> dict[str, Any]:
    user = require_user(identity)
    category = safe_text(category) or "Technical"
    try:
        score = float(quiz_score)
    except (TypeError, ValueError) as exc:
        raise InvalidInput("Quiz score must be a number.") from exc
    if not math.isfinite(score):
        raise InvalidInput("Quiz score must be a finite number.")
    score = clamp_float(score, 0.0, 100.0)

    timestamp = created_at or now_utc_iso()
    connection = db_connection()
    try:
        connection.execute(
            """
            INSERT INTO assessments (user_id, category, quiz_score, improvement_tip, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (int(user["id"]), category, score, safe_text(improvement_tip) or None, timestamp),
        )
        connection.commit()
    except DB_ERRORS as exc:
        connection.rollback()
        logger.exception("Error saving assessment for user %s", user["id"])
        raise PersistenceFailure("Failed to save quiz result: " + str(exc)) from exc
    finally:
        connection.close()

    return {
        "category": category,
        "quiz_score": score,
        "improvement_tip": safe_text(improvement_tip) or None,
        "created_at": timestamp,
    }


def list_assessments(user_id: int) -> list[Any]:
    connection = db_connection()
    try:
        return connection.execute(
            "SELECT category, quiz_score, improvement_tip, created_at FROM assessments WHERE user_id = ? ORDER BY created_at ASC, id ASC",
            (user_id,),
        ).fetchall()
    finally:
        connection.close()


def display_date(value: str) -> str:
    try:
        return datetime.fromisoformat(value).strftime("%b %d")
    except ValueError:
        return value


def summarize_scores(scores: list[float]) -> dict[str, Any]:
    if not scores:
        return {"average": 0.0, "best": 0.0, "latest": 0.0, "trend": 0.0, "improvement_pct": 0.0, "attempts": 0}
    trend = scores[-1] - scores[0] if len(scores) > 1 else 0.0
    improvement = (trend / scores[0]) * 100 if len(scores) > 1 and scores[0] else 0.0
    return {
        "average": round(sum(scores) / len(scores), 1),
        "best": max(scores),
        "latest": scores[-1],
        "trend": round(trend, 1),
        "improvement_pct": round(improvement, 1),
        "attempts": len(scores),
    }


def performance_summary(identity: str | None) -> dict[str, Any]:
    user = require_user(identity)
    rows = list_assessments(int(user["id"]))
    points = [
        {
            "date": display_date(str(row["created_at"])),
            "score": round(float(row["quiz_score"])),
            "category": str(row["category"]),
            "full_date": str(row["created_at"]),
        }
        for row in rows
    ]
    summary = summarize_scores([float(point["score"]) for point in points])
    summary["points"] = points
    return summary
