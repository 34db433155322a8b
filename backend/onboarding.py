from __future__ import annotations

from typing import Any

from backend import settings
from backend.auth import USER_COLUMNS, require_user, safe_text
from backend.db import DB_ERRORS, begin_write_transaction, db_connection, dump_json, load_json_list, now_utc_iso
from backend.errors import (
    CareerCoachError,
    InvalidInput,
    PersistenceFailure,
    UpstreamGenerationFailure,
    UserNotFound,
)
from backend.insights import InsightGenerator, resolve_industry_insight

logger = settings.logger.getChild("onboarding")


def normalize_skills(values: list[str] | str | None) -> list[str]:
    if not values:
        return []
    items = values.split(",") if isinstance(values, str) else values
    return [safe_text(str(item)) for item in items if safe_text(str(item))]


def normalize_profile(profile: dict[str, Any]) -> dict[str, Any]:
    industry = safe_text(profile.get("industry"))
    if not industry:
        raise InvalidInput("Industry is required.")

    experience = profile.get("experience")
    if isinstance(experience, float) and experience.is_integer():
        experience = int(experience)
    if isinstance(experience, bool) or not isinstance(experience, int):
        raise InvalidInput("Experience must be a whole number of years.")
    if experience < 0:
        raise InvalidInput("Experience cannot be negative.")

    return {
        "industry": industry,
        "experience": experience,
        "bio": safe_text(profile.get("bio")),
        "skills": normalize_skills(profile.get("skills")),
    }


def user_payload(row: Any) -> dict[str, Any]:
    return {
        "id": int(row["id"]),
        "clerk_user_id": str(row["clerk_user_id"]),
        "email": str(row["email"] or ""),
        "name": str(row["name"] or ""),
        "image_url": row["image_url"],
        "industry": row["industry"],
        "experience": row["experience"],
        "bio": row["bio"],
        "skills": load_json_list(row["skills_json"]),
        "created_at": str(row["created_at"]),
        "updated_at": str(row["updated_at"]),
    }


def update_user_profile(identity: str, profile: dict[str, Any]) -> Any:
    """Write the profile fields in one short transaction touching only this user's row."""
    connection = db_connection(timeout=settings.PROFILE_TX_TIMEOUT_SECONDS)
    try:
        cursor = connection.cursor()
        begin_write_transaction(cursor, settings.PROFILE_TX_TIMEOUT_SECONDS)
        cursor.execute(
            """
            UPDATE users SET industry = ?, experience = ?, bio = ?, skills_json = ?, updated_at = ?
            WHERE clerk_user_id = ?
            """,
            (
                profile["industry"],
                profile["experience"],
                profile["bio"],
                dump_json(profile["skills"]),
                now_utc_iso(),
                identity,
            ),
        )
        if cursor.rowcount == 0:
            connection.rollback()
            raise UserNotFound()
        row = cursor.execute(f"SELECT {USER_COLUMNS} FROM users WHERE clerk_user_id = ?", (identity,)).fetchone()
        connection.commit()
        return row
    except DB_ERRORS:
        connection.rollback()
        raise
    finally:
        connection.close()


def submit_onboarding(identity: str | None, profile: dict[str, Any], generate: InsightGenerator | None = None) -> dict[str, Any]:
    user = require_user(identity)
    normalized = normalize_profile(profile)
    clerk_user_id = str(user["clerk_user_id"])

    try:
        industry_insight = resolve_industry_insight(normalized["industry"], generate)
        updated_user = update_user_profile(clerk_user_id, normalized)
    except UserNotFound:
        raise
    except UpstreamGenerationFailure as exc:
        logger.error("Error updating user and industry: %s", exc.message)
        raise UpstreamGenerationFailure("Failed to update profile: " + exc.message) from exc
    except Exception as exc:
        detail = exc.message if isinstance(exc, CareerCoachError) else str(exc)
        logger.exception("Error updating user and industry: %s", detail)
        raise PersistenceFailure("Failed to update profile: " + detail) from exc

    return {
        "success": True,
        "user": user_payload(updated_user),
        "industry_insight": industry_insight,
    }


def get_onboarding_status(identity: str | None) -> dict[str, bool]:
    user = require_user(identity)
    return {"is_onboarded": bool(safe_text(user["industry"]))}
