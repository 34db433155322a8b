from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from typing import Any

from fastapi import Request

from backend import settings
from backend.db import DB_ERRORS, DB_INTEGRITY_ERRORS, db_connection, now_utc_iso
from backend.errors import NotAuthenticated, PersistenceFailure, UserNotFound

logger = settings.logger.getChild("auth")

USER_COLUMNS = "id, clerk_user_id, email, name, image_url, industry, experience, bio, skills_json, created_at, updated_at"


def safe_text(value: str | None) -> str:
    return (value or "").strip()


def b64url_encode(value: bytes) -> str:
    return base64.urlsafe_b64encode(value).decode("utf-8").rstrip("=")


def b64url_decode(value: str) -> bytes:
    padding = "=" * ((4 - (len(value) % 4)) % 4)
    return base64.urlsafe_b64decode(value + padding)


def sign_payload(payload_b64: str) -> bytes:
    return hmac.new(settings.AUTH_TOKEN_SECRET.encode("utf-8"), payload_b64.encode("utf-8"), hashlib.sha256).digest()


def create_auth_token(identity: str, ttl_hours: int | None = None) -> str:
    hours = settings.AUTH_TOKEN_TTL_HOURS if ttl_hours is None else ttl_hours
    payload = {
        "sub": safe_text(identity),
        "exp": int(time.time()) + int(hours * 3600),
    }
    payload_b64 = b64url_encode(json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8"))
    return f"{payload_b64}.{b64url_encode(sign_payload(payload_b64))}"


def decode_auth_token(token: str) -> dict[str, Any]:
    parts = safe_text(token).split(".")
    if len(parts) != 2:
        raise NotAuthenticated("Invalid authentication token.")

    payload_b64, signature_b64 = parts
    try:
        provided = b64url_decode(signature_b64)
    except ValueError as exc:
        raise NotAuthenticated("Invalid authentication token signature.") from exc
    if not hmac.compare_digest(sign_payload(payload_b64), provided):
        raise NotAuthenticated("Invalid authentication token signature.")

    try:
        payload = json.loads(b64url_decode(payload_b64).decode("utf-8"))
    except Exception as exc:
        raise NotAuthenticated("Invalid authentication token payload.") from exc

    if int(payload.get("exp", 0)) < int(time.time()):
        raise NotAuthenticated("Authentication token expired. Please sign in again.")
    return payload


def extract_bearer_token(request: Request) -> str | None:
    auth_header = safe_text(request.headers.get("authorization"))
    if auth_header.lower().startswith("bearer "):
        return safe_text(auth_header[7:])
    return None


def resolve_identity(request: Request, explicit_auth_token: str | None = None) -> str:
    """Return the external identity carried by the request's token."""
    token = safe_text(explicit_auth_token) or safe_text(extract_bearer_token(request))
    if not token:
        raise NotAuthenticated("User not authenticated")
    identity = safe_text(str(decode_auth_token(token).get("sub") or ""))
    if not identity:
        raise NotAuthenticated("User not authenticated")
    return identity


def fetch_user_by_identity(identity: str) -> Any:
    connection = db_connection()
    try:
        cursor = connection.execute(f"SELECT {USER_COLUMNS} FROM users WHERE clerk_user_id = ?", (identity,))
        return cursor.fetchone()
    finally:
        connection.close()


def require_user(identity: str | None) -> Any:
    if not safe_text(identity):
        raise NotAuthenticated()
    try:
        user = fetch_user_by_identity(safe_text(identity))
    except DB_ERRORS as exc:
        logger.exception("User lookup failed for %s", identity)
        raise PersistenceFailure("Failed to load user: " + str(exc)) from exc
    if not user:
        raise UserNotFound()
    return user


def sync_user(identity: str, email: str | None = None, name: str | None = None, image_url: str | None = None) -> Any:
    """Create the user row on first sign-in, otherwise refresh its contact fields."""
    identity = safe_text(identity)
    if not identity:
        raise NotAuthenticated()

    existing = fetch_user_by_identity(identity)
    connection = db_connection()
    try:
        if existing:
            connection.execute(
                "UPDATE users SET email = ?, name = ?, image_url = ?, updated_at = ? WHERE clerk_user_id = ?",
                (
                    safe_text(email) or str(existing["email"]),
                    safe_text(name) or str(existing["name"]),
                    safe_text(image_url) or existing["image_url"],
                    now_utc_iso(),
                    identity,
                ),
            )
            connection.commit()
        else:
            timestamp = now_utc_iso()
            try:
                connection.execute(
                    """
                    INSERT INTO users (clerk_user_id, email, name, image_url, skills_json, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (identity, safe_text(email), safe_text(name), safe_text(image_url) or None, "[]", timestamp, timestamp),
                )
                connection.commit()
                logger.info("Created user record for %s", identity)
            except DB_INTEGRITY_ERRORS:
                # Concurrent first sign-in already created the row.
                connection.rollback()
    except DB_ERRORS as exc:
        connection.rollback()
        logger.exception("User sync failed for %s", identity)
        raise PersistenceFailure("Failed to sync user: " + str(exc)) from exc
    finally:
        connection.close()

    user = fetch_user_by_identity(identity)
    if not user:
        raise PersistenceFailure("Unable to create user record.")
    return user
