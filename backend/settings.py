from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

TRUTHY_ENV_VALUES = {"1", "true", "yes", "on"}
logger = logging.getLogger("careercoach.backend")


def env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in TRUTHY_ENV_VALUES


def env_int(name: str, default: int, lower: int, upper: int) -> int:
    raw = (os.getenv(name) or "").strip()
    try:
        value = int(raw) if raw else default
    except ValueError:
        logger.warning("%s is not an integer (%r). Using %s.", name, raw, default)
        value = default
    return max(lower, min(upper, value))


DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]


def parse_cors_origins(value: str | None) -> list[str]:
    if not value:
        return DEFAULT_CORS_ORIGINS
    origins = [origin.strip() for origin in value.split(",") if origin.strip()]
    return origins or DEFAULT_CORS_ORIGINS


def resolve_db_path() -> str:
    explicit = (os.getenv("CAREER_DB_PATH") or "").strip()
    if explicit:
        return explicit
    if os.path.isdir("/var/data"):
        return "/var/data/careercoach.db"
    return os.path.join(os.path.dirname(__file__), "data", "careercoach.db")


def normalize_database_url(value: str | None) -> str:
    raw = (value or "").strip()
    if raw.startswith("postgres://"):
        return "postgresql://" + raw[len("postgres://") :]
    return raw


CORS_ALLOW_ORIGINS = parse_cors_origins(os.getenv("CORS_ALLOW_ORIGINS"))
CORS_ALLOW_ORIGIN_REGEX = os.getenv("CORS_ALLOW_ORIGIN_REGEX")

OPENAI_API_KEY = (os.getenv("OPENAI_API_KEY") or "").strip()
OPENAI_MODEL = (os.getenv("OPENAI_MODEL") or "gpt-4o-mini").strip()
OPENAI_TIMEOUT_SECONDS = env_int("OPENAI_TIMEOUT_SECONDS", 45, 5, 180)

DATABASE_URL = normalize_database_url(os.getenv("DATABASE_URL") or os.getenv("RENDER_POSTGRESQL_URL"))
DB_BACKEND = "postgres" if DATABASE_URL.startswith("postgresql://") else "sqlite"
DB_PATH = resolve_db_path()
PROFILE_TX_TIMEOUT_SECONDS = env_int("PROFILE_TX_TIMEOUT_SECONDS", 10, 1, 60)
INSIGHT_REFRESH_DAYS = env_int("INSIGHT_REFRESH_DAYS", 7, 1, 90)

AUTH_TOKEN_SECRET = (os.getenv("AUTH_TOKEN_SECRET") or "replace-this-in-production").strip()
AUTH_TOKEN_TTL_HOURS = env_int("AUTH_TOKEN_TTL_HOURS", 720, 1, 24 * 365)

if AUTH_TOKEN_SECRET == "replace-this-in-production":
    logger.warning("AUTH_TOKEN_SECRET is using a default value. Set AUTH_TOKEN_SECRET in production.")
if DB_BACKEND == "sqlite" and DB_PATH.startswith("/tmp/"):
    logger.warning("CAREER_DB_PATH is using temporary storage (%s). Use persistent storage in production.", DB_PATH)
