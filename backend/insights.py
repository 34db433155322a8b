"""Shared industry insight records.

One row exists per industry name. Rows are created lazily the first time a
user picks an industry nobody has picked before; the content comes from the
generation collaborator and is merged over a fixed baseline.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from backend import settings
from backend.db import DB_ERRORS, DB_INTEGRITY_ERRORS, db_connection, dump_json, load_json_list
from backend.errors import CareerCoachError, DuplicateInsightRace, PersistenceFailure, UpstreamGenerationFailure
from backend.llm import parse_json_object, request_llm_completion

logger = settings.logger.getChild("insights")

InsightGenerator = Callable[[str], dict[str, Any]]

DEMAND_LEVELS = ("High", "Medium", "Low")
MARKET_OUTLOOKS = ("Positive", "Neutral", "Negative")
LIST_FIELDS = ("top_skills", "key_trends", "recommended_skills")

INSIGHT_COLUMNS = (
    "industry, salary_ranges_json, growth_rate, demand_level, top_skills_json, market_outlook, "
    "key_trends_json, recommended_skills_json, last_updated, next_update"
)

INSIGHT_PROMPT = """
Analyze the current state of the {industry} industry and provide insights in ONLY the following JSON format without any additional notes or explanations:
{{
  "salaryRanges": [
    {{ "role": "string", "min": number, "max": number, "median": number, "location": "string" }}
  ],
  "growthRate": number,
  "demandLevel": "High" | "Medium" | "Low",
  "topSkills": ["skill1", "skill2"],
  "marketOutlook": "Positive" | "Neutral" | "Negative",
  "keyTrends": ["trend1", "trend2"],
  "recommendedSkills": ["skill1", "skill2"]
}}

IMPORTANT: Return ONLY the JSON. No additional text, notes, or markdown formatting.
Include at least 5 common roles for salary ranges.
Growth rate should be a percentage.
Include at least 5 skills and trends.
"""

# Generated bundles use camelCase keys; rows use snake_case.
GENERATED_KEY_ALIASES = {
    "salaryRanges": "salary_ranges",
    "growthRate": "growth_rate",
    "demandLevel": "demand_level",
    "topSkills": "top_skills",
    "marketOutlook": "market_outlook",
    "keyTrends": "key_trends",
    "recommendedSkills": "recommended_skills",
}


def baseline_insight_fields(now: datetime | None = None) -> dict[str, Any]:
    current = now or datetime.now(timezone.utc)
    return {
        "salary_ranges": [],
        "growth_rate": 0.0,
        "demand_level": "Medium",
        "top_skills": [],
        "market_outlook": "Neutral",
        "key_trends": [],
        "recommended_skills": [],
        "last_updated": current.isoformat(),
        "next_update": (current + timedelta(days=settings.INSIGHT_REFRESH_DAYS)).isoformat(),
    }


def _as_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _pick_choice(value: Any, choices: tuple[str, ...], default: str) -> str:
    text = str(value or "").strip().lower()
    for choice in choices:
        if choice.lower() == text:
            return choice
    return default


def _text_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if str(item or "").strip()]


def _salary_ranges(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    ranges: list[dict[str, Any]] = []
    for item in value:
        if not isinstance(item, dict) or not str(item.get("role") or "").strip():
            continue
        ranges.append(
            {
                "role": str(item["role"]).strip(),
                "min": _as_float(item.get("min")),
                "max": _as_float(item.get("max")),
                "median": _as_float(item.get("median")),
                "location": str(item.get("location") or "").strip(),
            }
        )
    return ranges


def merge_generated_insights(generated: dict[str, Any] | None, now: datetime | None = None) -> dict[str, Any]:
    """Overlay a generated bundle on the baseline, filling and coercing every field."""
    merged = baseline_insight_fields(now)
    raw = {GENERATED_KEY_ALIASES.get(key, key): value for key, value in (generated or {}).items()}

    merged["salary_ranges"] = _salary_ranges(raw.get("salary_ranges"))
    merged["growth_rate"] = _as_float(raw.get("growth_rate"), merged["growth_rate"])
    merged["demand_level"] = _pick_choice(raw.get("demand_level"), DEMAND_LEVELS, merged["demand_level"])
    merged["market_outlook"] = _pick_choice(raw.get("market_outlook"), MARKET_OUTLOOKS, merged["market_outlook"])
    for field in LIST_FIELDS:
        merged[field] = _text_list(raw.get(field))
    return merged


def generate_industry_insights(industry: str) -> dict[str, Any]:
    content = request_llm_completion(
        system_prompt="You are a labour-market analyst. You answer with strict JSON only.",
        user_prompt=INSIGHT_PROMPT.format(industry=industry),
        temperature=0.2,
        json_mode=True,
    )
    return parse_json_object(content)


def row_to_insight(row: Any) -> dict[str, Any]:
    return {
        "industry": str(row["industry"]),
        "salary_ranges": load_json_list(row["salary_ranges_json"]),
        "growth_rate": float(row["growth_rate"]),
        "demand_level": str(row["demand_level"]),
        "top_skills": load_json_list(row["top_skills_json"]),
        "market_outlook": str(row["market_outlook"]),
        "key_trends": load_json_list(row["key_trends_json"]),
        "recommended_skills": load_json_list(row["recommended_skills_json"]),
        "last_updated": str(row["last_updated"]),
        "next_update": str(row["next_update"]),
    }


def fetch_insight(industry: str) -> dict[str, Any] | None:
    connection = db_connection()
    try:
        row = connection.execute(
            f"SELECT {INSIGHT_COLUMNS} FROM industry_insights WHERE industry = ?",
            (industry,),
        ).fetchone()
    finally:
        connection.close()
    return row_to_insight(row) if row else None


def insert_insight(industry: str, fields: dict[str, Any]) -> dict[str, Any]:
    connection = db_connection()
    try:
        connection.execute(
            f"""
            INSERT INTO industry_insights ({INSIGHT_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                industry,
                dump_json(fields["salary_ranges"]),
                float(fields["growth_rate"]),
                fields["demand_level"],
                dump_json(fields["top_skills"]),
                fields["market_outlook"],
                dump_json(fields["key_trends"]),
                dump_json(fields["recommended_skills"]),
                fields["last_updated"],
                fields["next_update"],
            ),
        )
        connection.commit()
    except DB_INTEGRITY_ERRORS as exc:
        connection.rollback()
        raise DuplicateInsightRace(industry) from exc
    finally:
        connection.close()
    return {"industry": industry, **fields}


def resolve_industry_insight(industry: str, generate: InsightGenerator | None = None) -> dict[str, Any]:
    """Find the insight row for ``industry`` or create it.

    Generation runs with no transaction or lock held. When a concurrent
    request wins the insert, the generated bundle is dropped and the winner's
    row is returned.
    """
    generator = generate or generate_industry_insights
    try:
        existing = fetch_insight(industry)
        if existing:
            return existing

        try:
            generated = generator(industry)
        except CareerCoachError:
            raise
        except Exception as exc:
            raise UpstreamGenerationFailure(f"Insight generation failed for '{industry}': {exc}") from exc

        try:
            created = insert_insight(industry, merge_generated_insights(generated))
            logger.info("Created industry insight for '%s'.", industry)
            return created
        except DuplicateInsightRace:
            logger.info("Industry insight for '%s' was created concurrently. Using the stored row.", industry)

        winner = fetch_insight(industry)
    except DB_ERRORS as exc:
        raise PersistenceFailure(f"Industry insight lookup failed: {exc}") from exc
    if winner is None:
        raise PersistenceFailure(f"Industry insight for '{industry}' disappeared after a concurrent insert.")
    return winner


def salary_chart_series(insight: dict[str, Any]) -> list[dict[str, Any]]:
    return [
        {
            "name": item["role"],
            "min": round(float(item["min"]) / 1000, 1),
            "max": round(float(item["max"]) / 1000, 1),
            "median": round(float(item["median"]) / 1000, 1),
        }
        for item in insight.get("salary_ranges", [])
    ]
