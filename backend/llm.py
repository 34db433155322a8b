from __future__ import annotations

import json
import re
from typing import Any

from openai import OpenAI

from backend import settings
from backend.errors import UpstreamGenerationFailure

logger = settings.logger.getChild("llm")

client = OpenAI(api_key=settings.OPENAI_API_KEY, timeout=settings.OPENAI_TIMEOUT_SECONDS) if settings.OPENAI_API_KEY else None

if client is None:
    logger.warning("OPENAI_API_KEY is missing. AI generation requests will not reach OpenAI.")


def extract_llm_text(message_content: Any) -> str:
    if isinstance(message_content, str):
        return message_content.strip()

    if isinstance(message_content, list):
        parts: list[str] = []
        for item in message_content:
            if isinstance(item, str):
                parts.append(item)
                continue

            if isinstance(item, dict):
                text = item.get("text")
            else:
                text = getattr(item, "text", None)

            if isinstance(text, str):
                parts.append(text)

        return "\n".join(parts).strip()

    return str(message_content or "").strip()


def request_llm_completion(system_prompt: str, user_prompt: str, temperature: float, json_mode: bool = False) -> str:
    """Single chat completion call. Failures are raised, never retried."""
    if client is None:
        raise UpstreamGenerationFailure("AI generation is not configured (OPENAI_API_KEY missing).")

    options: dict[str, Any] = {}
    if json_mode:
        options["response_format"] = {"type": "json_object"}

    try:
        response = client.chat.completions.create(
            model=settings.OPENAI_MODEL,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=temperature,
            **options,
        )
    except Exception as exc:
        logger.exception("OpenAI request failed for model '%s'.", settings.OPENAI_MODEL)
        raise UpstreamGenerationFailure(f"{type(exc).__name__} on model {settings.OPENAI_MODEL}") from exc

    content = extract_llm_text(response.choices[0].message.content if response.choices else "")
    if not content:
        logger.error("OpenAI returned empty content for model '%s'.", settings.OPENAI_MODEL)
        raise UpstreamGenerationFailure(f"empty response from model {settings.OPENAI_MODEL}")
    return content


def parse_json_object(text: str) -> dict[str, Any]:
    cleaned = re.sub(r"^```(?:json)?\s*|\s*```$", "", text.strip(), flags=re.IGNORECASE)
    try:
        parsed = json.loads(cleaned)
    except ValueError as exc:
        raise UpstreamGenerationFailure("AI response was not valid JSON.") from exc
    if not isinstance(parsed, dict):
        raise UpstreamGenerationFailure("AI response was not a JSON object.")
    return parsed
