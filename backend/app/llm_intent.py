from __future__ import annotations

import json
import logging
import time
from hashlib import sha256
from typing import Any

from pydantic import ValidationError

from .json_utils import extract_json_dict
from .openai_async import LLMUnavailable, complete
from .schemas import IntentExtraction

logger = logging.getLogger(__name__)

MAX_FAILURES = 3
COOLDOWN_SECONDS = 300.0  # 5 minutes

_failure_count = 0
_disabled_until = 0.0


class IntentUnavailable(RuntimeError):
    """Raised when the intent classifier model cannot be used."""


def _now() -> float:
    return time.monotonic()


def _prompt_fingerprint(prompt: str) -> str:
    return sha256(prompt.encode("utf-8")).hexdigest()[:10]


def _circuit_open() -> bool:
    return _failure_count >= MAX_FAILURES and _disabled_until > _now()


def _register_failure(exc: Exception | None = None) -> None:
    global _failure_count, _disabled_until
    _failure_count += 1
    if _failure_count >= MAX_FAILURES:
        _disabled_until = _now() + COOLDOWN_SECONDS
    if exc:
        logger.warning("LLM intent failure (%s/%s): %s", _failure_count, MAX_FAILURES, exc)


def _register_success() -> None:
    global _failure_count, _disabled_until
    _failure_count = 0
    _disabled_until = 0.0


def reset_state() -> None:
    _register_success()


SYSTEM_PROMPT = (
    "You classify messages sent to a food place finder. "
    "Return JSON only, no prose, with this shape: "
    '{"intent": "smalltalk|food_search|refine|place_followup|list_question|needs_location", '
    '"extracted": {"cuisine": string|null, "dish": string|null, "placeName": string|null, '
    '"vibe": string|null, "budget": "cheap"|"mid"|"high"|null, "dietary": string|null, '
    '"radius": number|null}}. '
    "Use needs_location only for a food search when no location is known. "
    "Radius is in meters."
)

FEW_SHOT_EXAMPLES = [
    (
        {"message": "cheap ramen within 2km", "has_location": True},
        {
            "intent": "food_search",
            "extracted": {"cuisine": "ramen", "budget": "cheap", "radius": 2000},
        },
    ),
    (
        {"message": "is Shan Noodle House any good?", "has_location": True},
        {"intent": "place_followup", "extracted": {"placeName": "Shan Noodle House"}},
    ),
    (
        {"message": "something quieter please", "has_location": True},
        {"intent": "refine", "extracted": {"vibe": "quiet"}},
    ),
]


def _few_shot_messages() -> list[dict[str, str]]:
    messages: list[dict[str, str]] = []
    for user_payload, response in FEW_SHOT_EXAMPLES:
        messages.append({"role": "user", "content": json.dumps(user_payload, ensure_ascii=False)})
        messages.append({"role": "assistant", "content": json.dumps(response, ensure_ascii=False)})
    return messages


def _flatten(payload: dict[str, Any]) -> dict[str, Any]:
    extracted = payload.get("extracted")
    flat = {k: v for k, v in payload.items() if k != "extracted"}
    if isinstance(extracted, dict):
        flat.update(extracted)
    budget = str(flat.get("budget") or "").strip().lower()
    flat["budget"] = budget if budget in {"cheap", "mid", "high"} else None
    if flat.get("intent") == "search":
        flat["intent"] = "food_search"
    return flat


async def classify_with_llm(message: str, has_location: bool, *, timeout: float) -> IntentExtraction:
    """
    Ask the model to classify one chat message.

    Any failure (transport, timeout, malformed output) raises IntentUnavailable;
    three consecutive failures pause model calls for COOLDOWN_SECONDS.
    """
    normalized = message.strip()
    if not normalized:
        raise IntentUnavailable("Empty message")
    if _circuit_open():
        raise IntentUnavailable("Intent classifier cooling down")

    digest = _prompt_fingerprint(normalized)
    messages = [
        {"role": "system", "content": SYSTEM_PROMPT},
        *_few_shot_messages(),
        {
            "role": "user",
            "content": json.dumps(
                {"message": normalized, "has_location": has_location}, ensure_ascii=False
            ),
        },
    ]
    try:
        content = await complete(
            messages, timeout=timeout, json_mode=True, max_tokens=200, temperature=0
        )
    except LLMUnavailable as exc:
        _register_failure(exc)
        raise IntentUnavailable("LLM call failed") from exc

    try:
        payload = extract_json_dict(content)
    except ValueError as exc:
        logger.warning("Intent JSON decode failed (%s): %s", digest, content[:200])
        _register_failure(exc)
        raise IntentUnavailable("Invalid intent JSON") from exc

    try:
        extraction = IntentExtraction.model_validate(_flatten(payload))
    except ValidationError as exc:
        logger.warning("Intent validation failed (%s): %s", digest, payload)
        _register_failure(exc)
        raise IntentUnavailable("Invalid intent format") from exc

    _register_success()
    logger.debug("Intent classified %s -> %s", digest, extraction.model_dump(exclude_none=True))
    return extraction
