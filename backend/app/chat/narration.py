from __future__ import annotations

import json
import logging
import re
from collections.abc import Sequence

from ..deadline import TurnDeadline
from ..json_utils import looks_like_json
from ..metrics import llm_fallbacks_total
from ..openai_async import LLMUnavailable, complete
from ..schemas import ChatMeta, ChatResponse, PlaceOut
from ..scoring import RankedResult
from ..settings import settings
from .list_qna import format_distance

logger = logging.getLogger(__name__)

LOCATION_PROMPT = "Please share your location or enable GPS (e.g., Yangon, Hlaing, Mandalay)."
GEOCODE_FAILED = (
    "I couldn't find that location. Please provide a more specific location "
    "(e.g., 'Thanlyin, Yangon')."
)
SMALLTALK_REPLY = (
    "Hi! Tell me what you're craving, or ask for a cuisine near a place "
    "(e.g., 'dim sum near Yangon')."
)
NO_RESULTS = (
    "I couldn't find food places for that. Try a different keyword "
    "(e.g., 'hotpot', 'noodle', 'dim sum')."
)
SEARCH_UNAVAILABLE = (
    "Place search is having trouble right now. Please try again in a moment."
)
NO_MORE_RESULTS = "That's everything I found nearby. Try a different keyword or a wider area."
CANCELLED = "No problem, I've dropped that search. Tell me what you're craving whenever you're ready."
NEED_SEARCH_FIRST = "Tell me what you'd like to eat first, and I'll find a few places."
LIST_QUESTION_UNCLEAR = "Tell me how you'd like me to rank the last results."
FOLLOWUP_NOT_FOUND = (
    "I couldn't match that to the places I showed you. Try the exact name, "
    "or ask me to search for it."
)
INVALID_MESSAGE = "Please send a message between 1 and 500 characters."
RATE_LIMITED = "You're sending messages a little fast. Please wait a moment and try again."

NARRATION_SYSTEM_PROMPT = (
    "You write one or two friendly sentences introducing restaurant suggestions. "
    "Only mention facts given to you. Plain text, no lists, no JSON, no markdown."
)

_STACK_TRACE_RE = re.compile(
    r"Traceback \(most recent call last\)|^\s+at\s+\S+\s*\(|File \".+\", line \d+|\bError:\s",
    re.MULTILINE,
)
_LOG_LINE_RE = re.compile(
    r"^\s*(\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}|\[(DEBUG|INFO|WARN|WARNING|ERROR)\]|"
    r"(DEBUG|INFO|WARNING|ERROR)\s*[:|])",
    re.MULTILINE,
)
MAX_NARRATION_LENGTH = 600


def intro_line(radius_m: int | None, location_label: str | None) -> str:
    radius_km = (radius_m or settings.DEFAULT_RADIUS_METERS) / 1000
    radius_text = f"{radius_km:.1f}".rstrip("0").rstrip(".")
    label = location_label or "you"
    return f"Here are a few options within ~{radius_text} km of {label}."


def sanitize_message(text: str | None) -> str | None:
    """Drop model output that looks like data, logs or a stack trace instead of prose."""
    if not text:
        return None
    cleaned = text.strip().strip('"').strip()
    if not cleaned or len(cleaned) > MAX_NARRATION_LENGTH:
        return None
    if looks_like_json(cleaned) or cleaned.startswith("```"):
        return None
    if _STACK_TRACE_RE.search(cleaned) or _LOG_LINE_RE.search(cleaned):
        return None
    return cleaned


def fallback_narration(results: Sequence[RankedResult]) -> str:
    lines = ["Here are a few nearby options:"]
    for index, result in enumerate(results, start=1):
        place = result.candidate
        facts = []
        if place.rating is not None:
            facts.append(f"{place.rating:.1f}★")
        if place.distance_meters is not None:
            facts.append(format_distance(place.distance_meters))
        suffix = f" ({', '.join(facts)})" if facts else ""
        lines.append(f"{index}. {place.name}{suffix}")
    return "\n".join(lines)


def _narration_facts(keyword: str, results: Sequence[RankedResult]) -> str:
    return json.dumps(
        {
            "request": keyword,
            "places": [
                {
                    "name": r.candidate.name,
                    "rating": r.candidate.rating,
                    "distance": format_distance(r.candidate.distance_meters),
                    "open_now": r.candidate.open_now,
                    "why": r.explanation,
                }
                for r in results
            ],
        },
        ensure_ascii=False,
    )


async def narrate(
    keyword: str,
    results: Sequence[RankedResult],
    *,
    deadline: TurnDeadline | None = None,
    enabled: bool | None = None,
) -> str:
    """
    Conversational summary of ranked results.

    Falls back to a numbered list when narration is off, the model fails, or
    the reply does not look like prose.
    """
    if not results:
        return NO_RESULTS
    if enabled is None:
        enabled = settings.NARRATION_ENABLED and settings.llm_available
    if not enabled:
        return fallback_narration(results)
    timeout = settings.NARRATION_TIMEOUT_SECONDS
    if deadline is not None:
        timeout = deadline.timeout_for(timeout)
    messages = [
        {"role": "system", "content": NARRATION_SYSTEM_PROMPT},
        {"role": "user", "content": _narration_facts(keyword, results)},
    ]
    try:
        text = await complete(messages, timeout=timeout, max_tokens=180, temperature=0.4)
    except LLMUnavailable as exc:
        logger.info("Narration fell back to list: %s", exc)
        llm_fallbacks_total.labels(purpose="narrate").inc()
        return fallback_narration(results)
    cleaned = sanitize_message(text)
    if cleaned is None:
        logger.warning("Discarded narration that did not look like prose")
        llm_fallbacks_total.labels(purpose="narrate").inc()
        return fallback_narration(results)
    return cleaned


def place_out(result: RankedResult) -> PlaceOut:
    place = result.candidate
    return PlaceOut(
        place_id=place.place_id,
        name=place.name,
        lat=place.coords.lat if place.coords else None,
        lng=place.coords.lng if place.coords else None,
        rating=place.rating,
        review_count=place.review_count,
        price_level=place.price_level,
        open_now=place.open_now,
        address=place.address,
        maps_url=place.maps_url,
        distance_meters=round(place.distance_meters, 1) if place.distance_meters is not None else None,
        explanation=result.explanation,
        score=round(result.score, 4),
    )


def build_response(
    message: str,
    *,
    session_id: str | None,
    results: Sequence[RankedResult] = (),
    mode: str | None = None,
    next_page_token: str | None = None,
    needs_location: bool | None = None,
    status: str = "ok",
) -> ChatResponse:
    return ChatResponse(
        status=status,
        message=message,
        places=[place_out(r) for r in results],
        meta=ChatMeta(
            session_id=session_id,
            next_page_token=next_page_token,
            mode=mode,
            needs_location=needs_location,
        ),
    )


def error_response(message: str, session_id: str | None = None) -> ChatResponse:
    return build_response(message, session_id=session_id, status="error", mode="error")
