from __future__ import annotations

import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Literal

from ..places.geocode import GeocodeContext, ResolvedLocation
from ..places.types import Coords

LOCATION_MAX_LENGTH = 80

PREPOSITION_RE = re.compile(r"\b(?:in|near|around|at)\s+([^,.;!?]+)$", re.IGNORECASE)
TRAILING_LOCATION_RE = re.compile(r"^(.*)\s+([a-zA-Z][a-zA-Z\s'\-]+)$")
OPEN_NOW_RE = re.compile(r"\bopen(?:\s+now)?\b", re.IGNORECASE)
QUERY_NOISE_RE = re.compile(
    r"\b(open now|open|near me|nearby|cheap|budget|affordable|expensive)\b", re.IGNORECASE
)

FOOD_TERMS = (
    "food", "restaurant", "restaurants", "cafe", "cafes", "bakery", "bakeries", "bar", "bars",
    "coffee", "tea", "noodle", "noodles", "sushi", "hotpot", "hot pot", "dim sum", "pizza",
    "burger", "ramen", "bbq",
)

GENERIC_LOCATION_PHRASES = frozenset(
    {
        "me", "here", "nearby", "near", "around", "around here", "near here",
        "this area", "that area",
        "the area", "my area", "my location", "my place", "current location", "where i am",
        "you", "us", "there",
    }
)

CONFIRM_TEMPLATE = "Got it, searching near {label}..."


@dataclass(frozen=True, slots=True)
class ExtractedLocation:
    cleaned_query: str
    location_text: str | None


@dataclass(frozen=True, slots=True)
class ParsedQuery:
    keyword: str | None
    location_text: str | None
    open_now: bool


def is_food_term(value: str) -> bool:
    lowered = value.lower()
    return any(term in lowered for term in FOOD_TERMS)


def is_generic_location(value: str) -> bool:
    return re.sub(r"\s+", " ", value.strip().lower()) in GENERIC_LOCATION_PHRASES


def _sanitize(value: str) -> str:
    return re.sub(r"\s{2,}", " ", value.strip())[:LOCATION_MAX_LENGTH].strip()


def extract_explicit_location(message: str) -> ExtractedLocation:
    """
    Split a trailing "in/near/around/at X" clause off a message.

    Generic targets such as "me" or "this area" are not locations; the clause
    is still removed so the remaining text is a clean keyword, and the caller
    falls back to device or remembered coordinates.
    """
    trimmed = (message or "").strip()
    if not trimmed:
        return ExtractedLocation("", None)

    match = PREPOSITION_RE.search(trimmed)
    if match:
        location = _sanitize(match.group(1))
        remainder = trimmed[: match.start()] + " " + trimmed[match.end() :]
        cleaned = re.sub(r"\s{2,}", " ", remainder).strip()
        if not location or is_generic_location(location):
            return ExtractedLocation(cleaned or trimmed, None)
        return ExtractedLocation(cleaned or trimmed, location)

    match = TRAILING_LOCATION_RE.match(trimmed)
    if match:
        location = _sanitize(match.group(2))
        cleaned = match.group(1).strip()
        if (
            location
            and cleaned
            and is_food_term(cleaned)
            and not is_food_term(location)
            and not is_generic_location(location)
        ):
            return ExtractedLocation(cleaned, location)

    return ExtractedLocation(trimmed, None)


def parse_query(message: str) -> ParsedQuery:
    """Keyword, location text and open-now flag from a free-form search message."""
    text = (message or "").strip()
    extracted = extract_explicit_location(text)
    keyword = QUERY_NOISE_RE.sub(" ", extracted.cleaned_query)
    keyword = re.sub(r"\s{2,}", " ", keyword).strip(" ,.!?")
    return ParsedQuery(
        keyword=keyword or None,
        location_text=extracted.location_text,
        open_now=bool(OPEN_NOW_RE.search(text)),
    )


CoordsSource = Literal["request", "geocoded", "session", "none"]
Geocoder = Callable[[str, GeocodeContext], Awaitable[ResolvedLocation | None]]


@dataclass(frozen=True, slots=True)
class SearchCoords:
    coords: Coords | None
    source: CoordsSource
    label: str | None = None
    confirm_message: str | None = None
    geocode_failed: bool = False


async def resolve_search_coords(
    *,
    request_coords: Coords | None,
    location_text: str | None,
    session_coords: Coords | None,
    geocode: Geocoder,
    context: GeocodeContext | None = None,
) -> SearchCoords:
    """Request coordinates win, then geocoded text, then remembered coordinates."""
    if request_coords is not None:
        return SearchCoords(request_coords, "request")
    if location_text:
        resolved = await geocode(location_text, context or GeocodeContext())
        if resolved is None:
            return SearchCoords(None, "none", geocode_failed=True)
        label = resolved.formatted_address or location_text
        return SearchCoords(
            resolved.coords,
            "geocoded",
            label=label,
            confirm_message=CONFIRM_TEMPLATE.format(label=label),
        )
    if session_coords is not None:
        return SearchCoords(session_coords, "session")
    return SearchCoords(None, "none")
