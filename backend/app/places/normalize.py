"""Walk heterogeneous tool payloads into canonical PlaceCandidate records."""

from __future__ import annotations

import hashlib
import math
import re
from typing import Any

from ..json_utils import parse_json_from_text
from .geo import haversine_meters
from .mcp_client import unwrap_tool_result
from .types import Coords, PlaceCandidate, make_coords

LIST_KEYS = ("results", "places", "candidates", "items", "data")
PAGE_TOKEN_FIELDS = ("nextPageToken", "next_page_token", "pageToken", "page_token")

FOOD_PLACE_TYPES = frozenset(
    {"restaurant", "meal_takeaway", "meal_delivery", "cafe", "bakery", "bar", "food"}
)
FOOD_NAME_SIGNALS = (
    "restaurant", "cafe", "coffee", "bakery", "bar", "tea", "noodle", "bbq",
    "barbecue", "sushi", "hotpot", "hot pot", "dim sum", "kitchen", "grill",
    "bistro", "diner", "ramen", "pho", "pizza", "burger", "steak", "seafood",
    "buffet", "kebab", "shawarma", "taco", "curry", "rice",
)

_LINE_URL_RE = re.compile(r"https?://\S+", re.IGNORECASE)
_LINE_NAME_RE = re.compile(r"^\d+\.?\s*([^\-–—(]+?)(?:\s+[\-–—]|\s*\(|$)")
_LINE_ADDRESS_RE = re.compile(r"address\s*[:\-]\s*([^,]+)", re.IGNORECASE)
_LINE_RATING_RE = re.compile(r"rating\s*[:\-]\s*([\d.]+)", re.IGNORECASE)


def _string(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if not isinstance(value, (int, float)) and not (isinstance(value, str) and value.strip()):
        return None
    try:
        number = float(value)
    except (ValueError, OverflowError):
        return None
    return number if math.isfinite(number) else None


def _first(mapping: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = mapping.get(key)
        if value is not None:
            return value
    return None


def extract_lat_lng(payload: Any) -> Coords | None:
    if not isinstance(payload, dict):
        return None
    coords = make_coords(
        _first(payload, "lat", "latitude", "y"),
        _first(payload, "lng", "lon", "longitude", "x"),
    )
    if coords is not None:
        return coords
    container = payload.get("location")
    if not isinstance(container, dict):
        container = payload.get("geometry")
    if isinstance(container, dict):
        inner = container.get("location") if isinstance(container.get("location"), dict) else container
        return make_coords(
            _first(inner, "lat", "latitude"), _first(inner, "lng", "lon", "longitude")
        )
    return None


_PRICE_LEVEL_NAMES = {
    "PRICE_LEVEL_FREE": 0,
    "PRICE_LEVEL_INEXPENSIVE": 1,
    "PRICE_LEVEL_MODERATE": 2,
    "PRICE_LEVEL_EXPENSIVE": 3,
    "PRICE_LEVEL_VERY_EXPENSIVE": 4,
}


def _price_level(value: Any) -> int | None:
    if isinstance(value, str) and value.upper() in _PRICE_LEVEL_NAMES:
        return _PRICE_LEVEL_NAMES[value.upper()]
    number = _number(value)
    return int(number) if number is not None else None


def _open_now(payload: dict[str, Any]) -> bool | None:
    for key in ("openNow", "open_now"):
        if isinstance(payload.get(key), bool):
            return payload[key]
    for container_key, flag_key in (
        ("opening_hours", "open_now"),
        ("currentOpeningHours", "openNow"),
        ("regularOpeningHours", "openNow"),
    ):
        container = payload.get(container_key)
        if isinstance(container, dict) and isinstance(container.get(flag_key), bool):
            return container[flag_key]
    return None


def fallback_place_id(name: str, coords: Coords | None, address: str | None) -> str:
    seed = "|".join(
        [
            name,
            str(coords.lat) if coords else "unknown",
            str(coords.lng) if coords else "unknown",
            address or "",
        ]
    )
    return "gen_" + hashlib.sha1(seed.encode("utf-8")).hexdigest()[:16]


def maps_url_for(place_id: str) -> str:
    return f"https://www.google.com/maps/place/?q=place_id:{place_id}"


def normalize_place(payload: Any, origin: Coords | None = None) -> PlaceCandidate | None:
    """Canonicalize one raw place record; records without a name are dropped."""
    if not isinstance(payload, dict):
        return None
    display = payload.get("displayName")
    if isinstance(display, dict):
        display_text = _string(display.get("text") or display.get("value"))
    else:
        display_text = _string(display)
    name = (
        display_text
        or _string(payload.get("name"))
        or _string(payload.get("display_name"))
        or _string(payload.get("title"))
    )
    if not name:
        return None

    address = None
    for key in ("formattedAddress", "shortFormattedAddress", "formatted_address", "vicinity", "address"):
        address = _string(payload.get(key))
        if address:
            break

    coords = extract_lat_lng(payload)
    raw_id = _string(_first(payload, "placeId", "place_id", "id"))
    # Places API (new) uses `name` for "places/<id>" resource paths
    if not raw_id and display_text and isinstance(payload.get("name"), str):
        resource = payload["name"]
        if resource.startswith("places/"):
            raw_id = resource.split("/", 1)[1] or None
    place_id = raw_id or fallback_place_id(name, coords, address)

    maps_url = _string(_first(payload, "googleMapsUri", "mapsUri", "url", "maps_url", "mapsUrl"))
    if not maps_url and raw_id:
        maps_url = maps_url_for(raw_id)

    review_count = _number(
        _first(payload, "userRatingCount", "user_ratings_total", "reviewsCount", "reviewCount")
    )
    raw_types = _first(payload, "types", "categories")
    types = [t.lower() for t in raw_types if isinstance(t, str)] if isinstance(raw_types, list) else []
    primary = payload.get("primaryType")
    if isinstance(primary, str) and primary.lower() not in types:
        types.append(primary.lower())

    candidate = PlaceCandidate(
        place_id=place_id,
        name=name,
        coords=coords,
        rating=_number(payload.get("rating")),
        review_count=int(review_count) if review_count is not None else None,
        price_level=_price_level(_first(payload, "priceLevel", "price_level")),
        open_now=_open_now(payload),
        address=address,
        maps_url=maps_url,
        types=types,
    )
    if origin is not None and coords is not None:
        candidate.distance_meters = haversine_meters(origin, coords)
    return candidate


def extract_places_array(payload: Any) -> list[dict[str, Any]]:
    if isinstance(payload, list):
        return [item for item in payload if isinstance(item, dict)]
    if isinstance(payload, dict):
        for key in LIST_KEYS:
            value = payload.get(key)
            if isinstance(value, list):
                return [item for item in value if isinstance(item, dict)]
        nested = payload.get("result")
        if isinstance(nested, (dict, list)):
            return extract_places_array(nested)
    return []


def extract_places_from_text(text: str) -> list[dict[str, Any]]:
    """Last-resort parser for numbered plain-text listings."""
    places: list[dict[str, Any]] = []
    for line in (part.strip() for part in text.splitlines()):
        if not line:
            continue
        url = _LINE_URL_RE.search(line)
        name = _LINE_NAME_RE.match(line)
        address = _LINE_ADDRESS_RE.search(line)
        rating = _LINE_RATING_RE.search(line)
        if not (name or url or address):
            continue
        place: dict[str, Any] = {"name": name.group(1).strip() if name else line}
        if address:
            place["address"] = address.group(1).strip()
        if rating:
            place["rating"] = rating.group(1)
        if url:
            place["url"] = url.group(0)
        places.append(place)
    return places


def extract_places(result: Any) -> list[dict[str, Any]]:
    payload, content_text = unwrap_tool_result(result)
    places = extract_places_array(payload)
    if not places and content_text:
        parsed = parse_json_from_text(content_text)
        if parsed is not None:
            places = extract_places_array(parsed)
        if not places:
            places = extract_places_from_text(content_text)
    return places


def get_next_page_token(result: Any) -> str | None:
    payload, _ = unwrap_tool_result(result)
    for container in (payload, payload.get("data") if isinstance(payload, dict) else None):
        if not isinstance(container, dict):
            continue
        for key in PAGE_TOKEN_FIELDS:
            token = _string(container.get(key))
            if token:
                return token
    return None


def normalize_places(result: Any, origin: Coords | None = None) -> list[PlaceCandidate]:
    return [
        candidate
        for candidate in (normalize_place(raw, origin) for raw in extract_places(result))
        if candidate is not None
    ]


def dedupe_candidates(candidates: list[PlaceCandidate]) -> list[PlaceCandidate]:
    """Drop repeated place ids; the first occurrence keeps its position."""
    seen: set[str] = set()
    unique: list[PlaceCandidate] = []
    for candidate in candidates:
        if candidate.place_id in seen:
            continue
        seen.add(candidate.place_id)
        unique.append(candidate)
    return unique


def is_food_place(candidate: PlaceCandidate) -> bool:
    if candidate.types:
        return any(t in FOOD_PLACE_TYPES for t in candidate.types)
    label = f"{candidate.name} {candidate.address or ''}".lower()
    return any(signal in label for signal in FOOD_NAME_SIGNALS)


def filter_food_places(candidates: list[PlaceCandidate]) -> list[PlaceCandidate]:
    """
    Drop typed places that carry no food type.

    Untyped places are kept since the backend gave no evidence either way.
    Order is preserved.
    """
    return [
        candidate
        for candidate in candidates
        if not candidate.types or is_food_place(candidate)
    ]
