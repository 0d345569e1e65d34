"""
Build call payloads for tools whose parameter names are only known at runtime.

Every builder is a pure function of (declared parameter names, concept values):
each concept (latitude, radius, keyword, ...) is matched onto the first
declared parameter containing one of its candidate spellings, in order.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any

from .types import Coords, ToolCatalogEntry

LAT_KEYS = ("lat", "latitude")
LNG_KEYS = ("lng", "lon", "longitude")
RADIUS_KEYS = ("radius", "radius_m", "distance")
KEYWORD_KEYS = ("keyword", "query", "textquery", "searchterm", "text", "search")
TEXT_QUERY_KEYS = ("query", "text", "input", "search")
INCLUDED_TYPES_KEYS = ("includedtypes", "included_types", "included")
TYPE_KEYS = ("type", "types")
OPEN_NOW_KEYS = ("open_now", "opennow", "isopen")
PAGE_TOKEN_KEYS = ("nextpagetoken", "next_page_token", "pagetoken", "page_token")
MAX_RESULTS_KEYS = ("maxresultcount", "maxresults", "max_results", "limit")
FIELD_MASK_KEYS = ("fieldmask", "field_mask", "fields")
LOCATION_BIAS_KEYS = ("locationbias", "location_bias")
LOCATION_TEXT_KEYS = ("near", "location", "bias")
GEOCODE_KEYS = ("address_query", "address", "query", "text", "input")
PLACE_ID_KEYS = ("place_id", "placeid", "place", "id")

DEFAULT_FIELD_MASK = (
    "places.id,places.displayName,places.formattedAddress,places.location,"
    "places.rating,places.userRatingCount,places.priceLevel,"
    "places.currentOpeningHours,places.googleMapsUri,places.types"
)


def _names(tool: ToolCatalogEntry | Sequence[str]) -> tuple[str, ...]:
    if isinstance(tool, ToolCatalogEntry):
        return tool.parameter_names
    return tuple(tool)


def match_parameter(names: Iterable[str], candidates: Sequence[str]) -> str | None:
    """First declared name containing a candidate, trying candidates in order."""
    declared = list(names)
    lowered = [name.lower() for name in declared]
    for candidate in candidates:
        needle = candidate.lower()
        for index, name in enumerate(lowered):
            if needle in name:
                return declared[index]
    return None


def has_parameter(names: Iterable[str], name: str) -> bool:
    target = name.lower()
    return any(item.lower() == target for item in names)


def supports_pagination(tool: ToolCatalogEntry | None) -> bool:
    return tool is not None and match_parameter(tool.parameter_names, PAGE_TOKEN_KEYS) is not None


def _place_coords(args: dict[str, Any], names: tuple[str, ...], coords: Coords) -> bool:
    """Write coordinates using separate lat/lng params or a composite `location`."""
    lat_key = match_parameter(names, LAT_KEYS)
    lng_key = match_parameter(names, LNG_KEYS)
    if lat_key and lng_key and lat_key != lng_key:
        args[lat_key] = coords.lat
        args[lng_key] = coords.lng
        return True
    if has_parameter(names, "location"):
        args["location"] = coords.as_dict()
        return True
    if lat_key and lat_key == lng_key:
        # a single "latlng"-style parameter
        args[lat_key] = f"{coords.lat},{coords.lng}"
        return True
    return False


def _apply_common(
    args: dict[str, Any],
    names: tuple[str, ...],
    *,
    page_token: str | None,
    max_results: int | None,
    field_mask: str | None,
) -> None:
    if page_token:
        token_key = match_parameter(names, PAGE_TOKEN_KEYS)
        if token_key:
            args[token_key] = page_token
    if max_results:
        limit_key = match_parameter(names, MAX_RESULTS_KEYS)
        if limit_key:
            args[limit_key] = max_results
    fields_key = match_parameter(names, FIELD_MASK_KEYS)
    if fields_key:
        args[fields_key] = field_mask or DEFAULT_FIELD_MASK


def build_nearby_args(
    tool: ToolCatalogEntry | Sequence[str],
    *,
    coords: Coords,
    radius_m: int,
    keyword: str | None = None,
    included_types: Sequence[str] | None = ("restaurant",),
    open_now: bool | None = None,
    page_token: str | None = None,
    max_results: int | None = None,
    field_mask: str | None = None,
) -> dict[str, Any]:
    names = _names(tool)
    args: dict[str, Any] = {}
    _place_coords(args, names, coords)

    radius_key = match_parameter(names, RADIUS_KEYS)
    if radius_key:
        args[radius_key] = radius_m

    keyword_key = match_parameter(names, KEYWORD_KEYS)
    if keyword_key and keyword:
        args[keyword_key] = keyword

    types = [t for t in (included_types or ()) if t]
    if types:
        included_key = match_parameter(names, INCLUDED_TYPES_KEYS)
        type_key = match_parameter(names, TYPE_KEYS)
        if included_key:
            args[included_key] = types
        elif type_key and type_key not in args:
            args[type_key] = types[0] if len(types) == 1 else types

    if open_now is not None:
        open_key = match_parameter(names, OPEN_NOW_KEYS) or match_parameter(names, ("open",))
        if open_key:
            args[open_key] = open_now

    _apply_common(
        args, names, page_token=page_token, max_results=max_results, field_mask=field_mask
    )
    return args


def build_text_search_args(
    tool: ToolCatalogEntry | Sequence[str],
    *,
    query: str,
    coords: Coords | None = None,
    location_text: str | None = None,
    radius_m: int | None = None,
    page_token: str | None = None,
    max_results: int | None = None,
    field_mask: str | None = None,
) -> dict[str, Any]:
    names = _names(tool)
    args: dict[str, Any] = {}
    query_key = match_parameter(names, TEXT_QUERY_KEYS) or "query"
    args[query_key] = f"{query} in {location_text}" if location_text else query

    bias_key = match_parameter(names, LOCATION_BIAS_KEYS)
    if coords is not None:
        placed = False
        if match_parameter(names, LAT_KEYS) or has_parameter(names, "location"):
            placed = _place_coords(args, names, coords)
        if bias_key and radius_m:
            args[bias_key] = {
                "circle": {
                    "center": {"latitude": coords.lat, "longitude": coords.lng},
                    "radius": float(radius_m),
                }
            }
        elif not placed and radius_m:
            radius_key = match_parameter(names, RADIUS_KEYS)
            if radius_key:
                args[radius_key] = radius_m
    elif location_text:
        text_key = match_parameter(names, LOCATION_TEXT_KEYS)
        if text_key and text_key != query_key and text_key != bias_key:
            args[text_key] = location_text

    _apply_common(
        args, names, page_token=page_token, max_results=max_results, field_mask=field_mask
    )
    return args


def build_geocode_args(tool: ToolCatalogEntry | Sequence[str], text: str) -> dict[str, Any]:
    names = _names(tool)
    key = match_parameter(names, GEOCODE_KEYS) or "text"
    return {key: text}


def build_details_args(tool: ToolCatalogEntry | Sequence[str], place_id: str) -> dict[str, Any]:
    names = _names(tool)
    key = match_parameter(names, PLACE_ID_KEYS) or "placeId"
    args: dict[str, Any] = {key: place_id}
    fields_key = match_parameter(names, FIELD_MASK_KEYS)
    if fields_key:
        args[fields_key] = (
            "id,displayName,formattedAddress,location,rating,userRatingCount,"
            "priceLevel,currentOpeningHours,googleMapsUri"
        )
    return args
