from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Literal

from ..cache import TTLCache
from ..deadline import TurnDeadline
from ..metrics import geocode_lookups_total
from ..settings import settings
from .args import build_geocode_args
from .catalog import ToolCatalog
from .mcp_client import ToolCallError, unwrap_tool_result
from .normalize import extract_lat_lng, extract_places_array
from .types import Coords

logger = logging.getLogger(__name__)

Confidence = Literal["high", "medium", "low"]

OTHER_REGION_RE = re.compile(
    r"\b(usa|united states|uk|united kingdom|germany|france|italy|spain|australia|canada|"
    r"japan|korea|thailand|vietnam|singapore|malaysia|indonesia|philippines|china|india|"
    r"berlin|paris|london|tokyo|new york|los angeles)\b",
    re.IGNORECASE,
)

PREFERRED_TYPES = frozenset(
    {
        "locality",
        "administrative_area_level_1",
        "administrative_area_level_2",
        "administrative_area_level_3",
        "sublocality",
        "sublocality_level_1",
        "neighborhood",
        "geocode",
    }
)


@dataclass(frozen=True, slots=True)
class RegionBias:
    """Where ambiguous place names should be assumed to be."""

    country_names: tuple[str, ...] = ("myanmar", "burma")
    city_name: str = "yangon"
    locale_tags: tuple[str, ...] = ("my", "mm")
    min_lat: float = 9.0
    max_lat: float = 29.0
    min_lng: float = 92.0
    max_lng: float = 102.5

    def matches_locale(self, locale: str | None) -> bool:
        if not locale:
            return False
        lowered = locale.lower()
        return lowered.startswith(self.locale_tags[0]) or any(
            tag in lowered for tag in self.locale_tags[1:]
        )

    def contains(self, coords: Coords | None) -> bool:
        if coords is None:
            return False
        return (
            self.min_lat <= coords.lat <= self.max_lat
            and self.min_lng <= coords.lng <= self.max_lng
        )


DEFAULT_REGION = RegionBias()


@dataclass(frozen=True, slots=True)
class GeocodeContext:
    locale: str | None = None
    coords: Coords | None = None
    country_hint: str | None = None


@dataclass(frozen=True, slots=True)
class ResolvedLocation:
    coords: Coords
    query: str
    formatted_address: str | None = None
    confidence: Confidence = "low"


def build_geocode_query(
    text: str,
    ctx: GeocodeContext | None = None,
    *,
    region: RegionBias = DEFAULT_REGION,
    region_hint: str | None = None,
) -> str:
    """
    Append the regional suffix only when it disambiguates.

    Text that already names another country or a major foreign city is left
    alone, as is any text when neither locale nor device coordinates point at
    the region.
    """
    trimmed = (text or "").strip()
    if not trimmed:
        return trimmed
    if OTHER_REGION_RE.search(trimmed):
        return trimmed
    ctx = ctx or GeocodeContext()
    hint = (ctx.country_hint or "").lower()
    should_bias = (
        hint in region.country_names
        or hint in region.locale_tags
        or region.matches_locale(ctx.locale)
        or region.contains(ctx.coords)
    )
    if not should_bias:
        return trimmed
    lowered = trimmed.lower()
    if any(name in lowered for name in region.country_names):
        return trimmed
    suffix = region_hint or settings.DEFAULT_REGION_HINT
    country = suffix.split(",")[-1].strip()
    if region.city_name in lowered:
        return f"{trimmed}, {country}"
    return f"{trimmed}, {suffix}"


def _formatted_address(payload: Any) -> str | None:
    if not isinstance(payload, dict):
        return None
    for key in ("formatted_address", "formattedAddress", "address"):
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _types_of(payload: dict[str, Any]) -> list[str]:
    raw = payload.get("types")
    return [t.lower() for t in raw if isinstance(t, str)] if isinstance(raw, list) else []


def pick_best_location(payload: Any, query: str) -> ResolvedLocation | None:
    """
    Choose among geocoder candidates.

    Locality/administrative results beat generic points of interest, and any
    typed result beats an untyped one. Ties keep backend order.
    """
    candidates = extract_places_array(payload)
    if not candidates and isinstance(payload, dict):
        nested = payload.get("result")
        candidates = [nested if isinstance(nested, dict) else payload]
    best: tuple[int, ResolvedLocation] | None = None
    for raw in candidates:
        coords = extract_lat_lng(raw)
        if coords is None:
            continue
        types = _types_of(raw)
        preferred = any(t in PREFERRED_TYPES for t in types)
        score = (2 if preferred else 0) + (1 if types else 0)
        confidence: Confidence = "high" if preferred else ("medium" if types else "low")
        resolved = ResolvedLocation(
            coords=coords,
            query=query,
            formatted_address=_formatted_address(raw) or _formatted_address(payload),
            confidence=confidence,
        )
        if best is None or score > best[0]:
            best = (score, resolved)
    return best[1] if best else None


class LocationResolver:
    """Geocode free-text locations through the catalog's geocode tool, with caching."""

    def __init__(
        self,
        catalog: ToolCatalog,
        cache: TTLCache,
        *,
        ttl_seconds: float | None = None,
        region: RegionBias = DEFAULT_REGION,
    ) -> None:
        self.catalog = catalog
        self.cache = cache
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.GEOCODE_CACHE_TTL_SECONDS
        self.region = region

    async def resolve(
        self,
        text: str,
        ctx: GeocodeContext | None = None,
        deadline: TurnDeadline | None = None,
    ) -> ResolvedLocation | None:
        query = build_geocode_query(text, ctx, region=self.region)
        if not query:
            return None
        key = "geocode:" + re.sub(r"\s+", " ", query.lower()).strip()
        if self.cache.contains(key):
            geocode_lookups_total.labels(result="cached").inc()
            return self.cache.get(key)

        timeout = deadline.timeout_for(settings.MCP_TIMEOUT_SECONDS) if deadline else None
        if timeout is not None and timeout <= 0:
            return None
        try:
            tools = await self.catalog.resolve(timeout=timeout)
            if tools.geocode is None:
                logger.warning("No geocode tool available for %r", query)
                geocode_lookups_total.labels(result="no_tool").inc()
                return None
            result = await self.catalog.call(
                tools.geocode.name, build_geocode_args(tools.geocode, query), timeout=timeout
            )
        except ToolCallError as exc:
            # transient failures are not cached so the next turn can retry
            logger.warning("Geocode for %r failed: %s", query, exc)
            geocode_lookups_total.labels(result="error").inc()
            return None

        payload, _ = unwrap_tool_result(result)
        resolved = pick_best_location(payload, query)
        self.cache.set(key, resolved, ttl=self.ttl_seconds)
        geocode_lookups_total.labels(result="hit" if resolved else "miss").inc()
        if resolved:
            logger.info(
                "Geocoded %r -> %.5f,%.5f (%s)",
                query, resolved.coords.lat, resolved.coords.lng, resolved.confidence,
            )
        return resolved
