from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from ..cache import TTLCache, make_cache_key
from ..metrics import catalog_refreshes_total
from .args import (
    LAT_KEYS,
    LNG_KEYS,
    PLACE_ID_KEYS,
    RADIUS_KEYS,
    TEXT_QUERY_KEYS,
    has_parameter,
    match_parameter,
)
from .mcp_client import McpClient, ToolCallError
from .types import ResolvedTools, ToolCatalogEntry

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]

GEOCODE_NAME_SETS = (("geocode",), ("geo",))
NEARBY_NAME_SETS = (
    ("nearby", "search"),
    ("places", "nearby"),
    ("maps", "places", "search"),
    ("maps", "search"),
)
TEXT_NAME_SETS = (("text", "search"), ("find", "place"), ("places", "search"))
DETAILS_NAME_SETS = (("place", "details"), ("details", "place"), ("details",))


def _by_name(
    entries: Sequence[ToolCatalogEntry], keyword_sets: Sequence[Sequence[str]]
) -> ToolCatalogEntry | None:
    for keywords in keyword_sets:
        for entry in entries:
            name = entry.name.lower()
            if all(keyword in name for keyword in keywords):
                return entry
    return None


def _has_coords(entry: ToolCatalogEntry) -> bool:
    names = entry.parameter_names
    separate = match_parameter(names, LAT_KEYS) and match_parameter(names, LNG_KEYS)
    return bool(separate) or has_parameter(names, "location")


def _looks_nearby(entry: ToolCatalogEntry) -> bool:
    return _has_coords(entry) and match_parameter(entry.parameter_names, RADIUS_KEYS) is not None


def _looks_text(entry: ToolCatalogEntry) -> bool:
    names = entry.parameter_names
    return match_parameter(names, TEXT_QUERY_KEYS) is not None and not _looks_nearby(entry)


def _looks_geocode(entry: ToolCatalogEntry) -> bool:
    names = entry.parameter_names
    return (
        match_parameter(names, ("address",)) is not None
        and match_parameter(names, RADIUS_KEYS) is None
    )


def _looks_details(entry: ToolCatalogEntry) -> bool:
    names = entry.parameter_names
    return (
        match_parameter(names, PLACE_ID_KEYS[:2]) is not None
        and match_parameter(names, TEXT_QUERY_KEYS) is None
    )


def _by_shape(
    entries: Sequence[ToolCatalogEntry],
    predicate: Callable[[ToolCatalogEntry], bool],
    exclude: set[str],
) -> ToolCatalogEntry | None:
    for entry in entries:
        if entry.name in exclude:
            continue
        if predicate(entry):
            return entry
    return None


def classify_tools(entries: Sequence[ToolCatalogEntry]) -> ResolvedTools:
    """
    Assign catalog entries to search roles.

    Name keywords are tried first; a role still empty afterwards is filled from
    the declared parameters of a tool not already holding another role, so a
    generically named tool with lat/lng/radius still serves nearby search.
    """
    geocode = _by_name(entries, GEOCODE_NAME_SETS)
    nearby = _by_name(entries, NEARBY_NAME_SETS)
    text = _by_name(entries, TEXT_NAME_SETS)
    details = _by_name(entries, DETAILS_NAME_SETS)

    taken = {entry.name for entry in (geocode, nearby, text, details) if entry is not None}
    if nearby is None:
        nearby = _by_shape(entries, _looks_nearby, taken)
        if nearby is not None:
            taken.add(nearby.name)
    if text is None:
        text = _by_shape(entries, _looks_text, taken)
        if text is not None:
            taken.add(text.name)
    if geocode is None:
        geocode = _by_shape(entries, _looks_geocode, taken)
        if geocode is not None:
            taken.add(geocode.name)
    if details is None:
        details = _by_shape(entries, _looks_details, taken)

    return ResolvedTools(
        nearby_search=nearby, text_search=text, geocode=geocode, place_details=details
    )


class ToolCatalog:
    """
    Cached view of the remote tool catalog plus a bounded-retry call wrapper.

    The tool list is cached in the injected TTLCache keyed by a digest of
    (endpoint, credential).
    """

    def __init__(
        self,
        client: McpClient,
        cache: TTLCache,
        *,
        ttl_seconds: float = 300.0,
        retry_delay: float = 0.4,
        sleep: Sleep | None = None,
    ) -> None:
        self.client = client
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self.retry_delay = retry_delay
        self._sleep = sleep or asyncio.sleep

    @property
    def cache_key(self) -> str:
        url, api_key = self.client.cache_identity
        return "tools:" + make_cache_key(url, api_key)

    def invalidate(self) -> None:
        self.cache.delete(self.cache_key)

    async def list_tools(self, *, timeout: float | None = None) -> list[ToolCatalogEntry]:
        cached = self.cache.get(self.cache_key)
        if cached is not None:
            return cached
        catalog_refreshes_total.labels(reason="miss").inc()
        raw = await self.client.list_tools(timeout=timeout)
        entries = [entry for entry in map(ToolCatalogEntry.from_payload, raw) if entry]
        logger.info("Tool catalog listed %d tools: %s", len(entries), [e.name for e in entries])
        self.cache.set(self.cache_key, entries, ttl=self.ttl_seconds)
        return entries

    async def resolve(self, *, timeout: float | None = None) -> ResolvedTools:
        return classify_tools(await self.list_tools(timeout=timeout))

    async def call(
        self, name: str, arguments: dict[str, Any], *, timeout: float | None = None
    ) -> Any:
        """
        Invoke a tool once, with at most one recovery retry.

        An unknown-tool error drops the cached catalog and retries only if the
        refreshed catalog still lists the tool. A retryable transport failure
        (502/503/504, timeout) is retried after `retry_delay`.
        """
        try:
            return await self.client.call_tool(name, arguments, timeout=timeout)
        except ToolCallError as exc:
            if exc.unknown_tool:
                logger.warning("Tool %s unknown to backend; refreshing catalog", name)
                self.invalidate()
                catalog_refreshes_total.labels(reason="unknown_tool").inc()
                entries = await self.list_tools(timeout=timeout)
                if not any(entry.name == name for entry in entries):
                    raise
                return await self.client.call_tool(name, arguments, timeout=timeout)
            if exc.retryable:
                logger.warning(
                    "Tool %s failed (status=%s); retrying once in %.1fs",
                    name,
                    exc.status_code,
                    self.retry_delay,
                )
                await self._sleep(self.retry_delay)
                return await self.client.call_tool(name, arguments, timeout=timeout)
            raise
