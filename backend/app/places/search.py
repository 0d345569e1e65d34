from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from ..deadline import TurnDeadline
from ..metrics import search_attempts_total
from ..settings import settings
from .args import (
    build_details_args,
    build_nearby_args,
    build_text_search_args,
    supports_pagination,
)
from .catalog import ToolCatalog
from .geo import filter_by_max_distance
from .mcp_client import ToolCallError, unwrap_tool_result
from .normalize import (
    dedupe_candidates,
    filter_food_places,
    get_next_page_token,
    normalize_place,
    normalize_places,
)
from .types import (
    Coords,
    PlaceCandidate,
    ResolvedTools,
    SearchAttempt,
    SearchOutcome,
    Strategy,
    ToolCatalogEntry,
)

logger = logging.getLogger(__name__)

FOOD_INTENT_KEYWORDS = (
    "food", "restaurant", "cafe", "coffee", "bakery", "bar", "tea", "noodle",
    "bbq", "barbecue", "sushi", "hotpot", "hot pot", "dim sum", "kitchen",
    "grill", "bistro", "diner", "ramen", "pho", "pizza", "burger", "steak",
    "seafood", "buffet", "kebab", "shawarma", "taco", "curry",
)

_FOOD_INTENT_RE = re.compile(
    r"\b(?:" + "|".join(re.escape(term) for term in FOOD_INTENT_KEYWORDS) + r")(?:s|es)?\b"
)

PAGINATION_WIDEN_FACTOR = 1.5
FETCH_MORE_MAX_RESULTS = 30


def has_food_intent(text: str | None) -> bool:
    return bool(_FOOD_INTENT_RE.search((text or "").lower()))


def build_food_query(keyword: str | None) -> str:
    """Nearby-search keyword; non-food words get a 'restaurant' qualifier."""
    trimmed = (keyword or "").strip()
    if not trimmed:
        return "restaurants"
    if has_food_intent(trimmed):
        return trimmed
    return f"{trimmed} restaurant"


def build_text_query(
    keyword: str | None, *, location_text: str | None = None, coords: Coords | None = None
) -> str:
    cleaned = re.sub(r"\b(restaurants?|food)\b", " ", (keyword or ""), flags=re.IGNORECASE)
    cleaned = re.sub(r"\s{2,}", " ", cleaned).strip()
    intent = f"{cleaned} restaurant" if cleaned else "restaurant"
    if location_text and location_text.strip():
        return f"{intent} near {location_text.strip()}"
    if coords is not None:
        return f"{intent} near ({coords.lat},{coords.lng})"
    return intent


def included_types_for(keyword: str | None) -> list[str]:
    types = ["restaurant"]
    lowered = (keyword or "").lower()
    if any(term in lowered for term in ("cafe", "coffee", "tea")):
        types.append("cafe")
    if "bakery" in lowered:
        types.append("bakery")
    if re.search(r"\bbars?\b", lowered):
        types.append("bar")
    if "takeaway" in lowered or "takeout" in lowered:
        types.append("meal_takeaway")
    return types


@dataclass(slots=True)
class SearchRequest:
    keyword: str
    coords: Coords
    radius_m: int | float | None = None
    location_text: str | None = None
    open_now: bool | None = None
    page_token: str | None = None
    max_results: int | None = None
    exclude_ids: frozenset[str] = field(default_factory=frozenset)


class SearchOrchestrator:
    """
    Bounded search ladder over whichever catalog tools are available.

    Nearby search runs once per rung of the radius ladder until a rung yields
    results, then a single location-biased text search is tried. Each backend
    call is recorded as a SearchAttempt; a failing call counts as an empty
    rung rather than aborting the ladder.
    """

    def __init__(
        self,
        catalog: ToolCatalog,
        *,
        min_radius: int | None = None,
        max_radius: int | None = None,
        default_radius: int | None = None,
        ladder: Sequence[int] | None = None,
        max_results: int | None = None,
        details_limit: int | None = None,
        call_timeout: float | None = None,
    ) -> None:
        self.catalog = catalog
        self.min_radius = min_radius if min_radius is not None else settings.MIN_RADIUS_METERS
        self.max_radius = max_radius if max_radius is not None else settings.MAX_RADIUS_METERS
        self.default_radius = (
            default_radius if default_radius is not None else settings.DEFAULT_RADIUS_METERS
        )
        self.ladder_steps = list(ladder) if ladder is not None else settings.radius_ladder
        self.max_results = max_results if max_results is not None else settings.MAX_RESULTS
        self.details_limit = (
            details_limit if details_limit is not None else settings.DETAILS_LOOKUP_LIMIT
        )
        self.call_timeout = call_timeout if call_timeout is not None else settings.MCP_TIMEOUT_SECONDS

    def clamp_radius(self, radius: int | float | None) -> int:
        if radius is None or isinstance(radius, bool):
            return int(self.default_radius)
        try:
            value = float(radius)
        except (TypeError, ValueError):
            return int(self.default_radius)
        if value != value:
            return int(self.default_radius)
        return int(min(max(value, self.min_radius), self.max_radius))

    def radius_ladder(self, base: int) -> list[int]:
        rungs = {base}
        for step in self.ladder_steps:
            if step > base:
                rungs.add(min(int(step), self.max_radius))
        return sorted(rungs)

    def safety_distance(self, ladder: Sequence[int]) -> float:
        return 2.0 * float(max(ladder) if ladder else self.max_radius)

    def _timeout(self, deadline: TurnDeadline | None) -> float:
        if deadline is None:
            return self.call_timeout
        return deadline.timeout_for(self.call_timeout)

    async def _resolve_tools(
        self, deadline: TurnDeadline | None, attempts: list[SearchAttempt]
    ) -> ResolvedTools | None:
        try:
            return await self.catalog.resolve(timeout=self._timeout(deadline))
        except ToolCallError as exc:
            logger.warning("Tool catalog unavailable: %s", exc)
            attempts.append(
                SearchAttempt(
                    tool=None, strategy="nearby", radius_m=None, result_count=0,
                    status="error", error=str(exc),
                )
            )
            search_attempts_total.labels(strategy="catalog", result="error").inc()
            return None

    async def _attempt(
        self,
        tool: ToolCatalogEntry,
        strategy: Strategy,
        arguments: dict[str, Any],
        radius_m: int | None,
        origin: Coords,
        deadline: TurnDeadline | None,
        attempts: list[SearchAttempt],
    ) -> tuple[list[PlaceCandidate], str | None]:
        timeout = self._timeout(deadline)
        if timeout <= 0:
            attempts.append(
                SearchAttempt(
                    tool=tool.name, strategy=strategy, radius_m=radius_m, result_count=0,
                    status="skipped", error="turn deadline exhausted",
                )
            )
            search_attempts_total.labels(strategy=strategy, result="skipped").inc()
            return [], None
        try:
            result = await self.catalog.call(tool.name, arguments, timeout=timeout)
        except ToolCallError as exc:
            logger.warning("%s search via %s failed at %sm: %s", strategy, tool.name, radius_m, exc)
            attempts.append(
                SearchAttempt(
                    tool=tool.name, strategy=strategy, radius_m=radius_m, result_count=0,
                    status="error", error=str(exc),
                )
            )
            search_attempts_total.labels(strategy=strategy, result="error").inc()
            return [], None

        try:
            candidates = normalize_places(result, origin)
            token = get_next_page_token(result)
        except (TypeError, ValueError, AttributeError, KeyError, OverflowError) as exc:
            logger.warning("%s search via %s returned an unreadable payload: %s", strategy, tool.name, exc)
            attempts.append(
                SearchAttempt(
                    tool=tool.name, strategy=strategy, radius_m=radius_m, result_count=0,
                    status="error", error=f"malformed payload: {exc}",
                )
            )
            search_attempts_total.labels(strategy=strategy, result="error").inc()
            return [], None
        status = "ok" if candidates else "empty"
        attempts.append(
            SearchAttempt(
                tool=tool.name, strategy=strategy, radius_m=radius_m,
                result_count=len(candidates), status=status,
            )
        )
        search_attempts_total.labels(strategy=strategy, result="hit" if candidates else "empty").inc()
        logger.info(
            "%s search via %s radius=%s returned %d places", strategy, tool.name, radius_m, len(candidates)
        )
        return candidates, token

    def _finalize(
        self,
        candidates: list[PlaceCandidate],
        origin: Coords,
        ladder: Sequence[int],
        exclude_ids: frozenset[str],
    ) -> tuple[list[PlaceCandidate], int]:
        unique = dedupe_candidates(filter_food_places(candidates))
        if exclude_ids:
            unique = [c for c in unique if c.place_id not in exclude_ids]
        kept, dropped = filter_by_max_distance(
            origin, unique, lambda c: c.coords, self.safety_distance(ladder)
        )
        if dropped:
            logger.info("Dropped %d places beyond %.0fm", dropped, self.safety_distance(ladder))
        return kept[: self.max_results], dropped

    async def search(
        self, request: SearchRequest, deadline: TurnDeadline | None = None
    ) -> SearchOutcome:
        base = self.clamp_radius(request.radius_m)
        ladder = self.radius_ladder(base)
        attempts: list[SearchAttempt] = []

        tools = await self._resolve_tools(deadline, attempts)
        if tools is None:
            return SearchOutcome([], attempts, "unavailable", used_radius_m=base)
        if tools.nearby_search is None and tools.text_search is None:
            logger.warning("No search tools in catalog")
            return SearchOutcome([], attempts, "no_tools", used_radius_m=base)

        keyword = build_food_query(request.keyword)
        max_results = request.max_results or self.max_results
        dropped_total = 0

        if tools.nearby_search is not None:
            for radius in ladder:
                arguments = build_nearby_args(
                    tools.nearby_search,
                    coords=request.coords,
                    radius_m=radius,
                    keyword=keyword,
                    included_types=included_types_for(request.keyword),
                    open_now=request.open_now,
                    page_token=request.page_token if radius == base else None,
                    max_results=max_results,
                )
                raw, token = await self._attempt(
                    tools.nearby_search, "nearby", arguments, radius,
                    request.coords, deadline, attempts,
                )
                candidates, dropped = self._finalize(raw, request.coords, ladder, request.exclude_ids)
                dropped_total += dropped
                if candidates:
                    await self._enrich(tools.place_details, candidates, request.coords, deadline)
                    return SearchOutcome(
                        candidates,
                        attempts,
                        "ok",
                        used_radius_m=radius,
                        strategy="nearby",
                        next_page_token=token if supports_pagination(tools.nearby_search) else None,
                        dropped_by_distance=dropped_total,
                    )

        if tools.text_search is not None:
            widest = ladder[-1]
            arguments = build_text_search_args(
                tools.text_search,
                query=build_text_query(
                    request.keyword, location_text=request.location_text, coords=request.coords
                ),
                coords=request.coords,
                radius_m=widest,
                max_results=max_results,
            )
            raw, token = await self._attempt(
                tools.text_search, "text", arguments, widest, request.coords, deadline, attempts
            )
            candidates, dropped = self._finalize(raw, request.coords, ladder, request.exclude_ids)
            dropped_total += dropped
            if candidates:
                await self._enrich(tools.place_details, candidates, request.coords, deadline)
                return SearchOutcome(
                    candidates,
                    attempts,
                    "ok",
                    used_radius_m=widest,
                    strategy="text",
                    next_page_token=token if supports_pagination(tools.text_search) else None,
                    dropped_by_distance=dropped_total,
                )

        return SearchOutcome(
            [],
            attempts,
            "no_results",
            used_radius_m=ladder[-1],
            dropped_by_distance=dropped_total,
        )

    async def fetch_more(
        self,
        *,
        keyword: str,
        coords: Coords,
        radius_m: int | None,
        page_token: str | None,
        exclude_ids: frozenset[str] = frozenset(),
        deadline: TurnDeadline | None = None,
    ) -> SearchOutcome:
        """
        Continue the previous search.

        With a stored continuation token and a nearby tool that accepts one,
        the same radius is reused; otherwise the radius widens by half again.
        """
        base = self.clamp_radius(radius_m)
        tools = await self._resolve_tools(deadline, [])
        use_token = bool(
            page_token and tools is not None and supports_pagination(tools.nearby_search)
        )
        radius = base if use_token else self.clamp_radius(base * PAGINATION_WIDEN_FACTOR)
        return await self.search(
            SearchRequest(
                keyword=keyword,
                coords=coords,
                radius_m=radius,
                page_token=page_token if use_token else None,
                max_results=FETCH_MORE_MAX_RESULTS,
                exclude_ids=exclude_ids,
            ),
            deadline,
        )

    async def _details_for(
        self, tool: ToolCatalogEntry, candidate: PlaceCandidate, origin: Coords, timeout: float
    ) -> PlaceCandidate | None:
        try:
            result = await self.catalog.call(
                tool.name, build_details_args(tool, candidate.place_id), timeout=timeout
            )
        except ToolCallError as exc:
            logger.debug("Details lookup for %s failed: %s", candidate.place_id, exc)
            return None
        payload, _ = unwrap_tool_result(result)
        if isinstance(payload, dict) and isinstance(payload.get("result"), dict):
            payload = payload["result"]
        try:
            return normalize_place(payload, origin)
        except (TypeError, ValueError, AttributeError, KeyError, OverflowError) as exc:
            logger.debug("Details payload for %s unreadable: %s", candidate.place_id, exc)
            return None

    async def _enrich(
        self,
        tool: ToolCatalogEntry | None,
        candidates: list[PlaceCandidate],
        origin: Coords,
        deadline: TurnDeadline | None,
    ) -> None:
        """Fill missing rating/open-now facts for the head of the list."""
        if tool is None or self.details_limit <= 0:
            return
        targets = [
            c
            for c in candidates[: self.details_limit]
            if not c.place_id.startswith("gen_") and (c.rating is None or c.open_now is None)
        ]
        timeout = self._timeout(deadline)
        if not targets or timeout <= 0:
            return
        details = await asyncio.gather(
            *(self._details_for(tool, c, origin, timeout) for c in targets)
        )
        for candidate, detail in zip(targets, details):
            if detail is None:
                continue
            if candidate.rating is None:
                candidate.rating = detail.rating
            if candidate.review_count is None:
                candidate.review_count = detail.review_count
            if candidate.open_now is None:
                candidate.open_now = detail.open_now
            if candidate.price_level is None:
                candidate.price_level = detail.price_level
            if candidate.address is None:
                candidate.address = detail.address
            if candidate.coords is None and detail.coords is not None:
                candidate.coords = detail.coords
                candidate.distance_meters = detail.distance_meters
