"""Process-wide singletons wired from settings, overridable in tests."""

from __future__ import annotations

from functools import lru_cache

from .cache import TTLCache
from .chat.service import ChatService
from .events import EventRecorder
from .feedback import FeedbackStore
from .places.catalog import ToolCatalog
from .places.geocode import LocationResolver
from .places.mcp_client import McpClient
from .places.search import SearchOrchestrator
from .rate_limit import RateLimiter
from .session_store import SessionStore
from .settings import settings

rate_limiter = RateLimiter()


@lru_cache(maxsize=1)
def get_tool_catalog() -> ToolCatalog:
    client = McpClient(
        settings.mcp_url or "",
        settings.MCP_API_KEY,
        timeout=settings.MCP_TIMEOUT_SECONDS,
    )
    return ToolCatalog(
        client,
        TTLCache("tool_catalog", max_size=16, default_ttl=settings.MCP_TOOLS_TTL_SECONDS),
        ttl_seconds=settings.MCP_TOOLS_TTL_SECONDS,
        retry_delay=settings.MCP_RETRY_DELAY_SECONDS,
    )


@lru_cache(maxsize=1)
def get_chat_service() -> ChatService:
    catalog = get_tool_catalog()
    return ChatService(
        orchestrator=SearchOrchestrator(catalog),
        resolver=LocationResolver(
            catalog,
            TTLCache("geocode", max_size=512, default_ttl=settings.GEOCODE_CACHE_TTL_SECONDS),
        ),
        store=SessionStore(),
        community=get_feedback_store(),
    )


@lru_cache(maxsize=1)
def get_feedback_store() -> FeedbackStore:
    return FeedbackStore()


@lru_cache(maxsize=1)
def get_event_recorder() -> EventRecorder:
    return EventRecorder()


def get_rate_limiter() -> RateLimiter:
    return rate_limiter


def reset_singletons() -> None:
    get_tool_catalog.cache_clear()
    get_chat_service.cache_clear()
    get_event_recorder.cache_clear()
    get_feedback_store.cache_clear()
    rate_limiter.reset()
