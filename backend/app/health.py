"""Health check module with dependency verification."""

from __future__ import annotations

import time
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from .places.mcp_client import ToolCallError, redact_url
from .settings import settings


def _is_configured(value: str | None) -> bool:
    """Return True when a config string is non-empty after trimming."""
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return bool(value)


class HealthChecker:
    """Health checker for monitoring service dependencies."""

    def __init__(self) -> None:
        self._check_cache: dict[str, tuple[dict[str, Any], float]] = {}
        self._cache_ttl = 30.0  # Cache health checks for 30 seconds

    async def check_all(self) -> dict[str, Any]:
        """
        Check health of all dependencies.

        Returns:
            Dict with overall status and individual component checks
        """
        checks = {
            "database": await self._check_database(),
            "tool_catalog": (
                await self._check_tool_catalog()
                if settings.mcp_url
                else {"status": "disabled", "reason": "MCP_URL not configured"}
            ),
            "llm": self._check_llm(),
            "sentry": (
                {"status": "ok", "environment": settings.SENTRY_ENVIRONMENT}
                if _is_configured(settings.SENTRY_DSN)
                else {"status": "disabled"}
            ),
        }

        # Overall health is OK if all enabled checks pass
        all_ok = all(check.get("status") in {"ok", "disabled"} for check in checks.values())

        return {
            "status": "healthy" if all_ok else "degraded",
            "timestamp": time.time(),
            "checks": checks,
        }

    async def _check_database(self) -> dict[str, Any]:
        """Check that the session database answers a trivial query."""
        from .db.core import ping

        try:
            await ping()
        except SQLAlchemyError as exc:
            return {
                "status": "error",
                "error": str(exc),
                "error_type": type(exc).__name__,
            }
        return {"status": "ok", "storage_path": str(settings.data_dir)}

    async def _check_tool_catalog(self) -> dict[str, Any]:
        """List tools through the shared catalog (served from its cache when warm)."""
        cache_key = "tool_catalog"
        cached = self._get_cached_check(cache_key)
        if cached is not None:
            return cached

        from .deps import get_tool_catalog

        catalog = get_tool_catalog()
        try:
            tools = await catalog.resolve(timeout=min(5.0, settings.MCP_TIMEOUT_SECONDS))
            entries = await catalog.list_tools()
        except ToolCallError as exc:
            result = {
                "status": "error",
                "endpoint": redact_url(settings.mcp_url or ""),
                "error": str(exc),
                "error_type": type(exc).__name__,
            }
            self._cache_check(cache_key, result)
            return result

        roles = tools.roles()
        has_search = bool(roles.get("nearby_search") or roles.get("text_search"))
        result = {
            "status": "ok" if has_search else "error",
            "endpoint": redact_url(settings.mcp_url or ""),
            "tool_count": len(entries),
            "roles": roles,
        }
        if not has_search:
            result["error"] = "No search tool discovered"
        self._cache_check(cache_key, result)
        return result

    def _check_llm(self) -> dict[str, Any]:
        """Report whether the language model is configured (no network call)."""
        if not settings.LLM_ENABLED:
            return {"status": "disabled", "reason": "LLM_ENABLED is false"}
        if not _is_configured(settings.OPENAI_API_KEY):
            return {"status": "disabled", "reason": "OPENAI_API_KEY not configured"}
        return {
            "status": "ok",
            "model": settings.LLM_MODEL,
            "narration": settings.NARRATION_ENABLED,
        }

    def _get_cached_check(self, key: str) -> dict[str, Any] | None:
        """Get cached health check result if still valid."""
        if key not in self._check_cache:
            return None

        result, timestamp = self._check_cache[key]
        if time.time() - timestamp > self._cache_ttl:
            return None

        return result

    def _cache_check(self, key: str, result: dict[str, Any]) -> None:
        """Cache a health check result."""
        self._check_cache[key] = (result, time.time())

    def clear_cache(self) -> None:
        """Clear cached dependency checks (useful for tests)."""
        self._check_cache.clear()


# Global health checker instance
health_checker = HealthChecker()


__all__ = ["health_checker", "HealthChecker"]
