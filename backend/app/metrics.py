"""Prometheus metrics for monitoring and observability."""

from __future__ import annotations

import re
import time
from collections.abc import Callable
from functools import lru_cache

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# ==============================================================================
# APPLICATION INFO
# ==============================================================================

app_info = Info("placebuddy", "PlaceBuddy chat API information")
app_info.info({"version": "0.3.0", "service": "placebuddy-api"})

# ==============================================================================
# HTTP METRICS
# ==============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

http_requests_in_progress = Gauge(
    "http_requests_in_progress",
    "HTTP requests currently in progress",
    ["method", "endpoint"],
)

# ==============================================================================
# CHAT PIPELINE METRICS
# ==============================================================================

chat_turns_total = Counter(
    "chat_turns_total",
    "Chat turns by outcome mode",
    ["mode"],
)

chat_turn_duration_seconds = Histogram(
    "chat_turn_duration_seconds",
    "End-to-end chat turn latency",
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0, 25.0),
)

search_attempts_total = Counter(
    "search_attempts_total",
    "Search backend attempts",
    ["strategy", "result"],
)

llm_fallbacks_total = Counter(
    "llm_fallbacks_total",
    "Language model calls that degraded to the deterministic path",
    ["purpose"],
)

catalog_refreshes_total = Counter(
    "catalog_refreshes_total",
    "Tool catalog fetches from the remote service",
    ["reason"],
)

geocode_lookups_total = Counter(
    "geocode_lookups_total",
    "Geocode lookups",
    ["result"],
)

# ==============================================================================
# RATE LIMITER METRICS
# ==============================================================================

rate_limit_hits_total = Counter(
    "rate_limit_hits_total",
    "Total rate limit hits (requests blocked)",
)

rate_limit_requests_total = Counter(
    "rate_limit_requests_total",
    "Total requests checked by rate limiter",
    ["result"],
)

# ==============================================================================
# PERSISTENCE METRICS
# ==============================================================================

db_operations_total = Counter(
    "db_operations_total",
    "Total database operations",
    ["operation", "status"],
)


_UUID_RE = re.compile(
    r"/[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE
)


@lru_cache(maxsize=2048)
def normalize_endpoint(path: str) -> str:
    """
    Normalize endpoint path to reduce cardinality.

    Examples:
        /v1/sessions/123 -> /v1/sessions/{id}
        /v1/sessions/0b9c...-uuid -> /v1/sessions/{id}
    """
    path = _UUID_RE.sub("/{id}", path)
    path = re.sub(r"/\d+", "/{id}", path)
    path = re.sub(r"/[a-zA-Z0-9_-]{20,}", "/{id}", path)
    return path


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Middleware to track HTTP request metrics."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method
        endpoint = normalize_endpoint(request.url.path)
        http_requests_in_progress.labels(method=method, endpoint=endpoint).inc()
        start_time = time.perf_counter()
        status = "500"
        try:
            response = await call_next(request)
            status = str(response.status_code)
            return response
        finally:
            http_request_duration_seconds.labels(method=method, endpoint=endpoint).observe(
                time.perf_counter() - start_time
            )
            http_requests_total.labels(method=method, endpoint=endpoint, status=status).inc()
            http_requests_in_progress.labels(method=method, endpoint=endpoint).dec()


def get_metrics() -> Response:
    """Generate Prometheus metrics response."""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "PrometheusMiddleware",
    "get_metrics",
    "chat_turns_total",
    "chat_turn_duration_seconds",
    "search_attempts_total",
    "llm_fallbacks_total",
    "catalog_refreshes_total",
    "geocode_lookups_total",
    "normalize_endpoint",
]
