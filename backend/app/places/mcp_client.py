"""JSON-RPC client for the remote tool catalog (``tools/list`` / ``tools/call``)."""

from __future__ import annotations

import json
import logging
import re
import time
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit
from uuid import uuid4

import httpx

from ..json_utils import parse_json_from_text

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = frozenset({502, 503, 504})
_SENSITIVE_KEYS = frozenset(
    {"token", "access_token", "api_key", "apikey", "key", "auth", "authorization"}
)
_SENSITIVE_RE = re.compile(
    r"(token|access_token|api_key|apikey|key|auth|authorization)=([^&]+)", re.IGNORECASE
)
_UNKNOWN_TOOL_RE = re.compile(r"unknown tool|tool not found|no such tool", re.IGNORECASE)


class ToolCallError(RuntimeError):
    """A tool catalog request failed; flags tell the caller whether to retry."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        retryable: bool = False,
        code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable
        self.code = code

    @property
    def unknown_tool(self) -> bool:
        return bool(_UNKNOWN_TOOL_RE.search(str(self)))


def redact_url(raw_url: str) -> str:
    try:
        parts = urlsplit(raw_url)
    except ValueError:
        return _SENSITIVE_RE.sub(r"\1=REDACTED", raw_url)
    query = [
        (key, "REDACTED" if key.lower() in _SENSITIVE_KEYS else value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
    ]
    return urlunsplit(parts._replace(query=urlencode(query)))


def is_likely_sse(text: str, content_type: str) -> bool:
    if "text/event-stream" in (content_type or "").lower():
        return True
    stripped = text.lstrip()
    return stripped.startswith("event:") or stripped.startswith("data:")


def extract_json_from_sse(text: str) -> Any:
    """Return the last JSON document carried on ``data:`` lines of an SSE body."""
    last: Any = None
    found = False
    for block in re.split(r"\n\n+", text.replace("\r\n", "\n")):
        data_lines = [
            line.rstrip()[len("data:"):].lstrip(" ")
            for line in block.split("\n")
            if line.startswith("data:")
        ]
        payload = "\n".join(data_lines).strip()
        if not payload:
            continue
        try:
            last = json.loads(payload)
            found = True
        except json.JSONDecodeError:
            continue
    if not found:
        raise ValueError("SSE stream contained no JSON payload")
    return last


def _content_text(result: dict[str, Any]) -> str:
    segments: list[str] = []
    for item in result.get("content") or []:
        if not isinstance(item, dict):
            continue
        candidate = item.get("text") if item.get("text") is not None else item.get("content")
        if isinstance(candidate, str) and candidate.strip():
            segments.append(candidate.strip())
    return "\n".join(segments).strip()


def unwrap_tool_result(result: Any) -> tuple[Any, str | None]:
    """
    Peel the ``content[]`` envelope of a tools/call result.

    Returns (payload, content_text). A ``json`` item wins; otherwise the text
    items are joined and parsed as JSON when possible. The joined text is
    returned alongside so callers can fall back to line parsing.
    """
    if not isinstance(result, dict):
        return result, None
    content = result.get("content")
    if not isinstance(content, list):
        return result, None
    for item in content:
        if isinstance(item, dict) and "json" in item:
            return item["json"], None
    text = _content_text(result)
    parsed = parse_json_from_text(text) if text else None
    if parsed is not None:
        return parsed, text
    return result, text or None


class McpClient:
    def __init__(
        self,
        url: str,
        api_key: str | None = None,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.api_key = api_key or ""
        self.timeout = timeout
        self._transport = transport

    @property
    def cache_identity(self) -> tuple[str, str]:
        return self.url, self.api_key

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/json, text/event-stream",
            "Content-Type": "application/json",
        }
        if self.api_key:
            headers["x-api-key"] = self.api_key
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def rpc(
        self, method: str, params: dict[str, Any] | None = None, *, timeout: float | None = None
    ) -> Any:
        if not self.url:
            raise ToolCallError("tool catalog URL not configured")
        request_id = uuid4().hex[:16]
        payload = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params or {}}
        effective_timeout = self.timeout if timeout is None else max(0.1, min(timeout, self.timeout))
        started = time.perf_counter()
        try:
            async with httpx.AsyncClient(
                timeout=effective_timeout, transport=self._transport
            ) as client:
                response = await client.post(self.url, json=payload, headers=self._headers())
        except httpx.TimeoutException as exc:
            logger.warning("Tool RPC %s timed out after %.2fs (%s)", method, effective_timeout, request_id)
            raise ToolCallError(f"{method} timed out", retryable=True) from exc
        except httpx.HTTPError as exc:
            logger.warning("Tool RPC %s failed to send to %s: %s", method, redact_url(self.url), exc)
            raise ToolCallError(f"{method} transport error: {exc}") from exc

        if response.status_code >= 400:
            logger.warning(
                "Tool RPC %s returned %s from %s: %s",
                method,
                response.status_code,
                redact_url(self.url),
                response.text[:300],
            )
            raise ToolCallError(
                f"{method} returned HTTP {response.status_code}",
                status_code=response.status_code,
                retryable=response.status_code in RETRYABLE_STATUS,
            )

        body = response.text
        try:
            if is_likely_sse(body, response.headers.get("content-type", "")):
                data = extract_json_from_sse(body)
            else:
                data = json.loads(body)
        except ValueError as exc:
            logger.warning("Tool RPC %s unparseable body: %s", method, body[:200])
            raise ToolCallError(f"{method} response parse failed") from exc

        if not isinstance(data, dict):
            raise ToolCallError(f"{method} response invalid payload")
        error = data.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            code = error.get("code") if isinstance(error, dict) else None
            raise ToolCallError(message or f"{method} error", code=code)
        if "result" not in data:
            raise ToolCallError(f"{method} response missing result")

        logger.debug(
            "Tool RPC %s completed in %.0fms (%s)",
            method,
            (time.perf_counter() - started) * 1000,
            request_id,
        )
        result = data["result"]
        if isinstance(result, dict) and result.get("isError"):
            raise ToolCallError(_content_text(result) or f"{method} reported an error")
        return result

    async def list_tools(self, *, timeout: float | None = None) -> list[dict[str, Any]]:
        result = await self.rpc("tools/list", {}, timeout=timeout)
        tools = result.get("tools") if isinstance(result, dict) else result
        if not isinstance(tools, list):
            return []
        return [tool for tool in tools if isinstance(tool, dict)]

    async def call_tool(
        self, name: str, arguments: dict[str, Any], *, timeout: float | None = None
    ) -> Any:
        return await self.rpc(
            "tools/call", {"name": name, "arguments": arguments}, timeout=timeout
        )
