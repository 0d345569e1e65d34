from __future__ import annotations

import asyncio
from typing import Any

import httpx

from .settings import settings

_client: httpx.AsyncClient | None = None
_client_lock = asyncio.Lock()

_NEW_STYLE_MODEL_PREFIXES = ("gpt-4o", "gpt-4.1", "gpt-5", "o1", "o3", "o4")


class LLMUnavailable(RuntimeError):
    pass


def _headers() -> dict[str, str]:
    if not settings.OPENAI_API_KEY:
        raise LLMUnavailable("OPENAI_API_KEY not configured")
    return {
        "Authorization": f"Bearer {settings.OPENAI_API_KEY}",
        "Content-Type": "application/json",
    }


def _token_param(model: str | None) -> str:
    name = (model or "").lower()
    if name.startswith(_NEW_STYLE_MODEL_PREFIXES):
        return "max_completion_tokens"
    return "max_tokens"


async def _get_client() -> httpx.AsyncClient:
    global _client
    if _client is None:
        async with _client_lock:
            if _client is None:
                timeout = httpx.Timeout(
                    settings.NARRATION_TIMEOUT_SECONDS,
                    connect=settings.OPENAI_CONNECT_TIMEOUT_SECONDS,
                )
                base_url = settings.OPENAI_API_BASE.rstrip("/") or "https://api.openai.com/v1"
                _client = httpx.AsyncClient(base_url=base_url, timeout=timeout)
    return _client


async def post_json(
    path: str, payload: dict[str, Any], *, timeout: float | None = None
) -> dict[str, Any]:
    client = await _get_client()
    headers = _headers()
    try:
        response = await client.post(path, json=payload, headers=headers, timeout=timeout)
    except httpx.HTTPError as exc:
        raise LLMUnavailable(f"Request failed: {exc}") from exc
    if response.status_code >= 400:
        raise LLMUnavailable(f"LLM error {response.status_code}: {response.text[:200]}")
    try:
        return response.json()
    except ValueError as exc:
        raise LLMUnavailable("Invalid JSON from LLM") from exc


async def complete(
    messages: list[dict[str, str]],
    *,
    timeout: float,
    json_mode: bool = False,
    max_tokens: int = 300,
    temperature: float = 0.2,
) -> str:
    """
    Ask the chat model for a completion and return its text.

    `timeout` is a hard wall-clock bound covering the whole call; exceeding it
    raises LLMUnavailable like any transport failure.
    """
    if timeout <= 0:
        raise LLMUnavailable("No time left for LLM call")
    model = settings.LLM_MODEL
    payload: dict[str, Any] = {
        "model": model,
        "temperature": temperature,
        "messages": messages,
        _token_param(model): max_tokens,
    }
    if json_mode:
        payload["response_format"] = {"type": "json_object"}
    try:
        response = await asyncio.wait_for(
            post_json("/chat/completions", payload, timeout=timeout), timeout=timeout
        )
    except asyncio.TimeoutError as exc:
        raise LLMUnavailable(f"LLM call exceeded {timeout:.2f}s") from exc
    return _message_content(response)


def _message_content(response: Any) -> str:
    choices = response.get("choices") if isinstance(response, dict) else None
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        raise LLMUnavailable("Malformed LLM response")
    message = choices[0].get("message")
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, str) or not content.strip():
        raise LLMUnavailable("Empty LLM response")
    return content.strip()


async def close_async_client() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
