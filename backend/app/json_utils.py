from __future__ import annotations

import json
import re
from typing import Any

_CODE_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


def _strip_fence(text: str) -> str:
    fence_match = _CODE_FENCE_RE.search(text)
    if fence_match:
        return fence_match.group(1).strip()
    return text


def parse_json_from_text(raw: str | None) -> Any:
    """
    Return the first JSON object or array embedded in `raw`, or None.

    Tool backends often wrap JSON in prose or markdown fences; this walks the
    text and decodes from the first position that yields a valid value.
    """
    if not isinstance(raw, str):
        return None
    text = _strip_fence(raw.strip())
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    decoder = json.JSONDecoder()
    for index, char in enumerate(text):
        if char not in "{[":
            continue
        try:
            obj, _ = decoder.raw_decode(text[index:])
        except json.JSONDecodeError:
            continue
        return obj
    return None


def extract_json_dict(raw: str) -> dict[str, Any]:
    """Extract a JSON object from LLM output that may contain prose or code fences."""

    if not isinstance(raw, str):
        raise ValueError("payload must be a string")
    text = raw.strip()
    if not text:
        raise ValueError("payload is empty")

    obj = parse_json_from_text(text)
    if obj is None:
        raise ValueError("No JSON object found in payload")
    if not isinstance(obj, dict):
        raise ValueError("JSON root must be an object")
    return obj


def looks_like_json(text: str | None) -> bool:
    stripped = (text or "").strip()
    return (stripped.startswith("{") and stripped.endswith("}")) or (
        stripped.startswith("[") and stripped.endswith("]")
    )
