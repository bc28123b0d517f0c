from __future__ import annotations

from typing import Any
import re

import orjson


def _strip_code_fence(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("```") and stripped.endswith("```"):
        lines = stripped.splitlines()
        if len(lines) >= 2:
            return "\n".join(lines[1:-1]).strip()
    return stripped


def _sanitize_json_text(text: str) -> str:
    cleaned = text.replace("\r\n", "\n").replace("\r", "\n")
    cleaned = re.sub(r"[\x00-\x08\x0B\x0C\x0E-\x1F]", "", cleaned)
    # Models like to leave trailing commas behind.
    cleaned = re.sub(r",\s*([}\]])", r"\1", cleaned)
    return cleaned


def safe_load_json_dict(text: str) -> dict[str, Any]:
    """Parse a model response into a JSON object, tolerating fences and chatter."""
    if not text or not text.strip():
        raise ValueError("Empty JSON text")

    candidate = _sanitize_json_text(_strip_code_fence(text))
    try:
        payload = orjson.loads(candidate)
    except orjson.JSONDecodeError:
        start = candidate.find("{")
        end = candidate.rfind("}")
        if start == -1 or end == -1 or end <= start:
            raise
        payload = orjson.loads(candidate[start : end + 1])

    if not isinstance(payload, dict):
        raise ValueError("Expected JSON object")
    return payload


def get_str(payload: dict[str, Any], *keys: str, default: str = "") -> str:
    """First non-empty string among ``keys`` (snake_case and camelCase spellings)."""
    for key in keys:
        value = payload.get(key)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return default


def get_str_list(payload: dict[str, Any], *keys: str, max_items: int = 32) -> list[str]:
    for key in keys:
        raw = payload.get(key)
        if isinstance(raw, str) and raw.strip():
            raw = [part for part in raw.split(",")]
        if not isinstance(raw, list):
            continue
        seen: set[str] = set()
        values: list[str] = []
        for item in raw:
            text = str(item).strip()
            if not text or text.lower() in seen:
                continue
            seen.add(text.lower())
            values.append(text)
            if len(values) >= max_items:
                break
        return values
    return []


def get_float(payload: dict[str, Any], key: str) -> float | None:
    value = payload.get(key)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def dumps_sorted(payload: Any) -> str:
    """Deterministic JSON text; equal payloads give identical output."""
    return orjson.dumps(payload, option=orjson.OPT_SORT_KEYS).decode("utf-8")
