# biosynth/services/sanitizer.py
"""
JSON extraction from LLM text.

The AI backend is asked for JSON but routinely wraps it in markdown fences,
prefixes it with prose, or truncates it mid-object. `sanitize` pulls the first
top-level JSON value out of such text and never raises: anything it cannot
parse resolves to the caller's fallback plus a logged warning.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")

PREVIEW_CHARS = 200

_FENCE_OPEN = re.compile(r"```json\s*", re.IGNORECASE)
_FENCE_ANY = re.compile(r"```\s*")


@dataclass(frozen=True)
class SanitizeResult(Generic[T]):
    value: T
    used_fallback: bool
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return not self.used_fallback


def strip_fences(text: str) -> str:
    text = _FENCE_OPEN.sub("", text)
    text = _FENCE_ANY.sub("", text)
    return text.strip()


def find_closing(text: str, start: int, open_char: str, close_char: str) -> int:
    """
    Index of the character closing the bracket at `start`, or -1.

    Only `open_char`/`close_char` change depth; brackets inside JSON string
    literals are skipped.
    """
    depth = 0
    in_string = False
    escaped = False

    for i in range(start, len(text)):
        ch = text[i]

        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch == open_char:
            depth += 1
        elif ch == close_char:
            depth -= 1
            if depth == 0:
                return i

    return -1


def extract_json_span(text: str) -> Optional[str]:
    """Slice holding the first top-level array or object, or None."""
    cleaned = strip_fences(text)
    if not cleaned:
        return None

    if cleaned.startswith("["):
        end = find_closing(cleaned, 0, "[", "]")
        return cleaned[: end + 1] if end != -1 else None

    start = cleaned.find("{")
    if start == -1:
        return None
    end = find_closing(cleaned, start, "{", "}")
    return cleaned[start: end + 1] if end != -1 else None


def _preview(text: Any) -> str:
    compact = " ".join(str(text or "").split())
    return compact[:PREVIEW_CHARS]


def sanitize(raw_text: Union[str, bytes, None], fallback: T) -> SanitizeResult:
    """Parse the JSON value embedded in `raw_text`, or return `fallback`."""
    if isinstance(raw_text, (bytes, bytearray)):
        raw_text = bytes(raw_text).decode("utf-8", errors="replace")

    if raw_text is not None and not isinstance(raw_text, str):
        reason = f"expected text, got {type(raw_text).__name__}"
    elif not raw_text or not raw_text.strip():
        reason = "empty response"
    else:
        span = extract_json_span(raw_text)
        if span is None:
            reason = "no complete JSON object or array found"
        else:
            try:
                return SanitizeResult(value=json.loads(span), used_fallback=False)
            except (json.JSONDecodeError, RecursionError) as e:
                reason = f"invalid JSON: {e}"

    logger.warning(
        "⚠️ Could not parse AI response (%s); using fallback. Preview: %r",
        reason,
        _preview(raw_text),
    )
    return SanitizeResult(value=fallback, used_fallback=True, reason=reason)


def sanitize_json(raw_text: Union[str, bytes, None], fallback: T) -> Any:
    return sanitize(raw_text, fallback).value
