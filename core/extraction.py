# core/extraction.py
"""Shape-tolerant text extraction from generation service responses.

Responses arrive either as decoded JSON (dicts and lists) or as SDK objects
exposing the same fields as attributes. Each strategy walks one known
envelope shape and returns ``""`` when the shape does not match, so callers
can treat "no text" uniformly as a retryable outcome.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

_MISSING = object()


def _field(obj: Any, name: str) -> Any:
    """Return ``obj[name]`` or ``obj.name``; ``_MISSING`` when absent."""
    if obj is None:
        return _MISSING
    if isinstance(obj, Mapping):
        return obj.get(name, _MISSING)
    return getattr(obj, name, _MISSING)


def _first(obj: Any) -> Any:
    if isinstance(obj, Sequence) and not isinstance(obj, str | bytes) and obj:
        return obj[0]
    return _MISSING


def _as_text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _flat_text(response: Any) -> str:
    if isinstance(response, str):
        return response
    try:
        return _as_text(_field(response, "text"))
    except (ValueError, AttributeError):
        # SDK ``.text`` accessors raise when the candidate was blocked.
        return ""


def _gemini_candidate_text(response: Any) -> str:
    candidate = _first(_field(response, "candidates"))
    parts = _field(_field(candidate, "content"), "parts")
    if not isinstance(parts, Sequence) or isinstance(parts, str | bytes):
        return ""
    return "".join(_as_text(_field(part, "text")) for part in parts)


def _chat_completion_text(response: Any) -> str:
    choice = _first(_field(response, "choices"))
    return _as_text(_field(_field(choice, "message"), "content"))


EXTRACTION_STRATEGIES: list[Callable[[Any], str]] = [
    _flat_text,
    _gemini_candidate_text,
    _chat_completion_text,
]


def extract_text(response: Any) -> str:
    """Return the first non-empty text found by the extraction strategies."""
    for strategy in EXTRACTION_STRATEGIES:
        text = strategy(response)
        if text and text.strip():
            return text
    logger.debug(
        "No extractable text in response.", response_type=type(response).__name__
    )
    return ""


def describe_block_reason(response: Any) -> str | None:
    """Best-effort reason for an empty generation, for diagnostics only."""
    feedback = _field(response, "promptFeedback")
    block_reason = _field(feedback, "blockReason")
    if isinstance(block_reason, str) and block_reason:
        return block_reason
    candidate = _first(_field(response, "candidates"))
    finish_reason = _field(candidate, "finishReason")
    if isinstance(finish_reason, str) and finish_reason not in ("", "STOP"):
        return finish_reason
    choice = _first(_field(response, "choices"))
    finish_reason = _field(choice, "finish_reason")
    if isinstance(finish_reason, str) and finish_reason not in ("", "stop"):
        return finish_reason
    return None
