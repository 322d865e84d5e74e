# core/retry.py
"""Retry wrapper for single remote generation calls.

Every failure that is not explicitly configured as permanent is retried with
unjittered exponential backoff. A server-suggested delay can lengthen a wait
but never shorten it.
"""

from __future__ import annotations

import asyncio
import json
import re
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

import httpx
import structlog

from core.errors import EmptyGenerationError, RetriesExhausted
from core.extraction import describe_block_reason, extract_text

logger = structlog.get_logger(__name__)

RETRY_INFO_TYPE = "type.googleapis.com/google.rpc.RetryInfo"
_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*s?\s*$")

SleepFunc = Callable[[float], Awaitable[Any]]
Operation = Callable[[str], Awaitable[Any]]


def compute_backoff_delay(
    attempt: int, initial_delay: float, server_delay: float | None = None
) -> float:
    """Delay before retrying after 0-indexed ``attempt`` failed."""
    delay = initial_delay * (2**attempt)
    if server_delay is not None and server_delay > delay:
        return server_delay
    return delay


def _parse_duration(value: Any) -> float | None:
    if isinstance(value, int | float):
        return float(value)
    if isinstance(value, str):
        match = _DURATION_RE.match(value)
        if match:
            return float(match.group(1))
    return None


def _retry_info_delay(response: httpx.Response) -> float | None:
    try:
        body = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError, ValueError):
        return None
    error = body.get("error") if isinstance(body, dict) else None
    details = error.get("details") if isinstance(error, dict) else None
    if not isinstance(details, list):
        return None
    for detail in details:
        if isinstance(detail, dict) and detail.get("@type") == RETRY_INFO_TYPE:
            return _parse_duration(detail.get("retryDelay"))
    return None


def server_suggested_delay(exc: BaseException) -> float | None:
    """Seconds the service asked us to wait, if the error says so."""
    explicit = getattr(exc, "retry_after", None)
    if explicit is not None:
        return _parse_duration(explicit)
    if isinstance(exc, httpx.HTTPStatusError):
        delay = _retry_info_delay(exc.response)
        if delay is not None:
            return delay
        return _parse_duration(exc.response.headers.get("retry-after"))
    return None


class ResilientCaller:
    """Execute a generation operation until it yields non-empty text."""

    def __init__(
        self,
        max_attempts: int = 10,
        initial_delay: float = 1.0,
        fatal_status_codes: Iterable[int] = (),
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if initial_delay <= 0:
            raise ValueError("initial_delay must be positive")
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.fatal_status_codes = frozenset(fatal_status_codes)
        self._sleep = sleep

    def _is_fatal(self, exc: BaseException) -> bool:
        return (
            isinstance(exc, httpx.HTTPStatusError)
            and exc.response.status_code in self.fatal_status_codes
        )

    async def execute(
        self,
        operation: Operation,
        prompt: str,
        max_attempts: int | None = None,
        initial_delay: float | None = None,
    ) -> str:
        """Run ``operation(prompt)`` with retries and return the extracted text.

        Raises:
            ValueError: ``prompt`` is empty.
            RetriesExhausted: every attempt failed; chained from the last error.
            httpx.HTTPStatusError: the status is configured as fatal.
        """
        if not prompt or not prompt.strip():
            raise ValueError("Generation prompt must not be empty.")
        attempts = max_attempts if max_attempts is not None else self.max_attempts
        base_delay = initial_delay if initial_delay is not None else self.initial_delay
        if attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        last_error: Exception | None = None
        total_delay = 0.0
        for attempt in range(attempts):
            try:
                response = await operation(prompt)
                text = extract_text(response)
                if text.strip():
                    if attempt:
                        logger.info(
                            "Generation succeeded after retries.",
                            attempt=attempt + 1,
                            waited_seconds=total_delay,
                        )
                    return text
                last_error = EmptyGenerationError(describe_block_reason(response))
            except Exception as exc:
                if self._is_fatal(exc):
                    logger.error(
                        "Generation failed with non-retryable status %s.",
                        exc.response.status_code,
                    )
                    raise
                last_error = exc

            if attempt < attempts - 1:
                delay = compute_backoff_delay(
                    attempt, base_delay, server_suggested_delay(last_error)
                )
                logger.warning(
                    f"Generation attempt {attempt + 1}/{attempts} failed: {last_error}. "
                    f"Retrying in {delay:.2f} seconds.",
                    error_type=type(last_error).__name__,
                )
                total_delay += delay
                await self._sleep(delay)

        logger.error(
            "All generation attempts failed.",
            attempts=attempts,
            last_error=str(last_error),
        )
        raise RetriesExhausted(attempts, last_error) from last_error
