# core/errors.py
"""Exception hierarchy for the narrative generation pipeline."""

from __future__ import annotations


class NarrativeError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(NarrativeError):
    """A required setting is missing or invalid. Raised before any remote call."""


class RetryableServiceError(NarrativeError):
    """Transient failure of the generation service.

    ``retry_after`` carries a server-suggested delay in seconds when known.
    """

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class EmptyGenerationError(RetryableServiceError):
    """The response carried no extractable text (empty or blocked generation)."""

    def __init__(self, block_reason: str | None = None) -> None:
        message = "Generation service returned no text"
        if block_reason:
            message = f"{message} (reason: {block_reason})"
        super().__init__(message)
        self.block_reason = block_reason


class RetriesExhausted(NarrativeError):
    """Every attempt of a resilient call failed."""

    def __init__(self, attempts: int, last_error: BaseException | None) -> None:
        super().__init__(
            f"Generation failed after {attempts} attempt(s). Last error: {last_error}"
        )
        self.attempts = attempts
        self.last_error = last_error


class PersistenceError(NarrativeError):
    """Writing an artifact to the store failed. Never fatal to a run."""


class BodyIterationLimitReached(NarrativeError):
    """The paragraph loop hit its iteration ceiling without an end-of-book marker."""

    def __init__(self, iterations: int) -> None:
        super().__init__(
            f"Body loop stopped after {iterations} iterations without an end-of-book marker."
        )
        self.iterations = iterations
