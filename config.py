# config.py
"""Configuration settings for the narrative generation pipeline.
Uses Pydantic BaseSettings for automatic environment variable loading.
"""

from __future__ import annotations

from typing import Any, Literal

import structlog
from dotenv import load_dotenv
from pydantic import Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict, SettingsError

from core.errors import ConfigurationError

load_dotenv()

logger = structlog.get_logger()

INITIAL_SUMMARY = "Empty page, begin writing your book!"


class NarrativeSettings(BaseSettings):
    """Full configuration for a narrative run."""

    # Seed
    KEYWORDS: str = ""
    CHAPTER_COUNT: int = 0

    # API and Model Configuration
    LLM_PROVIDER: Literal["gemini", "openai"] = "gemini"
    GEMINI_API_KEY: str = ""
    GEMINI_API_BASE: str = "https://generativelanguage.googleapis.com/v1beta"
    OPENAI_API_BASE: str = "http://127.0.0.1:8080/v1"
    OPENAI_API_KEY: str = ""
    GENERATION_MODEL: str = "gemini-2.5-flash-lite"

    # Temperature Settings
    TEMPERATURE_SETUP: float = 0.8
    TEMPERATURE_DRAFTING: float = 0.8
    TEMPERATURE_SUMMARY: float = 0.5
    MAX_GENERATION_TOKENS: int | None = None

    # LLM Call Settings
    LLM_RETRY_ATTEMPTS: int = Field(10, ge=1)
    LLM_RETRY_DELAY_SECONDS: float = Field(1.0, gt=0)
    # Statuses re-raised without retry. Empty means retry on everything.
    LLM_FATAL_STATUS_CODES: list[int] = []
    HTTPX_TIMEOUT: float = 600.0

    # Paragraph Loop
    BODY_CONTEXT_MODE: Literal["summary", "full"] = "summary"
    PARAGRAPHS_PER_CHAPTER_HINT: int = 30
    PARAGRAPH_PAUSE_SECONDS: float = Field(20.0, ge=0)
    # 0 disables the ceiling; the loop then ends only on the end-of-book marker.
    MAX_BODY_ITERATIONS: int = Field(600, ge=0)

    # Output
    BASE_OUTPUT_DIR: str = "narrative_output"

    # Logging & UI
    LOG_LEVEL_STR: str = Field("INFO", alias="LOG_LEVEL")
    LOG_FORMAT: str = (
        "%(asctime)s - %(levelname)s - [%(name)s] - %(run_context)s%(message)s"
    )
    LOG_DATE_FORMAT: str = "%Y-%m-%d %H:%M:%S"
    LOG_FILE: str | None = "narrative_run.log"
    ENABLE_RICH_PROGRESS: bool = True

    @model_validator(mode="after")
    def check_retry_policy(self) -> NarrativeSettings:
        if 429 in self.LLM_FATAL_STATUS_CODES:
            raise ValueError(
                "LLM_FATAL_STATUS_CODES must not contain 429; rate limiting is always retried."
            )
        if self.MAX_BODY_ITERATIONS == 0:
            logger.warning(
                "MAX_BODY_ITERATIONS is 0; the paragraph loop has no ceiling and "
                "relies on the service to emit the end-of-book marker."
            )
        return self

    @property
    def active_api_key(self) -> str:
        if self.LLM_PROVIDER == "openai":
            return self.OPENAI_API_KEY
        return self.GEMINI_API_KEY

    def ensure_ready_for_run(self) -> None:
        """Raise ConfigurationError listing every setting a run cannot start without."""
        problems: list[str] = []
        if not self.active_api_key.strip():
            key_name = (
                "OPENAI_API_KEY" if self.LLM_PROVIDER == "openai" else "GEMINI_API_KEY"
            )
            problems.append(f"{key_name} is required")
        if not self.KEYWORDS.strip():
            problems.append("KEYWORDS is required")
        if self.CHAPTER_COUNT < 1:
            problems.append("CHAPTER_COUNT must be a positive integer")
        if not self.GENERATION_MODEL.strip():
            problems.append("GENERATION_MODEL is required")
        if problems:
            raise ConfigurationError("; ".join(problems))

    model_config = SettingsConfigDict(
        env_prefix="", env_file=".env", extra="ignore", populate_by_name=True
    )


def load_settings(**overrides: Any) -> NarrativeSettings:
    """Build settings from the environment plus explicit overrides.

    Pydantic validation failures and unparseable environment values surface
    as ConfigurationError so callers have a single pre-flight error type.
    """
    cleaned = {key: value for key, value in overrides.items() if value is not None}
    try:
        return NarrativeSettings(**cleaned)
    except (ValidationError, SettingsError) as exc:
        raise ConfigurationError(str(exc)) from exc
