# core/llm_interface.py
"""
Handles all direct interactions with the remote text-generation service.
Provides thin httpx transports for the Gemini ``generateContent`` endpoint
and for OpenAI-compatible chat completions, and an ``LLMService`` that runs
every call through the resilient retry wrapper.
"""

# Standard library imports
import functools
from typing import Any, Protocol

import httpx

# Third-party imports
import structlog

# Local imports
from config import NarrativeSettings
from core.retry import ResilientCaller
from core.usage import TokenUsage, usage_from_response

logger = structlog.get_logger(__name__)


class GenerationClient(Protocol):
    async def generate(
        self,
        prompt: str,
        model_name: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> Any: ...

    async def aclose(self) -> None: ...


class GeminiClient:
    """Calls ``models/{model}:generateContent`` on the Gemini REST API."""

    def __init__(
        self,
        api_key: str,
        api_base: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 600.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._api_base = api_base.rstrip("/")
        # Use a single async client for all requests to reuse connections
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def generate(
        self,
        prompt: str,
        model_name: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> dict[str, Any]:
        generation_config: dict[str, Any] = {}
        if temperature is not None:
            generation_config["temperature"] = temperature
        if max_tokens is not None:
            generation_config["maxOutputTokens"] = max_tokens
        payload: dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}]
        }
        if generation_config:
            payload["generationConfig"] = generation_config

        response = await self._client.post(
            f"{self._api_base}/models/{model_name}:generateContent",
            json=payload,
            headers={"x-goog-api-key": self._api_key},
        )
        response.raise_for_status()
        return response.json()

    async def aclose(self) -> None:
        await self._client.aclose()


class OpenAICompatibleClient:
    """Calls ``/chat/completions`` on an OpenAI-compatible server."""

    def __init__(
        self,
        api_key: str,
        api_base: str = "http://127.0.0.1:8080/v1",
        timeout: float = 600.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._api_base = api_base.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def generate(
        self,
        prompt: str,
        model_name: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model_name,
            "messages": [{"role": "user", "content": prompt}],
            "stream": False,
        }
        if temperature is not None:
            payload["temperature"] = temperature
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        response = await self._client.post(
            f"{self._api_base}/chat/completions", json=payload, headers=headers
        )
        response.raise_for_status()
        return response.json()

    async def aclose(self) -> None:
        await self._client.aclose()


def create_generation_client(settings: NarrativeSettings) -> GenerationClient:
    """Build the transport selected by ``LLM_PROVIDER``."""
    if settings.LLM_PROVIDER == "openai":
        return OpenAICompatibleClient(
            settings.OPENAI_API_KEY, settings.OPENAI_API_BASE, settings.HTTPX_TIMEOUT
        )
    return GeminiClient(
        settings.GEMINI_API_KEY, settings.GEMINI_API_BASE, settings.HTTPX_TIMEOUT
    )


class LLMService:
    """Single entry point for text generation with retries and usage tracking."""

    def __init__(
        self,
        client: GenerationClient,
        model_name: str,
        caller: ResilientCaller | None = None,
        max_tokens: int | None = None,
    ) -> None:
        self._client = client
        self.model_name = model_name
        self.caller = caller or ResilientCaller()
        self.max_tokens = max_tokens
        self.request_count = 0
        self.usage = TokenUsage()
        logger.info(
            f"LLMService initialized for model '{model_name}' "
            f"with up to {self.caller.max_attempts} attempts per call."
        )

    @classmethod
    def from_settings(cls, settings: NarrativeSettings) -> "LLMService":
        caller = ResilientCaller(
            max_attempts=settings.LLM_RETRY_ATTEMPTS,
            initial_delay=settings.LLM_RETRY_DELAY_SECONDS,
            fatal_status_codes=settings.LLM_FATAL_STATUS_CODES,
        )
        return cls(
            create_generation_client(settings),
            settings.GENERATION_MODEL,
            caller=caller,
            max_tokens=settings.MAX_GENERATION_TOKENS,
        )

    async def _generate_once(self, prompt: str, temperature: float | None) -> Any:
        self.request_count += 1
        response = await self._client.generate(
            prompt, self.model_name, temperature=temperature, max_tokens=self.max_tokens
        )
        usage = usage_from_response(response)
        if usage:
            self.usage.add(usage)
            logger.debug(
                f"LLM ('{self.model_name}') Usage - Prompt: {usage['prompt_tokens']} tk, "
                f"Comp: {usage['completion_tokens']} tk, Total: {usage['total_tokens']} tk"
            )
        return response

    async def generate_text(
        self,
        prompt: str,
        temperature: float | None = None,
        max_attempts: int | None = None,
        initial_delay: float | None = None,
    ) -> str:
        """Generate text for ``prompt``; raises RetriesExhausted when every attempt fails."""
        operation = functools.partial(self._generate_once, temperature=temperature)
        text = await self.caller.execute(
            operation, prompt, max_attempts=max_attempts, initial_delay=initial_delay
        )
        return text.strip()

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
