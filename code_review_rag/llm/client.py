"""
Language-model clients that turn a composed prompt into review text.

The composed prompt is the only input; clients return the model's raw
text. CloudLLMClient talks to the Anthropic messages API or an
OpenAI-compatible chat completions API, OllamaLLMClient to a local
Ollama server, MockLLMClient returns canned text for tests.
"""

from __future__ import annotations

import abc
import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

import httpx

from ..config.settings import LLMSettings
from ..errors import GenerationFailure

LOG = logging.getLogger("code_review_rag.llm.client")

RETRYABLE_STATUS = {429, 500, 502, 503, 504}
DEFAULT_BASE_URLS = {
    "anthropic": "https://api.anthropic.com/v1",
    "openai": "https://api.openai.com/v1",
}


class LLMClient(abc.ABC):
    """Abstract base class for review generation backends."""

    @abc.abstractmethod
    async def generate(self, prompt: str) -> str:
        """
        Generate a review for ``prompt``.

        Raises:
            GenerationFailure: the backend could not produce a response
        """
        ...

    async def close(self) -> None:
        """Clean up resources (e.g., HTTP clients). Override if needed."""
        pass


class MockLLMClient(LLMClient):
    """Returns canned responses in turn and records the prompts it saw."""

    def __init__(self, responses: Optional[List[str]] = None) -> None:
        self._responses = responses or ["## Summary\n\nNo issues found."]
        self.prompts: List[str] = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self._responses[(len(self.prompts) - 1) % len(self._responses)]

    @property
    def call_count(self) -> int:
        return len(self.prompts)


class _HttpLLMClient(LLMClient):
    def __init__(
        self,
        base_url: str,
        timeout: float,
        max_retries: int,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._max_retries = max(1, max_retries)
        self._sleep = sleep

    async def _post(self, path: str, body: dict, headers: Optional[dict] = None) -> dict:
        """POST with retries on rate limiting, server errors and transport failures."""
        last: Optional[Exception] = None
        status: Optional[int] = None
        for attempt in range(self._max_retries):
            try:
                resp = await self._client.post(path, json=body, headers=headers)
                resp.raise_for_status()
                return resp.json()
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                if status not in RETRYABLE_STATUS:
                    raise GenerationFailure(
                        f"LLM request rejected with HTTP {status}", status=status,
                        details={"body": exc.response.text[:500]},
                    ) from exc
                last = exc
            except httpx.TransportError as exc:
                last = exc

            if attempt + 1 < self._max_retries:
                wait = 2**attempt
                LOG.warning(
                    "LLM call failed (attempt %d/%d): %s. Retrying in %ds.",
                    attempt + 1, self._max_retries, last, wait,
                )
                await self._sleep(wait)

        raise GenerationFailure(
            f"LLM request failed after {self._max_retries} attempts: {last}", status=status
        ) from last

    async def close(self) -> None:
        await self._client.aclose()


class CloudLLMClient(_HttpLLMClient):
    """
    Cloud LLM backend.

    Supports:
    - anthropic: Claude models via the messages API
    - openai: GPT models via chat completions (or any compatible server
      reachable at ``base_url``)
    """

    def __init__(
        self,
        settings: Optional[LLMSettings] = None,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings or LLMSettings(provider="anthropic")
        provider = self.settings.provider
        if provider not in DEFAULT_BASE_URLS:
            raise ValueError(f"Unknown cloud LLM provider: {provider}. Use 'anthropic' or 'openai'.")
        if not self.settings.api_key and client is None:
            raise ValueError("API key required. Set CODE_REVIEW_RAG_LLM_API_KEY or pass it in LLMSettings.")
        super().__init__(
            self.settings.base_url or DEFAULT_BASE_URLS[provider],
            self.settings.timeout_seconds,
            self.settings.max_retries,
            client,
            sleep,
        )

    async def generate(self, prompt: str) -> str:
        s = self.settings
        if s.provider == "anthropic":
            data = await self._post(
                "/messages",
                {
                    "model": s.model,
                    "max_tokens": s.max_tokens,
                    "temperature": s.temperature,
                    "messages": [{"role": "user", "content": prompt}],
                },
                headers={"x-api-key": s.api_key, "anthropic-version": "2023-06-01"},
            )
            text = "".join(part.get("text", "") for part in data.get("content", []) if part.get("type") == "text")
        else:
            data = await self._post(
                "/chat/completions",
                {
                    "model": s.model,
                    "max_tokens": s.max_tokens,
                    "temperature": s.temperature,
                    "messages": [{"role": "user", "content": prompt}],
                },
                headers={"Authorization": f"Bearer {s.api_key}"},
            )
            choices = data.get("choices") or [{}]
            text = choices[0].get("message", {}).get("content") or ""
        if not text:
            raise GenerationFailure("LLM returned an empty response")
        LOG.info("Generated %d characters with %s/%s", len(text), s.provider, s.model)
        return text


class OllamaLLMClient(_HttpLLMClient):
    """Local generation through Ollama's ``/api/generate``."""

    def __init__(
        self,
        settings: Optional[LLMSettings] = None,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings or LLMSettings(provider="ollama", model="codellama:7b")
        super().__init__(
            self.settings.ollama_url, self.settings.timeout_seconds, self.settings.max_retries, client, sleep
        )

    async def generate(self, prompt: str) -> str:
        s = self.settings
        data = await self._post(
            "/api/generate",
            {
                "model": s.model,
                "prompt": prompt,
                "stream": False,
                "options": {"temperature": s.temperature, "num_predict": s.max_tokens},
            },
        )
        text = data.get("response", "")
        if not text:
            raise GenerationFailure("Ollama returned an empty response")
        return text


def build_llm_client(settings: Optional[LLMSettings] = None) -> LLMClient:
    """Factory: create an LLM client from settings."""
    settings = settings or LLMSettings()
    if settings.provider == "mock":
        return MockLLMClient()
    if settings.provider == "ollama":
        return OllamaLLMClient(settings)
    if settings.provider in DEFAULT_BASE_URLS:
        return CloudLLMClient(settings)
    raise ValueError(f"Unknown LLM provider: {settings.provider}. Use 'anthropic', 'openai', 'ollama' or 'mock'.")
