"""Rewrite provider abstraction for external text-generation APIs.

One class per wire protocol, one registered instance per provider name:
- deepseek, groq, openai: OpenAI-compatible chat completions
- gemini: Google generateContent
- cohere: Cohere chat

Providers raise `RewriteError` subclasses only; the failover orchestrator
inspects them to decide whether to open a provider's circuit.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable

import httpx

from newsdesk.core.chinese import ensure_traditional
from newsdesk.core.errors import (
    ProviderQuotaExceeded,
    ProviderTransientError,
    RewriteError,
    is_quota_error,
)
from newsdesk.core.prompts import PromptTemplate, get_prompt

logger = logging.getLogger(__name__)

# Retry settings for transient errors (network, 5xx)
MAX_RETRIES = 3
INITIAL_DELAY = 1.0  # seconds
MAX_DELAY = 5.0  # seconds
DEFAULT_TIMEOUT = 120.0  # seconds

# Title wrappers some models add around their answer
_TITLE_QUOTES = "\"'「」『』“”"


@dataclass
class HealthCheckResult:
    """Result of a provider health check."""

    healthy: bool
    provider: str
    model: str
    message: str
    latency_ms: int | None = None


class RewriteProvider(ABC):
    """Abstract base class for rewrite providers."""

    def __init__(
        self,
        max_retries: int = MAX_RETRIES,
        timeout: float = DEFAULT_TIMEOUT,
        initial_delay: float = INITIAL_DELAY,
    ):
        self._max_retries = max(1, max_retries)
        self._timeout = timeout
        self._initial_delay = initial_delay

    @property
    @abstractmethod
    def name(self) -> str:
        """Registry name (e.g. 'deepseek')."""
        ...

    @property
    @abstractmethod
    def model_id(self) -> str:
        """The model identifier being used."""
        ...

    @abstractmethod
    async def _complete(self, prompt: PromptTemplate, text: str, keywords: str, api_key: str) -> str:
        """Send one rendered prompt and return the raw completion text.

        Raises:
            RewriteError: If the API call fails.
        """
        ...

    async def rewrite_title(self, title: str, keywords: str, api_key: str) -> str:
        """Rewrite a news title around the given SEO keywords."""
        result = await self._complete(get_prompt("title"), title, keywords, api_key)
        return self._finalize(result.strip().strip(_TITLE_QUOTES).strip(), "title")

    async def rewrite_body(self, content: str, keywords: str, api_key: str) -> str:
        """Rewrite a news body around the given SEO keywords."""
        result = await self._complete(get_prompt("body"), content, keywords, api_key)
        return self._finalize(result.strip(), "body")

    async def health_check(self, api_key: str) -> HealthCheckResult:
        """Check that the provider answers a minimal title rewrite."""
        start = time.monotonic()
        try:
            await self.rewrite_title("冷媒系統定期檢查", "汽車冷氣", api_key)
        except RewriteError as e:
            return HealthCheckResult(
                healthy=False,
                provider=self.name,
                model=self.model_id,
                message=str(e),
            )
        return HealthCheckResult(
            healthy=True,
            provider=self.name,
            model=self.model_id,
            message="connected",
            latency_ms=int((time.monotonic() - start) * 1000),
        )

    def _finalize(self, text: str, part: str) -> str:
        """Reject empty output and convert any Simplified Chinese to Traditional."""
        conversion = ensure_traditional(self._require_text(text))
        if conversion.has_simplified:
            logger.warning(
                f"{self.name} {part} contained Simplified Chinese "
                f"({', '.join(conversion.simplified_chars)}), converted to Traditional"
            )
        return conversion.text

    def _require_text(self, text: str) -> str:
        if not text:
            raise ProviderTransientError(f"{self.name} returned an empty response", provider=self.name)
        return text

    async def _post_json(
        self,
        url: str,
        headers: dict[str, str],
        body: dict[str, Any],
    ) -> dict[str, Any]:
        """POST JSON with retries on transient errors.

        429 and quota responses raise `ProviderQuotaExceeded` immediately;
        retrying them would only burn more of the exhausted quota.
        """
        delay = self._initial_delay
        last_error: RewriteError | None = None

        async with httpx.AsyncClient(timeout=self._timeout) as client:
            for attempt in range(self._max_retries):
                try:
                    response = await client.post(
                        url,
                        headers={"Content-Type": "application/json", **headers},
                        json=body,
                    )
                    response.raise_for_status()
                    return response.json()

                except httpx.HTTPStatusError as e:
                    status = e.response.status_code
                    detail = e.response.text[:300]
                    if status == 429 or is_quota_error(detail):
                        raise ProviderQuotaExceeded(
                            f"{self.name} quota or rate limit exceeded ({status}): {detail}",
                            provider=self.name,
                        ) from e
                    if status in (401, 403):
                        raise RewriteError(
                            f"{self.name} API key rejected ({status})",
                            provider=self.name,
                        ) from e
                    if status < 500:
                        raise RewriteError(
                            f"{self.name} API error {status}: {detail}",
                            provider=self.name,
                        ) from e
                    last_error = ProviderTransientError(
                        f"{self.name} server error {status}", provider=self.name
                    )

                except httpx.RequestError as e:
                    last_error = ProviderTransientError(
                        f"{self.name} request failed: {type(e).__name__}: {e}",
                        provider=self.name,
                    )

                except ValueError as e:
                    last_error = ProviderTransientError(
                        f"{self.name} returned invalid JSON: {e}", provider=self.name
                    )

                if attempt < self._max_retries - 1:
                    logger.warning(
                        f"{self.name} attempt {attempt + 1}/{self._max_retries} failed: "
                        f"{last_error}. Waiting {delay:.1f}s..."
                    )
                    await asyncio.sleep(delay)
                    delay = min(delay * 2, MAX_DELAY)

        assert last_error is not None
        raise last_error


class OpenAICompatibleProvider(RewriteProvider):
    """Provider speaking the OpenAI chat-completions protocol."""

    def __init__(self, name: str, base_url: str, model: str, **kwargs: Any):
        super().__init__(**kwargs)
        self._name = name
        self._base_url = base_url.rstrip("/")
        self._model = model

    @property
    def name(self) -> str:
        return self._name

    @property
    def model_id(self) -> str:
        return self._model

    async def _complete(self, prompt: PromptTemplate, text: str, keywords: str, api_key: str) -> str:
        data = await self._post_json(
            f"{self._base_url}/chat/completions",
            headers={"Authorization": f"Bearer {api_key}"},
            body={
                "model": self._model,
                "messages": prompt.render(text, keywords),
                "temperature": prompt.temperature,
                "max_tokens": prompt.max_tokens,
            },
        )
        try:
            return data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderTransientError(f"{self.name} malformed response: {e}", provider=self.name) from e


class GeminiProvider(RewriteProvider):
    """Google Gemini generateContent provider."""

    BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

    def __init__(self, model: str = "gemini-1.5-flash", **kwargs: Any):
        super().__init__(**kwargs)
        self._model = model

    @property
    def name(self) -> str:
        return "gemini"

    @property
    def model_id(self) -> str:
        return self._model

    async def _complete(self, prompt: PromptTemplate, text: str, keywords: str, api_key: str) -> str:
        data = await self._post_json(
            f"{self.BASE_URL}/models/{self._model}:generateContent",
            headers={"x-goog-api-key": api_key},
            body={
                "contents": [{"parts": [{"text": prompt.as_single_prompt(text, keywords)}]}],
                "generationConfig": {
                    "temperature": prompt.temperature,
                    "maxOutputTokens": prompt.max_tokens,
                },
            },
        )
        try:
            return data["candidates"][0]["content"]["parts"][0]["text"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderTransientError(f"{self.name} malformed response: {e}", provider=self.name) from e


class CohereProvider(RewriteProvider):
    """Cohere chat provider."""

    URL = "https://api.cohere.ai/v1/chat"

    def __init__(self, model: str = "command-r-plus", **kwargs: Any):
        super().__init__(**kwargs)
        self._model = model

    @property
    def name(self) -> str:
        return "cohere"

    @property
    def model_id(self) -> str:
        return self._model

    async def _complete(self, prompt: PromptTemplate, text: str, keywords: str, api_key: str) -> str:
        messages = prompt.render(text, keywords)
        data = await self._post_json(
            self.URL,
            headers={"Authorization": f"Bearer {api_key}"},
            body={
                "model": self._model,
                "preamble": messages[0]["content"],
                "message": messages[1]["content"],
                "temperature": prompt.temperature,
                "max_tokens": prompt.max_tokens,
            },
        )
        try:
            return data["text"] or ""
        except (KeyError, TypeError) as e:
            raise ProviderTransientError(f"{self.name} malformed response: {e}", provider=self.name) from e


# Lookup table: registry name -> provider factory
REWRITE_PROVIDERS: dict[str, Callable[..., RewriteProvider]] = {
    "deepseek": partial(
        OpenAICompatibleProvider, "deepseek", "https://api.deepseek.com/v1", "deepseek-chat"
    ),
    "groq": partial(
        OpenAICompatibleProvider, "groq", "https://api.groq.com/openai/v1", "llama-3.3-70b-versatile"
    ),
    "gemini": GeminiProvider,
    "cohere": CohereProvider,
    "openai": partial(
        OpenAICompatibleProvider, "openai", "https://api.openai.com/v1", "gpt-4.1-mini"
    ),
}


def get_rewrite_provider(provider_name: str, **kwargs: Any) -> RewriteProvider:
    """Factory function to get a rewrite provider by registry name.

    Raises:
        ValueError: If the provider is unknown.
    """
    factory = REWRITE_PROVIDERS.get(provider_name.lower())
    if factory is None:
        raise ValueError(
            f"Unknown provider: {provider_name}. Available: {', '.join(REWRITE_PROVIDERS)}"
        )
    return factory(**kwargs)


def build_rewrite_providers(
    max_retries: int = MAX_RETRIES,
    timeout: float = DEFAULT_TIMEOUT,
) -> dict[str, RewriteProvider]:
    """Instantiate every known provider with shared retry/timeout settings."""
    return {
        name: get_rewrite_provider(name, max_retries=max_retries, timeout=timeout)
        for name in REWRITE_PROVIDERS
    }
