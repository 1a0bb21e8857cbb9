"""Failover orchestrator: rewrite through the provider registry in priority order.

Attempts are strictly sequential. A cheaper preferred provider that
succeeds always wins, and no quota is spent on a fallback while a preferred
provider is still being tried.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from newsdesk.core.errors import AllProvidersExhausted, InvalidInputError
from newsdesk.core.provider_registry import ProviderRegistry

logger = logging.getLogger(__name__)

DEFAULT_RETRY_DELAY = 1.0  # seconds between providers
DEFAULT_CALL_TIMEOUT = 120.0  # seconds per provider call


class RewriteKind(str, Enum):
    """Which part of the article is rewritten."""

    TITLE = "title"
    BODY = "body"


@dataclass(frozen=True)
class RewriteOutcome:
    """Result of one orchestrator invocation."""

    success: bool
    provider_name: str
    content: str | None = None
    error: str | None = None
    attempts: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "provider_name": self.provider_name,
            "content": self.content,
            "error": self.error,
            "attempts": self.attempts,
        }


class FailoverOrchestrator:
    """Tries providers in priority order until one rewrite succeeds."""

    def __init__(
        self,
        registry: ProviderRegistry,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        call_timeout: float = DEFAULT_CALL_TIMEOUT,
        auto_fallback: bool | None = None,
    ):
        self._registry = registry
        self._retry_delay = retry_delay
        self._call_timeout = call_timeout
        self._auto_fallback = auto_fallback

    @property
    def auto_fallback(self) -> bool:
        if self._auto_fallback is not None:
            return self._auto_fallback
        return self._registry.settings.auto_fallback

    async def rewrite(self, kind: RewriteKind, text: str, keywords: str) -> RewriteOutcome:
        """Rewrite `text` with the first provider that succeeds.

        Never raises for provider failures; exhaustion is reported as an
        unsuccessful outcome naming the most recent error.

        Raises:
            InvalidInputError: If `text` is empty.
        """
        if not text or not text.strip():
            raise InvalidInputError(f"Cannot rewrite an empty {RewriteKind(kind).value}")

        kind = RewriteKind(kind)
        max_attempts = self._registry.enabled_count() if self.auto_fallback else 1
        excluding: set[str] = set()
        last_error = ""

        logger.info(f"Starting {kind.value} rewrite (auto fallback: {self.auto_fallback})")

        while len(excluding) < max_attempts:
            provider = self._registry.next(excluding)
            if provider is None:
                break

            excluding.add(provider.name)
            logger.info(f"Trying {provider.name} (priority {provider.priority}) for {kind.value}")

            try:
                capability = self._registry.capability(provider.name)
                if kind is RewriteKind.TITLE:
                    call = capability.rewrite_title(text, keywords, provider.credential)
                else:
                    call = capability.rewrite_body(text, keywords, provider.credential)
                content = await asyncio.wait_for(call, timeout=self._call_timeout)

            except asyncio.TimeoutError:
                last_error = f"{provider.name} timed out after {self._call_timeout:.0f}s"
                self._registry.record_failure(provider.name, last_error)
                logger.warning(last_error)
            except Exception as e:
                last_error = str(e) or type(e).__name__
                count = self._registry.record_failure(provider.name, e)
                logger.warning(
                    f"{provider.name} failed ({count}/{provider.max_failures}): {last_error}"
                )
            else:
                self._registry.record_success(provider.name)
                logger.info(f"{provider.name} completed {kind.value} rewrite")
                return RewriteOutcome(
                    success=True,
                    provider_name=provider.name,
                    content=content,
                    attempts=len(excluding),
                )

            if len(excluding) < max_attempts and self._registry.next(excluding) is not None:
                await asyncio.sleep(self._retry_delay)

        attempts = len(excluding)
        if attempts == 0:
            error = "No rewrite providers available"
        else:
            error = f"All rewrite providers failed after {attempts} attempt(s). Last error: {last_error}"
        logger.error(f"{kind.value} rewrite failed: {error}")
        return RewriteOutcome(success=False, provider_name="none", error=error, attempts=attempts)

    async def rewrite_text(self, kind: RewriteKind, text: str, keywords: str) -> str:
        """Like `rewrite`, but returns the text and raises on exhaustion.

        Raises:
            AllProvidersExhausted: If no provider succeeded.
        """
        outcome = await self.rewrite(kind, text, keywords)
        if not outcome.success or outcome.content is None:
            raise AllProvidersExhausted(outcome.error or "All rewrite providers failed", outcome.attempts)
        return outcome.content
