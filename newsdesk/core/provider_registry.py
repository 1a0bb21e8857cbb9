"""Provider registry: configuration and live health state per rewrite provider.

The registry is built from the settings store. Only providers with a
credential and a registered capability are included. Counters are mutated
under a single lock so concurrent pipelines never lose updates.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Collection, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from newsdesk.core.errors import ProviderQuotaExceeded, is_quota_error
from newsdesk.core.settings import RewriteSettings, SettingsStore
from newsdesk.providers.rewrite_providers import (
    DEFAULT_TIMEOUT,
    RewriteProvider,
    build_rewrite_providers,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimit:
    """Published request allowance of a provider."""

    requests: int
    period_seconds: int


@dataclass(frozen=True)
class ProviderSpec:
    """Static defaults for a known provider."""

    name: str
    priority: int
    max_failures: int
    rate_limit: RateLimit | None = None


# Lower priority is tried first: free tiers before metered, paid OpenAI last
PROVIDER_SPECS: tuple[ProviderSpec, ...] = (
    ProviderSpec("deepseek", priority=1, max_failures=3, rate_limit=RateLimit(1_000_000, 86_400)),
    ProviderSpec("groq", priority=2, max_failures=3, rate_limit=RateLimit(14_400, 86_400)),
    ProviderSpec("gemini", priority=3, max_failures=3, rate_limit=RateLimit(15, 60)),
    ProviderSpec("cohere", priority=4, max_failures=3, rate_limit=RateLimit(1_000, 2_592_000)),
    ProviderSpec("openai", priority=10, max_failures=2),
)


@dataclass
class ProviderConfig:
    """Configuration and health of one provider. Mutated only by the registry."""

    name: str
    credential: str
    enabled: bool
    priority: int
    max_failures: int
    rate_limit: RateLimit | None = None
    failure_count: int = 0
    last_used_at: datetime | None = None

    @property
    def available(self) -> bool:
        return self.enabled and self.failure_count < self.max_failures

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "enabled": self.enabled,
            "priority": self.priority,
            "failure_count": self.failure_count,
            "max_failures": self.max_failures,
            "available": self.available,
            "last_used_at": self.last_used_at.isoformat() if self.last_used_at else None,
            "rate_limit": (
                {
                    "requests": self.rate_limit.requests,
                    "period_seconds": self.rate_limit.period_seconds,
                }
                if self.rate_limit
                else None
            ),
        }


class ProviderRegistry:
    """Prioritized, thread-safe set of configured rewrite providers."""

    def __init__(
        self,
        settings_store: SettingsStore,
        capabilities: Mapping[str, RewriteProvider] | None = None,
        specs: tuple[ProviderSpec, ...] = PROVIDER_SPECS,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self._store = settings_store
        self._capabilities = dict(capabilities) if capabilities is not None else None
        self._specs = specs
        self._timeout = timeout
        self._lock = threading.Lock()
        self._providers: list[ProviderConfig] = []
        self._active_capabilities: dict[str, RewriteProvider] = {}
        self._settings = RewriteSettings(api_keys={})
        self.reload()

    @property
    def settings(self) -> RewriteSettings:
        return self._settings

    def reload(self) -> None:
        """Rebuild the registry from the settings store. Counters start fresh."""
        settings = RewriteSettings.from_store(self._store)
        capabilities = (
            self._capabilities
            if self._capabilities is not None
            else build_rewrite_providers(
                max_retries=settings.failover_retries, timeout=self._timeout
            )
        )

        providers = []
        for spec in self._specs:
            credential = settings.api_keys.get(spec.name, "")
            if not credential:
                continue
            if spec.name not in capabilities:
                logger.warning(f"No rewrite capability registered for {spec.name}, skipping")
                continue
            providers.append(
                ProviderConfig(
                    name=spec.name,
                    credential=credential,
                    enabled=True,
                    priority=spec.priority,
                    max_failures=spec.max_failures,
                    rate_limit=spec.rate_limit,
                )
            )
        providers.sort(key=lambda p: p.priority)

        with self._lock:
            self._settings = settings
            self._active_capabilities = capabilities
            self._providers = providers

        names = ", ".join(p.name for p in providers) or "none"
        logger.info(f"Provider registry loaded, available providers: {names}")

    def next(self, excluding: Collection[str] = ()) -> ProviderConfig | None:
        """Lowest-priority provider that is enabled, below max_failures and not excluded."""
        with self._lock:
            for provider in self._providers:
                if provider.available and provider.name not in excluding:
                    return provider
            return None

    def get(self, name: str) -> ProviderConfig:
        with self._lock:
            return self._find(name)

    def capability(self, name: str) -> RewriteProvider:
        with self._lock:
            return self._active_capabilities[name]

    def enabled_count(self) -> int:
        with self._lock:
            return sum(1 for p in self._providers if p.enabled)

    def record_success(self, name: str) -> None:
        with self._lock:
            provider = self._find(name)
            provider.failure_count = 0
            provider.last_used_at = datetime.now(timezone.utc)

    def record_failure(self, name: str, error: BaseException | str) -> int:
        """Count a failure. Quota errors open the circuit immediately.

        Returns:
            The provider's failure count after the update.
        """
        quota = isinstance(error, ProviderQuotaExceeded) or is_quota_error(str(error))
        with self._lock:
            provider = self._find(name)
            provider.failure_count += 1
            if quota:
                provider.failure_count = provider.max_failures
            count = provider.failure_count

        if quota:
            logger.warning(f"{name} quota exhausted, circuit opened until reset")
        elif count >= provider.max_failures:
            logger.warning(f"{name} reached {count} failures, circuit opened until reset")
        return count

    def reset(self, name: str | None = None) -> None:
        """Zero failure counters for one provider or for all of them.

        Raises:
            KeyError: If `name` is not a registered provider.
        """
        with self._lock:
            targets = [self._find(name)] if name else list(self._providers)
            for provider in targets:
                provider.failure_count = 0
        logger.info(f"Reset failure count for {name or 'all providers'}")

    def status(self) -> list[dict[str, Any]]:
        with self._lock:
            return [p.to_dict() for p in self._providers]

    def recommended_order(self) -> list[str]:
        with self._lock:
            return [p.name for p in self._providers if p.enabled]

    def _find(self, name: str) -> ProviderConfig:
        for provider in self._providers:
            if provider.name == name:
                return provider
        raise KeyError(name)
