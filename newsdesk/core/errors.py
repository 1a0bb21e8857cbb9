"""Error types shared by the duplicate detector, providers and failover."""

from __future__ import annotations

# Substrings that mark an error as quota or rate-limit exhaustion
QUOTA_MARKERS = ("quota", "rate limit", "exceeded")


def is_quota_error(message: str | None) -> bool:
    """Return True if an error message reads like quota/rate-limit exhaustion."""
    if not message:
        return False
    lowered = message.lower()
    return any(marker in lowered for marker in QUOTA_MARKERS)


class PipelineError(Exception):
    """Base class for all ingestion pipeline errors."""


class InvalidInputError(PipelineError, ValueError):
    """Raised when an article is empty or too short to be scored or rewritten."""


class RewriteError(PipelineError):
    """Error during a provider rewrite call."""

    def __init__(self, message: str, provider: str, retriable: bool = False):
        super().__init__(message)
        self.provider = provider
        self.retriable = retriable


class ProviderQuotaExceeded(RewriteError):
    """Provider quota or rate limit is exhausted for the current period."""

    def __init__(self, message: str, provider: str):
        super().__init__(message, provider=provider, retriable=False)


class ProviderTransientError(RewriteError):
    """Network error, server error, timeout or malformed response."""

    def __init__(self, message: str, provider: str):
        super().__init__(message, provider=provider, retriable=True)


class AllProvidersExhausted(PipelineError):
    """Every enabled provider failed or none is configured."""

    def __init__(self, last_error: str, attempts: int):
        super().__init__(last_error)
        self.last_error = last_error
        self.attempts = attempts
