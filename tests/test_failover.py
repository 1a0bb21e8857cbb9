"""Tests for failover.py"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from newsdesk.core.errors import (
    AllProvidersExhausted,
    InvalidInputError,
    ProviderQuotaExceeded,
    ProviderTransientError,
)
from newsdesk.core.failover import FailoverOrchestrator, RewriteKind
from newsdesk.core.provider_registry import ProviderRegistry

NAMES = ("deepseek", "groq", "gemini")


class DictSettings:
    def __init__(self, values=None):
        self.values = dict(values or {})

    def get_setting(self, key, default=None):
        return self.values.get(key, default)


def make_capability(result="改寫結果"):
    capability = MagicMock()
    capability.rewrite_title = AsyncMock(return_value=result)
    capability.rewrite_body = AsyncMock(return_value=result)
    return capability


@pytest.fixture
def capabilities():
    return {name: make_capability(f"{name} 改寫") for name in NAMES}


@pytest.fixture
def store():
    return DictSettings({f"{name}_api_key": f"key-{name}" for name in NAMES})


@pytest.fixture
def registry(store, capabilities):
    return ProviderRegistry(store, capabilities=capabilities)


@pytest.fixture
def orchestrator(registry):
    return FailoverOrchestrator(registry, retry_delay=0)


class TestRewrite:
    @pytest.mark.asyncio
    async def test_first_provider_wins(self, orchestrator, capabilities):
        outcome = await orchestrator.rewrite(RewriteKind.TITLE, "冷媒價格上漲", "汽車冷氣")

        assert outcome.success
        assert outcome.provider_name == "deepseek"
        assert outcome.content == "deepseek 改寫"
        assert outcome.attempts == 1
        capabilities["deepseek"].rewrite_title.assert_awaited_once_with(
            "冷媒價格上漲", "汽車冷氣", "key-deepseek"
        )
        capabilities["groq"].rewrite_title.assert_not_called()

    @pytest.mark.asyncio
    async def test_quota_error_falls_through_to_next(self, orchestrator, registry, capabilities):
        capabilities["deepseek"].rewrite_title.side_effect = ProviderQuotaExceeded(
            "deepseek quota exceeded", provider="deepseek"
        )

        outcome = await orchestrator.rewrite(RewriteKind.TITLE, "冷媒價格上漲", "汽車冷氣")

        assert outcome.success
        assert outcome.provider_name == "groq"
        assert outcome.attempts == 2
        deepseek = registry.get("deepseek")
        assert deepseek.failure_count == deepseek.max_failures
        capabilities["gemini"].rewrite_title.assert_not_called()

    @pytest.mark.asyncio
    async def test_open_circuit_is_skipped_on_later_calls(self, orchestrator, capabilities):
        capabilities["deepseek"].rewrite_title.side_effect = ProviderQuotaExceeded(
            "quota", provider="deepseek"
        )
        await orchestrator.rewrite(RewriteKind.TITLE, "冷媒價格上漲", "")

        outcome = await orchestrator.rewrite(RewriteKind.TITLE, "壓縮機召回通知", "")

        assert outcome.provider_name == "groq"
        assert capabilities["deepseek"].rewrite_title.await_count == 1

    @pytest.mark.asyncio
    async def test_transient_error_counts_once(self, orchestrator, registry, capabilities):
        capabilities["deepseek"].rewrite_body.side_effect = ProviderTransientError(
            "deepseek server error 503", provider="deepseek"
        )

        outcome = await orchestrator.rewrite(RewriteKind.BODY, "原始內文", "")

        assert outcome.provider_name == "groq"
        assert outcome.content == "groq 改寫"
        assert registry.get("deepseek").failure_count == 1
        assert registry.get("deepseek").available

    @pytest.mark.asyncio
    async def test_body_kind_calls_rewrite_body(self, orchestrator, capabilities):
        await orchestrator.rewrite(RewriteKind.BODY, "原始內文", "汽車冷氣")

        capabilities["deepseek"].rewrite_body.assert_awaited_once()
        capabilities["deepseek"].rewrite_title.assert_not_called()

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self, orchestrator, registry):
        registry.record_failure("deepseek", "connection reset")
        registry.record_failure("deepseek", "connection reset")

        outcome = await orchestrator.rewrite(RewriteKind.TITLE, "冷媒價格上漲", "")

        assert outcome.provider_name == "deepseek"
        assert registry.get("deepseek").failure_count == 0


class TestExhaustion:
    @pytest.mark.asyncio
    async def test_all_fail_after_one_attempt_each(self, orchestrator, capabilities):
        for name in NAMES:
            capabilities[name].rewrite_title.side_effect = RuntimeError(f"{name} exploded")

        outcome = await orchestrator.rewrite(RewriteKind.TITLE, "冷媒價格上漲", "")

        assert not outcome.success
        assert outcome.provider_name == "none"
        assert outcome.attempts == 3
        assert "gemini exploded" in outcome.error
        for name in NAMES:
            assert capabilities[name].rewrite_title.await_count == 1

    @pytest.mark.asyncio
    async def test_sleeps_only_between_providers(self, registry, capabilities):
        for name in NAMES:
            capabilities[name].rewrite_title.side_effect = RuntimeError("boom")
        orchestrator = FailoverOrchestrator(registry, retry_delay=1.5)

        with patch("newsdesk.core.failover.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            await orchestrator.rewrite(RewriteKind.TITLE, "冷媒價格上漲", "")

        assert mock_sleep.await_count == 2
        mock_sleep.assert_awaited_with(1.5)

    @pytest.mark.asyncio
    async def test_no_providers(self, capabilities):
        registry = ProviderRegistry(DictSettings(), capabilities=capabilities)
        orchestrator = FailoverOrchestrator(registry, retry_delay=0)

        outcome = await orchestrator.rewrite(RewriteKind.TITLE, "冷媒價格上漲", "")

        assert not outcome.success
        assert outcome.attempts == 0
        assert outcome.error == "No rewrite providers available"

    @pytest.mark.asyncio
    async def test_rewrite_text_raises(self, orchestrator, capabilities):
        for name in NAMES:
            capabilities[name].rewrite_body.side_effect = RuntimeError("boom")

        with pytest.raises(AllProvidersExhausted) as exc_info:
            await orchestrator.rewrite_text(RewriteKind.BODY, "原始內文", "")

        assert exc_info.value.attempts == 3

    @pytest.mark.asyncio
    async def test_rewrite_text_returns_content(self, orchestrator):
        assert await orchestrator.rewrite_text(RewriteKind.BODY, "原始內文", "") == "deepseek 改寫"


class TestTimeouts:
    @pytest.mark.asyncio
    async def test_slow_provider_fails_over(self, registry, capabilities):
        async def hang(*args):
            await asyncio.sleep(10)

        capabilities["deepseek"].rewrite_title.side_effect = hang
        orchestrator = FailoverOrchestrator(registry, retry_delay=0, call_timeout=0.05)

        outcome = await orchestrator.rewrite(RewriteKind.TITLE, "冷媒價格上漲", "")

        assert outcome.provider_name == "groq"
        assert registry.get("deepseek").failure_count == 1


class TestSingleProviderMode:
    @pytest.mark.asyncio
    async def test_no_fallback_stops_after_first_provider(self, registry, capabilities):
        capabilities["deepseek"].rewrite_title.side_effect = RuntimeError("boom")
        orchestrator = FailoverOrchestrator(registry, retry_delay=0, auto_fallback=False)

        outcome = await orchestrator.rewrite(RewriteKind.TITLE, "冷媒價格上漲", "")

        assert not outcome.success
        assert outcome.attempts == 1
        capabilities["groq"].rewrite_title.assert_not_called()

    @pytest.mark.asyncio
    async def test_fallback_setting_read_from_store(self, store, capabilities):
        store.values["ai_auto_fallback"] = "false"
        registry = ProviderRegistry(store, capabilities=capabilities)

        assert FailoverOrchestrator(registry).auto_fallback is False


class TestInput:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "   "])
    async def test_empty_text_rejected(self, orchestrator, capabilities, text):
        with pytest.raises(InvalidInputError):
            await orchestrator.rewrite(RewriteKind.TITLE, text, "")
        capabilities["deepseek"].rewrite_title.assert_not_called()
