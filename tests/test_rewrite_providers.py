"""Tests for rewrite providers."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from newsdesk.core.errors import ProviderQuotaExceeded, ProviderTransientError, RewriteError
from newsdesk.providers.rewrite_providers import (
    CohereProvider,
    GeminiProvider,
    OpenAICompatibleProvider,
    build_rewrite_providers,
    get_rewrite_provider,
)


def make_response(status_code: int, url: str = "https://api.test/v1/chat/completions", **kwargs):
    return httpx.Response(status_code, request=httpx.Request("POST", url), **kwargs)


def chat_response(content: str) -> httpx.Response:
    return make_response(200, json={"choices": [{"message": {"content": content}}]})


@pytest.fixture
def provider():
    return OpenAICompatibleProvider(
        "groq", "https://api.test/v1/", "llama-test", initial_delay=0
    )


class TestOpenAICompatibleProvider:
    @pytest.mark.asyncio
    async def test_rewrite_title_strips_quotes(self, provider):
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = chat_response("「冷媒價格上漲，車主該注意什麼」\n")

            result = await provider.rewrite_title("冷媒價格上漲", "汽車冷氣", "sk-test")

        assert result == "冷媒價格上漲，車主該注意什麼"
        args, kwargs = mock_post.call_args
        assert args[0] == "https://api.test/v1/chat/completions"
        assert kwargs["headers"]["Authorization"] == "Bearer sk-test"
        assert kwargs["json"]["model"] == "llama-test"
        assert kwargs["json"]["max_tokens"] == 100
        messages = kwargs["json"]["messages"]
        assert "汽車冷氣" in messages[0]["content"]
        assert "冷媒價格上漲" in messages[1]["content"]

    @pytest.mark.asyncio
    async def test_rewrite_body(self, provider):
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = chat_response("  改寫後的內文  ")

            result = await provider.rewrite_body("原始內文", "汽車冷氣", "sk-test")

        assert result == "改寫後的內文"
        assert mock_post.call_args.kwargs["json"]["max_tokens"] == 2000

    @pytest.mark.asyncio
    async def test_rate_limit_is_not_retried(self, provider):
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = make_response(429, text="Too Many Requests")

            with pytest.raises(ProviderQuotaExceeded) as exc_info:
                await provider.rewrite_title("冷媒價格上漲", "", "sk-test")

        assert mock_post.call_count == 1
        assert exc_info.value.provider == "groq"
        assert exc_info.value.retriable is False

    @pytest.mark.asyncio
    async def test_quota_message_in_error_body(self, provider):
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = make_response(
                400, json={"error": {"code": "insufficient_quota", "message": "You exceeded your current quota"}}
            )

            with pytest.raises(ProviderQuotaExceeded):
                await provider.rewrite_title("冷媒價格上漲", "", "sk-test")

    @pytest.mark.asyncio
    async def test_server_error_then_success(self, provider):
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.side_effect = [make_response(500, text="boom"), chat_response("新標題")]

            result = await provider.rewrite_title("冷媒價格上漲", "", "sk-test")

        assert result == "新標題"
        assert mock_post.call_count == 2

    @pytest.mark.asyncio
    async def test_server_errors_exhaust_retries(self, provider):
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = make_response(503, text="unavailable")

            with pytest.raises(ProviderTransientError) as exc_info:
                await provider.rewrite_title("冷媒價格上漲", "", "sk-test")

        assert mock_post.call_count == 3
        assert exc_info.value.retriable is True
        assert "503" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_rejected_key(self, provider):
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = make_response(401, text="invalid api key")

            with pytest.raises(RewriteError) as exc_info:
                await provider.rewrite_title("冷媒價格上漲", "", "bad-key")

        assert mock_post.call_count == 1
        assert not isinstance(exc_info.value, (ProviderQuotaExceeded, ProviderTransientError))
        assert "rejected" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_network_error_is_transient(self, provider):
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.side_effect = httpx.ConnectError("connection refused")

            with pytest.raises(ProviderTransientError):
                await provider.rewrite_body("原始內文", "", "sk-test")

        assert mock_post.call_count == 3

    @pytest.mark.asyncio
    async def test_empty_completion_is_transient(self, provider):
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = chat_response("「」")

            with pytest.raises(ProviderTransientError):
                await provider.rewrite_title("冷媒價格上漲", "", "sk-test")

    @pytest.mark.asyncio
    async def test_malformed_response(self, provider):
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = make_response(200, json={"choices": []})

            with pytest.raises(ProviderTransientError):
                await provider.rewrite_body("原始內文", "", "sk-test")


class TestGeminiProvider:
    @pytest.mark.asyncio
    async def test_parses_candidates(self):
        provider = GeminiProvider(initial_delay=0)
        body = {"candidates": [{"content": {"parts": [{"text": "Gemini 標題"}]}}]}

        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = make_response(200, json=body)

            result = await provider.rewrite_title("冷媒價格上漲", "汽車冷氣", "g-key")

        assert result == "Gemini 標題"
        args, kwargs = mock_post.call_args
        assert args[0].endswith("/models/gemini-1.5-flash:generateContent")
        assert kwargs["headers"]["x-goog-api-key"] == "g-key"
        prompt = kwargs["json"]["contents"][0]["parts"][0]["text"]
        assert "汽車冷氣" in prompt and "冷媒價格上漲" in prompt


class TestCohereProvider:
    @pytest.mark.asyncio
    async def test_parses_text(self):
        provider = CohereProvider(initial_delay=0)

        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = make_response(200, json={"text": "Cohere 內文"})

            result = await provider.rewrite_body("原始內文", "汽車冷氣", "c-key")

        assert result == "Cohere 內文"
        kwargs = mock_post.call_args.kwargs
        assert kwargs["json"]["model"] == "command-r-plus"
        assert "汽車冷氣" in kwargs["json"]["preamble"]
        assert "原始內文" in kwargs["json"]["message"]


class TestHealthCheck:
    @pytest.mark.asyncio
    async def test_healthy(self, provider):
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = chat_response("ok")

            result = await provider.health_check("sk-test")

        assert result.healthy
        assert result.provider == "groq"
        assert result.latency_ms is not None

    @pytest.mark.asyncio
    async def test_unhealthy(self, provider):
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = make_response(401, text="nope")

            result = await provider.health_check("bad-key")

        assert not result.healthy
        assert "rejected" in result.message


class TestFactory:
    def test_known_providers(self):
        assert get_rewrite_provider("DeepSeek").name == "deepseek"
        assert get_rewrite_provider("openai").model_id == "gpt-4.1-mini"
        assert isinstance(get_rewrite_provider("gemini"), GeminiProvider)

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown provider"):
            get_rewrite_provider("mistral")

    def test_build_all(self):
        providers = build_rewrite_providers(max_retries=1)
        assert set(providers) == {"deepseek", "groq", "gemini", "cohere", "openai"}
        assert all(p.name == name for name, p in providers.items())


class TestTraditionalOutput:
    @pytest.mark.asyncio
    async def test_simplified_body_is_converted(self, provider, caplog):
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = chat_response("汽车冷气检测")

            with caplog.at_level("WARNING"):
                result = await provider.rewrite_body("原始內文", "汽車冷氣", "sk-test")

        assert result == "汽車冷氣檢測"
        assert "Simplified Chinese" in caplog.text

    @pytest.mark.asyncio
    async def test_simplified_title_is_converted(self, provider):
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = chat_response("「冷媒价格上涨」")

            result = await provider.rewrite_title("冷媒價格上漲", "", "sk-test")

        assert result == "冷媒價格上漲"
