"""Tests for completion clients and routing."""

import json
from unittest.mock import AsyncMock, Mock

import httpx
import pytest

from memoria.config import AppConfig, ProviderCredentials
from memoria.errors import ProviderNotConfiguredError
from memoria.llm import (
    CompletionRouter,
    GroqCompletionClient,
    ModelRef,
    OpenAICompatibleCompletionClient,
    parse_model_ref,
)


def make_groq_response(content: str) -> Mock:
    """Create a mock Groq chat completion response."""
    response = Mock()
    response.choices = [Mock()]
    response.choices[0].message.content = content
    return response


class TestParseModelRef:
    """Tests for parse_model_ref."""

    def test_valid(self):
        assert parse_model_ref("groq:llama-3.1-8b-instant") == ModelRef("groq", "llama-3.1-8b-instant")

    def test_model_may_contain_colon(self):
        assert parse_model_ref("local:qwen2.5:7b").model == "qwen2.5:7b"

    @pytest.mark.parametrize("value", [None, "", "no-provider", ":model", "provider:"])
    def test_invalid(self, value):
        assert parse_model_ref(value) is None


class TestGroqCompletionClient:
    """Tests for the Groq wrapper."""

    @pytest.mark.asyncio
    async def test_complete(self):
        groq = Mock()
        groq.chat.completions.create = AsyncMock(return_value=make_groq_response("hi there"))

        client = GroqCompletionClient(groq)
        text = await client.complete("hello", model="llama", max_tokens=50, system="be brief")

        assert text == "hi there"
        kwargs = groq.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "llama"
        assert kwargs["max_tokens"] == 50
        assert kwargs["messages"][0] == {"role": "system", "content": "be brief"}
        assert kwargs["messages"][1] == {"role": "user", "content": "hello"}

    @pytest.mark.asyncio
    async def test_none_content_becomes_empty(self):
        groq = Mock()
        groq.chat.completions.create = AsyncMock(return_value=make_groq_response(None))
        assert await GroqCompletionClient(groq).complete("hello", model="llama") == ""


class TestOpenAICompatibleCompletionClient:
    """Tests for the HTTP chat-completions client."""

    @pytest.mark.asyncio
    async def test_complete(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200, json={"choices": [{"message": {"content": "rewritten"}}]}
            )

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        client = OpenAICompatibleCompletionClient("https://api.deepseek.com/v1/", "key", http)

        assert await client.complete("q", model="deepseek-chat", max_tokens=100) == "rewritten"
        assert seen["url"] == "https://api.deepseek.com/v1/chat/completions"
        assert seen["body"]["max_tokens"] == 100

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        http = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(500)))
        client = OpenAICompatibleCompletionClient("https://x/v1", "key", http)
        with pytest.raises(httpx.HTTPStatusError):
            await client.complete("q", model="m")

    @pytest.mark.asyncio
    async def test_bad_shape_raises(self):
        http = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"oops": 1}))
        )
        client = OpenAICompatibleCompletionClient("https://x/v1", "key", http)
        with pytest.raises(ValueError):
            await client.complete("q", model="m")


class TestCompletionRouter:
    """Tests for provider routing."""

    @pytest.mark.asyncio
    async def test_routes_by_provider(self):
        groq = AsyncMock()
        groq.complete.return_value = "from groq"
        router = CompletionRouter({"groq": groq})

        result = await router.complete(ModelRef("groq", "llama"), "prompt", max_tokens=10)

        assert result == "from groq"
        groq.complete.assert_awaited_once_with("prompt", model="llama", max_tokens=10)

    @pytest.mark.asyncio
    async def test_unknown_provider_raises(self):
        router = CompletionRouter()
        with pytest.raises(ProviderNotConfiguredError):
            await router.complete(ModelRef("openai", "gpt"), "prompt")

    def test_from_config(self):
        config = AppConfig(
            credentials={
                "groq": ProviderCredentials(api_key="gsk"),
                "deepseek": ProviderCredentials(api_key="ds", base_url="https://api.deepseek.com/v1"),
                "openai": ProviderCredentials(api_key=""),
            }
        )
        router = CompletionRouter.from_config(config)

        assert router.has_provider("groq")
        assert router.has_provider("deepseek")
        assert not router.has_provider("openai")
