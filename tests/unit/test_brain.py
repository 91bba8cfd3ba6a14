"""
tests/unit/test_brain.py — Reasoning Engine Client Tests

Covers:
  - LLMClientFactory provider selection and key checks
  - ResilientLLMClient retry, failover, permanent errors, audio filtering
  - RetryPolicy backoff and the shared retry budget
  - OpenAI message / tool / audio translation and error normalisation
  - Gemini system-instruction merge, audio parts and error normalisation

No network calls: provider SDK clients are constructed but never invoked.

Run with:
    pytest tests/unit/test_brain.py -v
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import openai
import pytest

from brain import LLMClientFactory
from brain.gemini_client import GeminiClient
from brain.llm_client import (
    LLMConnectionError,
    LLMContextError,
    LLMError,
    LLMInvalidRequestError,
    LLMRateLimitError,
    ResilientLLMClient,
    RetryPolicy,
)
from brain.openai_client import OpenAIClient, _normalise_error
from brain.types import FinishReason, LLMConfig, LLMResponse, Message, ToolSchema

CONFIG = LLMConfig(model="test-model")
MESSAGES = [Message.system("sys"), Message.user("hi")]


def mock_client(name: str, *, media: bool = False, **generate_kwargs) -> MagicMock:
    client = MagicMock(name=name)
    client.supports_media = media
    client.generate = AsyncMock(**generate_kwargs)
    return client


# ─────────────────────────────────────────────────────────────────────────────
# Factory
# ─────────────────────────────────────────────────────────────────────────────


class TestFactory:
    def test_gemini_requires_key(self):
        with pytest.raises(LLMConnectionError, match="GEMINI_API_KEY"):
            LLMClientFactory.create("gemini")

    def test_openai_requires_key(self):
        with pytest.raises(LLMConnectionError, match="OPENAI_API_KEY"):
            LLMClientFactory.create("openai")

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown LLM provider"):
            LLMClientFactory.create("ollama", api_key="x")

    def test_gemini_client(self):
        client = LLMClientFactory.create(" Gemini ", api_key="test-key")
        assert isinstance(client, GeminiClient)
        assert client.supports_media is True

    def test_openai_client(self):
        client = LLMClientFactory.create("openai", api_key="sk-test")
        assert isinstance(client, OpenAIClient)
        assert client.supports_media is False
        assert LLMClientFactory.create("openai", api_key="sk-test", audio_input=True).supports_media

    def test_default_model(self):
        assert LLMClientFactory.default_model("openai") == "gpt-4o"
        assert LLMClientFactory.default_model("unknown") == "gemini-2.0-flash"


# ─────────────────────────────────────────────────────────────────────────────
# ResilientLLMClient
# ─────────────────────────────────────────────────────────────────────────────


class TestResilientClient:
    @pytest.mark.asyncio
    async def test_retries_transient_errors(self):
        ok = LLMResponse(content="hi")
        primary = mock_client("primary", side_effect=[LLMConnectionError("blip"), ok])
        client = ResilientLLMClient(primary, policy=RetryPolicy(max_attempts=3, max_delay=0))

        assert await client.generate(MESSAGES, CONFIG) is ok
        assert primary.generate.await_count == 2

    @pytest.mark.asyncio
    async def test_fails_over_after_exhausting_retries(self):
        ok = LLMResponse(content="from fallback")
        primary = mock_client("primary", side_effect=LLMRateLimitError("slow down"))
        fallback = mock_client("fallback", return_value=ok)
        client = ResilientLLMClient(primary, [fallback], RetryPolicy(max_attempts=2, max_delay=0))

        assert await client.generate(MESSAGES, CONFIG) is ok
        assert primary.generate.await_count == 2
        fallback.generate.assert_awaited_once()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [LLMContextError("too long"), LLMInvalidRequestError("bad")])
    async def test_permanent_errors_skip_failover(self, error):
        primary = mock_client("primary", side_effect=error)
        fallback = mock_client("fallback", return_value=LLMResponse(content="x"))
        client = ResilientLLMClient(primary, [fallback], RetryPolicy(max_delay=0))

        with pytest.raises(type(error)):
            await client.generate(MESSAGES, CONFIG)
        assert primary.generate.await_count == 1
        fallback.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_all_clients_fail(self):
        primary = mock_client("primary", side_effect=LLMConnectionError("down"))
        fallback = mock_client("fallback", side_effect=LLMError("also down"))
        client = ResilientLLMClient(primary, [fallback], RetryPolicy(max_attempts=1, max_delay=0))

        with pytest.raises(LLMError, match="All LLM clients failed. Last error: also down"):
            await client.generate(MESSAGES, CONFIG)

    @pytest.mark.asyncio
    async def test_audio_skips_clients_without_media(self):
        ok = LLMResponse(content="heard you")
        primary = mock_client("primary", media=False, return_value=LLMResponse(content="no"))
        fallback = mock_client("fallback", media=True, return_value=ok)
        client = ResilientLLMClient(primary, [fallback], RetryPolicy(max_delay=0))

        audio = [Message.user_media("audio/webm", "AAAA")]
        assert await client.generate(audio, CONFIG) is ok
        primary.generate.assert_not_awaited()

    def test_supports_media_follows_primary(self):
        assert ResilientLLMClient(mock_client("p", media=True)).supports_media is True
        assert ResilientLLMClient(mock_client("p")).supports_media is False

    @pytest.mark.asyncio
    async def test_audio_without_any_media_client(self):
        primary = mock_client("primary", media=False)
        client = ResilientLLMClient(primary, policy=RetryPolicy(max_delay=0))

        with pytest.raises(LLMInvalidRequestError, match="accepts audio"):
            await client.generate([Message.user_media("audio/webm", "AAAA")], CONFIG)
        primary.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_backoff_past_the_budget_fails_over_instead_of_sleeping(self):
        ok = LLMResponse(content="from fallback")
        primary = mock_client("primary", side_effect=LLMConnectionError("down"))
        fallback = mock_client("fallback", return_value=ok)
        policy = RetryPolicy(max_attempts=5, base_delay=60, max_delay=60, budget_seconds=5)
        client = ResilientLLMClient(primary, [fallback], policy)

        assert await asyncio.wait_for(client.generate(MESSAGES, CONFIG), timeout=1) is ok
        assert primary.generate.await_count == 1


class TestRetryPolicy:
    def test_retry_after_is_honoured_up_to_max_delay(self):
        policy = RetryPolicy(max_delay=5)
        assert policy.delay_for(0, LLMRateLimitError("429", retry_after=2)) == 2
        assert policy.delay_for(0, LLMRateLimitError("429", retry_after=60)) == 5

    def test_exponential_backoff(self):
        delay = RetryPolicy(base_delay=1, max_delay=30).delay_for(2, LLMConnectionError("blip"))
        assert 4 <= delay <= 4.5


# ─────────────────────────────────────────────────────────────────────────────
# OpenAI translation
# ─────────────────────────────────────────────────────────────────────────────


class TestOpenAITranslation:
    @pytest.fixture
    def client(self):
        return OpenAIClient(api_key="sk-test", audio_input=True)

    def test_messages(self, client):
        out = client._to_provider_messages([
            Message.system("sys"),
            Message.user("hi"),
            Message.assistant("hello"),
        ])
        assert out == [
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
        ]

    def test_audio_message(self, client):
        out = client._to_provider_messages([Message.user_media("audio/mpeg", "AAAA")])
        assert out[0]["content"] == [
            {"type": "input_audio", "input_audio": {"data": "AAAA", "format": "mp3"}}
        ]

    def test_tools(self, client):
        schema = ToolSchema(name="chat_response", description="Reply", parameters={
            "type": "object", "properties": {"message": {"type": "string"}}, "required": ["message"],
        })
        out = client._to_provider_tools([schema])
        assert out[0]["type"] == "function"
        assert out[0]["function"]["name"] == "chat_response"
        assert out[0]["function"]["parameters"]["required"] == ["message"]

    def test_response_with_tool_call(self, client):
        tool_call = SimpleNamespace(
            id="call_1",
            function=SimpleNamespace(name="manage_tasks", arguments='{"summary": "ok"}'),
        )
        response = SimpleNamespace(
            choices=[SimpleNamespace(
                finish_reason="tool_calls",
                message=SimpleNamespace(content=None, tool_calls=[tool_call]),
            )],
            usage=SimpleNamespace(prompt_tokens=10, completion_tokens=5),
            model="gpt-4o",
        )
        result = client._from_provider_response(response)
        assert result.finish_reason == FinishReason.TOOL_CALLS
        assert result.tool_calls[0].arguments == {"summary": "ok"}
        assert result.usage.total_tokens == 15

    def test_unparseable_tool_arguments_become_empty(self, client):
        tool_call = SimpleNamespace(
            id="call_1",
            function=SimpleNamespace(name="manage_tasks", arguments='{"actions": [{"act'),
        )
        response = SimpleNamespace(
            choices=[SimpleNamespace(
                finish_reason="tool_calls",
                message=SimpleNamespace(content=None, tool_calls=[tool_call]),
            )],
            usage=None,
            model="gpt-4o",
        )
        result = client._from_provider_response(response)
        assert result.tool_calls[0].arguments == {}
        assert result.usage.total_tokens == 0

    @pytest.mark.parametrize("mime", ["audio/webm", "audio/ogg;codecs=opus"])
    def test_browser_recordings_are_rejected(self, client, mime):
        with pytest.raises(LLMInvalidRequestError, match="wav or mp3"):
            client._to_provider_messages([Message.user_media(mime, "AAAA")])

    def test_audio_needs_an_audio_model(self):
        client = OpenAIClient(api_key="sk-test")
        with pytest.raises(LLMInvalidRequestError):
            client._to_provider_messages([Message.user_media("audio/wav", "AAAA")])


def status_error(cls, status: int, headers=None, body=None, message: str = "boom"):
    response = MagicMock(status_code=status, headers=headers or {})
    return cls(message, response=response, body=body)


class TestOpenAIErrors:
    def test_rate_limit_carries_retry_after(self):
        err = _normalise_error(status_error(openai.RateLimitError, 429, headers={"retry-after": "3"}))
        assert isinstance(err, LLMRateLimitError)
        assert err.retry_after == 3.0

    def test_rate_limit_without_header(self):
        err = _normalise_error(status_error(openai.RateLimitError, 429))
        assert isinstance(err, LLMRateLimitError)
        assert err.retry_after is None

    def test_context_overflow(self):
        err = _normalise_error(status_error(
            openai.BadRequestError, 400, body={"code": "context_length_exceeded"}, message="too many tokens",
        ))
        assert isinstance(err, LLMContextError)

    def test_other_bad_requests_are_permanent(self):
        err = _normalise_error(status_error(openai.BadRequestError, 400, message="unknown parameter"))
        assert type(err) is LLMInvalidRequestError

    def test_server_errors_are_transient(self):
        err = _normalise_error(status_error(openai.InternalServerError, 503))
        assert isinstance(err, LLMConnectionError)
        assert err.status_code == 503

    def test_auth_and_network(self):
        assert isinstance(_normalise_error(status_error(openai.AuthenticationError, 401)), LLMConnectionError)
        assert isinstance(_normalise_error(openai.APIConnectionError(request=MagicMock())), LLMConnectionError)


# ─────────────────────────────────────────────────────────────────────────────
# Gemini translation
# ─────────────────────────────────────────────────────────────────────────────


class TestGeminiTranslation:
    @pytest.fixture
    def client(self):
        return GeminiClient(api_key="test-key")

    def test_system_messages_are_merged(self, client):
        system, contents = client._to_provider_messages([
            Message.system("one"),
            Message.user("hi"),
            Message.system("two"),
            Message.assistant("hello"),
        ])
        assert system == "one\n\ntwo"
        assert [c.role for c in contents] == ["user", "model"]
        assert contents[0].parts[0].text == "hi"

    def test_audio_becomes_inline_data(self, client):
        _, contents = client._to_provider_messages([Message.user_media("audio/ogg", "AAAA")])
        blob = contents[0].parts[0].inline_data
        assert blob.mime_type == "audio/ogg"
        assert blob.data == b"\x00\x00\x00"

    @pytest.mark.parametrize("exc,expected", [
        (RuntimeError("429 quota exceeded"), LLMRateLimitError),
        (RuntimeError("input too long"), LLMContextError),
        (RuntimeError("API key not valid"), LLMConnectionError),
        (OSError("connection reset"), LLMConnectionError),
        (RuntimeError("something odd"), LLMError),
    ])
    def test_errors_are_normalised(self, client, exc, expected):
        with pytest.raises(expected):
            client._raise_normalised(exc)
