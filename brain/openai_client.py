"""
brain/openai_client.py — OpenAI Reasoning Engine Client

Chat Completions with the OpsDesk capabilities offered as function tools.
Works against the official endpoint or any OpenAI-compatible base_url.

Voice notes: only the gpt-4o audio models take inline audio, so media is
accepted only when the client is built with audio_input=True, and only as
wav or mp3. Browser recordings (webm, ogg) are rejected before any request
is made.

Provider errors are normalised so ResilientLLMClient can tell transient
failures (network, 5xx, 429 with its Retry-After) from permanent ones.
"""

from __future__ import annotations

import json
from typing import Optional

import openai
from openai import AsyncOpenAI

from brain.llm_client import (
    BaseLLMClient,
    LLMConnectionError,
    LLMContextError,
    LLMError,
    LLMInvalidRequestError,
    LLMRateLimitError,
)
from brain.types import (
    FinishReason,
    LLMConfig,
    LLMResponse,
    Message,
    Provider,
    Role,
    TokenUsage,
    ToolCall,
    ToolSchema,
)
from observability.logger import get_logger

log = get_logger(__name__)

_AUDIO_FORMATS = {"wav": "wav", "x-wav": "wav", "wave": "wav", "mpeg": "mp3", "mp3": "mp3"}

_FINISH_REASONS = {
    "stop": FinishReason.STOP,
    "tool_calls": FinishReason.TOOL_CALLS,
    "length": FinishReason.LENGTH,
}


class OpenAIClient(BaseLLMClient):
    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        organization: Optional[str] = None,
        audio_input: bool = False,
    ):
        super().__init__(api_key=api_key, base_url=base_url)
        self.supports_media = audio_input
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url, organization=organization)

    async def generate(
        self,
        messages: list[Message],
        config: LLMConfig,
        tools: Optional[list[ToolSchema]] = None,
    ) -> LLMResponse:
        oai_messages = self._to_provider_messages(messages)
        oai_tools = self._to_provider_tools(tools) if tools else openai.NOT_GIVEN

        log.debug(
            "openai.generate.start",
            model=config.model,
            message_count=len(messages),
            tools=len(tools or []),
        )
        try:
            response = await self._client.chat.completions.create(
                model=config.model,
                messages=oai_messages,
                tools=oai_tools,
                tool_choice="auto" if tools else openai.NOT_GIVEN,
                temperature=config.temperature,
                max_tokens=config.max_tokens,
                top_p=config.top_p,
                timeout=config.timeout_seconds,
            )
        except openai.APIError as e:
            raise _normalise_error(e) from e

        result = self._from_provider_response(response)
        log.debug(
            "openai.generate.complete",
            model=result.model,
            input_tokens=result.usage.input_tokens,
            output_tokens=result.usage.output_tokens,
            finish_reason=result.finish_reason,
            tool_calls=[tc.name for tc in result.tool_calls],
        )
        return result

    async def health_check(self) -> bool:
        try:
            await self._client.models.list()
            return True
        except (openai.APIError, OSError) as e:
            log.warning("openai.health_check.failed", error=str(e), error_type=type(e).__name__)
            return False

    # ── Translation ───────────────────────────────────────────────────────────

    def _to_provider_messages(self, messages: list[Message]) -> list[dict]:
        result = []
        for msg in messages:
            if msg.role == Role.USER and msg.media is not None:
                result.append({"role": "user", "content": [self._audio_part(msg)]})
            else:
                # ReAct observations arrive as SYSTEM entries mid-conversation;
                # Chat Completions accepts those in place.
                result.append({"role": msg.role.value, "content": msg.content or ""})
        return result

    def _audio_part(self, msg: Message) -> dict:
        mime = msg.media.mime_type.lower()
        fmt = _AUDIO_FORMATS.get(mime.split("/")[-1].split(";")[0])
        if not self.supports_media or fmt is None:
            raise LLMInvalidRequestError(
                f"OpenAI audio input needs an audio model and wav or mp3 audio (got {mime})",
                provider="openai",
            )
        return {"type": "input_audio", "input_audio": {"data": msg.media.data, "format": fmt}}

    def _to_provider_tools(self, tools: list[ToolSchema]) -> list[dict]:
        return [
            {
                "type": "function",
                "function": {"name": t.name, "description": t.description, "parameters": t.parameters},
            }
            for t in tools
        ]

    def _from_provider_response(self, response) -> LLMResponse:
        choice = response.choices[0]
        msg = choice.message

        tool_calls: list[ToolCall] = []
        for tc in msg.tool_calls or []:
            try:
                args = json.loads(tc.function.arguments or "{}")
            except json.JSONDecodeError:
                # The interpreter treats an argument-less manage_* call as malformed
                log.warning("openai.bad_tool_arguments", tool=tc.function.name)
                args = {}
            tool_calls.append(ToolCall(id=tc.id, name=tc.function.name, arguments=args))

        usage = response.usage
        return LLMResponse(
            content=msg.content,
            tool_calls=tool_calls,
            finish_reason=_FINISH_REASONS.get(choice.finish_reason or "stop", FinishReason.STOP),
            usage=TokenUsage(
                input_tokens=usage.prompt_tokens if usage else 0,
                output_tokens=usage.completion_tokens if usage else 0,
            ),
            model=response.model,
            provider=Provider.OPENAI,
        )


def _normalise_error(e: openai.APIError) -> LLMError:
    """Map an SDK error onto the LLMError family ResilientLLMClient retries on."""
    status = getattr(e, "status_code", None)
    text = str(e)

    if isinstance(e, openai.APIConnectionError):
        return LLMConnectionError(text, provider="openai")
    if isinstance(e, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return LLMConnectionError(text, provider="openai", status_code=status)
    if isinstance(e, openai.RateLimitError):
        return LLMRateLimitError(text, provider="openai", retry_after=_retry_after(e))
    if isinstance(e, openai.BadRequestError):
        lowered = text.lower()
        if getattr(e, "code", None) == "context_length_exceeded" or "context" in lowered or "too long" in lowered:
            return LLMContextError(text, provider="openai")
        return LLMInvalidRequestError(text, provider="openai", status_code=status)
    if status is not None and status >= 500:
        return LLMConnectionError(text, provider="openai", status_code=status)
    return LLMError(text, provider="openai", status_code=status)


def _retry_after(e: openai.APIStatusError) -> Optional[float]:
    response = getattr(e, "response", None)
    value = response.headers.get("retry-after") if response is not None else None
    try:
        return float(value) if value else None
    except ValueError:
        return None
