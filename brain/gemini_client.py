"""
brain/gemini_client.py — Google Gemini LLM Client

Supports: gemini-2.0-flash, gemini-1.5-pro, gemini-1.5-flash, etc.
Uses the `google-genai` SDK (google.genai), NOT the deprecated
`google-generativeai` package.

Gemini is multimodal: a USER message carrying InlineMedia (a recorded
voice note) is sent as inline_data and the model listens to it directly.

Install: pip install google-genai
Get key: https://aistudio.google.com/app/apikey
"""

from __future__ import annotations

import base64
import uuid
from typing import Any, Optional

from google import genai
from google.genai import types as genai_types

from brain.llm_client import (
    BaseLLMClient,
    LLMConnectionError,
    LLMContextError,
    LLMError,
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

_TYPE_MAP = {
    "string": genai_types.Type.STRING,
    "integer": genai_types.Type.INTEGER,
    "number": genai_types.Type.NUMBER,
    "boolean": genai_types.Type.BOOLEAN,
    "array": genai_types.Type.ARRAY,
    "object": genai_types.Type.OBJECT,
}


class GeminiClient(BaseLLMClient):
    """
    Google Gemini API client using the google-genai SDK.

    Requires: pip install google-genai
    """

    supports_media = True

    def __init__(self, api_key: str):
        super().__init__(api_key=api_key)
        self._client = genai.Client(api_key=api_key)

    async def generate(
        self,
        messages: list[Message],
        config: LLMConfig,
        tools: Optional[list[ToolSchema]] = None,
    ) -> LLMResponse:
        system_instruction, contents = self._to_provider_messages(messages)
        gemini_tools = self._to_provider_tools(tools) if tools else None

        log.debug(
            "gemini.generate.start",
            model=config.model,
            message_count=len(messages),
            has_tools=bool(tools),
        )

        gen_config = genai_types.GenerateContentConfig(
            temperature=config.temperature,
            max_output_tokens=config.max_tokens,
            top_p=config.top_p,
            system_instruction=system_instruction,
            tools=gemini_tools,
        )

        try:
            response = await self._client.aio.models.generate_content(
                model=config.model,
                contents=contents,
                config=gen_config,
            )
        except Exception as e:
            self._raise_normalised(e)

        result = self._from_provider_response(response, config.model)
        log.debug(
            "gemini.generate.complete",
            model=result.model,
            finish_reason=result.finish_reason,
            tool_calls=len(result.tool_calls),
        )
        return result

    async def health_check(self) -> bool:
        try:
            models = await self._client.aio.models.list()
            return models is not None
        except Exception as e:
            log.warning("gemini.health_check.failed", error=str(e))
            return False

    # ── Private helpers ───────────────────────────────────────────────────────

    def _to_provider_messages(
        self, messages: list[Message]
    ) -> tuple[Optional[str], list[genai_types.Content]]:
        """Translate internal Message list → Gemini Contents + system instruction."""
        system_instruction: Optional[str] = None
        contents: list[genai_types.Content] = []

        for msg in messages:
            if msg.role == Role.SYSTEM:
                system_instruction = (
                    system_instruction + "\n\n" + msg.content
                ) if system_instruction else msg.content

            elif msg.role == Role.USER:
                if msg.media is not None:
                    part = genai_types.Part(
                        inline_data=genai_types.Blob(
                            mime_type=msg.media.mime_type,
                            data=base64.b64decode(msg.media.data),
                        )
                    )
                else:
                    part = genai_types.Part(text=msg.content or "")
                contents.append(genai_types.Content(role="user", parts=[part]))

            elif msg.role == Role.ASSISTANT:
                contents.append(genai_types.Content(
                    role="model",
                    parts=[genai_types.Part(text=msg.content or "")],
                ))

        return system_instruction, contents

    def _to_provider_tools(self, tools: list[ToolSchema]) -> list[genai_types.Tool]:
        """Translate ToolSchema list → Gemini FunctionDeclaration format."""
        declarations = [
            genai_types.FunctionDeclaration(
                name=t.name,
                description=t.description,
                parameters=_to_gemini_schema(t.parameters),
            )
            for t in tools
        ]
        return [genai_types.Tool(function_declarations=declarations)]

    def _from_provider_response(self, response, model_name: str) -> LLMResponse:
        """Translate Gemini GenerateContentResponse → internal LLMResponse."""
        if not response.candidates:
            return LLMResponse(content=None, model=model_name, provider=Provider.GEMINI,
                               finish_reason=FinishReason.ERROR)
        candidate = response.candidates[0]

        finish_reason = FinishReason.STOP
        if candidate.finish_reason:
            reason_str = str(candidate.finish_reason).upper()
            if "MAX_TOKENS" in reason_str or "LENGTH" in reason_str:
                finish_reason = FinishReason.LENGTH

        text_parts: list[str] = []
        tool_calls: list[ToolCall] = []

        parts = candidate.content.parts if candidate.content and candidate.content.parts else []
        for part in parts:
            if getattr(part, "function_call", None):
                fc = part.function_call
                tool_calls.append(ToolCall(
                    id=fc.id or str(uuid.uuid4()),
                    name=fc.name,
                    arguments=dict(fc.args) if fc.args else {},
                ))
            elif getattr(part, "text", None):
                text_parts.append(part.text)

        if tool_calls:
            finish_reason = FinishReason.TOOL_CALLS

        usage = TokenUsage()
        if getattr(response, "usage_metadata", None):
            um = response.usage_metadata
            usage = TokenUsage(
                input_tokens=getattr(um, "prompt_token_count", 0) or 0,
                output_tokens=getattr(um, "candidates_token_count", 0) or 0,
            )

        return LLMResponse(
            content="".join(text_parts) or None,
            tool_calls=tool_calls,
            finish_reason=finish_reason,
            usage=usage,
            model=model_name,
            provider=Provider.GEMINI,
        )

    def _raise_normalised(self, exc: Exception) -> None:
        err_str = str(exc).lower()
        if "quota" in err_str or "rate" in err_str or "429" in err_str:
            raise LLMRateLimitError(str(exc), provider="gemini") from exc
        if "too long" in err_str or "context" in err_str:
            raise LLMContextError(str(exc), provider="gemini") from exc
        if "api key" in err_str or "403" in err_str or "401" in err_str:
            raise LLMConnectionError(str(exc), provider="gemini", status_code=403) from exc
        if isinstance(exc, (OSError, TimeoutError)):
            raise LLMConnectionError(str(exc), provider="gemini") from exc
        raise LLMError(str(exc), provider="gemini") from exc


def _to_gemini_schema(schema: dict[str, Any]) -> genai_types.Schema:
    """Recursively translate a JSON Schema fragment into a Gemini Schema."""
    kwargs: dict[str, Any] = {
        "type": _TYPE_MAP.get(schema.get("type", "string"), genai_types.Type.STRING),
    }
    if schema.get("description"):
        kwargs["description"] = schema["description"]
    if schema.get("enum"):
        kwargs["enum"] = list(schema["enum"])
    if "properties" in schema:
        kwargs["properties"] = {
            name: _to_gemini_schema(prop) for name, prop in schema["properties"].items()
        }
        if schema.get("required"):
            kwargs["required"] = list(schema["required"])
    if "items" in schema:
        kwargs["items"] = _to_gemini_schema(schema["items"])
    return genai_types.Schema(**kwargs)
