"""
brain/types.py — OpsDesk Brain Data Models

All shared types used across LLM clients and the orchestrator.
Providers (Gemini, OpenAI) map their native response shapes into these types.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, Field


# ─────────────────────────────────────────────────────────────────────────────
# Enums
# ─────────────────────────────────────────────────────────────────────────────


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class Provider(str, Enum):
    GEMINI = "gemini"
    OPENAI = "openai"


class FinishReason(str, Enum):
    STOP = "stop"               # normal completion
    TOOL_CALLS = "tool_calls"   # LLM wants to call tools
    LENGTH = "length"           # hit max_tokens
    ERROR = "error"             # something went wrong


# ─────────────────────────────────────────────────────────────────────────────
# Tool calling types
# ─────────────────────────────────────────────────────────────────────────────


class ToolCall(BaseModel):
    """A single tool invocation requested by the LLM."""
    id: str = Field(..., description="Unique ID for this tool call (from LLM)")
    name: str = Field(..., description="Tool/function name to call")
    arguments: dict[str, Any] = Field(default_factory=dict, description="Parsed JSON arguments")


class ToolSchema(BaseModel):
    """
    Provider-agnostic tool definition.
    Clients translate this into provider-specific format (Gemini function
    declarations, OpenAI function schema).
    """
    name: str
    description: str
    parameters: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []}
    )


# ─────────────────────────────────────────────────────────────────────────────
# Message types
# ─────────────────────────────────────────────────────────────────────────────


class InlineMedia(BaseModel):
    """Raw media (e.g. a recorded voice note) passed straight to the model."""
    mime_type: str
    data: str                   # base64-encoded bytes


class Message(BaseModel):
    """
    A single message in the conversation.

    A USER message carries either text `content` or `media`; the engine
    interprets audio itself, no transcription happens on our side.
    """
    role: Role
    content: Optional[str] = None
    media: Optional[InlineMedia] = None

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=Role.USER, content=content)

    @classmethod
    def user_media(cls, mime_type: str, data: str) -> "Message":
        return cls(role=Role.USER, media=InlineMedia(mime_type=mime_type, data=data))

    @classmethod
    def assistant(cls, content: str) -> "Message":
        return cls(role=Role.ASSISTANT, content=content)


# ─────────────────────────────────────────────────────────────────────────────
# LLM config
# ─────────────────────────────────────────────────────────────────────────────


class LLMConfig(BaseModel):
    """
    Per-request LLM configuration.
    Overrides the provider defaults for a single generate() call.
    """
    model: str
    temperature: float = 0.1
    max_tokens: int = 4096
    top_p: float = 1.0
    timeout_seconds: float = 60.0


# ─────────────────────────────────────────────────────────────────────────────
# LLM response
# ─────────────────────────────────────────────────────────────────────────────


class TokenUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class LLMResponse(BaseModel):
    """
    Normalised response from any LLM provider.
    Clients translate provider-specific responses into this shape.
    """
    content: Optional[str] = None               # text response (None if tool_calls only)
    tool_calls: list[ToolCall] = Field(default_factory=list)
    finish_reason: FinishReason = FinishReason.STOP
    usage: TokenUsage = Field(default_factory=TokenUsage)
    model: str = ""
    provider: Provider = Provider.GEMINI

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0
