"""
brain/__init__.py — OpsDesk Reasoning Engine clients
"""

from __future__ import annotations

from typing import Optional

from brain.llm_client import (
    BaseLLMClient,
    ResilientLLMClient,
    RetryPolicy,
    LLMConnectionError,
    LLMContextError,
    LLMError,
    LLMInvalidRequestError,
    LLMRateLimitError,
)
from brain.types import (
    FinishReason,
    InlineMedia,
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

__all__ = [
    "LLMClientFactory",
    "BaseLLMClient",
    "ResilientLLMClient",
    "RetryPolicy",
    "LLMError",
    "LLMConnectionError",
    "LLMRateLimitError",
    "LLMContextError",
    "LLMInvalidRequestError",
    "InlineMedia",
    "Message",
    "LLMConfig",
    "LLMResponse",
    "ToolCall",
    "ToolSchema",
    "TokenUsage",
    "Role",
    "Provider",
    "FinishReason",
]

# Default models per provider
_DEFAULT_MODELS: dict[str, str] = {
    "gemini": "gemini-2.0-flash",
    "openai": "gpt-4o",
}


class LLMClientFactory:

    @staticmethod
    def create(
        provider: str,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        **kwargs,
    ) -> BaseLLMClient:

        provider = provider.lower().strip()

        if provider == "gemini":
            if not api_key:
                raise LLMConnectionError("GEMINI_API_KEY is required", provider="gemini")
            from brain.gemini_client import GeminiClient
            return GeminiClient(api_key=api_key)

        elif provider == "openai":
            if not api_key:
                raise LLMConnectionError("OPENAI_API_KEY is required", provider="openai")
            from brain.openai_client import OpenAIClient
            return OpenAIClient(api_key=api_key, base_url=base_url, **kwargs)

        else:
            raise ValueError(
                f"Unknown LLM provider: '{provider}'. Valid options: gemini, openai"
            )

    @staticmethod
    def from_settings(settings) -> BaseLLMClient:
        """
        Create an LLM client from Settings, wrapped in ResilientLLMClient.

        Reads settings.llm.retry (max_attempts, base_delay, max_delay) and
        settings.llm.fallback_providers for the retry policy and failover
        chain; the turn timeout (agent.max_turn_timeout_seconds) becomes the
        retry budget.

        Example config.yaml:
            llm:
              default_provider: gemini
              retry:
                max_attempts: 3
              fallback_providers:
                - openai      # tried if gemini exhausts retries
        """
        provider = settings.default_llm_provider

        primary = LLMClientFactory.create(
            provider=provider,
            api_key=settings.api_key_for(provider),
        )

        fallbacks: list[BaseLLMClient] = []
        for fp in settings.llm.fallback_providers or []:
            fp = fp.lower().strip()
            if fp == provider:
                continue
            try:
                fallbacks.append(
                    LLMClientFactory.create(provider=fp, api_key=settings.api_key_for(fp))
                )
            except (LLMError, ValueError) as e:
                log.warning("brain.fallback_skipped", provider=fp, error=str(e))

        retry_cfg = settings.llm.retry
        return ResilientLLMClient(
            primary=primary,
            fallbacks=fallbacks,
            policy=RetryPolicy(
                max_attempts=retry_cfg.max_attempts,
                base_delay=retry_cfg.base_delay,
                max_delay=retry_cfg.max_delay,
                budget_seconds=settings.agent.max_turn_timeout_seconds,
            ),
        )

    @staticmethod
    def default_model(provider: str) -> str:
        return _DEFAULT_MODELS.get(provider.lower(), "gemini-2.0-flash")
