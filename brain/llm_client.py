"""
brain/llm_client.py — Reasoning Engine Client Contract + Retry/Failover

Provider clients (Gemini, OpenAI) subclass BaseLLMClient and implement
generate() and health_check().

ResilientLLMClient is what the orchestrator actually talks to. It wraps the
configured provider with:
  - RetryPolicy: exponential backoff on transient errors (connection, 429)
  - failover to the `fallback_providers` chain, in order
  - one time budget shared by every attempt on every client, so retries
    never outlive the turn that asked for them
  - audio turns routed only to clients that accept inline media
"""

from __future__ import annotations

import asyncio
import random
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from brain.types import LLMConfig, LLMResponse, Message, ToolSchema
from observability.logger import get_logger

log = get_logger(__name__)


class BaseLLMClient(ABC):
    """
    One reasoning-engine provider.

    `supports_media` is False on providers that can't take inline audio;
    the orchestrator rejects voice notes up front for those.
    """

    supports_media: bool = False

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None):
        self.api_key = api_key
        self.base_url = base_url

    @abstractmethod
    async def generate(
        self,
        messages: list[Message],
        config: LLMConfig,
        tools: Optional[list[ToolSchema]] = None,
    ) -> LLMResponse:
        """Call the engine and return a normalised response."""
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        ...

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"


# ─────────────────────────────────────────────────────────────────────────────
# Retry policy
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RetryPolicy:
    """
    Backoff for transient engine errors.

    delay = min(base_delay * 2^attempt + jitter, max_delay), or the
    provider's Retry-After when a 429 carries one. `budget_seconds` caps
    the whole generate() call across retries and fallbacks (None = no cap).
    """
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    budget_seconds: Optional[float] = None

    def delay_for(self, attempt: int, error: Exception) -> float:
        if isinstance(error, LLMRateLimitError) and error.retry_after:
            return min(error.retry_after, self.max_delay)
        return min(self.base_delay * (2 ** attempt) + random.uniform(0, 0.5), self.max_delay)


# ─────────────────────────────────────────────────────────────────────────────
# ResilientLLMClient
# ─────────────────────────────────────────────────────────────────────────────


class ResilientLLMClient(BaseLLMClient):
    """
    Primary client plus optional fallbacks, all under one RetryPolicy.

    Permanent errors (context overflow, invalid request) propagate at once:
    another provider would reject the same request. Anything else that
    survives the retries moves on to the next client.

    Usage:
        client = ResilientLLMClient(
            primary=LLMClientFactory.create("gemini", api_key=...),
            fallbacks=[LLMClientFactory.create("openai", api_key=...)],
            policy=RetryPolicy(max_attempts=3, budget_seconds=120),
        )
    """

    def __init__(
        self,
        primary: BaseLLMClient,
        fallbacks: Optional[list[BaseLLMClient]] = None,
        policy: Optional[RetryPolicy] = None,
    ):
        super().__init__()
        self._primary = primary
        self._fallbacks = fallbacks or []
        self.policy = policy or RetryPolicy()
        self.supports_media = getattr(primary, "supports_media", False)
        self._active_client: BaseLLMClient = primary

    @property
    def primary(self) -> BaseLLMClient:
        return self._primary

    async def generate(
        self,
        messages: list[Message],
        config: LLMConfig,
        tools: Optional[list[ToolSchema]] = None,
    ) -> LLMResponse:
        clients = [self._primary] + self._fallbacks
        if any(m.media is not None for m in messages):
            clients = [c for c in clients if getattr(c, "supports_media", False)]
            if not clients:
                raise LLMInvalidRequestError("No configured provider accepts audio input", provider="all")

        budget = self.policy.budget_seconds
        deadline = time.monotonic() + budget if budget else None
        last_error: Optional[LLMError] = None

        for i, client in enumerate(clients):
            if i > 0:
                log.warning(
                    "llm.failing_over",
                    from_client=repr(clients[i - 1]),
                    to_client=repr(client),
                    reason=str(last_error),
                )
            try:
                result = await self._attempts(client, messages, config, tools, deadline)
            except (LLMContextError, LLMInvalidRequestError):
                raise
            except LLMError as e:
                last_error = e
                log.error(
                    "llm.client_exhausted",
                    client=repr(client),
                    error=str(e),
                    will_try_fallback=i < len(clients) - 1,
                )
                if deadline is not None and time.monotonic() >= deadline:
                    break
                continue
            self._active_client = client
            return result

        raise LLMError(f"All LLM clients failed. Last error: {last_error}", provider="all")

    async def _attempts(
        self,
        client: BaseLLMClient,
        messages: list[Message],
        config: LLMConfig,
        tools: Optional[list[ToolSchema]],
        deadline: Optional[float],
    ) -> LLMResponse:
        for attempt in range(self.policy.max_attempts):
            try:
                return await client.generate(messages=messages, config=config, tools=tools)
            except (LLMConnectionError, LLMRateLimitError) as e:
                if attempt == self.policy.max_attempts - 1:
                    raise
                delay = self.policy.delay_for(attempt, e)
                if deadline is not None and time.monotonic() + delay >= deadline:
                    log.warning("llm.retry_budget_spent", client=repr(client), error=str(e))
                    raise
                log.warning(
                    "llm.retrying",
                    attempt=attempt + 1,
                    max_attempts=self.policy.max_attempts,
                    delay_s=round(delay, 2),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                await asyncio.sleep(delay)
        raise LLMError("max_attempts must be at least 1", provider=repr(client))

    async def health_check(self) -> bool:
        """Ping the client that last answered (a fallback after failover)."""
        return await self._active_client.health_check()

    def __repr__(self) -> str:
        n = len(self._fallbacks)
        suffix = f" + {n} fallback(s)" if n else ""
        return f"<ResilientLLMClient primary={self._primary!r}{suffix}>"


# ─────────────────────────────────────────────────────────────────────────────
# Exceptions
# ─────────────────────────────────────────────────────────────────────────────


class LLMError(Exception):
    """Base exception for all engine client errors."""
    def __init__(self, message: str, provider: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class LLMConnectionError(LLMError):
    """Provider unreachable or authentication failed."""


class LLMRateLimitError(LLMError):
    """Rate limit hit; `retry_after` is the provider's hint in seconds."""
    def __init__(self, message: str, provider: str = "", retry_after: Optional[float] = None):
        super().__init__(message, provider)
        self.retry_after = retry_after


class LLMContextError(LLMError):
    """Input exceeds the model's context window."""


class LLMInvalidRequestError(LLMError):
    """Bad request: invalid parameters or unsupported feature."""

