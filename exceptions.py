"""
exceptions.py — OpsDesk Unified Error Hierarchy

All OpsDesk-specific exceptions live here. Every layer of the stack
raises typed subclasses of OpsDeskError, never bare Exception.

Import from here, not from individual modules:
    from exceptions import AlreadyUndoneError, UnknownActionKindError

Hierarchy:
    OpsDeskError
    ├── AgentError
    │   ├── IterationLimitError
    │   └── TurnCancelledError
    ├── ActionError
    │   ├── UnknownActionKindError
    │   ├── ActionValidationError
    │   └── ActionExecutionError
    ├── UndoError
    │   ├── AlreadyUndoneError
    │   └── UndoNotAvailableError
    ├── StoreError
    │   └── EntityNotFoundError
    └── LLMError  (re-exported from brain; EngineUnavailableError is an alias)
        ├── LLMConnectionError
        ├── LLMRateLimitError
        ├── LLMContextError
        └── LLMInvalidRequestError

ConfigError is re-exported from config.settings.
"""

from __future__ import annotations

from brain.llm_client import (  # noqa: F401
    LLMConnectionError,
    LLMContextError,
    LLMError,
    LLMInvalidRequestError,
    LLMRateLimitError,
)
from config.settings import ConfigError  # noqa: F401


# ─────────────────────────────────────────────────────────────────────────────
# Root
# ─────────────────────────────────────────────────────────────────────────────

class OpsDeskError(Exception):
    """Base class for all OpsDesk exceptions."""


# ─────────────────────────────────────────────────────────────────────────────
# Agent layer
# ─────────────────────────────────────────────────────────────────────────────

class AgentError(OpsDeskError):
    """Base for orchestration errors."""


class IterationLimitError(AgentError):
    """The ReAct loop hit max_iterations without reaching a terminal state."""

    def __init__(self, max_iterations: int) -> None:
        self.max_iterations = max_iterations
        super().__init__(
            f"Reached maximum iterations ({max_iterations}). Task may be incomplete."
        )


class TurnCancelledError(AgentError):
    """The turn's cancellation token was triggered before work finished."""


# ─────────────────────────────────────────────────────────────────────────────
# Action layer
# ─────────────────────────────────────────────────────────────────────────────

class ActionError(OpsDeskError):
    """Base for all action-execution errors."""


class UnknownActionKindError(ActionError):
    """Action kind is not part of the Tool Contract."""

    def __init__(self, kind: str, message: str = "") -> None:
        self.kind = kind
        super().__init__(message or f"Unknown action: {kind}")


class ActionValidationError(ActionError):
    """Action payload does not satisfy the Tool Contract schema for its kind."""


class ActionExecutionError(ActionError):
    """A Domain Store call failed while executing an action."""


# ─────────────────────────────────────────────────────────────────────────────
# Undo layer
# ─────────────────────────────────────────────────────────────────────────────

class UndoError(OpsDeskError):
    """Base for undo ledger errors."""


class AlreadyUndoneError(UndoError):
    """Undo was requested for a message whose action was already reversed."""

    def __init__(self, message_id: str) -> None:
        self.message_id = message_id
        super().__init__(f"Message '{message_id}' has already been undone.")


class UndoNotAvailableError(UndoError):
    """The message carries no undo descriptor (or does not exist)."""


# ─────────────────────────────────────────────────────────────────────────────
# Store layer
# ─────────────────────────────────────────────────────────────────────────────

class StoreError(OpsDeskError):
    """Base for Domain Store errors."""


class EntityNotFoundError(StoreError):
    """The requested entity id does not exist in the store."""

    def __init__(self, kind: str, entity_id: str) -> None:
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind} '{entity_id}' not found")


# ─────────────────────────────────────────────────────────────────────────────
# LLM layer: the reasoning engine being unreachable is any LLMError
# ─────────────────────────────────────────────────────────────────────────────

EngineUnavailableError = LLMError


# ─────────────────────────────────────────────────────────────────────────────
# Convenience: all public names
# ─────────────────────────────────────────────────────────────────────────────

__all__ = [
    "OpsDeskError",
    # Agent
    "AgentError",
    "IterationLimitError",
    "TurnCancelledError",
    # Action
    "ActionError",
    "UnknownActionKindError",
    "ActionValidationError",
    "ActionExecutionError",
    # Undo
    "UndoError",
    "AlreadyUndoneError",
    "UndoNotAvailableError",
    # Store
    "StoreError",
    "EntityNotFoundError",
    # Config (re-exported)
    "ConfigError",
    # LLM (re-exported)
    "EngineUnavailableError",
    "LLMError",
    "LLMConnectionError",
    "LLMRateLimitError",
    "LLMContextError",
    "LLMInvalidRequestError",
]
