"""
tools/types.py — Action System Data Models

Shared types used across the tool contract, the action bus, the execution
engine, the undo ledger and the domain action handlers.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, Field


# ─────────────────────────────────────────────────────────────────────────────
# Domain enums
# ─────────────────────────────────────────────────────────────────────────────


class EntityKind(str, Enum):
    TASK = "task"
    PROJECT = "project"
    CONTRACTOR = "contractor"
    SOP = "sop"
    PORTAL_MESSAGE = "portal_message"


class Priority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class TaskStatus(str, Enum):
    TODO = "TODO"
    DONE = "DONE"


class ProjectStatus(str, Enum):
    LEAD = "LEAD"
    DISCOVERY = "DISCOVERY"
    PROPOSAL = "PROPOSAL"
    NEGOTIATION = "NEGOTIATION"
    LOST = "LOST"
    ONBOARDING = "ONBOARDING"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    PAUSED = "PAUSED"


class ActionKind(str, Enum):
    """
    Closed set of action kinds the execution engine understands.

    QUERY_DATABASE and SEND_PORTAL_MESSAGE are dependency kinds: a batch
    containing either one runs sequentially, fail-fast.
    """
    CREATE_TASK = "CREATE_TASK"
    UPDATE_TASK = "UPDATE_TASK"
    DELETE_TASK = "DELETE_TASK"
    CREATE_PROJECT = "CREATE_PROJECT"
    UPDATE_PROJECT = "UPDATE_PROJECT"
    DELETE_PROJECT = "DELETE_PROJECT"
    QUERY_DATABASE = "QUERY_DATABASE"
    SEND_PORTAL_MESSAGE = "SEND_PORTAL_MESSAGE"
    OPEN_PROJECT = "OPEN_PROJECT"
    OPEN_TASK = "OPEN_TASK"

    @property
    def is_dependency(self) -> bool:
        return self in _DEPENDENCY

    @property
    def requires_ref(self) -> bool:
        return self.value.startswith(("UPDATE_", "DELETE_", "OPEN_"))

    @classmethod
    def parse(cls, value: str) -> Optional["ActionKind"]:
        """Return the ActionKind for `value`, or None when it is not in the set."""
        try:
            return cls(value)
        except ValueError:
            return None


_DEPENDENCY = {ActionKind.QUERY_DATABASE, ActionKind.SEND_PORTAL_MESSAGE}


# ─────────────────────────────────────────────────────────────────────────────
# Capability metadata (what the reasoning engine is allowed to call)
# ─────────────────────────────────────────────────────────────────────────────


class CapabilitySchema(BaseModel):
    """
    One capability offered to the reasoning engine.
    `react_only` capabilities are only offered inside the ReAct loop.
    """
    name: str
    description: str
    parameters: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []}
    )
    react_only: bool = False

    def to_llm_schema(self) -> dict[str, Any]:
        """Return the schema in a format the LLM brain expects."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


# ─────────────────────────────────────────────────────────────────────────────
# Undo descriptors
# ─────────────────────────────────────────────────────────────────────────────


class UndoKind(str, Enum):
    DELETE_CREATED = "DELETE_CREATED"   # data = {"id": ...}
    RESTORE = "RESTORE"                 # data = full snapshot before the change
    COMPOSITE = "COMPOSITE"             # steps = per-action descriptors, in apply order


class UndoDescriptor(BaseModel):
    """Minimal data needed to reverse one successful mutation (or a batch of them)."""
    kind: UndoKind
    entity: Optional[EntityKind] = None
    data: dict[str, Any] = Field(default_factory=dict)
    description: str = ""
    deleted: bool = False               # RESTORE of a row that no longer exists
    steps: list["UndoDescriptor"] = Field(default_factory=list)

    @classmethod
    def composite(cls, steps: list["UndoDescriptor"]) -> "UndoDescriptor":
        return cls(
            kind=UndoKind.COMPOSITE,
            steps=steps,
            description=f"{len(steps)} actions",
        )


# ─────────────────────────────────────────────────────────────────────────────
# Runtime request / result types
# ─────────────────────────────────────────────────────────────────────────────


class ActionRequest(BaseModel):
    """
    A requested domain mutation or query.

    `kind` is kept as a plain string so a kind outside the contract can
    still reach the bus and fail closed there.
    """
    kind: str
    payload: dict[str, Any] = Field(default_factory=dict)
    ref_id: Optional[str] = None

    @property
    def action_kind(self) -> Optional[ActionKind]:
        return ActionKind.parse(self.kind)

    def label(self) -> str:
        """Short human label for progress lines."""
        name = self.payload.get("title") or self.payload.get("name")
        return f"{self.kind}: {name}" if name else self.kind


class ActionResult(BaseModel):
    """The outcome of one ActionRequest."""
    kind: str
    success: bool
    data: Any = None
    message: Optional[str] = None
    error: Optional[str] = None
    undo: Optional[UndoDescriptor] = None
    navigate: Optional[str] = None
    skipped: bool = False
    duration_ms: float = 0.0

    @classmethod
    def ok(
        cls,
        kind: str,
        message: str,
        data: Any = None,
        undo: Optional[UndoDescriptor] = None,
        navigate: Optional[str] = None,
    ) -> "ActionResult":
        return cls(kind=kind, success=True, message=message, data=data,
                   undo=undo, navigate=navigate)

    @classmethod
    def fail(cls, kind: str, error: str) -> "ActionResult":
        return cls(kind=kind, success=False, error=error)

    @classmethod
    def skip(cls, kind: str, reason: str = "Not executed") -> "ActionResult":
        return cls(kind=kind, success=False, skipped=True, error=reason)

    def observation(self) -> str:
        """Stringified outcome fed back to the engine in the ReAct loop."""
        if self.success:
            body = self.data if self.data is not None else self.message
            return f"Success: {json.dumps(body, default=str)}"
        return f"Error: {self.error or 'unknown error'}"
