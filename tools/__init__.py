"""
tools/ — OpsDesk Tool Contract and action dispatch

Usage:
    from tools import setup_tools
    registry, bus = setup_tools(store, timeout_seconds=30.0)
    result = await bus.dispatch(ActionRequest(kind="CREATE_TASK", payload={"title": "Gym"}))
"""

from __future__ import annotations

from tools.tool_bus import ToolBus
from tools.tool_registry import CONTRACT_VERSION, ToolRegistry, llm_tool_schemas
from tools.types import (
    ActionKind,
    ActionRequest,
    ActionResult,
    CapabilitySchema,
    EntityKind,
    UndoDescriptor,
    UndoKind,
)

__all__ = [
    "setup_tools",
    "CONTRACT_VERSION",
    "ToolBus",
    "ToolRegistry",
    "llm_tool_schemas",
    # Types
    "ActionKind",
    "ActionRequest",
    "ActionResult",
    "CapabilitySchema",
    "EntityKind",
    "UndoDescriptor",
    "UndoKind",
]


def setup_tools(store, timeout_seconds: float = 30.0) -> tuple[ToolRegistry, ToolBus]:
    """
    Build a registry with every action kind bound to `store` and the bus
    that dispatches through it.
    """
    from tools.domain_actions import register_domain_actions

    registry = ToolRegistry()
    register_domain_actions(registry, store)
    return registry, ToolBus(registry, timeout_seconds=timeout_seconds)
