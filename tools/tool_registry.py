"""
tools/tool_registry.py — Tool Contract + Action Registry

The Tool Contract is the closed, versioned vocabulary shared by prompt
construction and response interpretation:

  - CAPABILITIES       : the functions the reasoning engine may call
  - PAYLOAD_SCHEMAS    : one JSON schema per ActionKind
  - CAPABILITY_OUTCOMES: how the interpreter maps each capability call
                          onto an outcome (checked against the two tables
                          above at import time)

Bump CONTRACT_VERSION whenever any of the three tables changes.

The ToolRegistry maps each ActionKind to its async handler at runtime.

Usage:
    registry = ToolRegistry()

    @registry.register(ActionKind.CREATE_TASK)
    async def create_task(request: ActionRequest) -> ActionResult:
        ...

    handler = registry.get_handler("CREATE_TASK")
    schema = registry.get_schema("CREATE_TASK")
"""

from __future__ import annotations

import functools
from typing import Any, Callable, NamedTuple, Optional

from brain.types import ToolSchema
from exceptions import UnknownActionKindError
from observability.logger import get_logger
from tools.types import (
    ActionKind,
    CapabilitySchema,
    EntityKind,
    Priority,
    ProjectStatus,
    TaskStatus,
)

log = get_logger(__name__)

CONTRACT_VERSION = "2.1"


# ─────────────────────────────────────────────────────────────────────────────
# Field fragments
# ─────────────────────────────────────────────────────────────────────────────

_PRIORITIES = [p.value for p in Priority]
_TASK_STATUSES = [s.value for s in TaskStatus]
_PROJECT_STATUSES = [s.value for s in ProjectStatus]
_QUERY_TABLES = ["projects", "tasks", "contractors"]

_TASK_FIELDS: dict[str, Any] = {
    "title": {"type": "string", "description": "Short task title"},
    "description": {"type": "string"},
    "dueDate": {"type": "string", "description": "Start as ISO 8601 with offset"},
    "endTime": {"type": "string", "description": "End as ISO 8601 with offset"},
    "priority": {"type": "string", "enum": _PRIORITIES},
    "status": {"type": "string", "enum": _TASK_STATUSES},
    "projectId": {"type": "string"},
    "assigneeId": {"type": "string"},
}

_PROJECT_FIELDS: dict[str, Any] = {
    "name": {"type": "string", "description": "Client / project name"},
    "status": {"type": "string", "enum": _PROJECT_STATUSES},
    "monthlyRevenue": {"type": "number"},
    "industry": {"type": "string"},
    "email": {"type": "string"},
    "notes": {"type": "string"},
}

_QUERY_FIELDS: dict[str, Any] = {
    "table": {"type": "string", "enum": _QUERY_TABLES},
    "filter": {
        "type": "object",
        "properties": {
            "status": {"type": "string"},
            "overdue": {"type": "boolean"},
        },
    },
    "limit": {"type": "integer"},
}

_PORTAL_FIELDS: dict[str, Any] = {
    "projectId": {"type": "string"},
    "content": {"type": "string"},
}


def _object(properties: dict[str, Any], required: Optional[list[str]] = None) -> dict[str, Any]:
    return {"type": "object", "properties": dict(properties), "required": required or []}


# ─────────────────────────────────────────────────────────────────────────────
# Payload schemas (one per action kind)
# ─────────────────────────────────────────────────────────────────────────────

PAYLOAD_SCHEMAS: dict[ActionKind, dict[str, Any]] = {
    ActionKind.CREATE_TASK: _object(_TASK_FIELDS, ["title"]),
    ActionKind.UPDATE_TASK: _object(_TASK_FIELDS),
    ActionKind.DELETE_TASK: _object({}),
    ActionKind.CREATE_PROJECT: _object(_PROJECT_FIELDS, ["name"]),
    ActionKind.UPDATE_PROJECT: _object(_PROJECT_FIELDS),
    ActionKind.DELETE_PROJECT: _object({}),
    ActionKind.QUERY_DATABASE: _object(_QUERY_FIELDS, ["table"]),
    ActionKind.SEND_PORTAL_MESSAGE: _object(_PORTAL_FIELDS, ["projectId", "content"]),
    ActionKind.OPEN_PROJECT: _object({}),
    ActionKind.OPEN_TASK: _object({}),
}


# ─────────────────────────────────────────────────────────────────────────────
# Capabilities
# ─────────────────────────────────────────────────────────────────────────────

_MANAGE_OPS = ["CREATE", "UPDATE", "DELETE"]
_ALL_KINDS = [k.value for k in ActionKind]

# Flat argument set accepted wherever a capability names an arbitrary action
# (decision options, reason_step); shape_payload() folds it into the kind's payload.
_FLAT_ACTION_FIELDS: dict[str, Any] = {
    "action": {"type": "string", "enum": _ALL_KINDS},
    "id": {"type": "string", "description": "Target record id (UPDATE/DELETE/OPEN)"},
    **{k: v for k, v in _TASK_FIELDS.items() if k != "status"},
    **{k: v for k, v in _PROJECT_FIELDS.items() if k != "status"},
    "status": {"type": "string", "description": "Task, project or filter status"},
    "table": {"type": "string", "enum": _QUERY_TABLES},
    "overdue": {"type": "boolean"},
    "limit": {"type": "integer"},
    "content": {"type": "string"},
}


def _manage_schema(fields: dict[str, Any], noun: str) -> dict[str, Any]:
    item = _object(
        {
            "action": {"type": "string", "enum": _MANAGE_OPS},
            "id": {"type": "string", "description": f"{noun} id, required for UPDATE and DELETE"},
            **fields,
        },
        ["action"],
    )
    return _object(
        {
            "actions": {"type": "array", "items": item},
            "summary": {"type": "string", "description": "Confirmation shown to the user"},
        },
        ["actions", "summary"],
    )


CAPABILITIES: dict[str, CapabilitySchema] = {
    c.name: c
    for c in [
        CapabilitySchema(
            name="manage_tasks",
            description=(
                "Create, update or delete one or more tasks. Emit one item per "
                "task: 'Monday to Friday' means five separate CREATE items."
            ),
            parameters=_manage_schema(_TASK_FIELDS, "Task"),
        ),
        CapabilitySchema(
            name="manage_projects",
            description="Create, update or delete one or more client/project records.",
            parameters=_manage_schema(_PROJECT_FIELDS, "Project"),
        ),
        CapabilitySchema(
            name="query_database",
            description="Read records from a table before acting on them.",
            parameters=_object(
                {**_QUERY_FIELDS, "message": {"type": "string"}}, ["table"]
            ),
        ),
        CapabilitySchema(
            name="send_portal_message",
            description="Post a message to a client's portal.",
            parameters=_object(
                {**_PORTAL_FIELDS, "message": {"type": "string"}},
                ["projectId", "content"],
            ),
        ),
        CapabilitySchema(
            name="open_record",
            description="Open a project or task in the interface.",
            parameters=_object(
                {
                    "entity": {"type": "string", "enum": ["project", "task"]},
                    "id": {"type": "string"},
                    "message": {"type": "string"},
                },
                ["entity", "id"],
            ),
        ),
        CapabilitySchema(
            name="offer_decision",
            description=(
                "The request is ambiguous: offer the user a few options. "
                "Nothing is executed until the user picks one."
            ),
            parameters=_object(
                {
                    "message": {"type": "string"},
                    "options": {
                        "type": "array",
                        "items": _object(
                            {"label": {"type": "string"}, **_FLAT_ACTION_FIELDS},
                            ["label", "action"],
                        ),
                    },
                },
                ["message", "options"],
            ),
        ),
        CapabilitySchema(
            name="ask_question",
            description="Required information is missing; ask the user for it.",
            parameters=_object(
                {"message": {"type": "string"}, "context": {"type": "string"}},
                ["message"],
            ),
        ),
        CapabilitySchema(
            name="chat_response",
            description="Plain conversational reply, no action.",
            parameters=_object({"message": {"type": "string"}}, ["message"]),
        ),
        CapabilitySchema(
            name="reason_step",
            description=(
                "Think about the next step of a multi-step goal. Set 'action' to "
                "run one action and observe its result; omit it to keep thinking."
            ),
            parameters=_object(
                {"thought": {"type": "string"}, **_FLAT_ACTION_FIELDS},
                ["thought"],
            ),
            react_only=True,
        ),
    ]
}


# ─────────────────────────────────────────────────────────────────────────────
# Capability → outcome mapping (read by agent/interpreter.py)
# ─────────────────────────────────────────────────────────────────────────────


class OutcomeMapping(NamedTuple):
    outcome: str                    # manage | action | navigate | decision | question | reply | reasoning
    target: Optional[str] = None    # EntityKind for manage, ActionKind for action


CAPABILITY_OUTCOMES: dict[str, OutcomeMapping] = {
    "manage_tasks": OutcomeMapping("manage", EntityKind.TASK.value),
    "manage_projects": OutcomeMapping("manage", EntityKind.PROJECT.value),
    "query_database": OutcomeMapping("action", ActionKind.QUERY_DATABASE.value),
    "send_portal_message": OutcomeMapping("action", ActionKind.SEND_PORTAL_MESSAGE.value),
    "open_record": OutcomeMapping("navigate"),
    "offer_decision": OutcomeMapping("decision"),
    "ask_question": OutcomeMapping("question"),
    "chat_response": OutcomeMapping("reply"),
    "reason_step": OutcomeMapping("reasoning"),
}


def manage_kind(op: str, entity: str) -> Optional[ActionKind]:
    """CREATE + task → CREATE_TASK. None when the pair is not in the contract."""
    return ActionKind.parse(f"{op.upper()}_{entity.upper()}")


def shape_payload(kind: ActionKind, args: dict[str, Any]) -> dict[str, Any]:
    """
    Fold a flat argument dict into the payload shape of `kind`, keeping only
    the fields that kind's schema declares.
    """
    props = PAYLOAD_SCHEMAS[kind]["properties"]
    payload = {k: v for k, v in args.items() if k in props and v is not None}
    # Some providers send every JSON number as a float
    for k, v in payload.items():
        if props[k].get("type") == "integer" and isinstance(v, float) and v.is_integer():
            payload[k] = int(v)
    if kind == ActionKind.QUERY_DATABASE and "filter" not in payload:
        flt = {k: args[k] for k in ("status", "overdue") if args.get(k) is not None}
        if flt:
            payload["filter"] = flt
    return payload


def llm_tool_schemas(include_react: bool = False) -> list[ToolSchema]:
    """Capabilities in the brain's provider-agnostic tool format."""
    return [
        ToolSchema(**c.to_llm_schema())
        for c in CAPABILITIES.values()
        if include_react or not c.react_only
    ]


def _check_contract() -> None:
    problems: list[str] = []
    if set(CAPABILITIES) != set(CAPABILITY_OUTCOMES):
        problems.append(
            f"capabilities without mapping or mapping without capability: "
            f"{sorted(set(CAPABILITIES) ^ set(CAPABILITY_OUTCOMES))}"
        )
    missing = [k.value for k in ActionKind if k not in PAYLOAD_SCHEMAS]
    if missing:
        problems.append(f"action kinds without payload schema: {missing}")
    for name, mapping in CAPABILITY_OUTCOMES.items():
        if mapping.outcome == "action" and ActionKind.parse(mapping.target or "") is None:
            problems.append(f"{name} maps to unknown action kind {mapping.target}")
        if mapping.outcome == "manage" and name in CAPABILITIES:
            ops = CAPABILITIES[name].parameters["properties"]["actions"]["items"][
                "properties"]["action"]["enum"]
            for op in ops:
                if manage_kind(op, mapping.target or "") is None:
                    problems.append(f"{name} op {op} has no action kind")
    if problems:
        raise RuntimeError(f"Tool contract v{CONTRACT_VERSION} is inconsistent: {problems}")


_check_contract()


# ─────────────────────────────────────────────────────────────────────────────
# Runtime handler registry
# ─────────────────────────────────────────────────────────────────────────────


class ToolRegistry:
    """
    Maps action kinds to their payload schemas and async handlers.

    A handler takes an ActionRequest and returns an ActionResult. Only kinds
    that exist in the Tool Contract can be registered.
    """

    def __init__(self):
        self._handlers: dict[str, Callable] = {}

    def register(self, kind: ActionKind | str) -> Callable:
        """Decorator form of register_tool()."""
        def decorator(fn: Callable) -> Callable:
            self.register_tool(kind, fn)

            @functools.wraps(fn)
            async def wrapper(*args, **kwargs):
                return await fn(*args, **kwargs)

            return wrapper

        return decorator

    def register_tool(self, kind: ActionKind | str, handler: Callable) -> None:
        """Programmatic registration (alternative to decorator)."""
        parsed = ActionKind.parse(kind.value if isinstance(kind, ActionKind) else kind)
        if parsed is None:
            raise UnknownActionKindError(
                str(kind), f"'{kind}' is not an action kind in contract v{CONTRACT_VERSION}"
            )
        self._handlers[parsed.value] = handler
        log.debug("tool.registered", kind=parsed.value)

    def get_schema(self, kind: str) -> Optional[dict[str, Any]]:
        """Return the payload schema for a kind, or None if the kind is unknown."""
        parsed = ActionKind.parse(kind)
        return PAYLOAD_SCHEMAS.get(parsed) if parsed else None

    def get_handler(self, kind: str) -> Optional[Callable]:
        return self._handlers.get(kind)

    def is_registered(self, kind: str) -> bool:
        return kind in self._handlers

    def list_names(self) -> list[str]:
        return list(self._handlers.keys())

    def __len__(self) -> int:
        return len(self._handlers)

    def __repr__(self) -> str:
        return f"<ToolRegistry v{CONTRACT_VERSION} kinds={list(self._handlers.keys())}>"
