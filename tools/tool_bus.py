"""
tools/tool_bus.py — Action Bus

The single dispatcher between the execution engine and the domain handlers.
Every ActionRequest is routed through here.

Flow:
  ActionRequest → ToolBus.dispatch()
    → Contract check (is the kind in the Tool Contract?)
    → Handler lookup
    → Reference id check (UPDATE / DELETE / OPEN)
    → Payload validation (JSON schema: required, types, enums)
    → Handler execution (async, with timeout)
    → ActionResult (success or error)
"""

from __future__ import annotations

import asyncio
import time
from typing import Optional

from observability.logger import get_logger
from tools.tool_registry import CONTRACT_VERSION, ToolRegistry
from tools.types import ActionKind, ActionRequest, ActionResult

log = get_logger(__name__)

# Default action execution timeout
DEFAULT_TIMEOUT_SECONDS = 30.0


class ToolBus:
    """
    Routes action requests to their handlers.

    Usage:
        bus = ToolBus(registry)
        result = await bus.dispatch(ActionRequest(kind="CREATE_TASK", payload={...}))
    """

    def __init__(
        self,
        registry: ToolRegistry,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self.registry = registry
        self.timeout_seconds = timeout_seconds

    async def dispatch(self, request: ActionRequest) -> ActionResult:
        """
        Dispatch one action through the full pipeline.

        Returns:
            ActionResult (never raises, errors are captured in the result).
            Task cancellation is the one thing that still propagates.
        """
        start_ms = time.monotonic() * 1000
        kind = request.kind

        log.info("tool_bus.dispatch", kind=kind, ref_id=request.ref_id)

        # ── Step 1: Contract check ────────────────────────────────────────────
        action_kind = ActionKind.parse(kind)
        if action_kind is None:
            log.warning("tool_bus.unknown_kind", kind=kind, contract=CONTRACT_VERSION)
            return ActionResult.fail(kind, f"Unknown action: {kind}")

        handler = self.registry.get_handler(kind)
        if handler is None:
            return ActionResult.fail(kind, f"Action '{kind}' has no handler registered.")

        # ── Step 2: Reference id + payload validation ─────────────────────────
        if action_kind.requires_ref and not request.ref_id:
            return ActionResult.fail(kind, f"{kind} requires the id of the target record")

        validation_error = validate_args(request.payload, self.registry.get_schema(kind) or {})
        if validation_error:
            return ActionResult.fail(kind, f"Invalid parameters: {validation_error}")

        # ── Step 3: Execute with timeout ──────────────────────────────────────
        try:
            result: ActionResult = await asyncio.wait_for(
                handler(request),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            log.error(
                "tool_bus.timeout",
                kind=kind,
                timeout_seconds=self.timeout_seconds,
            )
            return ActionResult.fail(kind, f"'{kind}' timed out after {self.timeout_seconds}s")
        except Exception as e:
            duration_ms = time.monotonic() * 1000 - start_ms
            log.error(
                "tool_bus.execution_error",
                kind=kind,
                error=str(e),
                duration_ms=duration_ms,
                exc_info=True,
            )
            return ActionResult.fail(kind, str(e) or type(e).__name__)

        duration_ms = time.monotonic() * 1000 - start_ms
        result.duration_ms = duration_ms
        log.info(
            "tool_bus.done",
            kind=kind,
            success=result.success,
            duration_ms=round(duration_ms, 1),
            undoable=result.undo is not None,
        )
        return result


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

_JSON_TYPE_MAP: dict[str, type | tuple] = {
    "string":  str,
    "integer": int,
    "number":  (int, float),
    "boolean": bool,
    "array":   list,
    "object":  dict,
}


def validate_args(arguments: dict, schema: dict) -> Optional[str]:
    """
    Validate an action payload against its JSON schema.
    Returns an error string if invalid, None if valid.

    Checks:
      1. All required fields are present and non-empty.
      2. Provided values match the declared JSON Schema types.
      3. Values of enumerated fields are one of the allowed values.
      4. Nested objects are checked against their own properties.
    """
    required = schema.get("required", [])
    properties = schema.get("properties", {})

    for field in required:
        if arguments.get(field) in (None, ""):
            return f"Missing required field: '{field}'"

    for field, value in arguments.items():
        prop_schema = properties.get(field)
        if prop_schema is None or value is None:
            continue  # unknown fields are allowed
        json_type = prop_schema.get("type")
        expected = _JSON_TYPE_MAP.get(json_type or "")
        if expected is None:
            continue
        # bool is a subclass of int in Python, so check bool explicitly first
        if json_type in ("integer", "number") and isinstance(value, bool):
            return f"Field '{field}': expected {json_type}, got boolean"
        if not isinstance(value, expected):
            actual = type(value).__name__
            return f"Field '{field}': expected {json_type}, got {actual}"
        allowed = prop_schema.get("enum")
        if allowed and value not in allowed:
            return f"Field '{field}': '{value}' is not one of {allowed}"
        if json_type == "object" and "properties" in prop_schema:
            nested = validate_args(value, prop_schema)
            if nested:
                return f"{field}.{nested}"

    return None
