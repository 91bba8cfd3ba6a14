"""
agent/interpreter.py — Response Interpreter

Turns one LLMResponse into exactly one Outcome:

    BatchOutcome     several actions + the engine's confirmation
    ActionOutcome    one action
    DecisionOutcome  options the user has to pick from; nothing runs yet
    QuestionOutcome  the engine needs more information
    ReplyOutcome     plain conversation
    ReasoningOutcome one ReAct step (only when react=True)

Tool calls are mapped through CAPABILITY_OUTCOMES; engines that answer in
JSON text ({"type": "ACTION" | "BATCH" | ...}) go through the same
validation. Anything that doesn't validate against the Tool Contract
degrades to a ReplyOutcome carrying the raw text.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from brain.types import LLMResponse, ToolCall
from exceptions import ActionValidationError
from observability.logger import get_logger
from tools.tool_bus import validate_args
from tools.tool_registry import (
    CAPABILITY_OUTCOMES,
    PAYLOAD_SCHEMAS,
    manage_kind,
    shape_payload,
)
from tools.types import ActionKind, ActionRequest

log = get_logger(__name__)

FALLBACK_REPLY = "Sorry, I didn't quite get that. Could you rephrase it?"

_JSON_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


# ─────────────────────────────────────────────────────────────────────────────
# Outcomes
# ─────────────────────────────────────────────────────────────────────────────


@dataclass
class BatchOutcome:
    actions: list[ActionRequest]
    summary: str = ""


@dataclass
class ActionOutcome:
    action: ActionRequest
    message: str = ""


@dataclass
class DecisionOption:
    label: str
    action: ActionRequest


@dataclass
class DecisionOutcome:
    message: str
    options: list[DecisionOption] = field(default_factory=list)


@dataclass
class QuestionOutcome:
    message: str
    context: str = ""


@dataclass
class ReplyOutcome:
    message: str


@dataclass
class ReasoningOutcome:
    thought: str
    next_action: Optional[ActionRequest] = None


Outcome = Union[
    BatchOutcome,
    ActionOutcome,
    DecisionOutcome,
    QuestionOutcome,
    ReplyOutcome,
    ReasoningOutcome,
]


# ─────────────────────────────────────────────────────────────────────────────
# Public API
# ─────────────────────────────────────────────────────────────────────────────


def interpret(response: LLMResponse, react: bool = False) -> Outcome:
    """
    Map an engine response onto an Outcome. Never raises.

    Args:
        response: normalised provider response.
        react:    accept reason_step / REASONING outcomes (ReAct loop only).
    """
    raw_text = (response.content or "").strip()
    try:
        if response.tool_calls:
            return _from_tool_calls(response.tool_calls, react)
        if raw_text:
            parsed = _parse_json_text(raw_text)
            if parsed is not None:
                return _from_json(parsed, react)
            return ReplyOutcome(raw_text)
    except (ActionValidationError, KeyError, TypeError, ValueError, AttributeError) as e:
        log.warning(
            "interpreter.malformed_output",
            error=str(e),
            error_type=type(e).__name__,
            tool_calls=[tc.name for tc in response.tool_calls],
        )
        return ReplyOutcome(raw_text or FALLBACK_REPLY)

    return ReplyOutcome(FALLBACK_REPLY)


# ─────────────────────────────────────────────────────────────────────────────
# Tool-call path
# ─────────────────────────────────────────────────────────────────────────────


def _from_tool_calls(calls: list[ToolCall], react: bool) -> Outcome:
    outcomes = [_from_call(call.name, call.arguments, react) for call in calls]
    if len(outcomes) == 1:
        return outcomes[0]

    # Several manage_* / action calls in one response → one batch
    if all(isinstance(o, (ActionOutcome, BatchOutcome)) for o in outcomes):
        actions: list[ActionRequest] = []
        summaries: list[str] = []
        for o in outcomes:
            if isinstance(o, BatchOutcome):
                actions.extend(o.actions)
                summaries.append(o.summary)
            else:
                actions.append(o.action)
                summaries.append(o.message)
        return BatchOutcome(actions=actions, summary=" ".join(s for s in summaries if s))

    log.debug("interpreter.extra_calls_ignored", calls=[c.name for c in calls])
    return outcomes[0]


def _from_call(name: str, args: dict[str, Any], react: bool) -> Outcome:
    mapping = CAPABILITY_OUTCOMES.get(name)
    if mapping is None:
        raise ActionValidationError(f"Engine called unknown capability '{name}'")

    if mapping.outcome == "manage":
        items = args.get("actions") or []
        if not isinstance(items, list) or not items:
            raise ActionValidationError(f"{name} called without actions")
        actions = [_manage_item(item, mapping.target or "") for item in items]
        summary = str(args.get("summary") or "")
        if len(actions) == 1:
            return ActionOutcome(action=actions[0], message=summary)
        return BatchOutcome(actions=actions, summary=summary)

    if mapping.outcome == "action":
        kind = ActionKind(mapping.target)
        action = _build_action(kind, shape_payload(kind, args), None)
        return ActionOutcome(action=action, message=str(args.get("message") or ""))

    if mapping.outcome == "navigate":
        entity = str(args["entity"]).lower()
        kind = ActionKind.OPEN_PROJECT if entity == "project" else ActionKind.OPEN_TASK
        action = _build_action(kind, {}, args.get("id"))
        return ActionOutcome(action=action, message=str(args.get("message") or ""))

    if mapping.outcome == "decision":
        options = [
            DecisionOption(label=str(opt["label"]), action=_flat_action(opt))
            for opt in args.get("options") or []
        ]
        if not options:
            raise ActionValidationError("offer_decision called without options")
        return DecisionOutcome(message=str(args.get("message") or ""), options=options)

    if mapping.outcome == "question":
        return QuestionOutcome(message=str(args["message"]), context=str(args.get("context") or ""))

    if mapping.outcome == "reply":
        return ReplyOutcome(message=str(args["message"]))

    if mapping.outcome == "reasoning":
        if not react:
            raise ActionValidationError("reason_step is only valid inside the ReAct loop")
        next_action = _flat_action(args) if args.get("action") else None
        return ReasoningOutcome(thought=str(args.get("thought") or ""), next_action=next_action)

    raise ActionValidationError(f"No interpretation for outcome '{mapping.outcome}'")


def _manage_item(item: dict[str, Any], entity: str) -> ActionRequest:
    kind = manage_kind(str(item.get("action", "")), entity)
    if kind is None:
        raise ActionValidationError(f"'{item.get('action')}' is not a valid {entity} action")
    return _build_action(kind, shape_payload(kind, item), item.get("id"))


def _flat_action(args: dict[str, Any]) -> ActionRequest:
    kind = ActionKind.parse(str(args.get("action", "")))
    if kind is None:
        raise ActionValidationError(f"'{args.get('action')}' is not an action kind")
    return _build_action(kind, shape_payload(kind, args), args.get("id"))


def _build_action(kind: ActionKind, payload: dict[str, Any], ref_id: Any) -> ActionRequest:
    """Validate against the contract and build the request."""
    ref = str(ref_id) if ref_id else None
    if kind.requires_ref and not ref:
        raise ActionValidationError(f"{kind.value} requires an id")
    error = validate_args(payload, PAYLOAD_SCHEMAS[kind])
    if error:
        raise ActionValidationError(f"{kind.value}: {error}")
    return ActionRequest(kind=kind.value, payload=payload, ref_id=ref)


# ─────────────────────────────────────────────────────────────────────────────
# JSON-text path
# ─────────────────────────────────────────────────────────────────────────────


def _parse_json_text(text: str) -> Optional[dict[str, Any]]:
    """Return the decoded object if `text` is a typed JSON outcome, else None."""
    fenced = _JSON_FENCE.match(text)
    if fenced:
        text = fenced.group(1)
    if not text.startswith("{"):
        return None
    try:
        obj = json.loads(text)
    except json.JSONDecodeError:
        return None
    if isinstance(obj, dict) and isinstance(obj.get("type"), str):
        return obj
    return None


def _from_json(obj: dict[str, Any], react: bool) -> Outcome:
    kind = obj["type"].upper()
    message = str(obj.get("message") or "")

    if kind == "CHAT":
        return ReplyOutcome(message or FALLBACK_REPLY)
    if kind == "QUESTION":
        return QuestionOutcome(message=message, context=str(obj.get("context") or ""))
    if kind == "ACTION":
        return ActionOutcome(action=_json_action(obj), message=message)
    if kind == "BATCH":
        actions = [_json_action(a) for a in obj.get("actions") or []]
        if not actions:
            raise ActionValidationError("BATCH without actions")
        return BatchOutcome(actions=actions, summary=str(obj.get("summary") or message))
    if kind == "DECISION":
        options = [
            DecisionOption(label=str(o["label"]), action=_json_action(o))
            for o in obj.get("options") or []
        ]
        if not options:
            raise ActionValidationError("DECISION without options")
        return DecisionOutcome(message=message, options=options)
    if kind == "REASONING" and react:
        nxt = obj.get("nextAction") or obj.get("next_action")
        return ReasoningOutcome(
            thought=str(obj.get("thought") or ""),
            next_action=_json_action(nxt) if nxt else None,
        )
    raise ActionValidationError(f"Unsupported outcome type '{obj['type']}'")


def _json_action(obj: dict[str, Any]) -> ActionRequest:
    """
    {"action": "CREATE_TASK", "payload": {...}} → ActionRequest.

    A kind outside the contract is passed through untouched so the
    execution engine reports it as a failed action.
    """
    name = str(obj.get("action") or obj.get("kind") or "")
    payload = dict(obj.get("payload") or {})
    ref_id = obj.get("id") or payload.pop("id", None)
    kind = ActionKind.parse(name)
    if kind is None:
        if not name:
            raise ActionValidationError("action without a kind")
        return ActionRequest(kind=name, payload=payload, ref_id=str(ref_id) if ref_id else None)
    return _build_action(kind, shape_payload(kind, payload), ref_id)
