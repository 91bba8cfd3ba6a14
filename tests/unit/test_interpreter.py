"""
tests/unit/test_interpreter.py — Response Interpreter Unit Tests

Every engine response shape (tool calls and typed JSON text) maps to
exactly one Outcome; anything malformed degrades to a reply.

Run with:
    pytest tests/unit/test_interpreter.py -v
"""

from __future__ import annotations

import json

import pytest

from agent.interpreter import (
    FALLBACK_REPLY,
    ActionOutcome,
    BatchOutcome,
    DecisionOutcome,
    QuestionOutcome,
    ReasoningOutcome,
    ReplyOutcome,
    interpret,
)
from brain.types import LLMResponse, ToolCall


def call(name: str, **arguments) -> LLMResponse:
    return LLMResponse(tool_calls=[ToolCall(id="call_1", name=name, arguments=arguments)])


def text(content: str) -> LLMResponse:
    return LLMResponse(content=content)


# ─────────────────────────────────────────────────────────────────────────────
# Tool calls
# ─────────────────────────────────────────────────────────────────────────────


class TestManageCalls:
    def test_single_item_is_an_action(self):
        outcome = interpret(call(
            "manage_tasks",
            actions=[{"action": "CREATE", "title": "Gym", "dueDate": "2026-10-15T07:00:00-03:00"}],
            summary="Added gym for tomorrow.",
        ))
        assert isinstance(outcome, ActionOutcome)
        assert outcome.action.kind == "CREATE_TASK"
        assert outcome.action.payload == {"title": "Gym", "dueDate": "2026-10-15T07:00:00-03:00"}
        assert outcome.message == "Added gym for tomorrow."

    def test_several_items_are_a_batch(self):
        outcome = interpret(call(
            "manage_tasks",
            actions=[
                {"action": "CREATE", "title": "Work"},
                {"action": "UPDATE", "id": "t1", "status": "DONE"},
                {"action": "DELETE", "id": "t2"},
            ],
            summary="Done.",
        ))
        assert isinstance(outcome, BatchOutcome)
        assert [a.kind for a in outcome.actions] == ["CREATE_TASK", "UPDATE_TASK", "DELETE_TASK"]
        assert outcome.actions[1].ref_id == "t1"
        assert outcome.actions[1].payload == {"status": "DONE"}
        assert outcome.summary == "Done."

    def test_manage_projects(self):
        outcome = interpret(call(
            "manage_projects",
            actions=[{"action": "CREATE", "name": "Initech", "monthlyRevenue": 1500}],
            summary="Created Initech.",
        ))
        assert outcome.action.kind == "CREATE_PROJECT"
        assert outcome.action.payload["monthlyRevenue"] == 1500

    def test_update_without_id_degrades_to_reply(self):
        outcome = interpret(call("manage_tasks", actions=[{"action": "UPDATE", "title": "x"}], summary=""))
        assert isinstance(outcome, ReplyOutcome)
        assert outcome.message == FALLBACK_REPLY

    def test_invalid_enum_degrades_to_reply_with_text(self):
        response = LLMResponse(
            content="Let me add that.",
            tool_calls=[ToolCall(id="c", name="manage_tasks", arguments={
                "actions": [{"action": "CREATE", "title": "x", "priority": "URGENT"}],
                "summary": "",
            })],
        )
        outcome = interpret(response)
        assert isinstance(outcome, ReplyOutcome)
        assert outcome.message == "Let me add that."

    def test_unknown_capability_degrades_to_reply(self):
        assert isinstance(interpret(call("launch_rocket", target="moon")), ReplyOutcome)

    def test_calls_are_merged_into_one_batch(self):
        response = LLMResponse(tool_calls=[
            ToolCall(id="a", name="manage_tasks",
                     arguments={"actions": [{"action": "CREATE", "title": "A"}], "summary": "A added."}),
            ToolCall(id="b", name="manage_projects",
                     arguments={"actions": [{"action": "UPDATE", "id": "p1", "status": "ACTIVE"}],
                                "summary": "Acme active."}),
        ])
        outcome = interpret(response)
        assert isinstance(outcome, BatchOutcome)
        assert [a.kind for a in outcome.actions] == ["CREATE_TASK", "UPDATE_PROJECT"]
        assert outcome.summary == "A added. Acme active."


class TestOtherCalls:
    def test_query_database(self):
        outcome = interpret(call("query_database", table="tasks", status="TODO", limit=5.0))
        assert isinstance(outcome, ActionOutcome)
        assert outcome.action.kind == "QUERY_DATABASE"
        assert outcome.action.payload == {"table": "tasks", "filter": {"status": "TODO"}, "limit": 5}

    def test_send_portal_message(self):
        outcome = interpret(call("send_portal_message", projectId="p1", content="Hi", message="Sent."))
        assert outcome.action.kind == "SEND_PORTAL_MESSAGE"
        assert outcome.action.payload == {"projectId": "p1", "content": "Hi"}
        assert outcome.message == "Sent."

    def test_open_record(self):
        outcome = interpret(call("open_record", entity="project", id="p1"))
        assert outcome.action.kind == "OPEN_PROJECT"
        assert outcome.action.ref_id == "p1"

        outcome = interpret(call("open_record", entity="task", id="t1"))
        assert outcome.action.kind == "OPEN_TASK"

    def test_offer_decision(self):
        outcome = interpret(call(
            "offer_decision",
            message="Which Acme?",
            options=[
                {"label": "Acme Corp", "action": "OPEN_PROJECT", "id": "p1"},
                {"label": "Acme Labs", "action": "OPEN_PROJECT", "id": "p2"},
            ],
        ))
        assert isinstance(outcome, DecisionOutcome)
        assert outcome.message == "Which Acme?"
        assert [o.label for o in outcome.options] == ["Acme Corp", "Acme Labs"]
        assert outcome.options[1].action.ref_id == "p2"

    def test_decision_without_options_degrades(self):
        assert isinstance(interpret(call("offer_decision", message="?", options=[])), ReplyOutcome)

    def test_ask_question(self):
        outcome = interpret(call("ask_question", message="For which client?", context="portal"))
        assert isinstance(outcome, QuestionOutcome)
        assert outcome.message == "For which client?"
        assert outcome.context == "portal"

    def test_chat_response(self):
        outcome = interpret(call("chat_response", message="Hello!"))
        assert outcome == ReplyOutcome("Hello!")


class TestReasoning:
    def test_reason_step_outside_react_degrades(self):
        assert isinstance(interpret(call("reason_step", thought="hmm")), ReplyOutcome)

    def test_reason_step_with_action(self):
        outcome = interpret(
            call("reason_step", thought="Find open tasks first", action="QUERY_DATABASE",
                 table="tasks", status="TODO"),
            react=True,
        )
        assert isinstance(outcome, ReasoningOutcome)
        assert outcome.thought == "Find open tasks first"
        assert outcome.next_action.kind == "QUERY_DATABASE"
        assert outcome.next_action.payload == {"table": "tasks", "filter": {"status": "TODO"}}

    def test_reason_step_without_action(self):
        outcome = interpret(call("reason_step", thought="Thinking"), react=True)
        assert outcome == ReasoningOutcome(thought="Thinking", next_action=None)


# ─────────────────────────────────────────────────────────────────────────────
# JSON text
# ─────────────────────────────────────────────────────────────────────────────


class TestJsonText:
    def test_plain_text_is_a_reply(self):
        assert interpret(text("Sure, what time?")) == ReplyOutcome("Sure, what time?")

    def test_empty_response(self):
        assert interpret(LLMResponse()) == ReplyOutcome(FALLBACK_REPLY)

    def test_action(self):
        body = {"type": "ACTION", "action": "CREATE_TASK", "payload": {"title": "Gym"}, "message": "ok"}
        outcome = interpret(text(json.dumps(body)))
        assert isinstance(outcome, ActionOutcome)
        assert outcome.action.payload == {"title": "Gym"}

    def test_fenced_batch_with_unknown_kind_passes_through(self):
        body = {
            "type": "BATCH",
            "summary": "Two things.",
            "actions": [
                {"action": "CREATE_TASK", "payload": {"title": "A"}},
                {"action": "LAUNCH_ROCKET", "payload": {"target": "moon"}},
            ],
        }
        outcome = interpret(text(f"```json\n{json.dumps(body)}\n```"))
        assert isinstance(outcome, BatchOutcome)
        assert [a.kind for a in outcome.actions] == ["CREATE_TASK", "LAUNCH_ROCKET"]
        assert outcome.actions[1].action_kind is None

    def test_ref_id_inside_payload(self):
        body = {"type": "ACTION", "action": "DELETE_TASK", "payload": {"id": "t9"}}
        outcome = interpret(text(json.dumps(body)))
        assert outcome.action.ref_id == "t9"
        assert outcome.action.payload == {}

    def test_decision(self):
        body = {
            "type": "DECISION",
            "message": "Which one?",
            "options": [{"label": "Open Acme", "action": "OPEN_PROJECT", "id": "p1"}],
        }
        outcome = interpret(text(json.dumps(body)))
        assert isinstance(outcome, DecisionOutcome)
        assert outcome.options[0].action.ref_id == "p1"

    def test_question_and_chat(self):
        assert isinstance(interpret(text('{"type": "QUESTION", "message": "When?"}')), QuestionOutcome)
        assert interpret(text('{"type": "CHAT", "message": "Hi"}')) == ReplyOutcome("Hi")

    def test_reasoning_only_in_react(self):
        raw = '{"type": "REASONING", "thought": "step", "nextAction": {"action": "OPEN_TASK", "id": "t1"}}'
        assert isinstance(interpret(text(raw)), ReplyOutcome)
        outcome = interpret(text(raw), react=True)
        assert outcome.next_action.kind == "OPEN_TASK"

    def test_unknown_type_returns_raw_text(self):
        raw = '{"type": "DANCE"}'
        assert interpret(text(raw)) == ReplyOutcome(raw)

    def test_json_without_type_is_just_text(self):
        raw = '{"hello": "world"}'
        assert interpret(text(raw)) == ReplyOutcome(raw)
