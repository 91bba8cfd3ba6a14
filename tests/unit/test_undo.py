"""
tests/unit/test_undo.py — Undo Ledger Unit Tests

Execute → record → undo round trips against a real store and chat log:
created rows removed, updates restored, deleted rows recreated under their
original id, composites reversed last step first, and at most one undo per
message even under concurrent requests.

Run with:
    pytest tests/unit/test_undo.py -v
"""

from __future__ import annotations

import asyncio

import pytest

from agent.executor import Executor
from agent.undo import UndoLedger
from exceptions import AlreadyUndoneError, EntityNotFoundError, UndoNotAvailableError
from store.chat_log import InMemoryChatLog
from store.domain_store import InMemoryDomainStore
from tools import setup_tools
from tools.types import ActionRequest, EntityKind, UndoDescriptor, UndoKind


# ─────────────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def store():
    return InMemoryDomainStore({
        EntityKind.TASK: [{"id": "t1", "title": "Send invoice", "status": "TODO", "priority": "LOW"}],
        EntityKind.PROJECT: [{"id": "p1", "name": "Acme", "status": "ACTIVE"}],
    })


@pytest.fixture
def chat_log():
    return InMemoryChatLog()


@pytest.fixture
def executor(store):
    _, bus = setup_tools(store)
    return Executor(bus)


@pytest.fixture
def ledger(chat_log, store):
    return UndoLedger(chat_log, store)


async def run_and_record(executor, ledger, chat_log, actions) -> str:
    """Execute `actions`, write the assistant message and record its undo."""
    session = await chat_log.create_session("test")
    report = await executor.execute(actions)
    message = await chat_log.append_message(session.id, "assistant", report.summary)
    if report.undo is not None:
        await ledger.record_undo(message.id, report.undo, action_type=report.action_type)
    return message.id


def create(title: str) -> ActionRequest:
    return ActionRequest(kind="CREATE_TASK", payload={"title": title})


# ─────────────────────────────────────────────────────────────────────────────
# Round trips
# ─────────────────────────────────────────────────────────────────────────────


class TestUndoRoundTrip:
    @pytest.mark.asyncio
    async def test_batch_of_creates(self, executor, ledger, chat_log, store):
        before = await store.list(EntityKind.TASK)
        message_id = await run_and_record(executor, ledger, chat_log, [create("A"), create("B"), create("C")])
        assert len(await store.list(EntityKind.TASK)) == 4

        receipt = await ledger.undo(message_id)

        assert await store.list(EntityKind.TASK) == before
        assert receipt.text == "Undone: 3 actions."
        assert receipt.reply.role == "assistant"

    @pytest.mark.asyncio
    async def test_second_undo_is_rejected(self, executor, ledger, chat_log, store):
        message_id = await run_and_record(executor, ledger, chat_log, [create("A")])
        await ledger.undo(message_id)

        with pytest.raises(AlreadyUndoneError):
            await ledger.undo(message_id)
        assert (await chat_log.get_message(message_id)).is_undone

    @pytest.mark.asyncio
    async def test_update_is_restored(self, executor, ledger, chat_log, store):
        original = await store.get(EntityKind.TASK, "t1")
        message_id = await run_and_record(executor, ledger, chat_log, [
            ActionRequest(kind="UPDATE_TASK", ref_id="t1",
                          payload={"status": "DONE", "priority": "HIGH", "assigneeId": "c1"}),
        ])
        assert (await store.get(EntityKind.TASK, "t1"))["status"] == "DONE"

        await ledger.undo(message_id)

        restored = await store.get(EntityKind.TASK, "t1")
        assert restored == original
        assert "assigneeId" not in restored

    @pytest.mark.asyncio
    async def test_store_matches_pre_action_state(self, executor, ledger, chat_log, store):
        before = {
            kind: await store.list(kind) for kind in (EntityKind.TASK, EntityKind.PROJECT)
        }
        message_id = await run_and_record(executor, ledger, chat_log, [
            ActionRequest(kind="UPDATE_TASK", ref_id="t1", payload={"assigneeId": "c1"}),
            ActionRequest(kind="UPDATE_PROJECT", ref_id="p1", payload={"status": "PAUSED", "notes": "hold"}),
        ])

        await ledger.undo(message_id)

        after = {
            kind: await store.list(kind) for kind in (EntityKind.TASK, EntityKind.PROJECT)
        }
        assert after == before

    @pytest.mark.asyncio
    async def test_delete_is_recreated_with_same_id(self, executor, ledger, chat_log, store):
        original = await store.get(EntityKind.PROJECT, "p1")
        message_id = await run_and_record(executor, ledger, chat_log, [
            ActionRequest(kind="DELETE_PROJECT", ref_id="p1"),
        ])
        with pytest.raises(EntityNotFoundError):
            await store.get(EntityKind.PROJECT, "p1")

        await ledger.undo(message_id)
        assert await store.get(EntityKind.PROJECT, "p1") == original

    @pytest.mark.asyncio
    async def test_composite_is_reversed_last_step_first(self, executor, ledger, chat_log, store):
        created = (await executor.execute([create("Draft")])).results[0]
        task_id = created.data["id"]
        updated = (await executor.execute([
            ActionRequest(kind="UPDATE_TASK", ref_id=task_id, payload={"title": "Final"}),
        ])).results[0]

        session = await chat_log.create_session("react")
        message = await chat_log.append_message(session.id, "assistant", "Draft written and renamed")
        await ledger.record_undo(
            message.id, UndoDescriptor.composite([created.undo, updated.undo]), action_type="REACT"
        )

        await ledger.undo(message.id)

        ids = [t["id"] for t in await store.list(EntityKind.TASK)]
        assert ids == ["t1"]


# ─────────────────────────────────────────────────────────────────────────────
# Edge cases
# ─────────────────────────────────────────────────────────────────────────────


class TestUndoEdgeCases:
    @pytest.mark.asyncio
    async def test_concurrent_undo_applies_once(self, executor, ledger, chat_log, store):
        message_id = await run_and_record(executor, ledger, chat_log, [create("A"), create("B")])

        outcomes = await asyncio.gather(
            ledger.undo(message_id), ledger.undo(message_id), return_exceptions=True
        )

        errors = [o for o in outcomes if isinstance(o, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], AlreadyUndoneError)
        assert [t["id"] for t in await store.list(EntityKind.TASK)] == ["t1"]
        replies = [m for m in await chat_log.list_messages((await chat_log.get_message(message_id)).session_id)
                   if m.content.startswith("Undone:")]
        assert len(replies) == 1

    @pytest.mark.asyncio
    async def test_unknown_message(self, ledger):
        with pytest.raises(UndoNotAvailableError):
            await ledger.undo("missing")

    @pytest.mark.asyncio
    async def test_message_without_descriptor(self, ledger, chat_log):
        session = await chat_log.create_session("s")
        message = await chat_log.append_message(session.id, "assistant", "Hello!")
        with pytest.raises(UndoNotAvailableError):
            await ledger.undo(message.id)

    @pytest.mark.asyncio
    async def test_created_row_already_gone_is_tolerated(self, executor, ledger, chat_log, store):
        message_id = await run_and_record(executor, ledger, chat_log, [create("A")])
        task_id = (await chat_log.get_message(message_id)).action_payload.data["id"]
        await store.delete(EntityKind.TASK, task_id)

        receipt = await ledger.undo(message_id)
        assert receipt.description.startswith("Delete created task")

    @pytest.mark.asyncio
    async def test_query_only_turn_has_nothing_to_undo(self, executor, ledger, chat_log):
        message_id = await run_and_record(executor, ledger, chat_log, [
            ActionRequest(kind="QUERY_DATABASE", payload={"table": "tasks"}),
        ])
        assert not (await chat_log.get_message(message_id)).can_undo

    @pytest.mark.asyncio
    async def test_undoable_newest_first(self, executor, ledger, chat_log):
        session = await chat_log.create_session("s")
        ids = []
        for title in ("A", "B"):
            report = await executor.execute([create(title)])
            msg = await chat_log.append_message(session.id, "assistant", report.summary)
            await ledger.record_undo(msg.id, report.undo, action_type="CREATE_TASK")
            ids.append(msg.id)

        assert [m.id for m in await ledger.undoable(session.id)] == list(reversed(ids))
        await ledger.undo(ids[1])
        assert [m.id for m in await ledger.undoable(session.id)] == [ids[0]]

    @pytest.mark.asyncio
    async def test_descriptor_without_entity(self, ledger):
        with pytest.raises(UndoNotAvailableError):
            await ledger.apply(UndoDescriptor(kind=UndoKind.DELETE_CREATED, data={"id": "x"}))
