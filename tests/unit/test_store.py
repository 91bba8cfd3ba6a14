"""
tests/unit/test_store.py — Domain Store and Chat Log Unit Tests

InMemoryDomainStore CRUD + seed loading, and the chat log contract run
against both backends (in-memory and SQLite ":memory:").

Run with:
    pytest tests/unit/test_store.py -v
"""

from __future__ import annotations

import pytest

from exceptions import EntityNotFoundError
from store.chat_log import InMemoryChatLog, SQLiteChatLog
from store.domain_store import InMemoryDomainStore, load_seed
from tools.types import EntityKind, UndoDescriptor, UndoKind


# ─────────────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def store():
    return InMemoryDomainStore()


@pytest.fixture(params=["memory", "sqlite"])
async def chat_log(request):
    log = InMemoryChatLog() if request.param == "memory" else SQLiteChatLog(":memory:")
    await log.init()
    yield log
    await log.close()


def _descriptor() -> UndoDescriptor:
    return UndoDescriptor(
        kind=UndoKind.DELETE_CREATED,
        entity=EntityKind.TASK,
        data={"id": "t1"},
        description="Delete created task 'Gym'",
    )


# ─────────────────────────────────────────────────────────────────────────────
# InMemoryDomainStore
# ─────────────────────────────────────────────────────────────────────────────


class TestInMemoryDomainStore:
    @pytest.mark.asyncio
    async def test_create_assigns_id(self, store):
        row = await store.create(EntityKind.TASK, {"title": "Gym"})
        assert row["id"]
        assert row["created_at"]
        assert await store.get(EntityKind.TASK, row["id"]) == row

    @pytest.mark.asyncio
    async def test_create_honours_supplied_id(self, store):
        row = await store.create(EntityKind.PROJECT, {"id": "p9", "name": "Acme"})
        assert row["id"] == "p9"

    @pytest.mark.asyncio
    async def test_update_merges_fields_but_never_the_id(self, store):
        await store.create(EntityKind.TASK, {"id": "t1", "title": "Gym", "status": "TODO"})
        row = await store.update(EntityKind.TASK, "t1", {"id": "other", "status": "DONE"})
        assert row["id"] == "t1"
        assert row["status"] == "DONE"
        assert row["title"] == "Gym"

    @pytest.mark.asyncio
    async def test_replace_overwrites_the_whole_row_in_place(self, store):
        await store.create(EntityKind.TASK, {"id": "t0", "title": "First"})
        await store.create(EntityKind.TASK, {"id": "t1", "title": "Gym", "assigneeId": "c1"})
        await store.create(EntityKind.TASK, {"id": "t2", "title": "Last"})

        row = await store.replace(EntityKind.TASK, "t1", {"id": "other", "title": "Gym", "status": "TODO"})

        assert row == {"id": "t1", "title": "Gym", "status": "TODO"}
        assert "assigneeId" not in await store.get(EntityKind.TASK, "t1")
        assert [t["id"] for t in await store.list(EntityKind.TASK)] == ["t0", "t1", "t2"]
        with pytest.raises(EntityNotFoundError):
            await store.replace(EntityKind.TASK, "missing", {"title": "x"})

    @pytest.mark.asyncio
    async def test_missing_rows_raise(self, store):
        with pytest.raises(EntityNotFoundError):
            await store.get(EntityKind.TASK, "nope")
        with pytest.raises(EntityNotFoundError):
            await store.update(EntityKind.TASK, "nope", {"title": "x"})
        with pytest.raises(EntityNotFoundError):
            await store.delete(EntityKind.TASK, "nope")

    @pytest.mark.asyncio
    async def test_delete(self, store):
        await store.create(EntityKind.TASK, {"id": "t1", "title": "Gym"})
        await store.delete(EntityKind.TASK, "t1")
        assert await store.list(EntityKind.TASK) == []

    @pytest.mark.asyncio
    async def test_list_filter(self, store):
        await store.create(EntityKind.TASK, {"title": "A", "status": "TODO"})
        await store.create(EntityKind.TASK, {"title": "B", "status": "DONE"})
        rows = await store.list(EntityKind.TASK, {"status": "DONE"})
        assert [r["title"] for r in rows] == ["B"]

    @pytest.mark.asyncio
    async def test_returns_copies(self, store):
        row = await store.create(EntityKind.TASK, {"id": "t1", "title": "Gym"})
        row["title"] = "Changed outside"
        (await store.list(EntityKind.TASK))[0]["title"] = "Changed again"
        assert (await store.get(EntityKind.TASK, "t1"))["title"] == "Gym"

    @pytest.mark.asyncio
    async def test_seed(self):
        seeded = InMemoryDomainStore({EntityKind.CONTRACTOR: [{"id": "c1", "name": "Ana"}]})
        assert (await seeded.get(EntityKind.CONTRACTOR, "c1"))["name"] == "Ana"


class TestLoadSeed:
    def test_load_seed(self, tmp_path):
        path = tmp_path / "seed.yaml"
        path.write_text(
            "projects:\n"
            "  - {id: p1, name: Acme, status: ACTIVE}\n"
            "team:\n"
            "  - {id: c1, name: Ana, role: Designer}\n"
            "sops:\n"
            "  - {title: Onboarding, content: Send the welcome pack}\n"
            "invoices:\n"
            "  - {id: i1}\n",
            encoding="utf-8",
        )
        seed = load_seed(path)
        assert seed[EntityKind.PROJECT][0]["name"] == "Acme"
        assert seed[EntityKind.CONTRACTOR][0]["role"] == "Designer"
        assert seed[EntityKind.SOP][0]["title"] == "Onboarding"
        assert len(seed) == 3

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        assert load_seed(path) == {}


# ─────────────────────────────────────────────────────────────────────────────
# Chat log (both backends)
# ─────────────────────────────────────────────────────────────────────────────


class TestChatLog:
    @pytest.mark.asyncio
    async def test_session_roundtrip(self, chat_log):
        session = await chat_log.create_session("Schedule the week")
        fetched = await chat_log.get_session(session.id)
        assert fetched.title == "Schedule the week"
        assert await chat_log.get_session("missing") is None

    @pytest.mark.asyncio
    async def test_messages_in_insertion_order(self, chat_log):
        session = await chat_log.create_session("s")
        for i in range(5):
            await chat_log.append_message(session.id, "user", f"m{i}")
        all_msgs = await chat_log.list_messages(session.id)
        assert [m.content for m in all_msgs] == ["m0", "m1", "m2", "m3", "m4"]

        last_two = await chat_log.list_messages(session.id, limit=2)
        assert [m.content for m in last_two] == ["m3", "m4"]

    @pytest.mark.asyncio
    async def test_attach_payload_makes_message_undoable(self, chat_log):
        session = await chat_log.create_session("s")
        msg = await chat_log.append_message(session.id, "assistant", "Task created: Gym")
        assert not msg.can_undo

        await chat_log.attach_payload(msg.id, "CREATE_TASK", _descriptor())
        fetched = await chat_log.get_message(msg.id)
        assert fetched.action_type == "CREATE_TASK"
        assert fetched.action_payload == _descriptor()
        assert fetched.can_undo

    @pytest.mark.asyncio
    async def test_mark_undone_flips_once(self, chat_log):
        session = await chat_log.create_session("s")
        msg = await chat_log.append_message(
            session.id, "assistant", "done", action_type="CREATE_TASK", action_payload=_descriptor()
        )
        assert await chat_log.mark_undone(msg.id) is True
        assert await chat_log.mark_undone(msg.id) is False

        fetched = await chat_log.get_message(msg.id)
        assert fetched.is_undone
        assert not fetched.can_undo

    @pytest.mark.asyncio
    async def test_delete_session_removes_messages(self, chat_log):
        session = await chat_log.create_session("s")
        msg = await chat_log.append_message(session.id, "user", "hello")

        assert await chat_log.delete_session(session.id) is True
        assert await chat_log.get_session(session.id) is None
        assert await chat_log.get_message(msg.id) is None
        assert await chat_log.list_messages(session.id) == []
        assert await chat_log.delete_session(session.id) is False


class TestInMemoryChatLogOrdering:
    @pytest.mark.asyncio
    async def test_sessions_newest_activity_first(self):
        log = InMemoryChatLog()
        first = await log.create_session("first")
        second = await log.create_session("second")
        assert [s.id for s in await log.list_sessions()] == [second.id, first.id]

        await log.append_message(first.id, "user", "bump")
        assert [s.id for s in await log.list_sessions()] == [first.id, second.id]
        assert len(await log.list_sessions(limit=1)) == 1

    @pytest.mark.asyncio
    async def test_append_to_unknown_session(self):
        log = InMemoryChatLog()
        with pytest.raises(KeyError):
            await log.append_message("missing", "user", "hi")


class TestSQLiteChatLog:
    @pytest.mark.asyncio
    async def test_requires_init(self):
        log = SQLiteChatLog(":memory:")
        with pytest.raises(RuntimeError):
            await log.create_session("s")

    @pytest.mark.asyncio
    async def test_persists_to_file(self, tmp_path):
        path = str(tmp_path / "db" / "chat.db")
        log = SQLiteChatLog(path)
        await log.init()
        session = await log.create_session("persisted")
        await log.append_message(session.id, "user", "one")
        await log.close()

        reopened = SQLiteChatLog(path)
        await reopened.init()
        await reopened.append_message(session.id, "assistant", "two")
        messages = await reopened.list_messages(session.id)
        await reopened.close()
        assert [m.content for m in messages] == ["one", "two"]
