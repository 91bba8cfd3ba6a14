"""
tests/unit/test_context_builder.py — Context Assembler Unit Tests

Run with:
    pytest tests/unit/test_context_builder.py -v
"""

from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from agent.context_builder import ContextBuilder
from brain.types import InlineMedia, Role
from store.chat_log import InMemoryChatLog
from store.domain_store import InMemoryDomainStore
from tools.types import EntityKind

TZ_NAME = "America/Argentina/Buenos_Aires"
NOW = datetime(2026, 10, 14, 10, 0, tzinfo=ZoneInfo(TZ_NAME))


class FlakyStore(InMemoryDomainStore):
    """Fails to list one entity kind."""

    def __init__(self, broken: EntityKind, seed=None):
        super().__init__(seed)
        self.broken = broken

    async def list(self, kind, filter=None):
        if kind == self.broken:
            raise ConnectionError("contractors table unavailable")
        return await super().list(kind, filter)


def _seed():
    tasks = [
        {"id": f"t{i:02d}", "title": f"Task {i}", "status": "TODO",
         "dueDate": f"2026-11-{(i % 28) + 1:02d}T09:00:00-03:00"}
        for i in range(60)
    ]
    tasks += [{"id": f"d{i}", "title": f"Done {i}", "status": "DONE"} for i in range(5)]
    tasks.append({"id": "undated", "title": "Someday", "status": "TODO"})
    return {
        EntityKind.TASK: tasks,
        EntityKind.PROJECT: [{"id": "p1", "name": "Acme", "status": "ACTIVE"}],
        EntityKind.CONTRACTOR: [{"id": "c1", "name": "Ana", "role": "Designer"}],
        EntityKind.SOP: [{"title": "Onboarding", "category": "clients", "content": "x" * 2000}],
    }


@pytest.fixture
def chat_log():
    return InMemoryChatLog()


@pytest.fixture
def builder(chat_log):
    return ContextBuilder(InMemoryDomainStore(_seed()), chat_log, timezone=TZ_NAME)


# ─────────────────────────────────────────────────────────────────────────────
# Snapshot
# ─────────────────────────────────────────────────────────────────────────────


class TestSnapshot:
    @pytest.mark.asyncio
    async def test_open_tasks_are_bounded_and_sorted(self, builder):
        snap = await builder.snapshot(NOW)
        assert len(snap.open_tasks) == 50
        assert all(t["status"] != "DONE" for t in snap.open_tasks)
        dues = [t["dueDate"] for t in snap.open_tasks]
        assert dues == sorted(dues)
        assert "undated" not in {t["id"] for t in snap.open_tasks}

    @pytest.mark.asyncio
    async def test_undated_tasks_come_last(self, chat_log):
        store = InMemoryDomainStore({EntityKind.TASK: [
            {"id": "a", "title": "No date", "status": "TODO"},
            {"id": "b", "title": "Dated", "status": "TODO", "dueDate": "2026-10-20T09:00:00-03:00"},
        ]})
        snap = await ContextBuilder(store, chat_log).snapshot(NOW)
        assert [t["id"] for t in snap.open_tasks] == ["b", "a"]

    @pytest.mark.asyncio
    async def test_knowledge_is_clipped(self, builder):
        prompt = builder.system_prompt(await builder.snapshot(NOW))
        assert "### Onboarding (clients)" in prompt
        assert "x" * 499 in prompt
        assert "x" * 500 not in prompt

    @pytest.mark.asyncio
    async def test_failing_category_renders_empty(self, chat_log):
        store = FlakyStore(EntityKind.CONTRACTOR, _seed())
        builder = ContextBuilder(store, chat_log, timezone=TZ_NAME)

        snap = await builder.snapshot(NOW)
        prompt = builder.system_prompt(snap)

        assert snap.failed == ["contractor"]
        assert "## Team\n(none)" in prompt
        assert "[p1] Acme (ACTIVE)" in prompt

    @pytest.mark.asyncio
    async def test_now_anchor(self, builder):
        prompt = builder.system_prompt(await builder.snapshot(NOW))
        assert f"## Now\n2026-10-14T10:00:00-03:00 (Wednesday, {TZ_NAME})" in prompt
        assert "[c1] Ana: Designer" in prompt


# ─────────────────────────────────────────────────────────────────────────────
# Message list
# ─────────────────────────────────────────────────────────────────────────────


class TestBuild:
    @pytest.mark.asyncio
    async def test_system_history_then_user(self, builder, chat_log):
        session = await chat_log.create_session("s")
        for i in range(6):
            await chat_log.append_message(session.id, "user" if i % 2 == 0 else "assistant", f"m{i}")

        messages = await builder.build(session.id, "Add gym tomorrow", NOW)

        assert messages[0].role == Role.SYSTEM
        assert [m.content for m in messages[1:-1]] == ["m2", "m3", "m4", "m5"]
        assert [m.role for m in messages[1:-1]] == [Role.USER, Role.ASSISTANT] * 2
        assert messages[-1].role == Role.USER
        assert messages[-1].content == "Add gym tomorrow"

    @pytest.mark.asyncio
    async def test_new_session_has_no_history(self, builder):
        messages = await builder.build(None, "hi", NOW)
        assert len(messages) == 2

    @pytest.mark.asyncio
    async def test_audio_input(self, builder):
        media = InlineMedia(mime_type="audio/webm", data="AAAA")
        messages = await builder.build(None, media, NOW)
        assert messages[-1].media == media
        assert messages[-1].content is None

    @pytest.mark.asyncio
    async def test_no_input_leaves_out_the_user_entry(self, builder):
        messages = await builder.build(None, None, NOW)
        assert [m.role for m in messages] == [Role.SYSTEM]
