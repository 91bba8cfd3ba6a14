"""
agent/context_builder.py — Context Assembler

Assembles the message list sent to the reasoning engine each turn:
    System prompt (instructions + now anchor + domain snapshot)
    → last `history_turns` chat messages
    → current input (text, or inline audio)

The snapshot sections are bounded:
    open tasks   at most `max_open_items`, earliest due first (id/title/due)
    projects     all (id/name/status)
    team         all contractors (id/name/role)
    knowledge    SOPs, content clipped to 500 chars

Pure read. A category that fails to load is rendered empty and logged;
the turn goes on.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Union

from agent.utils import clip
from brain.types import InlineMedia, Message, Role
from observability.logger import get_logger
from store.chat_log import ChatLog
from store.domain_store import DomainStore
from tools.types import EntityKind, TaskStatus

log = get_logger(__name__)

SOP_MAX_CHARS = 500

_SYSTEM_TEMPLATE = """\
You are {agent_name}, the operations assistant of a small agency. You turn \
requests about the team's schedule and client projects into actions.

## How to answer
- To create, update or delete tasks call manage_tasks; for projects call \
manage_projects. Put every requested change in one call, one item per change.
- Use query_database to look things up and send_portal_message to write to a \
client's portal. Use open_record when the user wants to see a record.
- When a request could mean several different records or actions, call \
offer_decision with the options instead of guessing.
- When something essential is missing, call ask_question.
- Otherwise answer with chat_response.
- Reference existing records by the ids listed below. Never invent ids.
- Resolve relative dates ("tomorrow", "next Monday") against NOW below and \
write dates as ISO-8601 with the offset.

## Now
{now_iso} ({weekday}, {timezone})

{sections}"""


@dataclass
class ContextSnapshot:
    now: datetime
    timezone: str
    open_tasks: list[dict[str, Any]] = field(default_factory=list)
    projects: list[dict[str, Any]] = field(default_factory=list)
    team: list[dict[str, Any]] = field(default_factory=list)
    knowledge: list[dict[str, Any]] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    def render(self) -> str:
        blocks = [
            _section(
                f"Open tasks ({len(self.open_tasks)})",
                [f"- [{t.get('id')}] {t.get('title', '')} (due {t.get('dueDate') or 'none'})"
                 for t in self.open_tasks],
            ),
            _section(
                "Projects",
                [f"- [{p.get('id')}] {p.get('name', '')} ({p.get('status', '')})"
                 for p in self.projects],
            ),
            _section(
                "Team",
                [f"- [{c.get('id')}] {c.get('name', '')}: {c.get('role', '')}" for c in self.team],
            ),
            _section(
                "Knowledge base",
                [f"### {d.get('title', '')} ({d.get('category', 'general')})\n"
                 f"{clip(str(d.get('content', '')), SOP_MAX_CHARS)}"
                 for d in self.knowledge],
            ),
        ]
        return "\n\n".join(blocks)


class ContextBuilder:
    """Assembles the reasoning engine's message list for one turn."""

    def __init__(
        self,
        store: DomainStore,
        chat_log: ChatLog,
        agent_name: str = "OpsDesk",
        timezone: str = "UTC",
        max_open_items: int = 50,
        history_turns: int = 4,
    ):
        self.store = store
        self.chat_log = chat_log
        self.agent_name = agent_name
        self.timezone = timezone
        self.max_open_items = max_open_items
        self.history_turns = history_turns

    async def build(
        self,
        session_id: Optional[str],
        user_input: Union[str, InlineMedia, None],
        now: datetime,
    ) -> list[Message]:
        """
        Build the full message list for this turn.

        `user_input` None leaves out the trailing user entry (the ReAct
        loop appends its own).
        """
        snapshot = await self.snapshot(now)
        messages = [Message.system(self.system_prompt(snapshot))]

        history = await self._history(session_id)
        messages.extend(history)

        if isinstance(user_input, InlineMedia):
            messages.append(Message.user_media(user_input.mime_type, user_input.data))
        elif user_input:
            messages.append(Message.user(user_input))

        log.debug(
            "context_builder.built",
            session_id=session_id,
            open_tasks=len(snapshot.open_tasks),
            projects=len(snapshot.projects),
            history_msgs=len(history),
            failed=snapshot.failed,
        )
        return messages

    async def snapshot(self, now: datetime) -> ContextSnapshot:
        snap = ContextSnapshot(now=now, timezone=self.timezone)

        tasks = await self._fetch(EntityKind.TASK, snap)
        open_tasks = [t for t in tasks if t.get("status") != TaskStatus.DONE.value]
        open_tasks.sort(key=lambda t: (t.get("dueDate") is None, str(t.get("dueDate") or "")))
        snap.open_tasks = open_tasks[: self.max_open_items]

        snap.projects = await self._fetch(EntityKind.PROJECT, snap)
        snap.team = await self._fetch(EntityKind.CONTRACTOR, snap)
        snap.knowledge = await self._fetch(EntityKind.SOP, snap)
        return snap

    def system_prompt(self, snapshot: ContextSnapshot) -> str:
        return _SYSTEM_TEMPLATE.format(
            agent_name=self.agent_name,
            now_iso=snapshot.now.isoformat(timespec="seconds"),
            weekday=snapshot.now.strftime("%A"),
            timezone=snapshot.timezone,
            sections=snapshot.render(),
        ).strip()

    # ── Helpers ───────────────────────────────────────────────────────────────

    async def _fetch(self, kind: EntityKind, snap: ContextSnapshot) -> list[dict[str, Any]]:
        try:
            return await self.store.list(kind)
        except Exception as e:
            log.warning("context_builder.fetch_failed", category=kind.value, error=str(e))
            snap.failed.append(kind.value)
            return []

    async def _history(self, session_id: Optional[str]) -> list[Message]:
        if not session_id or self.history_turns <= 0:
            return []
        try:
            rows = await self.chat_log.list_messages(session_id, limit=self.history_turns)
        except Exception as e:
            log.warning("context_builder.history_failed", session_id=session_id, error=str(e))
            return []
        role_map = {"user": Role.USER, "assistant": Role.ASSISTANT}
        return [
            Message(role=role_map.get(r.role, Role.USER), content=r.content)
            for r in rows
            if r.content
        ]


def _section(title: str, lines: list[str]) -> str:
    body = "\n".join(lines) if lines else "(none)"
    return f"## {title}\n{body}"
