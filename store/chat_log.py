"""
store/chat_log.py — Chat sessions and messages

Persists the conversation log the orchestrator reads history from and the
undo ledger writes to.

Tables (SQLite backend):
  - chat_sessions: id, title, created_at, updated_at
  - chat_messages: id, session_id, role, content, action_type,
                    action_payload (UndoDescriptor JSON), is_undone, created_at

`is_undone` only ever goes 0 → 1; mark_undone() reports whether this call
was the one that flipped it.

Usage:
    log = SQLiteChatLog("./data/sqlite/chat.db")
    await log.init()
    session = await log.create_session("Schedule the week")
    msg = await log.append_message(session.id, "user", "Monday to Friday 8 to 2:30")
"""

from __future__ import annotations

import asyncio
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

import aiosqlite

from observability.logger import get_logger
from tools.types import UndoDescriptor

log = get_logger(__name__)

# ── Schema DDL ────────────────────────────────────────────────────────────────

_SCHEMA = """
CREATE TABLE IF NOT EXISTS chat_sessions (
    id          TEXT PRIMARY KEY,
    title       TEXT NOT NULL,
    created_at  REAL NOT NULL,
    updated_at  REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS chat_messages (
    id              TEXT PRIMARY KEY,
    seq             INTEGER NOT NULL,
    session_id      TEXT NOT NULL,
    role            TEXT NOT NULL,       -- 'user' | 'assistant'
    content         TEXT NOT NULL,
    action_type     TEXT,
    action_payload  TEXT,                -- UndoDescriptor JSON
    is_undone       INTEGER DEFAULT 0,
    created_at      REAL NOT NULL,
    FOREIGN KEY (session_id) REFERENCES chat_sessions(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_messages_session ON chat_messages(session_id, seq);
CREATE INDEX IF NOT EXISTS idx_sessions_updated ON chat_sessions(updated_at);
"""


# ── Data classes ──────────────────────────────────────────────────────────────

@dataclass
class ChatSession:
    id: str
    title: str
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)


@dataclass
class ChatMessage:
    id: str
    session_id: str
    role: str
    content: str
    action_type: Optional[str] = None
    action_payload: Optional[UndoDescriptor] = None
    is_undone: bool = False
    created_at: float = field(default_factory=time.time)

    @property
    def can_undo(self) -> bool:
        return self.action_payload is not None and not self.is_undone


# ── Contract ──────────────────────────────────────────────────────────────────

class ChatLog(ABC):

    @abstractmethod
    async def create_session(self, title: str) -> ChatSession: ...

    @abstractmethod
    async def get_session(self, session_id: str) -> Optional[ChatSession]: ...

    @abstractmethod
    async def list_sessions(self, limit: int = 50) -> list[ChatSession]:
        """Newest (by updated_at) first."""

    @abstractmethod
    async def delete_session(self, session_id: str) -> bool:
        """Delete a session and all of its messages. False if it didn't exist."""

    @abstractmethod
    async def append_message(
        self,
        session_id: str,
        role: str,
        content: str,
        action_type: Optional[str] = None,
        action_payload: Optional[UndoDescriptor] = None,
    ) -> ChatMessage: ...

    @abstractmethod
    async def get_message(self, message_id: str) -> Optional[ChatMessage]: ...

    @abstractmethod
    async def list_messages(
        self, session_id: str, limit: Optional[int] = None
    ) -> list[ChatMessage]:
        """Insertion order; with `limit`, only the last `limit` messages."""

    @abstractmethod
    async def attach_payload(
        self, message_id: str, action_type: str, payload: UndoDescriptor
    ) -> None: ...

    @abstractmethod
    async def mark_undone(self, message_id: str) -> bool:
        """Flip is_undone. True only for the call that actually flipped it."""

    async def init(self) -> None:
        return None

    async def close(self) -> None:
        return None


# ── In-memory backend ─────────────────────────────────────────────────────────

class InMemoryChatLog(ChatLog):

    def __init__(self):
        self._sessions: dict[str, ChatSession] = {}
        self._messages: dict[str, ChatMessage] = {}
        self._order: dict[str, list[str]] = {}
        self._touched: dict[str, int] = {}
        self._clock = 0
        self._lock = asyncio.Lock()

    async def create_session(self, title: str) -> ChatSession:
        session = ChatSession(id=str(uuid.uuid4()), title=title)
        self._sessions[session.id] = session
        self._order[session.id] = []
        self._touch(session.id)
        return replace(session)

    def _touch(self, session_id: str) -> None:
        self._clock += 1
        self._touched[session_id] = self._clock

    async def get_session(self, session_id: str) -> Optional[ChatSession]:
        s = self._sessions.get(session_id)
        return replace(s) if s else None

    async def list_sessions(self, limit: int = 50) -> list[ChatSession]:
        ordered = sorted(
            self._sessions.values(),
            key=lambda s: self._touched[s.id],
            reverse=True,
        )
        return [replace(s) for s in ordered[:limit]]

    async def delete_session(self, session_id: str) -> bool:
        if self._sessions.pop(session_id, None) is None:
            return False
        self._touched.pop(session_id, None)
        for mid in self._order.pop(session_id, []):
            self._messages.pop(mid, None)
        return True

    async def append_message(
        self,
        session_id: str,
        role: str,
        content: str,
        action_type: Optional[str] = None,
        action_payload: Optional[UndoDescriptor] = None,
    ) -> ChatMessage:
        if session_id not in self._sessions:
            raise KeyError(f"Unknown chat session '{session_id}'")
        msg = ChatMessage(
            id=str(uuid.uuid4()),
            session_id=session_id,
            role=role,
            content=content,
            action_type=action_type,
            action_payload=action_payload,
        )
        self._messages[msg.id] = msg
        self._order[session_id].append(msg.id)
        self._sessions[session_id].updated_at = msg.created_at
        self._touch(session_id)
        return replace(msg)

    async def get_message(self, message_id: str) -> Optional[ChatMessage]:
        m = self._messages.get(message_id)
        return replace(m) if m else None

    async def list_messages(
        self, session_id: str, limit: Optional[int] = None
    ) -> list[ChatMessage]:
        ids = self._order.get(session_id, [])
        if limit is not None:
            ids = ids[-limit:] if limit > 0 else []
        return [replace(self._messages[i]) for i in ids]

    async def attach_payload(
        self, message_id: str, action_type: str, payload: UndoDescriptor
    ) -> None:
        msg = self._messages[message_id]
        msg.action_type = action_type
        msg.action_payload = payload

    async def mark_undone(self, message_id: str) -> bool:
        async with self._lock:
            msg = self._messages.get(message_id)
            if msg is None or msg.is_undone:
                return False
            msg.is_undone = True
            return True


# ── SQLite backend ────────────────────────────────────────────────────────────

class SQLiteChatLog(ChatLog):
    """Async SQLite-backed chat log."""

    def __init__(self, db_path: str = "./data/sqlite/chat.db"):
        self.db_path = db_path
        self._db: Optional[aiosqlite.Connection] = None
        self._seq = 0

    async def init(self) -> None:
        """Create the database file and tables if they don't exist."""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA foreign_keys = ON")
        await self._db.executescript(_SCHEMA)
        await self._db.commit()
        async with self._db.execute("SELECT COALESCE(MAX(seq), 0) FROM chat_messages") as cur:
            row = await cur.fetchone()
            self._seq = row[0]
        log.info("chat_log.initialized", db_path=self.db_path)

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    def _require_db(self) -> None:
        if self._db is None:
            raise RuntimeError(
                "SQLiteChatLog is not initialised (or has been closed). "
                "Call `await chat_log.init()` before use."
            )

    # ── Sessions ──────────────────────────────────────────────────────────────

    async def create_session(self, title: str) -> ChatSession:
        self._require_db()
        session = ChatSession(id=str(uuid.uuid4()), title=title)
        await self._db.execute(
            "INSERT INTO chat_sessions (id, title, created_at, updated_at) VALUES (?, ?, ?, ?)",
            (session.id, session.title, session.created_at, session.updated_at),
        )
        await self._db.commit()
        return session

    async def get_session(self, session_id: str) -> Optional[ChatSession]:
        self._require_db()
        async with self._db.execute(
            "SELECT * FROM chat_sessions WHERE id = ?", (session_id,)
        ) as cur:
            row = await cur.fetchone()
        return _row_to_session(row) if row else None

    async def list_sessions(self, limit: int = 50) -> list[ChatSession]:
        self._require_db()
        async with self._db.execute(
            "SELECT * FROM chat_sessions ORDER BY updated_at DESC, rowid DESC LIMIT ?", (limit,)
        ) as cur:
            rows = await cur.fetchall()
        return [_row_to_session(r) for r in rows]

    async def delete_session(self, session_id: str) -> bool:
        self._require_db()
        await self._db.execute("DELETE FROM chat_messages WHERE session_id = ?", (session_id,))
        cur = await self._db.execute("DELETE FROM chat_sessions WHERE id = ?", (session_id,))
        await self._db.commit()
        return cur.rowcount > 0

    # ── Messages ──────────────────────────────────────────────────────────────

    async def append_message(
        self,
        session_id: str,
        role: str,
        content: str,
        action_type: Optional[str] = None,
        action_payload: Optional[UndoDescriptor] = None,
    ) -> ChatMessage:
        self._require_db()
        msg = ChatMessage(
            id=str(uuid.uuid4()),
            session_id=session_id,
            role=role,
            content=content,
            action_type=action_type,
            action_payload=action_payload,
        )
        self._seq += 1
        await self._db.execute(
            """INSERT INTO chat_messages
               (id, seq, session_id, role, content, action_type, action_payload,
                is_undone, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, 0, ?)""",
            (
                msg.id,
                self._seq,
                session_id,
                role,
                content,
                action_type,
                action_payload.model_dump_json() if action_payload else None,
                msg.created_at,
            ),
        )
        await self._db.execute(
            "UPDATE chat_sessions SET updated_at = ? WHERE id = ?",
            (msg.created_at, session_id),
        )
        await self._db.commit()
        return msg

    async def get_message(self, message_id: str) -> Optional[ChatMessage]:
        self._require_db()
        async with self._db.execute(
            "SELECT * FROM chat_messages WHERE id = ?", (message_id,)
        ) as cur:
            row = await cur.fetchone()
        return _row_to_message(row) if row else None

    async def list_messages(
        self, session_id: str, limit: Optional[int] = None
    ) -> list[ChatMessage]:
        self._require_db()
        if limit is not None:
            sql = """SELECT * FROM (
                         SELECT * FROM chat_messages WHERE session_id = ?
                         ORDER BY seq DESC LIMIT ?
                     ) ORDER BY seq ASC"""
            params: tuple = (session_id, max(limit, 0))
        else:
            sql = "SELECT * FROM chat_messages WHERE session_id = ? ORDER BY seq ASC"
            params = (session_id,)
        async with self._db.execute(sql, params) as cur:
            rows = await cur.fetchall()
        return [_row_to_message(r) for r in rows]

    async def attach_payload(
        self, message_id: str, action_type: str, payload: UndoDescriptor
    ) -> None:
        self._require_db()
        await self._db.execute(
            "UPDATE chat_messages SET action_type = ?, action_payload = ? WHERE id = ?",
            (action_type, payload.model_dump_json(), message_id),
        )
        await self._db.commit()

    async def mark_undone(self, message_id: str) -> bool:
        self._require_db()
        cur = await self._db.execute(
            "UPDATE chat_messages SET is_undone = 1 WHERE id = ? AND is_undone = 0",
            (message_id,),
        )
        await self._db.commit()
        return cur.rowcount == 1


# ── Row mappers ───────────────────────────────────────────────────────────────

def _row_to_session(row) -> ChatSession:
    return ChatSession(
        id=row["id"],
        title=row["title"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_message(row) -> ChatMessage:
    payload = row["action_payload"]
    return ChatMessage(
        id=row["id"],
        session_id=row["session_id"],
        role=row["role"],
        content=row["content"],
        action_type=row["action_type"],
        action_payload=UndoDescriptor.model_validate_json(payload) if payload else None,
        is_undone=bool(row["is_undone"]),
        created_at=row["created_at"],
    )
