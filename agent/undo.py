"""
agent/undo.py — Undo Ledger

Stores the UndoDescriptor for an executed turn on its assistant chat
message and reverses it on request.

    ledger = UndoLedger(chat_log, store)
    await ledger.record_undo(message.id, report.undo, action_type="CREATE_TASK")
    receipt = await ledger.undo(message.id)

Inverse application:
  - DELETE_CREATED  delete the created row
  - RESTORE         write the snapshot back; a deleted row is recreated
                    under its original id
  - COMPOSITE       apply each step, last step first

A message is undone at most once (AlreadyUndoneError afterwards) and there
is no redo. Undo of the same message is serialised by a per-message lock,
so two concurrent requests cannot both apply the inverse.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional

from exceptions import AlreadyUndoneError, EntityNotFoundError, UndoNotAvailableError
from observability.logger import get_logger
from store.chat_log import ChatLog, ChatMessage
from store.domain_store import DomainStore
from tools.types import UndoDescriptor, UndoKind

log = get_logger(__name__)


@dataclass
class UndoReceipt:
    message_id: str
    description: str
    reply: ChatMessage              # assistant message describing the reversal

    @property
    def text(self) -> str:
        return self.reply.content


class UndoLedger:

    def __init__(self, chat_log: ChatLog, store: DomainStore):
        self._log = chat_log
        self._store = store
        self._locks: dict[str, asyncio.Lock] = {}

    async def record_undo(
        self, message_id: str, descriptor: UndoDescriptor, action_type: str = "BATCH"
    ) -> None:
        await self._log.attach_payload(message_id, action_type, descriptor)
        log.debug("undo.recorded", message_id=message_id, kind=descriptor.kind.value)

    async def undoable(self, session_id: str) -> list[ChatMessage]:
        """Messages in the session that can still be undone, newest first."""
        messages = await self._log.list_messages(session_id)
        return [m for m in reversed(messages) if m.can_undo]

    async def undo(self, message_id: str) -> UndoReceipt:
        """
        Reverse the action recorded on `message_id`.

        Raises:
            UndoNotAvailableError: unknown message, or no descriptor on it.
            AlreadyUndoneError:    the message was undone before.
        """
        lock = self._locks.setdefault(message_id, asyncio.Lock())
        async with lock:
            message = await self._log.get_message(message_id)
            if message is None or message.action_payload is None:
                raise UndoNotAvailableError(f"Nothing to undo for message '{message_id}'.")
            if message.is_undone:
                raise AlreadyUndoneError(message_id)

            descriptor = message.action_payload
            await self.apply(descriptor)

            if not await self._log.mark_undone(message_id):
                raise AlreadyUndoneError(message_id)

            description = descriptor.description or "previous action"
            reply = await self._log.append_message(
                message.session_id, "assistant", f"Undone: {description}."
            )
            log.info("undo.applied", message_id=message_id, kind=descriptor.kind.value)
            return UndoReceipt(message_id=message_id, description=description, reply=reply)

    async def apply(self, descriptor: UndoDescriptor) -> None:
        """Apply the inverse described by `descriptor` to the Domain Store."""
        if descriptor.kind == UndoKind.COMPOSITE:
            for step in reversed(descriptor.steps):
                await self.apply(step)
            return

        entity = descriptor.entity
        if entity is None:
            raise UndoNotAvailableError(f"{descriptor.kind.value} undo without an entity kind")

        if descriptor.kind == UndoKind.DELETE_CREATED:
            created_id = descriptor.data["id"]
            try:
                await self._store.delete(entity, created_id)
            except EntityNotFoundError:
                log.warning("undo.already_absent", entity=entity.value, id=created_id)
            return

        snapshot = dict(descriptor.data)
        entity_id: Optional[str] = snapshot.get("id")
        if descriptor.deleted:
            await self._store.create(entity, snapshot)
            return

        # The row goes back exactly as it was; fields the update added are dropped
        await self._store.replace(entity, entity_id, snapshot)
