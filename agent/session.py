"""
agent/session.py — Per-Session and Per-Turn State

Session       one per chat session: the live turn's cancellation token and
              a Decision waiting for the user to pick an option.
TurnContext   request-scoped: the turn's instant, its CancellationToken and
              the event sink. Everything a turn needs travels in here, so
              concurrent sessions never share UI or cancellation state.

Starting a turn cancels the session's previous live token, and every
reasoning call runs through TurnContext.race() under the session's engine
lock, so there is at most one in-flight reasoning call per session.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Optional, TypeVar

from agent.interpreter import DecisionOutcome
from agent.response_synthesizer import TransportEvent
from exceptions import TurnCancelledError
from observability.logger import get_logger

log = get_logger(__name__)

EventSink = Callable[[TransportEvent], None]
T = TypeVar("T")


class CancellationToken:
    """Cooperative cancellation flag for one turn."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TurnCancelledError("Turn was cancelled")

    async def wait(self) -> None:
        await self._event.wait()


@dataclass
class TurnContext:
    session_id: str
    now: datetime
    token: CancellationToken = field(default_factory=CancellationToken)
    sink: Optional[EventSink] = None
    turn_id: str = field(default_factory=lambda: f"turn_{uuid.uuid4().hex[:10]}")
    engine_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    async def race(self, call: Awaitable[T], timeout: Optional[float] = None) -> T:
        """
        Await a reasoning call unless the turn is cancelled first.

        The session's engine lock is held for the whole call, so a new turn
        waits for the previous call to be torn down before starting its own.

        Raises:
            TurnCancelledError:   the token fired; the call has been cancelled.
            asyncio.TimeoutError: `timeout` seconds passed first.
        """
        async with self.engine_lock:
            if self.cancelled:
                if asyncio.iscoroutine(call):
                    call.close()
                self.token.raise_if_cancelled()

            work = asyncio.ensure_future(call)
            stop = asyncio.ensure_future(self.token.wait())
            try:
                done, _ = await asyncio.wait(
                    {work, stop}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
                )
            finally:
                pending = [t for t in (work, stop) if not t.done()]
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

        if work in done:
            return work.result()
        if stop in done:
            log.info("turn.engine_call_cancelled", session_id=self.session_id)
            self.token.raise_if_cancelled()
        raise asyncio.TimeoutError()

    def emit(self, event: TransportEvent) -> None:
        """Deliver `event` to the sink. A failing sink never breaks the turn."""
        if self.sink is None:
            return
        try:
            self.sink(event)
        except Exception as e:
            log.warning(
                "turn.sink_failed",
                event=type(event).__name__,
                error=str(e),
                error_type=type(e).__name__,
            )


@dataclass
class PendingDecision:
    outcome: DecisionOutcome
    message_id: Optional[str] = None


class Session:
    """Runtime state for one chat session."""

    def __init__(self, session_id: str, title: str = ""):
        self.id = session_id
        self.title = title
        self.pending_decision: Optional[PendingDecision] = None
        self.turn_count: int = 0
        self._live_token: Optional[CancellationToken] = None
        self._engine_lock = asyncio.Lock()

    # ── Turns ─────────────────────────────────────────────────────────────────

    def begin_turn(self, now: datetime, sink: Optional[EventSink] = None) -> TurnContext:
        if self._live_token is not None and not self._live_token.cancelled:
            self._live_token.cancel()
            log.info("session.previous_turn_cancelled", session_id=self.id)
        ctx = TurnContext(session_id=self.id, now=now, sink=sink, engine_lock=self._engine_lock)
        self._live_token = ctx.token
        self.turn_count += 1
        return ctx

    def end_turn(self, ctx: TurnContext) -> None:
        if self._live_token is ctx.token:
            self._live_token = None

    def cancel(self) -> bool:
        """Cancel the live turn. False when nothing was running."""
        if self._live_token is None or self._live_token.cancelled:
            return False
        self._live_token.cancel()
        log.info("session.cancel_requested", session_id=self.id)
        return True

    # ── Decisions ─────────────────────────────────────────────────────────────

    def offer_decision(self, outcome: DecisionOutcome, message_id: Optional[str] = None) -> None:
        self.pending_decision = PendingDecision(outcome=outcome, message_id=message_id)

    def take_decision(self) -> Optional[PendingDecision]:
        pending, self.pending_decision = self.pending_decision, None
        return pending
