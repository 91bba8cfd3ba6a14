"""
agent/orchestrator.py — Conversational Action Orchestrator

For each user turn the orchestrator:
    1. Builds context          (ContextBuilder)
    2. Calls the engine        (BaseLLMClient, Tool Contract as tools)
    3. Interprets the answer   (interpret → expand)
    4. Executes actions        (Executor → ToolBus → DomainActions)
    5. Records undo            (UndoLedger, on the assistant message)
    6. Emits a SummaryEvent and returns an AgentResponse

A Decision is held on the Session until choose() picks an option; a new
turn discards it. run_react() wraps the same path in the ReAct loop.

run_turn(), choose(), undo() and run_react() never raise: every failure
comes back as an AgentResponse with at least one sentence.

Usage:
    orc = Orchestrator.from_settings(settings, llm, store, chat_log)
    resp = await orc.run_turn(None, "Monday to Friday, 8 to 2:30, work")
    await orc.undo(resp.message_id)
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime
from typing import Callable, Optional, Union

from agent.context_builder import ContextBuilder
from agent.executor import ExecutionReport, Executor, collect_undo
from agent.expansion import expand
from agent.interpreter import (
    ActionOutcome,
    BatchOutcome,
    DecisionOutcome,
    Outcome,
    QuestionOutcome,
    ReasoningOutcome,
    ReplyOutcome,
    interpret,
)
from agent.react_loop import ReactLoop, ReactStatus
from agent.response_synthesizer import (
    AgentResponse,
    DecisionRequiredEvent,
    ResponseKind,
    ResponseSynthesizer,
    SummaryEvent,
)
from agent.session import EventSink, Session, TurnContext
from agent.undo import UndoLedger
from agent.utils import now_in
from brain.llm_client import BaseLLMClient
from brain.types import InlineMedia, LLMConfig
from exceptions import (
    AlreadyUndoneError,
    LLMError,
    OpsDeskError,
    TurnCancelledError,
    UndoNotAvailableError,
)
from observability.logger import bind_session, clear_session, get_logger
from store.chat_log import ChatLog, ChatMessage, ChatSession
from store.domain_store import DomainStore
from tools import setup_tools
from tools.tool_registry import llm_tool_schemas
from tools.types import ActionRequest

log = get_logger(__name__)

TITLE_MAX_CHARS = 60
VOICE_NOTE_LABEL = "[voice note]"
NO_MEDIA_MESSAGE = "Voice notes aren't supported by the current assistant provider. Please type your request."


UserInput = Union[str, InlineMedia]


class Orchestrator:
    """
    Coordinates one conversational turn end to end.

    Inject all dependencies via the constructor; use from_settings() when
    wiring up the application.
    """

    def __init__(
        self,
        llm_client: BaseLLMClient,
        llm_config: LLMConfig,
        store: DomainStore,
        chat_log: ChatLog,
        agent_name: str = "OpsDesk",
        timezone: str = "UTC",
        max_react_iterations: int = 5,
        turn_timeout_seconds: float = 120.0,
        context_max_open_items: int = 50,
        history_turns: int = 4,
        progress_clear_delay: Optional[float] = None,
        action_timeout_seconds: float = 30.0,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._llm = llm_client
        self._config = llm_config
        self._store = store
        self._chat_log = chat_log
        self._timezone = timezone
        self._turn_timeout = turn_timeout_seconds
        self._clock = clock or (lambda: now_in(timezone))

        self.registry, self.bus = setup_tools(store, timeout_seconds=action_timeout_seconds)
        self.executor = Executor(self.bus, progress_clear_delay=progress_clear_delay)
        self.undo_ledger = UndoLedger(chat_log, store)
        self._ctx = ContextBuilder(
            store=store,
            chat_log=chat_log,
            agent_name=agent_name,
            timezone=timezone,
            max_open_items=context_max_open_items,
            history_turns=history_turns,
        )
        self._react = ReactLoop(llm_client, llm_config, self.executor, max_react_iterations)
        self._synth = ResponseSynthesizer()
        self._sessions: dict[str, Session] = {}

    # ─────────────────────────────────────────────────────────────────────────
    # Public: interactive turn
    # ─────────────────────────────────────────────────────────────────────────

    async def run_turn(
        self,
        session_id: Optional[str],
        user_input: UserInput,
        on_event: Optional[EventSink] = None,
    ) -> AgentResponse:
        """
        Process one utterance (text, or inline audio) and return the result.

        `session_id` None starts a new chat session titled after the input.
        """
        t0 = time.monotonic()
        try:
            session = await self._session_for(session_id, user_input)
        except Exception as e:
            log.error("orchestrator.session_error", error=str(e), exc_info=True)
            return self._synth.error("Couldn't open the conversation", detail=str(e))

        now = self._clock()
        ctx = session.begin_turn(now, on_event)
        bind_session(session.id, ctx.turn_id)
        if session.take_decision() is not None:
            log.info("orchestrator.decision_discarded", session_id=session.id)

        is_audio = isinstance(user_input, InlineMedia)
        log.info(
            "orchestrator.turn_start",
            session_id=session.id,
            audio=is_audio,
            user_message=None if is_audio else user_input[:120],
        )

        try:
            messages = await self._ctx.build(session.id, user_input, now)
            await self._chat_log.append_message(
                session.id, "user", VOICE_NOTE_LABEL if is_audio else user_input
            )

            if is_audio and not getattr(self._llm, "supports_media", False):
                return await self._reply(session, ctx, ResponseKind.ERROR, NO_MEDIA_MESSAGE)

            try:
                llm_resp = await ctx.race(
                    self._llm.generate(messages=messages, config=self._config, tools=llm_tool_schemas()),
                    timeout=self._turn_timeout,
                )
            except TurnCancelledError:
                log.info("orchestrator.turn_cancelled", session_id=session.id, stage="engine")
                return self._synth.cancelled(session.id)
            except (LLMError, asyncio.TimeoutError) as e:
                log.error("orchestrator.engine_unavailable", error=str(e) or type(e).__name__)
                resp = self._synth.engine_unavailable(session.id)
                return await self._reply(session, ctx, resp.kind, resp.text)

            if ctx.cancelled:
                log.info("orchestrator.turn_cancelled", session_id=session.id, stage="engine")
                return self._synth.cancelled(session.id)

            outcome = interpret(llm_resp)
            if not is_audio:
                outcome = expand(user_input, outcome, now)

            final = await self._handle_outcome(session, ctx, outcome)
            log.info(
                "orchestrator.turn_done",
                session_id=session.id,
                kind=final.kind.value,
                ms=round((time.monotonic() - t0) * 1000),
            )
            return final

        except asyncio.CancelledError:
            log.info("orchestrator.turn_cancelled", session_id=session.id, stage="task")
            return self._synth.cancelled(session.id)
        except Exception as e:
            log.error("orchestrator.turn_error", error=str(e), exc_info=True)
            return self._synth.error("Something went wrong", detail=str(e), session_id=session.id)
        finally:
            session.end_turn(ctx)
            clear_session()

    # ─────────────────────────────────────────────────────────────────────────
    # Public: decisions
    # ─────────────────────────────────────────────────────────────────────────

    async def choose(
        self,
        session_id: str,
        index: int,
        on_event: Optional[EventSink] = None,
    ) -> AgentResponse:
        """Execute option `index` (0-based) of the session's pending Decision."""
        session = self._sessions.get(session_id)
        pending = session.pending_decision if session else None
        if session is None or pending is None:
            return self._synth.error("There is no pending decision", session_id=session_id)

        options = pending.outcome.options
        if not 0 <= index < len(options):
            return self._synth.error(
                f"Pick an option between 1 and {len(options)}", session_id=session_id
            )
        session.take_decision()
        option = options[index]

        ctx = session.begin_turn(self._clock(), on_event)
        bind_session(session.id, ctx.turn_id)
        log.info("orchestrator.decision_chosen", session_id=session.id, index=index, label=option.label)
        try:
            await self._chat_log.append_message(session.id, "user", f"Option {index + 1}: {option.label}")
            return await self._execute(session, ctx, [option.action])
        except Exception as e:
            log.error("orchestrator.choose_error", error=str(e), exc_info=True)
            return self._synth.error("Something went wrong", detail=str(e), session_id=session.id)
        finally:
            session.end_turn(ctx)
            clear_session()

    # ─────────────────────────────────────────────────────────────────────────
    # Public: undo
    # ─────────────────────────────────────────────────────────────────────────

    async def undo(self, message_id: str) -> AgentResponse:
        """Reverse the actions recorded on an assistant message."""
        try:
            receipt = await self.undo_ledger.undo(message_id)
        except (AlreadyUndoneError, UndoNotAvailableError) as e:
            log.info("orchestrator.undo_rejected", message_id=message_id, reason=str(e))
            return self._synth.error(str(e))
        except OpsDeskError as e:
            log.error("orchestrator.undo_failed", message_id=message_id, error=str(e))
            return self._synth.error("Couldn't undo that", detail=str(e))
        except Exception as e:
            log.error("orchestrator.undo_error", message_id=message_id, error=str(e), exc_info=True)
            return self._synth.error("Couldn't undo that", detail=str(e))
        return AgentResponse(
            kind=ResponseKind.UNDO,
            text=receipt.text,
            session_id=receipt.reply.session_id,
            message_id=receipt.reply.id,
        )

    async def undo_last(self, session_id: str, n: int = 1) -> AgentResponse:
        """Undo the n-th most recent undoable message of a session (1 = latest)."""
        try:
            candidates = await self.undo_ledger.undoable(session_id)
        except Exception as e:
            log.error("orchestrator.undo_error", session_id=session_id, error=str(e), exc_info=True)
            return self._synth.error("Couldn't undo that", detail=str(e), session_id=session_id)
        if n < 1 or n > len(candidates):
            return self._synth.error("Nothing to undo", session_id=session_id)
        return await self.undo(candidates[n - 1].id)

    # ─────────────────────────────────────────────────────────────────────────
    # Public: ReAct
    # ─────────────────────────────────────────────────────────────────────────

    async def run_react(
        self,
        session_id: Optional[str],
        goal: str,
        on_event: Optional[EventSink] = None,
    ) -> AgentResponse:
        """Work towards `goal` with the reason → act → observe loop."""
        try:
            session = await self._session_for(session_id, goal)
        except Exception as e:
            log.error("orchestrator.session_error", error=str(e), exc_info=True)
            return self._synth.error("Couldn't open the conversation", detail=str(e))

        now = self._clock()
        ctx = session.begin_turn(now, on_event)
        bind_session(session.id, ctx.turn_id)
        session.take_decision()
        try:
            base = await self._ctx.build(session.id, None, now)
            await self._chat_log.append_message(session.id, "user", goal)
            result = await self._react.run(goal, base, ctx)

            undo = collect_undo(result.results)
            message = await self._chat_log.append_message(session.id, "assistant", result.message)
            if undo is not None:
                await self.undo_ledger.record_undo(message.id, undo, action_type="REACT")
            if result.decision is not None:
                session.offer_decision(result.decision, message.id)
                ctx.emit(DecisionRequiredEvent(
                    message=result.decision.message,
                    options=[o.label for o in result.decision.options],
                ))
            ctx.emit(SummaryEvent(text=result.message, message_id=message.id, undoable=undo is not None))

            kind = {
                ReactStatus.DONE: ResponseKind.REACT,
                ReactStatus.CANCELLED: ResponseKind.CANCELLED,
            }.get(result.status, ResponseKind.ERROR)
            return AgentResponse(
                kind=kind,
                text=result.message,
                session_id=session.id,
                message_id=message.id,
                results=result.results,
                undoable=undo is not None,
                trace=result.trace,
                options=[o.label for o in result.decision.options] if result.decision else [],
                metadata={"status": result.status.value, "iterations": result.iterations},
            )
        except Exception as e:
            log.error("orchestrator.react_error", error=str(e), exc_info=True)
            return self._synth.error("Something went wrong", detail=str(e), session_id=session.id)
        finally:
            session.end_turn(ctx)
            clear_session()

    # ─────────────────────────────────────────────────────────────────────────
    # Public: sessions
    # ─────────────────────────────────────────────────────────────────────────

    def cancel(self, session_id: str) -> bool:
        """Cancel the session's live turn. Applied mutations are kept."""
        session = self._sessions.get(session_id)
        return session.cancel() if session else False

    async def list_sessions(self, limit: int = 50) -> list[ChatSession]:
        return await self._chat_log.list_sessions(limit=limit)

    async def delete_session(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is not None:
            session.cancel()
        return await self._chat_log.delete_session(session_id)

    async def history(self, session_id: str) -> list[ChatMessage]:
        return await self._chat_log.list_messages(session_id)

    # ─────────────────────────────────────────────────────────────────────────
    # Outcome handling
    # ─────────────────────────────────────────────────────────────────────────

    async def _handle_outcome(self, session: Session, ctx: TurnContext, outcome: Outcome) -> AgentResponse:
        if isinstance(outcome, BatchOutcome):
            return await self._execute(session, ctx, outcome.actions)
        if isinstance(outcome, ActionOutcome):
            return await self._execute(session, ctx, [outcome.action])

        if isinstance(outcome, DecisionOutcome):
            labels = [o.label for o in outcome.options]
            text = self._synth.decision_text(outcome.message, labels)
            message = await self._chat_log.append_message(session.id, "assistant", text)
            session.offer_decision(outcome, message.id)
            ctx.emit(DecisionRequiredEvent(message=outcome.message, options=labels))
            return AgentResponse(
                kind=ResponseKind.DECISION,
                text=text,
                session_id=session.id,
                message_id=message.id,
                options=labels,
            )

        if isinstance(outcome, QuestionOutcome):
            return await self._reply(session, ctx, ResponseKind.QUESTION, outcome.message)
        if isinstance(outcome, ReplyOutcome):
            return await self._reply(session, ctx, ResponseKind.REPLY, outcome.message)
        if isinstance(outcome, ReasoningOutcome):
            return await self._reply(session, ctx, ResponseKind.REPLY, outcome.thought)

        raise TypeError(f"Unhandled outcome {type(outcome).__name__}")

    async def _execute(
        self, session: Session, ctx: TurnContext, actions: list[ActionRequest]
    ) -> AgentResponse:
        report: ExecutionReport = await self.executor.execute(actions, ctx)
        message = await self._chat_log.append_message(session.id, "assistant", report.summary)
        undo = report.undo
        if undo is not None:
            await self.undo_ledger.record_undo(message.id, undo, action_type=report.action_type)
        ctx.emit(SummaryEvent(text=report.summary, message_id=message.id, undoable=undo is not None))
        return AgentResponse(
            kind=ResponseKind.CANCELLED if report.cancelled else ResponseKind.SUMMARY,
            text=report.summary,
            session_id=session.id,
            message_id=message.id,
            results=report.results,
            navigate=report.navigate,
            undoable=undo is not None,
            metadata={"mode": report.mode, "duration_ms": round(report.duration_ms, 1)},
        )

    async def _reply(
        self, session: Session, ctx: TurnContext, kind: ResponseKind, text: str
    ) -> AgentResponse:
        message = await self._chat_log.append_message(session.id, "assistant", text)
        ctx.emit(SummaryEvent(text=text, message_id=message.id))
        return AgentResponse(kind=kind, text=text, session_id=session.id, message_id=message.id)

    async def _session_for(self, session_id: Optional[str], first_input: UserInput) -> Session:
        if session_id:
            session = self._sessions.get(session_id)
            if session is not None:
                return session
            stored = await self._chat_log.get_session(session_id)
            if stored is None:
                raise OpsDeskError(f"Unknown session '{session_id}'")
            session = Session(stored.id, stored.title)
        else:
            title = VOICE_NOTE_LABEL if isinstance(first_input, InlineMedia) else first_input
            stored = await self._chat_log.create_session(title.strip()[:TITLE_MAX_CHARS] or "New chat")
            session = Session(stored.id, stored.title)
            log.info("orchestrator.session_created", session_id=stored.id, title=stored.title)
        self._sessions[session.id] = session
        return session

    # ─────────────────────────────────────────────────────────────────────────
    # Factory
    # ─────────────────────────────────────────────────────────────────────────

    @classmethod
    def from_settings(
        cls,
        settings,
        llm_client: BaseLLMClient,
        store: DomainStore,
        chat_log: ChatLog,
    ) -> "Orchestrator":
        """Create an Orchestrator from the OpsDesk Settings object."""
        llm_config = LLMConfig(
            model=settings.default_llm_model,
            temperature=settings.llm.temperature,
            max_tokens=settings.llm.max_tokens,
        )
        agent = settings.agent
        return cls(
            llm_client=llm_client,
            llm_config=llm_config,
            store=store,
            chat_log=chat_log,
            agent_name=agent.name,
            timezone=agent.timezone,
            max_react_iterations=agent.max_react_iterations,
            turn_timeout_seconds=agent.max_turn_timeout_seconds,
            context_max_open_items=agent.context_max_open_items,
            history_turns=agent.history_turns,
            progress_clear_delay=agent.progress_clear_delay_seconds,
            action_timeout_seconds=agent.action_timeout_seconds,
        )
