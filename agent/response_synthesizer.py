"""
agent/response_synthesizer.py — Events and Responses

Typed transport events emitted during a turn, the AgentResponse returned
when it ends, and the ResponseSynthesizer that turns execution results
and interpreter outcomes into user-facing text.

Events (delivered to the per-turn sink, in order):
    ProgressEvent          executing → summarizing → complete (→ cleared)
    NavigateEvent          at most one per turn
    DecisionRequiredEvent  the user has to pick an option
    SummaryEvent           the final sentence(s) for the turn
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from tools.types import ActionResult

ENGINE_UNAVAILABLE_MESSAGE = "Sorry, I couldn't reach the assistant right now. Please try again."
CANCELLED_MESSAGE = "Stopped. Anything already done has been kept."


# ─────────────────────────────────────────────────────────────────────────────
# Transport events
# ─────────────────────────────────────────────────────────────────────────────


class ProgressStatus(str, Enum):
    EXECUTING = "executing"
    SUMMARIZING = "summarizing"
    COMPLETE = "complete"
    CLEARED = "cleared"


@dataclass
class ProgressEvent:
    status: ProgressStatus
    total: int = 0
    current: int = 0
    current_action: Optional[str] = None


@dataclass
class NavigateEvent:
    path: str


@dataclass
class DecisionRequiredEvent:
    message: str
    options: list[str] = field(default_factory=list)


@dataclass
class SummaryEvent:
    text: str
    message_id: Optional[str] = None
    undoable: bool = False


TransportEvent = Union[ProgressEvent, NavigateEvent, DecisionRequiredEvent, SummaryEvent]


# ─────────────────────────────────────────────────────────────────────────────
# Turn response
# ─────────────────────────────────────────────────────────────────────────────


class ResponseKind(str, Enum):
    SUMMARY = "summary"         # actions ran
    REPLY = "reply"
    QUESTION = "question"
    DECISION = "decision"
    UNDO = "undo"
    REACT = "react"
    CANCELLED = "cancelled"
    ERROR = "error"


@dataclass
class AgentResponse:
    """
    What a turn (or a choose/undo call) hands back to the interface.

    Always has `text`; the other fields are set for specific kinds.
    """
    kind: ResponseKind
    text: str
    session_id: Optional[str] = None
    message_id: Optional[str] = None            # assistant chat message for this turn
    results: list[ActionResult] = field(default_factory=list)
    navigate: Optional[str] = None
    options: list[str] = field(default_factory=list)
    undoable: bool = False
    trace: list[Any] = field(default_factory=list)   # ReasoningIteration, ReAct only
    metadata: dict = field(default_factory=dict)

    @property
    def is_error(self) -> bool:
        return self.kind == ResponseKind.ERROR

    def __str__(self) -> str:
        return self.text


# ─────────────────────────────────────────────────────────────────────────────
# Synthesizer
# ─────────────────────────────────────────────────────────────────────────────


class ResponseSynthesizer:
    """Formats execution results and outcomes into display text."""

    # ── Execution summary ─────────────────────────────────────────────────────

    @staticmethod
    def summarize(results: list[ActionResult]) -> str:
        """
        One success     → that result's message
        All successes   → "Completed n actions:" + one bullet each
        Otherwise       → "Completed s of n actions." plus " f failed:" and
                          one "• kind: reason" bullet per failure when
                          any failed, then "k not executed." when
                          actions were skipped
        """
        total = len(results)
        if total == 0:
            return "Nothing to do."

        succeeded = [r for r in results if r.success]
        failed = [r for r in results if not r.success and not r.skipped]
        skipped = [r for r in results if r.skipped]

        if len(succeeded) == total:
            if total == 1:
                return succeeded[0].message or f"{succeeded[0].kind} done."
            lines = [f"Completed {total} actions:"]
            lines += [f"• {r.message or r.kind}" for r in succeeded]
            return "\n".join(lines)

        head = f"Completed {len(succeeded)} of {total} actions."
        if failed:
            head += f" {len(failed)} failed:"
        lines = [head]
        lines += [f"• {r.kind}: {r.error or 'unknown error'}" for r in failed]
        if skipped:
            lines.append(f"{len(skipped)} not executed.")
        return "\n".join(lines)

    # ── Outcomes ──────────────────────────────────────────────────────────────

    @staticmethod
    def decision_text(message: str, labels: list[str]) -> str:
        lines = [message or "Which one did you mean?"]
        lines += [f"  {i}. {label}" for i, label in enumerate(labels, start=1)]
        return "\n".join(lines)

    # ── Failures ──────────────────────────────────────────────────────────────

    def engine_unavailable(self, session_id: Optional[str] = None) -> AgentResponse:
        return AgentResponse(
            kind=ResponseKind.ERROR,
            text=ENGINE_UNAVAILABLE_MESSAGE,
            session_id=session_id,
        )

    def cancelled(self, session_id: Optional[str] = None) -> AgentResponse:
        return AgentResponse(kind=ResponseKind.CANCELLED, text=CANCELLED_MESSAGE, session_id=session_id)

    def error(self, message: str, detail: str = "", session_id: Optional[str] = None) -> AgentResponse:
        text = f"{message}: {detail}" if detail else message
        return AgentResponse(kind=ResponseKind.ERROR, text=text, session_id=session_id)
