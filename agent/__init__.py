"""
agent/ — OpsDesk Conversational Action Orchestrator

Public API:
    from agent import Orchestrator, AgentResponse

Component overview:
    ContextBuilder      Bounded context block + history for the engine
    interpret           Engine response → one tagged Outcome
    expand              Weekday-range / continuation fallback for CREATE_TASK
    Executor            Parallel or sequential fail-fast batch execution
    UndoLedger          Per-message reversible action records
    ReactLoop           reason → act → observe, bounded by max_iterations
    Session             Live turn token + pending Decision per chat session
    ResponseSynthesizer Summary text, typed transport events
    Orchestrator        One conversational turn end to end
"""

from agent.context_builder import ContextBuilder
from agent.executor import ExecutionReport, Executor
from agent.expansion import expand
from agent.interpreter import interpret
from agent.orchestrator import Orchestrator
from agent.react_loop import ReactLoop, ReactResult, ReactStatus, ReasoningIteration
from agent.response_synthesizer import AgentResponse, ResponseKind, ResponseSynthesizer
from agent.session import CancellationToken, Session, TurnContext
from agent.undo import UndoLedger, UndoReceipt

__all__ = [
    "Orchestrator",
    "AgentResponse",
    "ResponseKind",
    "ResponseSynthesizer",
    "ContextBuilder",
    "Executor",
    "ExecutionReport",
    "ReactLoop",
    "ReactResult",
    "ReactStatus",
    "ReasoningIteration",
    "Session",
    "TurnContext",
    "CancellationToken",
    "UndoLedger",
    "UndoReceipt",
    "interpret",
    "expand",
]
