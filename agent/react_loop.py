"""
agent/react_loop.py — ReAct Loop Controller

Drives a multi-step "reason → act → observe" run for one goal.

Each iteration is one reasoning call. Iteration 0 sends the goal; later
iterations send CONTINUE_PROMPT. The interpreted outcome decides what
happens next:

    Reasoning + action    execute it, append "Previous action result: ..."
                          as a system entry, loop
    Reasoning, no action  record the thought, loop
    Action / Batch        execute, then Done
    Question / Reply      Done with the engine's message
    Decision              Done; the orchestrator holds the options

max_iterations is a hard cap on reasoning calls. Running out returns
Incomplete with the full trace; an unreachable engine returns Failed with
the trace so far.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from agent.executor import Executor
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
from agent.response_synthesizer import ENGINE_UNAVAILABLE_MESSAGE, CANCELLED_MESSAGE
from agent.session import TurnContext
from brain.llm_client import BaseLLMClient
from brain.types import LLMConfig, Message
from exceptions import IterationLimitError, LLMError, TurnCancelledError
from observability.logger import get_logger
from tools.tool_registry import llm_tool_schemas
from tools.types import ActionRequest, ActionResult

log = get_logger(__name__)

DEFAULT_MAX_ITERATIONS = 5
CONTINUE_PROMPT = "Continue with the next step based on previous results"


class ReactStatus(str, Enum):
    DONE = "done"
    INCOMPLETE = "incomplete"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class ReasoningIteration:
    index: int
    thought: str = ""
    action: Optional[ActionRequest] = None
    observation: Optional[str] = None


@dataclass
class ReactResult:
    status: ReactStatus
    message: str
    trace: list[ReasoningIteration] = field(default_factory=list)
    results: list[ActionResult] = field(default_factory=list)
    decision: Optional[DecisionOutcome] = None

    @property
    def success(self) -> bool:
        return self.status == ReactStatus.DONE

    @property
    def iterations(self) -> int:
        return len(self.trace)


class ReactLoop:
    """
    Usage:
        loop = ReactLoop(llm, llm_config, executor, max_iterations=5)
        result = await loop.run("Find overdue tasks and mark them done", messages, ctx)
    """

    def __init__(
        self,
        llm_client: BaseLLMClient,
        llm_config: LLMConfig,
        executor: Executor,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
    ):
        self._llm = llm_client
        self._config = llm_config
        self._executor = executor
        self._max_iter = max_iterations

    async def run(
        self,
        goal: str,
        base_messages: list[Message],
        ctx: TurnContext,
    ) -> ReactResult:
        """
        Args:
            goal:          the user's goal, sent on iteration 0.
            base_messages: system prompt + history (no trailing user entry).
            ctx:           the turn's context; cancellation stops the loop
                           before the next reasoning call.
        """
        messages = list(base_messages)
        trace: list[ReasoningIteration] = []
        results: list[ActionResult] = []
        tools = llm_tool_schemas(include_react=True)
        t0 = time.monotonic()

        log.info("react.start", goal=goal[:120], max_iterations=self._max_iter)

        for index in range(self._max_iter):
            if ctx.cancelled:
                log.info("react.cancelled", iteration=index)
                return ReactResult(ReactStatus.CANCELLED, CANCELLED_MESSAGE, trace, results)

            messages.append(Message.user(goal if index == 0 else CONTINUE_PROMPT))
            try:
                response = await ctx.race(
                    self._llm.generate(messages=messages, config=self._config, tools=tools)
                )
            except TurnCancelledError:
                log.info("react.cancelled", iteration=index, stage="engine")
                return ReactResult(ReactStatus.CANCELLED, CANCELLED_MESSAGE, trace, results)
            except LLMError as e:
                log.error("react.engine_failed", iteration=index, error=str(e))
                return ReactResult(ReactStatus.FAILED, ENGINE_UNAVAILABLE_MESSAGE, trace, results)

            outcome = interpret(response, react=True)
            log.debug("react.iteration", index=index, outcome=type(outcome).__name__)

            if isinstance(outcome, ReasoningOutcome):
                step = ReasoningIteration(index=index, thought=outcome.thought,
                                          action=outcome.next_action)
                trace.append(step)
                if outcome.thought:
                    messages.append(Message.assistant(outcome.thought))
                if outcome.next_action is not None:
                    if ctx.cancelled:
                        return ReactResult(ReactStatus.CANCELLED, CANCELLED_MESSAGE, trace, results)
                    report = await self._executor.execute([outcome.next_action], ctx)
                    result = report.results[0]
                    results.append(result)
                    step.observation = result.observation()
                    messages.append(Message.system(f"Previous action result: {step.observation}"))
                continue

            done = await self._finish(index, outcome, trace, results, ctx)
            log.info(
                "react.done",
                iterations=len(trace),
                actions=len(results),
                ms=round((time.monotonic() - t0) * 1000),
            )
            return done

        message = str(IterationLimitError(self._max_iter))
        log.warning("react.max_iterations", iterations=self._max_iter)
        return ReactResult(ReactStatus.INCOMPLETE, message, trace, results)

    async def _finish(
        self,
        index: int,
        outcome: Outcome,
        trace: list[ReasoningIteration],
        results: list[ActionResult],
        ctx: TurnContext,
    ) -> ReactResult:
        if isinstance(outcome, (ActionOutcome, BatchOutcome)):
            actions = [outcome.action] if isinstance(outcome, ActionOutcome) else outcome.actions
            engine_message = outcome.message if isinstance(outcome, ActionOutcome) else outcome.summary
            report = await self._executor.execute(actions, ctx)
            results.extend(report.results)
            trace.append(ReasoningIteration(
                index=index,
                thought=engine_message,
                action=actions[0] if len(actions) == 1 else None,
                observation=report.summary,
            ))
            if report.cancelled:
                return ReactResult(ReactStatus.CANCELLED, report.summary, trace, results)
            message = engine_message if report.all_succeeded and engine_message else report.summary
            return ReactResult(ReactStatus.DONE, message, trace, results)

        if isinstance(outcome, DecisionOutcome):
            trace.append(ReasoningIteration(index=index, thought=outcome.message))
            return ReactResult(ReactStatus.DONE, outcome.message, trace, results, decision=outcome)

        if isinstance(outcome, (QuestionOutcome, ReplyOutcome)):
            trace.append(ReasoningIteration(index=index, thought=outcome.message))
            return ReactResult(ReactStatus.DONE, outcome.message, trace, results)

        raise TypeError(f"Unhandled outcome {type(outcome).__name__}")
