"""
agent/executor.py — Execution Engine

Runs a list of ActionRequests against the ToolBus and reports back.

Classification:
  - sequential  if any action is a dependency kind (QUERY_DATABASE,
                SEND_PORTAL_MESSAGE): emitted order, fail-fast; everything
                after the first failure is reported as skipped
  - parallel    otherwise: asyncio.gather fan-out, each action isolated,
                results kept in request order

Progress: `executing` before each sequential action (or once before the
parallel dispatch), then `summarizing`, then `complete`, then `cleared`
after progress_clear_delay seconds when that is set. The first navigation
hint among the results becomes the turn's single NavigateEvent.

Cancellation stops actions that have not been issued yet; what already ran
stays applied. Nothing raises out of execute().

Usage:
    executor = Executor(bus, progress_clear_delay=2.0)
    report = await executor.execute(actions, ctx)
    print(report.summary)
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from agent.response_synthesizer import (
    NavigateEvent,
    ProgressEvent,
    ProgressStatus,
    ResponseSynthesizer,
)
from agent.session import TurnContext
from agent.utils import fire_and_forget
from observability.logger import get_logger
from tools.tool_bus import ToolBus
from tools.types import ActionRequest, ActionResult, UndoDescriptor

log = get_logger(__name__)

SKIPPED_AFTER_FAILURE = "Not executed: an earlier action failed"
SKIPPED_CANCELLED = "Not executed: the turn was cancelled"


@dataclass
class ExecutionReport:
    results: list[ActionResult]
    mode: str                                   # "parallel" | "sequential"
    summary: str = ""
    navigate: Optional[str] = None
    cancelled: bool = False
    duration_ms: float = 0.0
    requests: list[ActionRequest] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def all_succeeded(self) -> bool:
        return bool(self.results) and self.succeeded == len(self.results)

    @property
    def undo(self) -> Optional[UndoDescriptor]:
        return collect_undo(self.results)

    @property
    def action_type(self) -> str:
        kinds = {r.kind for r in self.results if r.undo is not None}
        return kinds.pop() if len(kinds) == 1 else "BATCH"


def collect_undo(results: list[ActionResult]) -> Optional[UndoDescriptor]:
    """
    Undo for a set of results: None when nothing is reversible, the single
    descriptor for one, a COMPOSITE (apply order) for several.
    """
    steps = [r.undo for r in results if r.success and r.undo is not None]
    if not steps:
        return None
    if len(steps) == 1:
        return steps[0]
    return UndoDescriptor.composite(steps)


def is_sequential(actions: list[ActionRequest]) -> bool:
    return any(a.action_kind is not None and a.action_kind.is_dependency for a in actions)


class Executor:
    """
    Executes batches of actions. Stateless between calls; safe to share
    across concurrent turns.
    """

    def __init__(self, bus: ToolBus, progress_clear_delay: Optional[float] = None):
        self._bus = bus
        self._clear_delay = progress_clear_delay

    async def execute(
        self,
        actions: list[ActionRequest],
        ctx: Optional[TurnContext] = None,
    ) -> ExecutionReport:
        if ctx is None:
            ctx = TurnContext(session_id="-", now=datetime.now(timezone.utc))

        t0 = time.monotonic()
        sequential = is_sequential(actions)
        mode = "sequential" if sequential else "parallel"
        log.info("executor.batch_start", mode=mode, total=len(actions), turn_id=ctx.turn_id)

        if sequential:
            results, cancelled = await self._run_sequential(actions, ctx)
        else:
            results, cancelled = await self._run_parallel(actions, ctx)

        ctx.emit(ProgressEvent(status=ProgressStatus.SUMMARIZING, total=len(actions),
                               current=len(actions)))
        report = ExecutionReport(
            results=results,
            mode=mode,
            summary=ResponseSynthesizer.summarize(results),
            navigate=next((r.navigate for r in results if r.success and r.navigate), None),
            cancelled=cancelled,
            duration_ms=(time.monotonic() - t0) * 1000,
            requests=list(actions),
        )
        if report.navigate:
            ctx.emit(NavigateEvent(path=report.navigate))
        ctx.emit(ProgressEvent(status=ProgressStatus.COMPLETE, total=len(actions),
                               current=len(actions)))
        if self._clear_delay:
            fire_and_forget(self._clear_later(ctx), label="progress_clear")

        log.info(
            "executor.batch_done",
            mode=mode,
            total=len(results),
            succeeded=report.succeeded,
            cancelled=cancelled,
            ms=round(report.duration_ms),
        )
        return report

    # ── Modes ─────────────────────────────────────────────────────────────────

    async def _run_parallel(
        self, actions: list[ActionRequest], ctx: TurnContext
    ) -> tuple[list[ActionResult], bool]:
        if ctx.cancelled:
            return [ActionResult.skip(a.kind, SKIPPED_CANCELLED) for a in actions], True

        ctx.emit(ProgressEvent(
            status=ProgressStatus.EXECUTING,
            total=len(actions),
            current=0,
            current_action=f"{len(actions)} actions in parallel" if len(actions) > 1
            else (actions[0].label() if actions else None),
        ))

        # Pre-sized so each result lands at its request's position
        results: list[Optional[ActionResult]] = [None] * len(actions)
        outcomes = await asyncio.gather(
            *(self._bus.dispatch(a) for a in actions),
            return_exceptions=True,
        )
        for idx, (action, outcome) in enumerate(zip(actions, outcomes)):
            if isinstance(outcome, BaseException):
                log.error("executor.dispatch_raised", kind=action.kind, error=str(outcome))
                results[idx] = ActionResult.fail(action.kind, str(outcome) or type(outcome).__name__)
            else:
                results[idx] = outcome
        return results, False  # type: ignore[return-value]

    async def _run_sequential(
        self, actions: list[ActionRequest], ctx: TurnContext
    ) -> tuple[list[ActionResult], bool]:
        results: list[ActionResult] = []
        for idx, action in enumerate(actions):
            if ctx.cancelled:
                log.info("executor.cancelled", done=idx, remaining=len(actions) - idx)
                results += [ActionResult.skip(a.kind, SKIPPED_CANCELLED) for a in actions[idx:]]
                return results, True

            ctx.emit(ProgressEvent(
                status=ProgressStatus.EXECUTING,
                total=len(actions),
                current=idx + 1,
                current_action=action.label(),
            ))
            result = await self._bus.dispatch(action)
            results.append(result)

            if not result.success:
                log.warning("executor.halted", kind=action.kind, index=idx, error=result.error)
                results += [ActionResult.skip(a.kind, SKIPPED_AFTER_FAILURE) for a in actions[idx + 1:]]
                break
        return results, False

    async def _clear_later(self, ctx: TurnContext) -> None:
        await asyncio.sleep(self._clear_delay or 0)
        ctx.emit(ProgressEvent(status=ProgressStatus.CLEARED))
