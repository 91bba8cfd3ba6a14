"""
interfaces/cli.py — OpsDesk CLI Interface

Interactive REPL over the orchestrator.
Uses rich for terminal rendering and aioconsole for async input.

Features:
  - Live progress lines from ProgressEvents, navigation hints, decisions
  - Turns run in the background so /cancel works mid-turn; sending a new
    message while a turn is running cancels the older one
  - /undo [n], /choose <n>, /react <goal>, /audio <path>, /sessions, /new,
    /delete <id>, /cancel, /help
  - Graceful Ctrl+C / Ctrl+D handling

Usage:
    python main.py
    python main.py --log-level DEBUG --seed data/seed.yaml
"""

from __future__ import annotations

import asyncio
import base64
import mimetypes
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Optional

import aioconsole
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table
from rich import box

from agent.orchestrator import Orchestrator
from agent.response_synthesizer import (
    AgentResponse,
    DecisionRequiredEvent,
    NavigateEvent,
    ProgressEvent,
    ProgressStatus,
    ResponseKind,
    SummaryEvent,
    TransportEvent,
)
from brain.types import InlineMedia
from config.settings import Settings
from observability.logger import get_logger

log = get_logger(__name__)

_HELP_TEXT = """
## OpsDesk CLI Commands

| Command | Description |
|---------|-------------|
| `<message>` | Ask for something: "Monday to Friday, 8 to 2:30, work" |
| `/react <goal>` | Work towards a goal step by step (reason → act → observe) |
| `/audio <path>` | Send a recorded voice note to the assistant |
| `/choose <n>` | Pick option n of the pending decision |
| `/undo [n]` | Undo the latest action, or the n-th most recent one |
| `/sessions` | List chat sessions |
| `/new` | Start a new chat session |
| `/delete <id>` | Delete a chat session and its messages |
| `/cancel` | Stop the running turn (finished actions are kept) |
| `/help` | Show this help message |
| `exit` / `quit` / Ctrl+D | Exit OpsDesk |
"""

_KIND_STYLES = {
    ResponseKind.SUMMARY: ("green", None),
    ResponseKind.REACT: ("green", "ReAct"),
    ResponseKind.UNDO: ("magenta", "Undo"),
    ResponseKind.REPLY: ("cyan", None),
    ResponseKind.QUESTION: ("yellow", "Question"),
    ResponseKind.DECISION: ("yellow", "Choose one"),
    ResponseKind.CANCELLED: ("yellow", "Cancelled"),
    ResponseKind.ERROR: ("red", "Error"),
}


class CLIInterface:
    """
    Rich-powered REPL for OpsDesk.

    The orchestrator is built by main.py and injected.
    """

    def __init__(self, settings: Settings, orchestrator: Orchestrator):
        self.settings = settings
        self.console = Console()
        self._orchestrator = orchestrator
        self._session_id: Optional[str] = None
        self._running_task: Optional[asyncio.Task] = None
        self._shutdown = asyncio.Event()

    # ── Startup ───────────────────────────────────────────────────────────────

    async def start(self) -> None:
        self._print_banner()
        try:
            await self._repl_loop()
        finally:
            await self._cleanup()

    def _print_banner(self) -> None:
        agent = self.settings.agent
        self.console.print(
            Panel(
                f"[bold]{agent.name}[/] v{agent.version}  ·  "
                f"LLM: [cyan]{self.settings.default_llm_provider}[/]/"
                f"[cyan]{self.settings.default_llm_model}[/]  ·  "
                f"TZ: [dim]{agent.timezone}[/]\n\n"
                f"Type your request or [bold]/help[/] for commands. "
                f"[bold]exit[/] or Ctrl+D to quit.",
                border_style="cyan",
                padding=(0, 2),
            )
        )

    def _print_help(self) -> None:
        self.console.print(Markdown(_HELP_TEXT))

    # ── REPL Loop ─────────────────────────────────────────────────────────────

    async def _repl_loop(self) -> None:
        while not self._shutdown.is_set():
            try:
                user_input = await aioconsole.ainput(self._build_prompt())
            except (EOFError, KeyboardInterrupt):
                self.console.print("\n[dim]Goodbye.[/]")
                break

            user_input = user_input.strip()
            if not user_input:
                continue
            if user_input.lower() in ("exit", "quit"):
                self.console.print("[dim]Goodbye.[/]")
                break

            await self._dispatch(user_input)

    def _build_prompt(self) -> str:
        busy = "*" if self._is_busy() else ""
        session = (self._session_id or "new")[:8]
        return f"\033[36m{self.settings.agent.name}[{session}]{busy}\033[0m> "

    # ── Command Dispatch ──────────────────────────────────────────────────────

    async def _dispatch(self, raw: str) -> None:
        """Route input to the correct handler."""
        if not raw.startswith("/"):
            self._start(self._orchestrator.run_turn(self._session_id, raw, self._on_event))
            return

        parts = raw.split(maxsplit=1)
        cmd = parts[0].lower()
        arg = parts[1].strip() if len(parts) > 1 else ""

        handlers = {
            "/help":     lambda _: self._print_help(),
            "/react":    self._cmd_react,
            "/audio":    self._cmd_audio,
            "/choose":   self._cmd_choose,
            "/undo":     self._cmd_undo,
            "/sessions": lambda _: self._cmd_sessions(),
            "/new":      lambda _: self._cmd_new(),
            "/delete":   self._cmd_delete,
            "/cancel":   lambda _: self._cmd_cancel(),
        }
        handler = handlers.get(cmd)
        if handler is None:
            self.console.print(f"[yellow]Unknown command: {cmd}. Type /help for commands.[/]")
            return
        result = handler(arg)
        if asyncio.iscoroutine(result):
            await result

    # ── Commands ──────────────────────────────────────────────────────────────

    def _cmd_react(self, goal: str) -> None:
        if not goal:
            self.console.print("[yellow]Usage: /react <goal>[/]")
            return
        self.console.print(Panel(f"[bold]ReAct[/]\n[dim]{goal}[/]", border_style="yellow", padding=(0, 2)))
        self._start(self._orchestrator.run_react(self._session_id, goal, self._on_event))

    def _cmd_audio(self, path: str) -> None:
        if not path:
            self.console.print("[yellow]Usage: /audio <path>[/]")
            return
        file = Path(path).expanduser()
        if not file.is_file():
            self.console.print(f"[red]No such file: {file}[/]")
            return
        mime_type = mimetypes.guess_type(file.name)[0] or "audio/webm"
        if not mime_type.startswith("audio/"):
            self.console.print(f"[red]Not an audio file: {file.name} ({mime_type})[/]")
            return
        media = InlineMedia(mime_type=mime_type, data=base64.b64encode(file.read_bytes()).decode())
        self._start(self._orchestrator.run_turn(self._session_id, media, self._on_event))

    async def _cmd_choose(self, arg: str) -> None:
        if not arg.isdigit() or self._session_id is None:
            self.console.print("[yellow]Usage: /choose <n> (after a decision was offered)[/]")
            return
        response = await self._orchestrator.choose(self._session_id, int(arg) - 1, self._on_event)
        self._render_response(response)

    async def _cmd_undo(self, arg: str) -> None:
        if self._session_id is None:
            self.console.print("[dim]Nothing to undo yet.[/]")
            return
        if arg and not arg.isdigit():
            self.console.print("[yellow]Usage: /undo [n][/]")
            return
        response = await self._orchestrator.undo_last(self._session_id, int(arg) if arg else 1)
        self._render_response(response)

    async def _cmd_sessions(self) -> None:
        sessions = await self._orchestrator.list_sessions()
        if not sessions:
            self.console.print("[dim]No sessions yet.[/]")
            return
        table = Table(box=box.SIMPLE, show_header=True, header_style="bold cyan")
        table.add_column("ID")
        table.add_column("Title")
        table.add_column("Updated", style="dim")
        for s in sessions:
            marker = " ◀" if s.id == self._session_id else ""
            updated = datetime.fromtimestamp(s.updated_at).strftime("%Y-%m-%d %H:%M")
            table.add_row(s.id + marker, s.title, updated)
        self.console.print(table)

    def _cmd_new(self) -> None:
        self._session_id = None
        self.console.print("[dim]✓ Next message starts a new session.[/]")

    async def _cmd_delete(self, session_id: str) -> None:
        if not session_id:
            self.console.print("[yellow]Usage: /delete <id>[/]")
            return
        if await self._orchestrator.delete_session(session_id):
            if session_id == self._session_id:
                self._session_id = None
            self.console.print(f"[dim]✓ Deleted session {session_id}.[/]")
        else:
            self.console.print(f"[yellow]No session {session_id}.[/]")

    def _cmd_cancel(self) -> None:
        if not self._is_busy() or self._session_id is None:
            self.console.print("[dim]Nothing is currently running to cancel.[/]")
            return
        if self._orchestrator.cancel(self._session_id):
            self.console.print("[yellow]🛑 Cancel signal sent.[/]")
        else:
            self.console.print("[dim]Already cancelling...[/]")

    # ── Turn tasks ────────────────────────────────────────────────────────────

    def _is_busy(self) -> bool:
        return self._running_task is not None and not self._running_task.done()

    def _start(self, turn: Awaitable[AgentResponse]) -> None:
        task = asyncio.ensure_future(turn)
        self._running_task = task
        task.add_done_callback(self._on_turn_done)

    def _on_turn_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error("cli.turn_failed", error=str(exc))
            self.console.print(f"[red]Turn failed: {exc}[/]")
            return
        response: AgentResponse = task.result()
        if response.session_id:
            self._session_id = response.session_id
        self._render_response(response)

    # ── Rendering ─────────────────────────────────────────────────────────────

    def _on_event(self, event: TransportEvent) -> None:
        if isinstance(event, ProgressEvent):
            if event.status == ProgressStatus.EXECUTING and event.current_action:
                step = f"{event.current}/{event.total}" if event.current else f"{event.total}"
                self.console.print(f"  [dim cyan]⚙️ {event.current_action} ({step})[/]")
        elif isinstance(event, NavigateEvent):
            self.console.print(f"  [bold blue]→ {event.path}[/]")
        elif isinstance(event, (DecisionRequiredEvent, SummaryEvent)):
            # The final AgentResponse carries the same text
            log.debug("cli.event", event=type(event).__name__)

    def _render_response(self, response: AgentResponse) -> None:
        text = response.text.strip() if response.text else ""
        if not text:
            return
        colour, title = _KIND_STYLES.get(response.kind, ("cyan", None))
        if response.undoable:
            text += "\n\n_/undo to reverse_"
        if response.kind == ResponseKind.DECISION:
            text += "\n\n_/choose <n> to pick_"
        self.console.print(
            Panel(
                Markdown(text),
                title=f"[{colour}]{title}[/]" if title else None,
                border_style=colour,
                padding=(0, 2),
            )
        )

    # ── Cleanup ───────────────────────────────────────────────────────────────

    async def _cleanup(self) -> None:
        if self._is_busy() and self._session_id:
            self._orchestrator.cancel(self._session_id)
        log.info("cli.shutdown", session_id=self._session_id)


# ── Public entry point ────────────────────────────────────────────────────────


async def run_cli(settings: Settings, orchestrator: Orchestrator) -> None:
    """Entry point called from main.py."""
    cli = CLIInterface(settings=settings, orchestrator=orchestrator)
    log.info("cli.starting")
    try:
        await cli.start()
    except KeyboardInterrupt:
        log.info("cli.interrupted")
