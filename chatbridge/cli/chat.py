"""Interactive chat session handler."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from typing import Any, Iterator

from rich.console import Console

from chatbridge.cli.output import OutputFormatter
from chatbridge.llm.types import ROLE_ASSISTANT, ROLE_USER, Message
from chatbridge.orchestrator.conductor import Conductor
from chatbridge.orchestrator.core import ChatOrchestrator, RunOptions
from chatbridge.orchestrator.sink import CallbackSink
from chatbridge.session.store import ChatStore
from chatbridge.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


class ChatHandler:
    """
    Manages the interactive chat loop.

    Streams assistant text to the console as it arrives, shows tool
    activity, and lets Ctrl-C cancel a response in flight while keeping
    the partial text.
    """

    def __init__(
        self,
        orchestrator: ChatOrchestrator,
        conductor: Conductor,
        tools: ToolRegistry,
        store: ChatStore,
        chat_id: str,
        console: Console | None = None,
        use_conductor: bool = False,
    ) -> None:
        self.orchestrator = orchestrator
        self.conductor = conductor
        self.tools = tools
        self.store = store
        self.chat_id = chat_id
        self.console = console or Console()
        self.formatter = OutputFormatter(self.console)
        self.use_conductor = use_conductor
        self.conversation: list[Message] = []
        self.last_debug: dict[str, Any] | None = None
        self._cancel: asyncio.Event | None = None
        self._running = True

    async def load_history(self) -> None:
        self.conversation = await self.store.load(self.chat_id)

    def cancel(self) -> None:
        """Stop the response in flight; whatever streamed so far is kept."""
        if self.use_conductor:
            self.conductor.cancel()
        elif self._cancel is not None:
            self._cancel.set()

    async def handle_command(self, command: str) -> bool:
        """
        Handle inline commands. Returns True if the command was handled.
        """
        parts = command.strip().split(None, 1)
        cmd = parts[0].lower()
        arg = parts[1] if len(parts) > 1 else ""

        if cmd == "/quit":
            self._running = False
            self.console.print("[dim]Goodbye.[/dim]")
            return True

        if cmd == "/history":
            self.formatter.format_messages(self.conversation)
            return True

        if cmd == "/tools":
            tools = self.tools.list()
            self.formatter.format_tool_list(
                tools, {t.name for t in tools if self.tools.is_enabled(t.name)}
            )
            return True

        if cmd == "/conductor":
            if arg in ("on", "off"):
                self.use_conductor = arg == "on"
            else:
                self.use_conductor = not self.use_conductor
            state = "on" if self.use_conductor else "off"
            self.console.print(f"  Conductor mode: [bold]{state}[/bold]")
            return True

        if cmd == "/debug":
            self.formatter.format_debug(self.last_debug)
            return True

        if cmd == "/help":
            self.console.print(
                "  [bold]Commands:[/bold]\n"
                "  /quit       - Exit the chat\n"
                "  /history    - Show this chat's messages\n"
                "  /tools      - List available tools\n"
                "  /conductor  - Toggle phased conductor mode (on|off)\n"
                "  /debug      - Show the debug sequence of the last response\n"
                "  /help       - Show this help\n"
                "  [dim]Ctrl-C while a response streams cancels it.[/dim]\n"
            )
            return True

        return False

    async def handle_input(self, user_input: str) -> None:
        """Persist the user message, then stream the assistant's reply."""
        first = not self.conversation
        message = Message(role=ROLE_USER, content=user_input)
        self.conversation.append(message)
        await self.store.save(self.chat_id, message)
        if first:
            await self.store.rename_chat(self.chat_id, new_chat_title(user_input))

        sink = CallbackSink(lambda text: self.console.print(text, end="", markup=False))
        try:
            with self._interruptible():
                if self.use_conductor:
                    await self._run_conductor(sink)
                else:
                    await self._run_single(sink)
        except Exception as e:
            logger.exception("Chat turn failed")
            self.console.print(f"\n[red]Error:[/red] {e}")
            return

        # Newline after streaming
        self.console.print()

    async def _run_single(self, sink: CallbackSink) -> None:
        self._cancel = asyncio.Event()
        options = RunOptions(
            cancel_event=self._cancel,
            conversation_id=self.chat_id,
        )
        bus = self.orchestrator.bus
        bus.add_listener(options.request_id, self.formatter.format_tool_event)
        try:
            outcome = await self.orchestrator.run(
                self.conversation, self.tools.catalog(), options, sink
            )
            self.last_debug = self.orchestrator.debug.get(options.request_id)
        finally:
            self._cancel = None
            bus.release(options.request_id)
            self.orchestrator.debug.release(options.request_id)

        self.conversation.extend(outcome.messages)
        if outcome.partial:
            self.console.print("\n[dim](cancelled)[/dim]", end="")

    async def _run_conductor(self, sink: CallbackSink) -> None:
        result = await self.conductor.run(
            self.conversation, self.tools.catalog(), self.chat_id, sink
        )
        self.conversation.extend(result.messages)
        self.last_debug = result.debug

        final = next(
            (m for m in reversed(result.messages) if m.role == ROLE_ASSISTANT), None
        )
        if final is not None:
            await self.store.save(self.chat_id, final, debug=result.debug)
        if result.partial:
            self.console.print("\n[dim](cancelled)[/dim]", end="")

    def on_phase(self, phase: int, max_phases: int) -> None:
        self.console.print(f"\n[magenta][phase {phase}][/magenta] ", end="")

    @contextlib.contextmanager
    def _interruptible(self) -> Iterator[None]:
        """Route SIGINT to ``cancel`` while a response is streaming."""
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, self.cancel)
        except (NotImplementedError, RuntimeError):
            yield
            return
        try:
            yield
        finally:
            loop.remove_signal_handler(signal.SIGINT)

    async def run_loop(self) -> None:
        """Main interactive loop."""
        mode = "conductor" if self.use_conductor else "direct"
        self.console.print(
            f"[bold]chatbridge[/bold] - chat {self.chat_id} ({mode} mode)\n"
            "[dim]Type /help for commands, /quit to exit.[/dim]\n"
        )

        while self._running:
            try:
                user_input = await asyncio.get_event_loop().run_in_executor(
                    None, lambda: input("you> ").strip()
                )
            except (EOFError, KeyboardInterrupt):
                self.console.print("\n[dim]Goodbye.[/dim]")
                break

            if not user_input:
                continue

            if user_input.startswith("/"):
                handled = await self.handle_command(user_input)
                if handled:
                    continue

            self.console.print("[dim]assistant>[/dim] ", end="")
            await self.handle_input(user_input)


def new_chat_title(text: str, limit: int = 60) -> str:
    title = " ".join(text.split())
    return title if len(title) <= limit else title[: limit - 3] + "..."
