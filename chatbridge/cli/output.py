"""Output formatting utilities for the CLI."""

from __future__ import annotations

import json
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from chatbridge.llm.types import ROLE_ASSISTANT, ROLE_SYSTEM, ROLE_TOOL, ROLE_USER, Message
from chatbridge.session.events import (
    EVENT_TOOL_EXECUTION_COMPLETE,
    EVENT_TOOL_EXECUTION_START,
    ToolEvent,
)
from chatbridge.tools.base import Tool

ROLE_COLORS = {
    ROLE_USER: "blue",
    ROLE_ASSISTANT: "green",
    ROLE_TOOL: "cyan",
    ROLE_SYSTEM: "dim",
}

STEP_COLORS = {
    "request": "blue",
    "response": "green",
    "tool_execution": "yellow",
    "tool_result": "cyan",
    "error": "red",
    "conductor_api_call": "magenta",
}


class OutputFormatter:
    """Rich-based output formatting for the chatbridge CLI."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Tools / adapters
    # ------------------------------------------------------------------

    def format_tool_list(self, tools: list[Tool], enabled: set[str] | None = None) -> None:
        table = Table(title="Registered Tools", show_lines=True)
        table.add_column("Name", style="cyan", no_wrap=True)
        table.add_column("Enabled", no_wrap=True)
        table.add_column("Description")

        for t in tools:
            on = enabled is None or t.name in enabled
            table.add_row(t.name, Text("yes" if on else "no", style="green" if on else "red"), t.description)

        self.console.print(table)

    def format_adapters(self, names: list[str], selected: str, api_url: str) -> None:
        table = Table(title=f"Adapters (connection: {api_url})")
        table.add_column("Priority", justify="right")
        table.add_column("Adapter", style="cyan")
        table.add_column("Selected")
        for i, name in enumerate(names, start=1):
            table.add_row(str(i), name, "[bold green]*[/bold green]" if name == selected else "")
        self.console.print(table)

    def format_tool_event(self, event: ToolEvent) -> None:
        name = event.data.get("name", "?")
        if event.type == EVENT_TOOL_EXECUTION_START:
            args = json.dumps(event.data.get("arguments", {}), default=str)
            self.console.print(f"\n  [yellow]-> {name}[/yellow]({args[:120]})")
        elif event.type == EVENT_TOOL_EXECUTION_COMPLETE:
            ms = event.data.get("execution_time_ms", 0)
            if event.data.get("status") == "error":
                self.console.print(f"  [red]<- {name} failed[/red] ({ms} ms): {event.data.get('error', '')[:200]}")
            else:
                self.console.print(f"  [cyan]<- {name}[/cyan] ({ms} ms)")

    # ------------------------------------------------------------------
    # Chats
    # ------------------------------------------------------------------

    def format_chat_list(self, chats: list[dict]) -> None:
        if not chats:
            self.console.print("[dim]No chats found.[/dim]")
            return

        table = Table(title="Chats")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Title")
        table.add_column("Messages", justify="right")
        table.add_column("Updated", no_wrap=True)

        for c in chats:
            table.add_row(
                c.get("chat_id", "?"),
                c.get("title") or "[dim](untitled)[/dim]",
                str(c.get("message_count", 0)),
                c.get("updated_at", "?"),
            )

        self.console.print(table)

    def format_messages(self, messages: list[Message], show_system: bool = False) -> None:
        if not messages:
            self.console.print("[dim]No messages.[/dim]")
            return

        for msg in messages:
            if msg.role == ROLE_SYSTEM and not show_system:
                continue
            color = ROLE_COLORS.get(msg.role, "white")
            label = msg.role if msg.role != ROLE_TOOL else f"tool:{msg.tool_name or '?'}"
            text = msg.text
            if msg.tool_calls:
                calls = ", ".join(f"{tc.name}({tc.arguments})" for tc in msg.tool_calls)
                text = f"{text}\n[calls] {calls}" if text else f"[calls] {calls}"
            self.console.print(f"[{color}]{label:>12s}[/{color}]  ", end="")
            self.console.print(text, markup=False)

    # ------------------------------------------------------------------
    # Debug
    # ------------------------------------------------------------------

    def format_debug(self, debug: dict[str, Any] | None) -> None:
        if not debug or not debug.get("sequence"):
            self.console.print("[dim]No debug data.[/dim]")
            return

        meta = debug.get("metadata", {})
        self.console.print(Panel(
            "\n".join(f"[dim]{k}:[/dim] {v}" for k, v in meta.items()),
            title="Debug metadata",
        ))

        table = Table(show_lines=False)
        table.add_column("#", justify="right")
        table.add_column("Type", no_wrap=True)
        table.add_column("Phase", justify="right")
        table.add_column("Details")
        for step in debug["sequence"]:
            data = step.get("data", {})
            color = STEP_COLORS.get(step.get("type", ""), "white")
            table.add_row(
                str(step.get("step", "")),
                Text(step.get("type", "?"), style=color),
                str(data.get("conductorPhase") or ""),
                _step_summary(step.get("type", ""), data),
            )
        self.console.print(table)

    def format_config(self, config: dict) -> None:
        json_str = json.dumps(config, indent=2, default=str)
        self.console.print(Syntax(json_str, "json", theme="monokai"))


def _step_summary(step_type: str, data: dict) -> str:
    if step_type == "request":
        return f"{data.get('adapter', '?')} -> {data.get('url', '?')} (response {data.get('responseNumber', '?')})"
    if step_type == "response":
        return f"finish={data.get('finish_reason')} tool_calls={data.get('has_tool_calls')}"
    if step_type == "tool_execution":
        return f"{data.get('name')} {json.dumps(data.get('arguments', {}), default=str)[:80]}"
    if step_type == "tool_result":
        return f"{data.get('name')} {data.get('status')} ({data.get('execution_time_ms')} ms)"
    if step_type == "error":
        return str(data.get("error", ""))[:120]
    return str(data.get("message", ""))[:120]
