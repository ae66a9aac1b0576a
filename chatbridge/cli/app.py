"""
Main CLI application for chatbridge.

Usage:
    chatbridge chat [--conductor] [--chat ID] [--profile NAME] [--model NAME] [--verbose]
    chatbridge chats list|show|delete
    chatbridge tools list
    chatbridge adapters
    chatbridge config show|validate
    chatbridge version
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from chatbridge import __version__
from chatbridge.config import DEFAULT_CONFIG_PATH, ChatBridgeConfig, load_config
from chatbridge.types import ConfigError

app = typer.Typer(name="chatbridge", help="chatbridge - streaming chat across LLM providers")
chats_app = typer.Typer(help="Chat history")
tools_app = typer.Typer(help="Tool management")
config_app = typer.Typer(help="Configuration management")

app.add_typer(chats_app, name="chats")
app.add_typer(tools_app, name="tools")
app.add_typer(config_app, name="config")

console = Console()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _get_config_path() -> Path | None:
    """Find config file in standard locations."""
    candidates = [
        Path.cwd() / "chatbridge.yaml",
        Path.cwd() / "chatbridge.yml",
        Path.home() / ".config" / "chatbridge" / "config.yaml",
        Path(DEFAULT_CONFIG_PATH).expanduser(),
    ]
    for p in candidates:
        if p.is_file():
            return p
    return None


def _load(profile: str | None = None, overrides: dict | None = None) -> ChatBridgeConfig:
    try:
        return load_config(_get_config_path(), profile=profile, cli_overrides=overrides)
    except ConfigError as e:
        console.print(f"[red]Config error:[/red] {e}")
        raise typer.Exit(1)


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _build_tools(cfg: ChatBridgeConfig):
    from chatbridge.tools.builtin import builtin_tools
    from chatbridge.tools.registry import ToolRegistry

    registry = ToolRegistry(
        timeout=float(cfg.tools.timeout_seconds),
        enabled=cfg.tools.enabled,
        disabled=cfg.tools.disabled,
    )
    for tool in builtin_tools():
        registry.register(tool)

    try:
        registry.load_plugins(enabled=cfg.tools.plugins_enabled)
    except Exception:
        logging.getLogger(__name__).exception("Failed to load tool plugins")
    return registry


async def _open_store(cfg: ChatBridgeConfig):
    from chatbridge.session.store import ChatStore

    store = ChatStore(cfg.store.history_db)
    await store.init()
    return store


async def _setup_stack(
    cfg: ChatBridgeConfig,
    chat_id: str | None = None,
    use_conductor: bool = False,
):
    """Wire up the full stack for chat."""
    import httpx

    from chatbridge.cli.chat import ChatHandler
    from chatbridge.llm.registry import AdapterRegistry
    from chatbridge.orchestrator.conductor import Conductor, ConductorSettings
    from chatbridge.orchestrator.core import ChatOrchestrator
    from chatbridge.session.bus import ToolEventBus
    from chatbridge.session.debug import DebugStore

    store = await _open_store(cfg)

    if chat_id:
        if await store.get_chat(chat_id) is None:
            await store.close()
            console.print(f"[red]Chat not found:[/red] {chat_id}")
            raise typer.Exit(1)
    else:
        chat_id = await store.create_chat(metadata={"model": cfg.connection.model})

    settings = cfg.connection_settings()
    if not settings.api_key:
        console.print(
            f"[yellow]Warning:[/yellow] no API key (set {cfg.connection.api_key_env} "
            "or connection.api_key)."
        )

    client = httpx.AsyncClient(timeout=float(cfg.connection.timeout_seconds))
    orchestrator = ChatOrchestrator(
        adapters=AdapterRegistry(),
        tools=_build_tools(cfg),
        bus=ToolEventBus(),
        debug=DebugStore(),
        settings=settings,
        store=store,
        client=client,
        timeout=float(cfg.connection.timeout_seconds),
    )
    conductor = Conductor(
        orchestrator,
        ConductorSettings(
            max_phases=cfg.conductor.max_phases,
            prompts=cfg.conductor.prompts,
            debug_fetch_attempts=cfg.conductor.debug_fetch_attempts,
            debug_fetch_delay=cfg.conductor.debug_fetch_delay,
        ),
        store=store,
    )

    handler = ChatHandler(
        orchestrator=orchestrator,
        conductor=conductor,
        tools=orchestrator.tools,
        store=store,
        chat_id=chat_id,
        console=console,
        use_conductor=use_conductor or cfg.conductor.enabled,
    )
    conductor.on_phase = handler.on_phase
    await handler.load_history()
    return handler, store, client


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command()
def chat(
    conductor: bool = typer.Option(False, "--conductor", help="Run turns through the phase conductor"),
    chat_id: Optional[str] = typer.Option(None, "--chat", help="Resume chat ID"),
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
    model: Optional[str] = typer.Option(None, help="Override connection.model"),
    api_url: Optional[str] = typer.Option(None, "--api-url", help="Override connection.api_url"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Start an interactive chat."""
    _setup_logging(verbose)
    overrides = {}
    if model:
        overrides["connection.model"] = model
    if api_url:
        overrides["connection.api_url"] = api_url
    cfg = _load(profile, overrides)

    async def _run():
        handler, store, client = await _setup_stack(cfg, chat_id, conductor)
        try:
            await handler.run_loop()
        finally:
            await client.aclose()
            await store.close()

    asyncio.run(_run())


@chats_app.command("list")
def chats_list():
    """List saved chats."""

    async def _run():
        from chatbridge.cli.output import OutputFormatter

        store = await _open_store(_load())
        try:
            chats = await store.list_chats()
        finally:
            await store.close()
        OutputFormatter(console).format_chat_list(chats)

    asyncio.run(_run())


@chats_app.command("show")
def chats_show(
    chat_id: str = typer.Argument(..., help="Chat ID"),
    system: bool = typer.Option(False, "--system", help="Include injected system messages"),
    debug: bool = typer.Option(False, "--debug", help="Show the stored debug sequences"),
):
    """Show a chat's messages."""

    async def _run():
        from chatbridge.cli.output import OutputFormatter

        store = await _open_store(_load())
        try:
            if await store.get_chat(chat_id) is None:
                console.print(f"[red]Chat not found:[/red] {chat_id}")
                raise typer.Exit(1)
            messages = await store.load(chat_id)
            debug_rows = await store.get_debug(chat_id) if debug else []
        finally:
            await store.close()

        formatter = OutputFormatter(console)
        formatter.format_messages(messages, show_system=system)
        for row in debug_rows:
            formatter.format_debug(row.get("debug"))

    asyncio.run(_run())


@chats_app.command("delete")
def chats_delete(chat_id: str = typer.Argument(..., help="Chat ID")):
    """Delete a chat and its messages."""

    async def _run():
        store = await _open_store(_load())
        try:
            deleted = await store.delete_chat(chat_id)
        finally:
            await store.close()
        if not deleted:
            console.print(f"[red]Chat not found:[/red] {chat_id}")
            raise typer.Exit(1)
        console.print(f"Deleted chat: {chat_id}")

    asyncio.run(_run())


@tools_app.command("list")
def tools_list():
    """List registered tools."""
    from chatbridge.cli.output import OutputFormatter

    registry = _build_tools(_load())
    tools = registry.list()
    OutputFormatter(console).format_tool_list(
        tools, {t.name for t in tools if registry.is_enabled(t.name)}
    )


@app.command()
def adapters(
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
):
    """Show provider adapters and which one the connection selects."""
    from chatbridge.cli.output import OutputFormatter
    from chatbridge.llm.registry import AdapterRegistry

    cfg = _load(profile)
    registry = AdapterRegistry()
    selected = registry.select(cfg.connection_settings())
    OutputFormatter(console).format_adapters(
        registry.adapter_names, selected.name, cfg.connection.api_url
    )


@config_app.command("show")
def config_show(
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
):
    """Show effective config."""
    from chatbridge.cli.output import OutputFormatter

    cfg = _load(profile)
    OutputFormatter(console).format_config(cfg.to_dict())


@config_app.command("validate")
def config_validate(
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
):
    """Validate config and report problems."""
    config_path = _get_config_path()
    cfg = _load(profile)
    problems = cfg.validate()
    if problems:
        console.print("[red]Config validation failed:[/red]")
        for p in problems:
            console.print(f"  - {p}")
        raise typer.Exit(1)

    console.print("[green]Config is valid.[/green]")
    if config_path:
        console.print(f"  Loaded from: {config_path}")
    else:
        console.print("  [dim]No config file found, using defaults.[/dim]")
    console.print(f"  Connection: {cfg.connection.api_url} ({cfg.connection.model})")
    console.print(f"  Conductor: {'on' if cfg.conductor.enabled else 'off'} (max {cfg.conductor.max_phases} phases)")
    console.print(f"  Plugins enabled: {cfg.tools.plugins_enabled}")


@app.command()
def version():
    """Show version."""
    console.print(f"chatbridge v{__version__}")


def main():
    app()


if __name__ == "__main__":
    main()
