"""CLI commands for agon."""

import asyncio
import time
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from agon import __brand__, __logo__, __version__

app = typer.Typer(
    name="agon",
    help=f"{__logo__} {__brand__} - Turn-based AI debates on Discord threads",
    no_args_is_help=True,
)

console = Console()


def _cli_fail(cause: str, fix: str | None = None, *, exit_code: int = 1) -> None:
    """Print a consistent CLI error block and exit."""
    console.print(f"[red]{cause}[/red]")
    if fix:
        console.print(f"[dim]Fix: {fix}[/dim]")
    raise typer.Exit(exit_code)


def _load_config():
    from agon.config.loader import load_config

    return load_config()


def _run(work, fix: str | None = None) -> Any:
    """Build the arena, run ``work(arena)`` and always close it."""
    from agon.errors import ArenaError
    from agon.runtime import Arena

    config = _load_config()

    async def run():
        arena = await Arena.create(config)
        try:
            return await work(arena)
        finally:
            await arena.close()

    try:
        return asyncio.run(run())
    except ArenaError as e:
        _cli_fail(str(e), fix or f"Check {config.database_path} and your config file.")


def _fmt_ms(ms: int | None) -> str:
    if not ms:
        return "-"
    return time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(ms / 1000))


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} {__brand__} v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(None, "--version", "-v", callback=version_callback, is_eager=True),
):
    """agon - Turn-based AI debates on Discord threads."""
    pass


@app.command("version")
def version_command():
    """Show agon version."""
    console.print(f"{__logo__} {__brand__} v{__version__}")


# ============================================================================
# Database Commands
# ============================================================================


db_app = typer.Typer(help="Manage the arena database", no_args_is_help=True)
app.add_typer(db_app, name="db")


@db_app.command("init")
def db_init():
    """Create the database and its tables."""
    config = _load_config()

    async def work(arena):
        return arena.db.path

    path = _run(work)
    console.print(f"[green]✓[/green] Database ready at {path}")
    if not config.discord.bot_token:
        console.print("[yellow]No Discord bot token configured; replies will stay local.[/yellow]")


# ============================================================================
# Agent Commands
# ============================================================================


agent_app = typer.Typer(help="Manage debate agents", no_args_is_help=True)
app.add_typer(agent_app, name="agent")


@agent_app.command("add")
def agent_add(
    agent_id: str = typer.Argument(..., help="Agent ID"),
    name: str = typer.Option(..., "--name", "-n", help="Display name"),
    provider: str = typer.Option(..., "--provider", "-p", help="openai|anthropic|gemini|openrouter"),
    model: str = typer.Option(..., "--model", "-m", help="Model name"),
    prompt: str = typer.Option("", "--prompt", help="Persona prompt"),
    avatar_url: str = typer.Option(None, "--avatar-url", help="Avatar for webhook posts"),
    temperature: float = typer.Option(None, "--temperature", help="Sampling temperature"),
    max_tokens: int = typer.Option(None, "--max-tokens", help="Output token limit"),
    reasoning: str = typer.Option(None, "--reasoning", help="low|medium|high"),
    thinking_budget: int = typer.Option(None, "--thinking-budget", help="Thinking token budget"),
):
    """Add or update an agent."""
    from agon.providers.litellm_provider import PROVIDER_SPECS
    from agon.store.models import Agent, AgentTuning

    if provider not in PROVIDER_SPECS:
        _cli_fail(f"Unsupported provider: {provider}", f"Use one of: {', '.join(PROVIDER_SPECS)}")
    if reasoning and reasoning not in ("low", "medium", "high"):
        _cli_fail(f"Invalid --reasoning: {reasoning}", "Use low, medium or high.")

    agent = Agent(
        id=agent_id,
        name=name,
        system_prompt=prompt,
        llm_provider=provider,
        llm_model=model,
        avatar_url=avatar_url,
        tuning=AgentTuning(
            temperature=temperature,
            max_tokens=max_tokens,
            reasoning_level=reasoning,
            thinking_budget_tokens=thinking_budget,
        ),
    )

    async def work(arena):
        await arena.store.upsert_agent(agent)

    _run(work)
    console.print(f"[green]✓[/green] Agent '{name}' saved ({agent_id})")


@agent_app.command("list")
def agent_list():
    """List agents."""

    async def work(arena):
        return await arena.store.list_agents()

    agents = _run(work)
    if not agents:
        console.print("No agents.")
        return

    table = Table(title="Agents")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Provider")
    table.add_column("Model")
    table.add_column("Tuning")
    for agent in agents:
        tuning = agent.tuning
        parts = []
        if tuning.temperature is not None:
            parts.append(f"temp={tuning.temperature}")
        if tuning.max_tokens:
            parts.append(f"max={tuning.max_tokens}")
        if tuning.reasoning_level:
            parts.append(f"reasoning={tuning.reasoning_level}")
        if tuning.thinking_budget_tokens:
            parts.append(f"thinking={tuning.thinking_budget_tokens}")
        table.add_row(agent.id, agent.name, agent.llm_provider, agent.llm_model, ", ".join(parts) or "-")
    console.print(table)


# ============================================================================
# Webhook Commands
# ============================================================================


webhook_app = typer.Typer(help="Manage Discord webhooks", no_args_is_help=True)
app.add_typer(webhook_app, name="webhook")


@webhook_app.command("bind")
def webhook_bind(
    channel_id: str = typer.Argument(..., help="Parent channel ID"),
    webhook_id: str = typer.Option(..., "--id", help="Webhook ID"),
    webhook_token: str = typer.Option(..., "--token", help="Webhook token"),
):
    """Bind a webhook to a parent channel so agents post under their own name."""
    from agon.store.models import WebhookBinding

    binding = WebhookBinding(channel_id=channel_id, webhook_id=webhook_id, webhook_token=webhook_token)

    async def work(arena):
        await arena.store.bind_webhook(binding)

    _run(work)
    console.print(f"[green]✓[/green] Webhook bound to channel {channel_id}")


# ============================================================================
# Room Commands
# ============================================================================


room_app = typer.Typer(help="Manage debate rooms", no_args_is_help=True)
app.add_typer(room_app, name="room")


@room_app.command("open")
def room_open(
    thread_id: str = typer.Argument(..., help="Discord thread ID"),
    channel: str = typer.Option(..., "--channel", "-c", help="Parent channel ID"),
    topic: str = typer.Option(..., "--topic", "-t", help="Debate topic"),
    title: str = typer.Option("", "--title", help="Room title (defaults to the topic)"),
    agents: list[str] = typer.Option(..., "--agent", "-a", help="Agent ID, in speaking order"),
    max_turns: int = typer.Option(None, "--max-turns", help="Turn limit"),
    audience_slot: int = typer.Option(0, "--audience-slot", help="Audience slot seconds after each round"),
    max_input_tokens: int = typer.Option(None, "--max-input-tokens", help="Prompt token budget"),
    max_output_tokens: int = typer.Option(None, "--max-output-tokens", help="Reply token cap"),
):
    """Open (or restart) a debate on a thread and queue the first turn."""

    async def work(arena):
        return await arena.rooms.open_room(
            parent_channel_id=channel,
            thread_id=thread_id,
            topic=topic,
            title=title or topic,
            agent_ids=list(agents),
            max_turns=max_turns,
            audience_slot_duration_seconds=audience_slot,
            max_input_tokens=max_input_tokens,
            max_output_tokens=max_output_tokens,
        )

    room = _run(work, "Run `agon agent list` to find valid agent IDs.")
    console.print(f"[green]✓[/green] Room {room.id} opened on thread {room.thread_id} ({room.max_turns} turns)")


@room_app.command("pause")
def room_pause(room_id: int = typer.Argument(..., help="Room ID")):
    """Pause a room; queued turns are dropped when they run."""

    async def work(arena):
        return await arena.rooms.pause_room(room_id)

    _run(work, "Run `agon room status` to find valid IDs.")
    console.print(f"[green]✓[/green] Room {room_id} paused")


@room_app.command("resume")
def room_resume(room_id: int = typer.Argument(..., help="Room ID")):
    """Resume a paused room at its next turn."""

    async def work(arena):
        return await arena.rooms.resume_room(room_id)

    resumed = _run(work, "Run `agon room status` to find valid IDs.")
    if resumed:
        console.print(f"[green]✓[/green] Room {room_id} resumed")
    else:
        console.print(f"[yellow]Room {room_id} not resumed (already active or out of turns)[/yellow]")


@room_app.command("status")
def room_status(
    room_id: int = typer.Argument(None, help="Room ID (omit to list all rooms)"),
    events: int = typer.Option(20, "--events", "-e", help="Turn events to show"),
):
    """Show rooms, or one room with its recent turn events."""
    from agon.errors import RoomNotFound

    async def work(arena):
        if room_id is None:
            return await arena.store.list_rooms(), None
        room = await arena.store.get_room(room_id)
        if room is None:
            raise RoomNotFound(room_id)
        return [room], await arena.events.list_events(room_id, events)

    rooms, turn_events = _run(work, "Run `agon room status` to list rooms.")

    if not rooms:
        console.print("No rooms.")
        return

    table = Table(title="Rooms")
    table.add_column("ID", style="cyan")
    table.add_column("Title")
    table.add_column("Status")
    table.add_column("Turn")
    table.add_column("Queued")
    table.add_column("Updated")
    colors = {"active": "green", "audience_slot": "yellow", "paused": "dim"}
    for room in rooms:
        color = colors.get(room.status.value, "white")
        table.add_row(
            str(room.id),
            room.title,
            f"[{color}]{room.status.value}[/{color}]",
            f"{room.current_turn_number}/{room.max_turns}",
            str(room.last_enqueued_turn_number),
            _fmt_ms(room.updated_at_ms),
        )
    console.print(table)

    if turn_events:
        ev_table = Table(title=f"Turn events (room {room_id})")
        ev_table.add_column("Time")
        ev_table.add_column("Turn")
        ev_table.add_column("Phase", style="cyan")
        ev_table.add_column("Status")
        ev_table.add_column("Data", overflow="fold")
        for ev in turn_events:
            status = ev["status"]
            if status == "fail":
                status = "[red]fail[/red]"
            elif status == "ok":
                status = "[green]ok[/green]"
            ev_table.add_row(
                _fmt_ms(ev["created_at_ms"]),
                str(ev["turn_number"]),
                ev["phase"],
                status,
                str(ev["data"]) if ev["data"] else "",
            )
        console.print(ev_table)


# ============================================================================
# Worker
# ============================================================================


@app.command()
def worker(
    workers: int = typer.Option(None, "--workers", "-w", help="Concurrent consumers"),
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging"),
):
    """Run the turn loop: queue consumers plus the stall watchdog."""
    from agon.errors import ArenaError
    from agon.observability.logging import setup_logging
    from agon.runtime import Arena

    config = _load_config()
    if workers:
        config.queue.workers = workers
    setup_logging("DEBUG" if verbose else config.logging.level, config.logging.json_logs)

    if not config.discord.bot_token:
        console.print("[yellow]No Discord bot token configured; history sync and posting are disabled.[/yellow]")
    console.print(f"{__logo__} Starting {__brand__} worker ({config.queue.workers} consumers)")

    async def run():
        arena = await Arena.create(config)
        console.print(f"[green]✓[/green] Database: {arena.db.path}")
        if config.watchdog.enabled:
            console.print(f"[green]✓[/green] Watchdog: every {config.watchdog.interval_seconds}s")
        tasks = [arena.worker.run()]
        if config.watchdog.enabled:
            tasks.append(arena.watchdog.run())
        try:
            await asyncio.gather(*tasks)
        finally:
            await arena.close()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\nShutting down...")
    except ArenaError as e:
        _cli_fail(f"Worker startup failed: {e}", f"Check {config.database_path} and your config file.")


if __name__ == "__main__":
    app()
