"""CLI entry point using typer."""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from sshai_client import __version__
from sshai_client.config import (
    CONFIG_FILE,
    PROVIDER_PRESETS,
    AIConfig,
    AppConfig,
    SSHConfig,
    ensure_config_dir,
    load_config,
    save_config,
)
from sshai_client.errors import ConfirmationRequired, ConnectError, GenerationError, SshAiError
from sshai_client.orchestrator import Orchestrator
from sshai_client.services.backend import OpenAICompatibleBackend
from sshai_client.services.cache import SuggestionCache
from sshai_client.services.generator import SuggestionGenerator
from sshai_client.services.mock import MockBackend, MockTransport
from sshai_client.services.session import SessionManager
from sshai_client.services.ssh import ParamikoTransport
from sshai_client.storage.database import Database
from sshai_client.storage.models import ConnectionConfig, HistoryItem, KeyAuth, PasswordAuth
from sshai_client.utils.formatting import format_duration, format_history_item, format_suggestion, truncate_output

app = typer.Typer(
    name="sshai",
    help="SSH client that turns natural-language requests into vetted shell commands.",
    add_completion=False,
)
cache_app = typer.Typer(help="Inspect and maintain the suggestion cache.")
app.add_typer(cache_app, name="cache")
console = Console()

EXIT_WORDS = frozenset({"exit", "quit", ":q"})


def _setup_logging(config: AppConfig, verbose: bool = False) -> None:
    ensure_config_dir()
    log_path = Path(config.logging.file).expanduser().resolve()
    log_path.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, config.logging.level.upper(), logging.WARNING),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(str(log_path)),
            *([logging.StreamHandler()] if verbose else []),
        ],
    )


@app.command()
def init() -> None:
    """Interactive setup wizard."""
    console.print(f"\n[bold]sshai-client v{__version__}[/bold]")
    console.print("Interactive Setup\n")

    # 1. Remote host
    console.print("[bold]Step 1:[/bold] Remote host")
    host = typer.prompt("  Host", default="", show_default=False)
    if not host:
        console.print("[red]Host is required.[/red]")
        raise typer.Exit(1)
    port = typer.prompt("  Port", default=22, type=int)
    username = typer.prompt("  Username", default=os.environ.get("USER", "root"))
    key_path = typer.prompt("  Private key path (empty for password auth)", default="", show_default=False)
    if key_path and not Path(key_path).expanduser().exists():
        console.print(f"  [yellow]Warning: key file not found: {key_path}[/yellow]")

    # 2. AI provider
    console.print("\n[bold]Step 2:[/bold] AI provider")
    available = ", ".join(PROVIDER_PRESETS.keys())
    provider = typer.prompt(f"  Provider ({available})", default="openai")
    if provider not in PROVIDER_PRESETS:
        console.print(f"[yellow]Unknown provider '{provider}', using 'openai'.[/yellow]")
        provider = "openai"
    preset = PROVIDER_PRESETS[provider]
    base_url = ""
    if provider == "custom":
        base_url = typer.prompt("  Base URL (OpenAI-compatible)")
    model = typer.prompt("  Model", default=preset.default_model)
    api_key_env = typer.prompt("  Environment variable holding the API key", default="SSHAI_API_KEY")
    if provider != "ollama" and not os.environ.get(api_key_env):
        console.print(f"  [yellow]Warning: ${api_key_env} is not set in this shell.[/yellow]")

    config = AppConfig(
        ssh=SSHConfig(host=host, port=port, username=username, key_path=key_path),
        ai=AIConfig(provider=provider, base_url=base_url, model=model, api_key_env=api_key_env),
    )
    save_config(config)

    console.print(f"\n[green]Configuration saved to {CONFIG_FILE}[/green]")
    console.print("\nNext steps:")
    console.print("  [bold]sshai connect[/bold]         Connect to the configured host")
    console.print("  [bold]sshai connect --demo[/bold]  Try it against a simulated host\n")


def _connection_config(config: AppConfig, demo: bool) -> ConnectionConfig:
    ssh = config.ssh
    if demo:
        return ConnectionConfig(
            host=ssh.host or "demo.local",
            username=ssh.username or "demo",
            auth=PasswordAuth("demo"),
            port=ssh.port,
        )
    if ssh.key_path:
        auth: PasswordAuth | KeyAuth = KeyAuth(
            key_path=str(Path(ssh.key_path).expanduser()),
            passphrase=os.environ.get("SSHAI_KEY_PASSPHRASE"),
        )
    else:
        password = os.environ.get("SSHAI_PASSWORD") or typer.prompt(
            f"Password for {ssh.username}@{ssh.host}", hide_input=True
        )
        auth = PasswordAuth(password)
    return ConnectionConfig(
        host=ssh.host,
        username=ssh.username,
        auth=auth,
        port=ssh.port,
        timeout=float(ssh.connect_timeout),
        verify_host_key=ssh.verify_host_key,
    )


async def _ask(prompt: str) -> str:
    return await asyncio.to_thread(console.input, prompt)


async def _confirm(prompt: str, default: bool) -> bool:
    return await asyncio.to_thread(typer.confirm, prompt, default)


async def _handle_suggestion(orchestrator: Orchestrator, from_cache: bool) -> None:
    suggestion = orchestrator.current_suggestion
    if suggestion is None:
        return
    for line in format_suggestion(suggestion, from_cache=from_cache):
        console.print(line)

    flagged = suggestion.risk.requires_confirmation
    prompt = "This command is flagged as risky. Execute anyway?" if flagged else "Execute?"
    if not await _confirm(prompt, default=not flagged):
        orchestrator.dismiss_suggestion()
        return
    try:
        item = await orchestrator.execute_suggestion(confirmed=flagged)
    except ConfirmationRequired as e:
        console.print(f"[red]{e}[/red]")
        return
    _print_item(item.output, item.error, item.exit_code)


def _print_item(output: str, error: str | None, exit_code: int) -> None:
    if output:
        console.out(truncate_output(output), end="" if output.endswith("\n") else "\n", highlight=False)
    if error:
        console.print(truncate_output(error), style="red", markup=False, highlight=False, end="")
        if not error.endswith("\n"):
            console.print()
    if exit_code != 0:
        console.print(f"[dim]exit {exit_code}[/dim]")


async def _interactive(config: AppConfig, demo: bool, connection: ConnectionConfig) -> None:
    db = Database(config.storage.db_path)
    await db.connect()
    try:
        transport = MockTransport() if demo else ParamikoTransport()
        backend = MockBackend() if demo else OpenAICompatibleBackend.from_config(config.ai)
        sessions = SessionManager(
            transport,
            command_timeout=float(config.ssh.command_timeout),
            preferred_shell=config.ssh.preferred_shell,
        )
        cache = SuggestionCache(db, ttl_seconds=config.cache.ttl_seconds, max_rows=config.cache.max_rows)
        orchestrator = Orchestrator(sessions, SuggestionGenerator(backend), cache, database=db)

        await cache.prune_expired()
        with console.status(f"Connecting to {connection.username}@{connection.host}..."):
            await orchestrator.connect(connection)
        ctx = orchestrator.context
        console.print(
            f"[green]Connected[/green] to {connection.host} "
            f"({ctx.os_name} {ctx.architecture}, {ctx.shell}). Type 'exit' to quit.\n"
        )

        try:
            while True:
                try:
                    line = await _ask(f"[bold]{ctx.username}@{connection.host}[/bold]:{ctx.working_directory}$ ")
                except (EOFError, KeyboardInterrupt):
                    console.print()
                    break
                if line.strip() in EXIT_WORDS:
                    break
                try:
                    outcome = await orchestrator.handle_input(line)
                except GenerationError as e:
                    console.print(f"[red]Suggestion failed ({e.kind.value}): {e}[/red]")
                    continue
                if outcome is None:
                    continue
                if outcome.history_item is not None:
                    item = outcome.history_item
                    _print_item(item.output, item.error, item.exit_code)
                elif outcome.suggestion is not None:
                    await _handle_suggestion(orchestrator, outcome.from_cache)
        finally:
            await orchestrator.close()
            metrics = orchestrator.generator.metrics
            if metrics.requests:
                console.print(
                    f"[dim]{metrics.requests} suggestion(s), avg {format_duration(int(metrics.average_latency_ms))}, "
                    f"{metrics.prompt_tokens + metrics.completion_tokens} tokens[/dim]"
                )
    finally:
        await db.close()


@app.command()
def connect(
    demo: bool = typer.Option(False, "--demo", help="Use a simulated host and canned suggestions"),
    host: str = typer.Option("", "--host", "-H", help="Override configured host"),
    user: str = typer.Option("", "--user", "-u", help="Override configured username"),
    port: int = typer.Option(0, "--port", "-p", help="Override configured port"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Also log to the terminal"),
) -> None:
    """Open an interactive session on the remote host."""
    config = load_config()
    if host:
        config.ssh.host = host
    if user:
        config.ssh.username = user
    if port:
        config.ssh.port = port

    if not demo and not (config.ssh.host and config.ssh.username):
        console.print("[red]No host configured.[/red]")
        console.print("Run [bold]sshai init[/bold] or pass --host and --user.")
        raise typer.Exit(1)

    _setup_logging(config, verbose)
    connection = _connection_config(config, demo)
    try:
        asyncio.run(_interactive(config, demo, connection))
    except ConnectError as e:
        console.print(f"[red]Connection failed ({e.kind.value}): {e}[/red]")
        raise typer.Exit(1)
    except GenerationError as e:
        console.print(f"[red]AI backend unavailable ({e.kind.value}): {e}[/red]")
        raise typer.Exit(1)
    except SshAiError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        pass
    console.print("[dim]Disconnected.[/dim]")


@app.command()
def config(
    key: str = typer.Argument(None, help="Config key (e.g., ai.model)"),
    value: str = typer.Argument(None, help="New value"),
) -> None:
    """View or modify configuration."""
    if not CONFIG_FILE.exists():
        console.print("[red]Not configured. Run 'sshai init'.[/red]")
        raise typer.Exit(1)

    cfg = load_config()
    section_map = {
        "ssh": cfg.ssh,
        "ai": cfg.ai,
        "cache": cfg.cache,
        "storage": cfg.storage,
        "logging": cfg.logging,
    }

    if key is None:
        table = Table(title="Configuration")
        table.add_column("Key", style="cyan")
        table.add_column("Value", style="green")
        for section, obj in section_map.items():
            for attr, current in vars(obj).items():
                table.add_row(f"{section}.{attr}", str(current) if current != "" else "(not set)")
        console.print(table)
        return

    if value is None:
        console.print("[red]Usage: sshai config <key> <value>[/red]")
        raise typer.Exit(1)

    parts = key.split(".")
    if len(parts) != 2:
        console.print("[red]Key format: section.key (e.g., ai.model)[/red]")
        raise typer.Exit(1)

    section, attr = parts
    if section not in section_map:
        console.print(f"[red]Unknown section: {section}[/red]")
        raise typer.Exit(1)

    obj = section_map[section]
    if not hasattr(obj, attr):
        console.print(f"[red]Unknown key: {key}[/red]")
        raise typer.Exit(1)

    # Type coercion
    current = getattr(obj, attr)
    try:
        if isinstance(current, bool):
            typed_value = value.lower() in ("true", "1", "yes")
        elif isinstance(current, int):
            typed_value = int(value)
        elif isinstance(current, float):
            typed_value = float(value)
        else:
            typed_value = value
    except ValueError:
        console.print(f"[red]Invalid value type for {key}[/red]")
        raise typer.Exit(1)

    setattr(obj, attr, typed_value)
    save_config(cfg)
    console.print(f"[green]{key} = {typed_value}[/green]")


async def _recent_commands(db_path: str, limit: int) -> list[dict]:
    db = Database(db_path)
    await db.connect()
    try:
        return await db.get_recent_commands(limit=limit)
    finally:
        await db.close()


@app.command()
def history(
    limit: int = typer.Option(20, "--limit", "-n", help="Number of commands"),
    full: bool = typer.Option(False, "--full", "-f", help="Include each command's output"),
) -> None:
    """Show recently executed commands."""
    cfg = load_config()
    rows = asyncio.run(_recent_commands(cfg.storage.db_path, limit))
    if not rows:
        console.print("[dim]No commands recorded yet.[/dim]")
        return

    if full:
        for row in reversed(rows):
            item = HistoryItem(
                command=row["command"],
                output=row["stdout"] or "",
                error=row["stderr"] or None,
                exit_code=row["exit_code"],
                source=row["source"],
            )
            console.print(format_history_item(item), markup=False, highlight=False)
            console.print()
        return

    table = Table(title="Command History")
    table.add_column("When", style="dim")
    table.add_column("Command", style="cyan")
    table.add_column("Exit")
    table.add_column("Time")
    table.add_column("Source")
    for row in reversed(rows):
        exit_code = row["exit_code"]
        exit_style = "green" if exit_code == 0 else "red"
        table.add_row(
            str(row["created_at"]),
            row["command"],
            f"[{exit_style}]{exit_code}[/{exit_style}]",
            format_duration(row["execution_time_ms"] or 0),
            row["source"],
        )
    console.print(table)


async def _cache_stats(cfg: AppConfig) -> tuple[int, int, float]:
    db = Database(cfg.storage.db_path)
    await db.connect()
    try:
        cache = SuggestionCache(db, ttl_seconds=cfg.cache.ttl_seconds, max_rows=cfg.cache.max_rows)
        stats = await cache.stats()
        return stats.total, stats.accepted, stats.acceptance_rate
    finally:
        await db.close()


async def _cache_prune(cfg: AppConfig, max_rows: int | None) -> tuple[int, int]:
    db = Database(cfg.storage.db_path)
    await db.connect()
    try:
        cache = SuggestionCache(db, ttl_seconds=cfg.cache.ttl_seconds, max_rows=cfg.cache.max_rows)
        expired = await cache.prune_expired()
        evicted = await cache.prune_by_capacity(max_rows)
        return expired, evicted
    finally:
        await db.close()


@cache_app.command("stats")
def cache_stats() -> None:
    """Show cache size and suggestion acceptance rate."""
    cfg = load_config()
    total, accepted, rate = asyncio.run(_cache_stats(cfg))
    table = Table(title="Suggestion Cache")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("entries", str(total))
    table.add_row("accepted", str(accepted))
    table.add_row("acceptance rate", f"{rate:.0%}")
    table.add_row("capacity", str(cfg.cache.max_rows))
    table.add_row("ttl", format_duration(cfg.cache.ttl_seconds * 1000))
    console.print(table)


@cache_app.command("prune")
def cache_prune(
    max_rows: int = typer.Option(None, "--max-rows", help="Capacity to prune down to"),
) -> None:
    """Remove expired entries and enforce the capacity limit."""
    cfg = load_config()
    expired, evicted = asyncio.run(_cache_prune(cfg, max_rows))
    console.print(f"[green]Removed {expired} expired and {evicted} over-capacity entries.[/green]")


@app.command()
def logs(
    lines: int = typer.Option(50, "--lines", "-n", help="Number of lines"),
) -> None:
    """View client logs."""
    log_path = Path(load_config().logging.file).expanduser().resolve()
    if not log_path.exists():
        console.print("[dim]No log file found.[/dim]")
        return

    content = log_path.read_text()
    log_lines = content.strip().split("\n")
    for line in log_lines[-lines:]:
        console.print(line, markup=False, highlight=False)


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"sshai-client v{__version__}")
    console.print(f"Python: {sys.version.split()[0]}")
    console.print(f"Config: {CONFIG_FILE}")


if __name__ == "__main__":
    app()
