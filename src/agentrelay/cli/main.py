"""
AgentRelay CLI entry point.

Commands:
  agentrelay config check [--path FILE]  — load and validate the configuration
  agentrelay pack FILE                   — show how tool lines would be packed into messages
"""

from __future__ import annotations

import re
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from agentrelay import __version__

console = Console()
err_console = Console(stderr=True)

_ENTRY_SEPARATOR = re.compile(r"\n[ \t]*\n")


# ---------------------------------------------------------------------------
# Root group
# ---------------------------------------------------------------------------


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(__version__, "--version", "-V", message="agentrelay %(version)s")
@click.option("--log-level", default=None, hidden=True, help="Override the configured log level.")
@click.option("--log-json", is_flag=True, default=False, hidden=True, help="Force JSON log lines.")
@click.pass_context
def cli(ctx: click.Context, log_level: str | None, log_json: bool) -> None:
    """AgentRelay — chat control plane for a coding agent."""
    from agentrelay.core.logging import configure_logging

    ctx.ensure_object(dict)
    ctx.obj["log_level"] = log_level
    ctx.obj["log_json"] = True if log_json else None
    configure_logging(level=log_level or "WARNING", json_output=log_json)


# ---------------------------------------------------------------------------
# config
# ---------------------------------------------------------------------------


@cli.group("config")
def config_group() -> None:
    """Inspect the AgentRelay configuration."""


@config_group.command("check")
@click.option(
    "--path",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file to check (default: $AGENTRELAY_CONFIG or the data dir).",
)
@click.pass_context
def config_check(ctx: click.Context, config_path: Path | None) -> None:
    """Load and validate the configuration, then print a summary."""
    from agentrelay.core.config import load_config
    from agentrelay.core.exceptions import ConfigError
    from agentrelay.core.logging import configure_logging

    try:
        config = load_config(config_path)
    except ConfigError as exc:
        err_console.print(f"[red]Config error:[/red] {exc}")
        raise SystemExit(2) from exc

    configure_logging(
        config.logging, level=ctx.obj.get("log_level"), json_output=ctx.obj.get("log_json")
    )

    table = Table(show_header=True, header_style="bold")
    table.add_column("Setting")
    table.add_column("Value")

    if config.telegram is not None:
        table.add_row("telegram.bot_token", "[dim]<set>[/dim]")
        table.add_row("telegram.allowed_user_id", str(config.telegram.allowed_user_id))
    else:
        table.add_row("telegram", "[yellow]not configured[/yellow]")
    table.add_row("agent.api_url", config.agent.api_url)
    table.add_row("agent.username", config.agent.username)
    table.add_row("agent.password", "<set>" if config.agent.password else "<none>")
    table.add_row("batching.interval_seconds", str(config.batching.interval_seconds))
    table.add_row("files.max_file_size_kb", str(config.files.max_file_size_kb))
    table.add_row("logging.level", config.logging.level)
    table.add_row("logging.format", config.logging.format)

    console.print("[bold]AgentRelay configuration[/bold]\n")
    console.print(table)
    console.print("\n[green]Configuration OK[/green]")


# ---------------------------------------------------------------------------
# pack
# ---------------------------------------------------------------------------


@cli.command("pack")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--limit", default=None, type=click.IntRange(min=1), help="Message size ceiling.")
def pack_cmd(file: Path, limit: int | None) -> None:
    """Pack blank-line separated entries of FILE into chat messages and show their sizes."""
    from agentrelay.core.constants import CHAT_MESSAGE_MAX_LENGTH
    from agentrelay.core.summary.batcher import pack_text_entries

    ceiling = limit or CHAT_MESSAGE_MAX_LENGTH
    text = file.read_text(encoding="utf-8")
    entries = [e.strip() for e in _ENTRY_SEPARATOR.split(text) if e.strip()]
    batches = pack_text_entries(entries, ceiling)

    if not batches:
        console.print("[dim]No entries found.[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("Chars", justify="right")
    table.add_column("First line")
    for index, batch in enumerate(batches, start=1):
        table.add_row(str(index), str(len(batch)), batch.split("\n", 1)[0][:60])

    console.print(table)
    console.print(f"{len(entries)} entries → {len(batches)} messages (limit {ceiling})")
