"""Typer CLI for the replication stats agent."""

from __future__ import annotations

import asyncio
from pathlib import Path

import structlog
import typer
from rich.console import Console
from rich.table import Table

from pgha_stats.agent.runner import Agent
from pgha_stats.config.loader import load_agent_config
from pgha_stats.config.models import AgentConfig
from pgha_stats.errors import PghaStatsError
from pgha_stats.observability.logconfig import configure_logging
from pgha_stats.publishing.consul import ConsulKV
from pgha_stats.publishing.publisher import decode_record, publication_key
from pgha_stats.replication.inspector import ReplicationInspector, ReplicationSnapshot
from pgha_stats.replication.queries import PostgresReplicationQueries
from pgha_stats.replication.wal import format_wal_position

logger = structlog.get_logger()
console = Console()
app = typer.Typer(name="pgha-stats", help="PostgreSQL replication stats agent")


def _load(config_path: str | None) -> AgentConfig:
    if config_path is not None and not Path(config_path).exists():
        console.print(f"[red]Config file not found: {config_path}[/red]")
        raise typer.Exit(1)
    try:
        return load_agent_config(config_path)
    except (ValueError, TypeError) as exc:
        console.print(f"[red]Invalid config:[/red] {exc}")
        raise typer.Exit(1) from exc


def _snapshot_table(title: str, snapshot: ReplicationSnapshot) -> Table:
    table = Table(title=title)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("host", snapshot.host)
    table.add_row("role", snapshot.role.value)
    table.add_row("position", format_wal_position(snapshot.position))
    table.add_row("xlog", str(snapshot.position.high))
    table.add_row("offset", str(snapshot.position.low))
    table.add_row("observed_at", snapshot.observed_at.isoformat())
    return table


@app.command()
def validate(
    config_path: str | None = typer.Argument(
        None, help="Path to agent YAML (built-in defaults if omitted)"
    ),
) -> None:
    """Validate an agent configuration file."""
    config = _load(config_path)
    console.print(f"[green]Valid[/green] hostname={config.hostname}")
    console.print(f"  postgres: {config.postgres.host}:{config.postgres.port}")
    console.print(f"  consul:   {config.consul.address}")
    console.print(
        f"  key:      {publication_key(config.consul.kv_prefix, config.hostname)}"
    )
    console.print(f"  interval: {config.check_interval_seconds}s")


@app.command()
def collect(
    config_path: str | None = typer.Argument(
        None, help="Path to agent YAML (built-in defaults if omitted)"
    ),
) -> None:
    """Collect one snapshot from PostgreSQL and print it (nothing is published)."""
    config = _load(config_path)
    configure_logging(config.logging)

    async def _collect() -> ReplicationSnapshot:
        queries = PostgresReplicationQueries(config.postgres)
        await queries.connect()
        try:
            return await ReplicationInspector(queries, config.hostname).collect()
        finally:
            await queries.close()

    try:
        snapshot = asyncio.run(_collect())
    except PghaStatsError as exc:
        console.print(f"[red]Collect failed:[/red] {exc}")
        raise typer.Exit(1) from exc
    console.print(_snapshot_table("Replication snapshot", snapshot))


@app.command()
def show(
    config_path: str | None = typer.Argument(
        None, help="Path to agent YAML (built-in defaults if omitted)"
    ),
    host: str | None = typer.Option(None, "--host", help="Node to show"),
) -> None:
    """Print the record currently published for a node."""
    config = _load(config_path)
    key = publication_key(config.consul.kv_prefix, host or config.hostname)

    async def _get() -> bytes | None:
        async with ConsulKV(config.consul) as kv:
            return await kv.get(key)

    try:
        data = asyncio.run(_get())
    except PghaStatsError as exc:
        console.print(f"[red]Read failed:[/red] {exc}")
        raise typer.Exit(1) from exc
    if data is None:
        console.print(f"[yellow]No record at {key}[/yellow]")
        raise typer.Exit(1)

    try:
        record = decode_record(data)
    except ValueError as exc:
        console.print(f"[red]Malformed record at {key}:[/red] {exc}")
        raise typer.Exit(1) from exc

    table = Table(title=key)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for field, value in record.items():
        table.add_row(field, str(value))
    console.print(table)


@app.command()
def run(
    config_path: str | None = typer.Argument(
        None, help="Path to agent YAML (built-in defaults if omitted)"
    ),
) -> None:
    """Run the agent until interrupted."""
    config = _load(config_path)
    configure_logging(config.logging)
    console.print(
        f"[yellow]Starting agent:[/yellow] {config.hostname} "
        f"every {config.check_interval_seconds}s"
    )
    try:
        Agent(config).run()
    except PghaStatsError as exc:
        logger.error("agent.startup_failed", error=str(exc))
        raise typer.Exit(1) from exc
