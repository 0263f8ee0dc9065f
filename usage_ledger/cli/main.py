"""
CLI interface for usage-ledger.

Provides command-line access to storage setup, usage views and the HTTP
service.
"""

import json
import sys
from typing import Any, Dict, List, Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from usage_ledger.config.loader import Settings, configure_logging, load_settings
from usage_ledger.core.query import DEFAULT_DAYS, MAX_DAYS, UsageView, parse_view, query_usage
from usage_ledger.demo.seed_demo_data import seed_demo_events
from usage_ledger.storage.repository import StorageError, create_store

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to YAML configuration file"
    ),
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Override the configured log level"
    )
):
    """usage-ledger CLI."""
    try:
        settings = load_settings(config)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Invalid configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    configure_logging(log_level or settings.log_level)
    ctx.obj = settings

    if ctx.invoked_subcommand is None:
        console.print("usage-ledger - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the configured usage store."""
    settings: Settings = ctx.obj
    store = create_store(settings)
    try:
        result = store.initialize()
    except StorageError as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"[green]✓[/] {result.status}: {result.message} (backend: {settings.backend.value})")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def usage(
    ctx: typer.Context,
    view: str = typer.Option(
        "all",
        "--type",
        "-t",
        help="View to show: total, users, daily, persona, hourly, records or all"
    ),
    days: int = typer.Option(
        DEFAULT_DAYS,
        "--days",
        "-d",
        min=1,
        max=MAX_DAYS,
        help="Lookback window in days for the daily view"
    ),
    as_json: bool = typer.Option(
        False,
        "--json",
        help="Print the raw JSON payload"
    )
):
    """Show aggregated token usage."""
    settings: Settings = ctx.obj
    selected = parse_view(view)
    payload = query_usage(create_store(settings), selected, days=days)

    if as_json:
        typer.echo(json.dumps(payload, indent=2))
        sys.exit(EXIT_CODE_PASS)

    if selected == UsageView.ALL:
        _display_total(payload["total"])
        _display_users(payload["users"])
        _display_daily(payload["daily"])
        _display_persona(payload["persona"])
        _display_hourly(payload["hourly"])
    elif selected == UsageView.TOTAL:
        _display_total(payload)
    elif selected == UsageView.USERS:
        _display_users(payload)
    elif selected == UsageView.DAILY:
        _display_daily(payload)
    elif selected == UsageView.PERSONA:
        _display_persona(payload)
    elif selected == UsageView.HOURLY:
        _display_hourly(payload)
    else:
        _display_records(payload)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def serve(
    ctx: typer.Context,
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to listen on")
):
    """Run the HTTP service."""
    import uvicorn

    from usage_ledger.api.app import create_app

    settings: Settings = ctx.obj
    uvicorn.run(create_app(settings), host=host, port=port, log_level=settings.log_level.lower())


@app.command("seed-demo")
def seed_demo(
    ctx: typer.Context,
    count: int = typer.Option(50, "--count", "-n", min=1, help="Number of events to append"),
    days: int = typer.Option(14, "--days", "-d", min=1, max=MAX_DAYS, help="Spread events over this many days"),
    seed: Optional[int] = typer.Option(None, "--seed", help="Random seed for repeatable data")
):
    """Append synthetic usage events for local dashboards."""
    settings: Settings = ctx.obj
    try:
        events = seed_demo_events(create_store(settings), count=count, days=days, seed=seed)
    except StorageError as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Inserted {len(events)} demo usage events")
    sys.exit(EXIT_CODE_PASS)


def _format_tokens(value: int) -> str:
    return f"{value:,}"


def _display_total(total: Dict[str, Any]):
    console.print("\n[bold]Token Usage Summary[/bold]")
    console.print("-" * 40)
    console.print(f"Total tokens: {_format_tokens(total['totalTokens'])}")
    console.print(f"Prompt tokens: {_format_tokens(total['totalPromptTokens'])}")
    console.print(f"Completion tokens: {_format_tokens(total['totalCompletionTokens'])}")
    console.print(f"Requests: {_format_tokens(total['totalRequests'])}")
    console.print(f"Users: {_format_tokens(total['totalUsers'])}")


def _display_users(users: List[Dict[str, Any]]):
    if not users:
        console.print("\n[dim]No usage recorded yet.[/]")
        return
    table = Table(title="Users")
    table.add_column("User")
    table.add_column("Total", justify="right")
    table.add_column("Prompt", justify="right")
    table.add_column("Completion", justify="right")
    table.add_column("Requests", justify="right")
    table.add_column("Last used")
    for user in users:
        table.add_row(
            f"{user['userName']} ({user['userId']})",
            _format_tokens(user["totalTokens"]),
            _format_tokens(user["totalPromptTokens"]),
            _format_tokens(user["totalCompletionTokens"]),
            str(user["requestCount"]),
            user["lastUsed"],
        )
    console.print(table)


def _display_daily(daily: List[Dict[str, Any]]):
    table = Table(title="Daily usage (UTC)")
    table.add_column("Date")
    table.add_column("Total", justify="right")
    table.add_column("Prompt", justify="right")
    table.add_column("Completion", justify="right")
    table.add_column("Requests", justify="right")
    for day in daily:
        table.add_row(
            day["date"],
            _format_tokens(day["totalTokens"]),
            _format_tokens(day["promptTokens"]),
            _format_tokens(day["completionTokens"]),
            str(day["requestCount"]),
        )
    console.print(table)


def _display_persona(personas: List[Dict[str, Any]]):
    table = Table(title="Usage by persona")
    table.add_column("Persona")
    table.add_column("Total", justify="right")
    table.add_column("Requests", justify="right")
    for persona in personas:
        table.add_row(persona["persona"], _format_tokens(persona["totalTokens"]), str(persona["requestCount"]))
    console.print(table)


def _display_hourly(hours: List[Dict[str, Any]]):
    table = Table(title="Usage by hour (server time)")
    table.add_column("Hour", justify="right")
    table.add_column("Requests", justify="right")
    table.add_column("Total", justify="right")
    for hour in hours:
        table.add_row(f"{hour['hour']:02d}:00", str(hour["requestCount"]), _format_tokens(hour["totalTokens"]))
    console.print(table)


def _display_records(records: List[Dict[str, Any]]):
    table = Table(title="Recent requests")
    table.add_column("Time")
    table.add_column("User")
    table.add_column("Model")
    table.add_column("Persona")
    table.add_column("Total", justify="right")
    for record in records:
        table.add_row(
            record["timestamp"],
            record["userName"],
            record["model"],
            record["persona"],
            _format_tokens(record["totalTokens"]),
        )
    console.print(table)


if __name__ == "__main__":
    app()
