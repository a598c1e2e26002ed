"""CLI for Pulseboard."""

import asyncio
import logging
import os
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.live import Live
from rich.logging import RichHandler
from rich.markup import escape
from rich.syntax import Syntax
from rich.table import Table

from pulseboard.config import DEFAULT_SESSION_PATH, Settings
from pulseboard.consumer import DatasetStore
from pulseboard.dashboard import Dashboard
from pulseboard.errors import ConfigError, PulseboardError, QueryParseError
from pulseboard.models.dataset import Severity
from pulseboard.models.payload import ErrorPayload, LogPayload, NoDataPayload, Payload
from pulseboard.parser.nrql import CLAUSES, fallback_query, parse, serialize
from pulseboard.session import SessionStore

app = typer.Typer(
    name="pb",
    help="Pulseboard - live NRQL time series and logs in the terminal",
    no_args_is_help=True,
)
console = Console()


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging")] = False,
) -> None:
    """Pulseboard - live NRQL time series and logs in the terminal."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def get_settings(**overrides) -> Settings:
    try:
        return Settings.from_env(**overrides)
    except ConfigError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        raise typer.Exit(1)


@app.command("parse")
def parse_query(
    text: Annotated[str, typer.Argument(help="Query text")],
) -> None:
    """Show how a query is split into clauses and what gets sent."""
    try:
        parsed = parse(text)
    except QueryParseError as e:
        console.print(f"[yellow]{e.reason} - falling back to a log search[/yellow]")
        console.print(Syntax(fallback_query(text), "sql", theme="monokai"))
        return

    table = Table(title=f"Parsed query ({parsed.kind.value})")
    table.add_column("Clause", style="cyan")
    table.add_column("Value")

    values = list(parsed.model_dump().values())
    for clause, value in zip(CLAUSES, values):
        table.add_row(clause, escape(value) if value is not None else "-")

    console.print(table)
    console.print(Syntax(serialize(parsed), "sql", theme="monokai"))


@app.command()
def query(
    text: Annotated[str, typer.Argument(help="Query text")],
    output: Annotated[
        str, typer.Option("--output", "-o", help="Output format: table, json")
    ] = "table",
) -> None:
    """Run a query once and print the result."""
    settings = get_settings()

    async def _run() -> Payload:
        dashboard = Dashboard(settings)
        try:
            return await dashboard.run_once(text)
        finally:
            await dashboard.close()

    payload = asyncio.run(_run())

    if isinstance(payload, ErrorPayload):
        console.print(f"[red]Query error: {escape(payload.message)}[/red]")
        raise typer.Exit(1)
    if isinstance(payload, NoDataPayload):
        console.print("[yellow]No data[/yellow]")
        return

    if output == "json":
        console.print_json(data=payload.model_dump(mode="json"))
    elif isinstance(payload, LogPayload):
        _print_logs(payload)
    else:
        _print_timeseries(payload)


def _print_timeseries(payload) -> None:
    dataset = payload.dataset
    table = Table(title=f"Time series ({len(dataset.facets)} facets)")
    table.add_column("Facet", style="cyan")
    table.add_column("Points", justify="right")
    table.add_column("Last value", justify="right", style="green")

    for facet, points in dataset.facets.items():
        last = points[-1][1] if points else None
        table.add_row(escape(facet), str(len(points)), f"{last:g}" if last is not None else "-")

    console.print(table)
    console.print(
        f"x: {dataset.bounds.mins[0]:g} .. {dataset.bounds.maxes[0]:g}   "
        f"y: {dataset.bounds.mins[1]:g} .. {dataset.bounds.maxes[1]:g}"
    )


def _print_logs(payload: LogPayload) -> None:
    logs = payload.logs
    counts = ", ".join(f"{s.value}: {logs.count(s)}" for s in Severity)
    table = Table(title=f"Logs ({len(logs.logs)} records - {counts})")
    table.add_column("Timestamp", style="cyan")
    table.add_column("Record")

    for timestamp, record in logs.logs.items():
        table.add_row(timestamp, escape(record))

    console.print(table)


def _render(store: DatasetStore) -> Table:
    """Summary table of everything the dashboard is showing."""
    table = Table(title="Pulseboard")
    table.add_column("Query", style="cyan", max_width=60)
    table.add_column("Kind")
    table.add_column("Series / records", justify="right")
    table.add_column("Latest", justify="right", style="green")
    table.add_column("Status")

    for identity in store.tracked:
        name = escape(store.display_name(identity))
        status = "ok"
        if identity in store.errors:
            status = f"[red]{escape(store.errors[identity])}[/red]"

        if identity in store.logs:
            logs = store.logs[identity]
            errors = logs.count(Severity.ERROR)
            table.add_row(name, "log", str(len(logs.logs)), f"{errors} errors", status)
        elif identity in store.datasets and store.datasets[identity].has_data:
            dataset = store.datasets[identity]
            latest = ", ".join(
                f"{facet}={points[-1][1]:g}" for facet, points in dataset.facets.items() if points
            )
            table.add_row(name, "timeseries", str(len(dataset.facets)), escape(latest), status)
        else:
            if identity not in store.errors:
                status = "no data" if identity in store.no_data else "waiting"
            table.add_row(name, "-", "-", "-", status)

    return table


@app.command()
def watch(
    queries: Annotated[list[str] | None, typer.Argument(help="Queries to watch")] = None,
    duration: Annotated[
        float | None, typer.Option("--duration", "-d", help="Stop after this many seconds")
    ] = None,
    interval: Annotated[
        float | None, typer.Option("--interval", "-i", help="Seconds between polls")
    ] = None,
    session: Annotated[
        bool, typer.Option("--session", "-s", help="Load saved queries and save on exit")
    ] = False,
) -> None:
    """Poll queries and show a live summary until interrupted."""
    settings = get_settings(poll_interval=interval)

    async def _run() -> None:
        async with Dashboard(settings) as dashboard:
            if session:
                dashboard.load_session()
            for text in queries or []:
                dashboard.add_query(text)

            loop = asyncio.get_running_loop()
            deadline = loop.time() + duration if duration is not None else None
            try:
                with Live(_render(dashboard.store), console=console, refresh_per_second=4) as live:
                    while deadline is None or loop.time() < deadline:
                        dashboard.pump()
                        live.update(_render(dashboard.store))
                        await asyncio.sleep(0.25)
            finally:
                if session:
                    dashboard.save_session()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("[yellow]Stopped[/yellow]")
    except PulseboardError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


@app.command()
def history(
    path: Annotated[Path | None, typer.Option("--path", "-p", help="Session file")] = None,
) -> None:
    """List saved session queries."""
    session_path = path or Path(os.environ.get("PULSEBOARD_SESSION", DEFAULT_SESSION_PATH))
    try:
        entries = SessionStore(session_path).load()
    except PulseboardError as e:
        console.print(f"[red]Error loading session: {e}[/red]")
        raise typer.Exit(1)

    if not entries:
        console.print("[yellow]No saved queries[/yellow]")
        return

    table = Table(title=f"Session ({session_path})")
    table.add_column("#", justify="right")
    table.add_column("Alias", style="green")
    table.add_column("Query", style="cyan")

    for i, entry in enumerate(entries, start=1):
        table.add_row(str(i), escape(entry.alias or "-"), escape(entry.query))

    console.print(table)


if __name__ == "__main__":
    app()
