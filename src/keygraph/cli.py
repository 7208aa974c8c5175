"""CLI for keygraph.

Provides commands for probing joins and running relationship discovery.

Usage:
    keygraph probe ./warehouse.duckdb orders.user_id users.id
    keygraph init-db
    keygraph discover <project_id> <datasource_id>
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import duckdb
import typer
from rich.console import Console
from rich.table import Table as RichTable

from keygraph.core.config import get_settings
from keygraph.core.logging import configure_logging

app = typer.Typer(
    name="keygraph",
    help="Keygraph - discover and validate relationships between tables.",
    no_args_is_help=True,
)
console = Console()


def _split_column_ref(ref: str) -> tuple[str, str, str]:
    """Split '[schema.]table.column' into (schema, table, column)."""
    parts = ref.split(".")
    if len(parts) == 2:
        return "", parts[0], parts[1]
    if len(parts) == 3:
        return parts[0], parts[1], parts[2]
    raise typer.BadParameter(f"expected table.column or schema.table.column, got '{ref}'")


@app.callback()
def main(
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help="Override KEYGRAPH_LOG_LEVEL"),
    ] = None,
) -> None:
    settings = get_settings()
    configure_logging(log_level or settings.log_level, settings.log_format)


@app.command()
def probe(
    database: Annotated[
        Path,
        typer.Argument(
            help="DuckDB database file",
            exists=True,
            file_okay=True,
            dir_okay=False,
            resolve_path=True,
        ),
    ],
    source: Annotated[str, typer.Argument(help="Source column as table.column")],
    target: Annotated[str, typer.Argument(help="Target column as table.column")],
) -> None:
    """Join-test one column pair and show its cardinality and rates.

    Examples:

        keygraph probe ./shop.duckdb orders.user_id users.id

        keygraph probe ./shop.duckdb sales.orders.customer_id crm.customers.id
    """
    from keygraph.analysis.relationships.cardinality import calculate_metrics
    from keygraph.analysis.relationships.probe import DuckDBJoinProbe, JoinProbeError

    source_schema, source_table, source_column = _split_column_ref(source)
    target_schema, target_table, target_column = _split_column_ref(target)

    conn = duckdb.connect(str(database), read_only=True)
    try:
        with DuckDBJoinProbe(conn.cursor()) as join_probe:
            try:
                analysis = join_probe.analyze_join(
                    source_schema,
                    source_table,
                    source_column,
                    target_schema,
                    target_table,
                    target_column,
                )
            except JoinProbeError as e:
                console.print(f"[red]{e}[/red]")
                raise typer.Exit(1) from e

        source_rows = _row_count(conn, join_probe.dialect.table_ref(source_schema, source_table))
        target_rows = _row_count(conn, join_probe.dialect.table_ref(target_schema, target_table))
    finally:
        conn.close()

    metrics = calculate_metrics(analysis, source_rows, target_rows)

    table = RichTable(title=f"{source} → {target}")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Cardinality", f"[bold]{metrics.cardinality.value}[/bold]")
    table.add_row("Join rows", str(analysis.join_count))
    table.add_row("Source values matched", str(analysis.source_matched))
    table.add_row("Target values matched", str(analysis.target_matched))
    table.add_row("Orphan source values", str(analysis.orphan_count))
    table.add_row("Unreferenced target values", str(analysis.reverse_orphan_count))
    table.add_row("Max source value", str(analysis.max_source_value))
    table.add_row("Source rows", str(metrics.source_row_count))
    table.add_row("Target rows", str(metrics.target_row_count))
    table.add_row("Join match rate", f"{metrics.join_match_rate:.1%}")
    table.add_row("Orphan rate", f"{metrics.orphan_rate:.1%}")
    table.add_row("Target coverage", f"{metrics.target_coverage:.1%}")
    console.print(table)


def _row_count(conn: duckdb.DuckDBPyConnection, table_ref: str) -> int:
    row = conn.execute(f"SELECT COUNT(*) FROM {table_ref}").fetchone()
    return int(row[0]) if row else 0


@app.command("init-db")
def init_db(
    database_url: Annotated[
        str | None,
        typer.Option("--database-url", help="Override KEYGRAPH_DATABASE_URL"),
    ] = None,
) -> None:
    """Create the metadata tables if they do not exist."""
    from keygraph.storage import get_engine, init_database

    url = database_url or get_settings().database_url

    async def _init() -> None:
        engine = get_engine(url)
        try:
            await init_database(engine)
        finally:
            await engine.dispose()

    asyncio.run(_init())
    console.print(f"[green]Initialized metadata database at {url}[/green]")


@app.command()
def discover(
    project_id: Annotated[str, typer.Argument(help="Project ID")],
    datasource_id: Annotated[str, typer.Argument(help="Datasource ID")],
    user_id: Annotated[
        str,
        typer.Option("--user", "-u", help="User the datasource connections are pooled for"),
    ] = "",
    database_url: Annotated[
        str | None,
        typer.Option("--database-url", help="Override KEYGRAPH_DATABASE_URL"),
    ] = None,
    quiet: Annotated[
        bool,
        typer.Option("--quiet", "-q", help="Suppress progress output"),
    ] = False,
) -> None:
    """Discover, validate and store relationships for one datasource."""
    result = asyncio.run(_discover_async(project_id, datasource_id, user_id, database_url, quiet))
    raise typer.Exit(0 if result else 1)


async def _discover_async(
    project_id: str,
    datasource_id: str,
    user_id: str,
    database_url: str | None,
    quiet: bool,
) -> bool:
    """Async implementation of discover command."""
    from keygraph.datasources.connections import ConnectionManager
    from keygraph.discovery.factory import build_discovery_service
    from keygraph.storage import get_engine, get_session_factory

    settings = get_settings()
    engine = get_engine(database_url or settings.database_url)
    connections = ConnectionManager(
        pool_size=settings.connection_pool_size,
        max_connections_per_user=settings.max_connections_per_user,
    )

    def on_progress(current: int, total: int, message: str) -> None:
        if not quiet:
            console.print(f"[dim]{current:>3}%[/dim] {message}")

    try:
        async with get_session_factory()() as session:
            service = build_discovery_service(session, connections, settings=settings)
            result = await service.discover_relationships(
                project_id, datasource_id, progress=on_progress, user_id=user_id
            )
    finally:
        connections.close()
        await engine.dispose()

    if not result.success:
        console.print(f"[red]Discovery failed: {result.error}[/red]")
        return False

    summary = result.unwrap()
    table = RichTable(title="Relationship discovery")
    table.add_column("Counter", style="cyan")
    table.add_column("Value", justify="right")
    for name, value in summary.model_dump().items():
        table.add_row(name.replace("_", " ").capitalize(), str(value))
    console.print(table)
    return True


if __name__ == "__main__":
    app()
