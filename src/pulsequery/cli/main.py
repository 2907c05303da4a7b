"""CLI for PulseQuery."""

import asyncio
import json
from typing import Annotated, Any

import typer
import uvicorn
from pydantic import ValidationError
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from pulsequery.config import Settings, get_settings
from pulsequery.devices.classifier import classify_resolution
from pulsequery.engine import AnalyticsEngine
from pulsequery.errors import QueryError
from pulsequery.logging_setup import configure_logging
from pulsequery.models.request import (
    SET_OPERATORS,
    CompileRequest,
    FilterClause,
    QueryRequest,
    normalize_operator,
)
from pulsequery.models.result import ParameterResult

app = typer.Typer(
    name="pq",
    help="PulseQuery - analytics query compiler CLI",
    no_args_is_help=True,
)
console = Console()

# a date range that's valid for every query type, used by validate
VALIDATION_RANGE = ("2024-01-01", "2024-01-31")

WebsiteOpt = Annotated[str, typer.Option("--website", "-w", help="Website (tenant) id")]
StartOpt = Annotated[str, typer.Option("--start", help="Start date (YYYY-MM-DD)")]
EndOpt = Annotated[str, typer.Option("--end", help="End date (YYYY-MM-DD)")]
FilterOpt = Annotated[
    list[str] | None,
    typer.Option("--filter", "-f", help="field:operator:value, repeatable. in/not_in take a,b,c"),
]
DbOpt = Annotated[str | None, typer.Option("--db", help="DuckDB database path")]
TimezoneOpt = Annotated[str, typer.Option("--timezone", "--tz", help="IANA timezone")]
GranularityOpt = Annotated[str, typer.Option("--granularity", "-t", help="hour or day")]


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging")] = False,
) -> None:
    settings = get_settings()
    if verbose:
        settings = settings.model_copy(update={"log_level": "DEBUG"})
    configure_logging(settings)


def get_engine(db_path: str | None = None) -> AnalyticsEngine:
    settings: Settings = get_settings()
    if db_path:
        settings = settings.model_copy(update={"database_path": db_path})
    return AnalyticsEngine(settings).start()


def parse_filter(text: str) -> FilterClause:
    """'device_type:eq:mobile' -> FilterClause. values of set operators split on commas."""
    parts = text.split(":", 2)
    if len(parts) != 3 or not all(parts[:2]):
        raise typer.BadParameter(f"Expected field:operator:value, got '{text}'")
    field, operator, value = parts
    try:
        canonical = normalize_operator(operator)
    except ValueError as e:
        raise typer.BadParameter(str(e)) from e
    parsed: Any = [item.strip() for item in value.split(",")] if canonical in SET_OPERATORS else value
    return FilterClause(field=field, operator=canonical, value=parsed)


def _load_engine(db_path: str | None = None) -> AnalyticsEngine:
    try:
        return get_engine(db_path)
    except (QueryError, FileNotFoundError) as e:
        console.print(f"[red]Error loading query catalog: {e}[/red]")
        raise typer.Exit(1)


@app.command("types")
def list_types() -> None:
    """List every query type in the catalog."""
    engine = _load_engine()
    with engine:
        table = Table(title="Query types")
        table.add_column("Name", style="cyan", no_wrap=True)
        table.add_column("Category", style="yellow", no_wrap=True)
        table.add_column("Title")

        for definition in engine.catalog:
            table.add_row(
                definition.name,
                definition.meta.category or "-",
                definition.meta.title or "-",
            )
        console.print(table)


@app.command()
def describe(name: Annotated[str, typer.Argument(help="Query type name")]) -> None:
    """Show the metadata of one query type."""
    engine = _load_engine()
    with engine:
        try:
            meta = engine.describe_type(name)
        except QueryError as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(1)
    console.print_json(json.dumps(meta, default=str))


@app.command("show-sql")
def show_sql(
    name: Annotated[str, typer.Argument(help="Query type name")],
    website: WebsiteOpt,
    start_date: StartOpt,
    end_date: EndOpt,
    filters: FilterOpt = None,
    granularity: GranularityOpt = "day",
    timezone: TimezoneOpt = "UTC",
    group_by: Annotated[
        str | None, typer.Option("--group-by", "-g", help="Comma-separated grouping override")
    ] = None,
    order_by: Annotated[str | None, typer.Option("--order-by", help="Ordering override")] = None,
    limit: Annotated[int | None, typer.Option("--limit", "-l", help="Maximum rows")] = None,
    offset: Annotated[int, typer.Option("--offset", help="Rows to skip")] = 0,
) -> None:
    """Show generated SQL and its parameters without executing."""
    engine = _load_engine()
    with engine:
        try:
            compiled = engine.compile(
                CompileRequest(
                    tenant_id=website,
                    name=name,
                    start_date=start_date,
                    end_date=end_date,
                    timezone=timezone,
                    granularity=granularity,
                    limit=limit,
                    offset=offset,
                    filters=[parse_filter(f) for f in filters or []],
                    group_by=[g.strip() for g in group_by.split(",")] if group_by else None,
                    order_by=order_by,
                )
            )
        except (QueryError, ValidationError) as e:
            console.print(f"[red]Error generating SQL: {e}[/red]")
            raise typer.Exit(1)

        formatted = engine.compiler.format_sql(compiled.sql)
    syntax = Syntax(formatted, "sql", theme="monokai", line_numbers=True)
    console.print(syntax)
    console.print_json(json.dumps(compiled.params, default=str))


@app.command()
def query(
    parameters: Annotated[str, typer.Argument(help="Comma-separated query type names")],
    website: WebsiteOpt,
    start_date: StartOpt,
    end_date: EndOpt,
    filters: FilterOpt = None,
    granularity: GranularityOpt = "day",
    timezone: TimezoneOpt = "UTC",
    db_path: DbOpt = None,
    limit: Annotated[int | None, typer.Option("--limit", "-l", help="Maximum rows")] = None,
    page: Annotated[int, typer.Option("--page", "-p", help="Page number")] = 1,
    output: Annotated[str, typer.Option("--output", "-o", help="Output format: table, json")] = "table",
) -> None:
    """Run one or more query types as a single batch."""
    engine = _load_engine(db_path)
    with engine:
        try:
            request = QueryRequest(
                tenant_id=website,
                parameters=[p.strip() for p in parameters.split(",") if p.strip()],
                start_date=start_date,
                end_date=end_date,
                timezone=timezone,
                granularity=granularity,
                limit=limit if limit is not None else engine.settings.default_limit,
                page=page,
                filters=[parse_filter(f) for f in filters or []],
            )
            envelope = asyncio.run(engine.query(request))
        except (QueryError, ValidationError) as e:
            console.print(f"[red]Query error: {e}[/red]")
            raise typer.Exit(1)

    if output == "json":
        console.print(json.dumps(envelope.to_wire(), indent=2, default=str), soft_wrap=True)
    else:
        for result in envelope.data:
            _print_result(result)

    if not all(result.success for result in envelope.data):
        raise typer.Exit(1)


def _print_result(result: ParameterResult) -> None:
    if not result.success:
        console.print(f"[red]{result.parameter}: {result.error}[/red]")
        return
    if not result.data:
        # rich renders a table without columns as a blank line, title included
        console.print(f"{result.parameter}: no rows")
        return

    table = Table(title=f"{result.parameter} ({len(result.data)} rows)")
    columns = list(result.data[0])
    for col in columns:
        table.add_column(col)
    for row in result.data:
        table.add_row(*[str(row.get(c, "")) for c in columns])
    console.print(table)


@app.command()
def classify(
    resolutions: Annotated[list[str], typer.Argument(help="Screen resolutions, e.g. 1920x1080")],
) -> None:
    """Classify screen resolutions into device types."""
    table = Table(title="Device types")
    table.add_column("Resolution", style="cyan")
    table.add_column("Device type", style="green")
    for resolution in resolutions:
        table.add_row(resolution, classify_resolution(resolution).value)
    console.print(table)


@app.command()
def validate(db_path: DbOpt = None) -> None:
    """Compile every query type and run it against the store."""
    engine = _load_engine(db_path)
    errors = []
    with engine:
        start, end = VALIDATION_RANGE
        for name in engine.list_types():
            try:
                # compilation and execution fail loudly if a definition is broken
                compiled = engine.compile(
                    CompileRequest(tenant_id="validate", name=name, start_date=start, end_date=end)
                )
                engine.executor.execute(compiled.sql, compiled.params)
            except QueryError as e:
                errors.append(f"Query '{name}': {e}")
        count = len(engine.catalog)

    if errors:
        console.print("[red]Validation failed:[/red]")
        for error in errors:
            console.print(f"  - {error}")
        raise typer.Exit(1)
    console.print(f"[green]Validated {count} query types successfully![/green]")


@app.command()
def serve(
    host: Annotated[str, typer.Option(help="Bind address")] = "127.0.0.1",
    port: Annotated[int, typer.Option(help="Port")] = 8000,
    db_path: DbOpt = None,
) -> None:
    """Serve the HTTP API."""
    from pulsequery.api.app import create_app

    settings = get_settings()
    if db_path:
        settings = settings.model_copy(update={"database_path": db_path})
    # the app starts and stops the engine with its lifespan
    uvicorn.run(create_app(AnalyticsEngine(settings)), host=host, port=port)


if __name__ == "__main__":
    app()
