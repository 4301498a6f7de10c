"""Click-based CLI for fintra-ingest.

Thin wrapper around library modules. Every command builds a pipeline,
runs it under the configured time limit and prints the run summary.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from collections.abc import Awaitable, Callable

import click
from rich.console import Console
from rich.table import Table

console = Console(stderr=True)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run_async(coro):
    """Run an async coroutine from synchronous Click code."""
    return asyncio.run(coro)


def _load_config(ctx: click.Context):
    """Load config lazily, caching on first call."""
    if "config" not in ctx.obj:
        from fintra_ingest.core import ConfigError, load_config

        try:
            ctx.obj["config"] = load_config(config_path=ctx.obj.get("config_path"))
        except ConfigError as e:
            console.print(f"[red]Configuration error:[/red] {e}")
            raise SystemExit(2)
    return ctx.obj["config"]


async def _create_store_async(config):
    """Create and initialize storage from config."""
    from fintra_ingest.ingestion import create_store

    return await create_store(config.storage)


def _output_result(name: str, result, fmt: str) -> None:
    if fmt == "json":
        click.echo(result.model_dump_json(indent=2))
        return

    table = Table(title=f"{name} run")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Success", "[green]yes[/green]" if result.success else "[red]no[/red]")
    table.add_row("Processed", str(result.processed_count))
    table.add_row("Errors", str(result.error_count))
    table.add_row("Duration", f"{result.duration_ms} ms")
    console.print(table)

    if result.errors:
        errors = Table(title="Errors")
        errors.add_column("Unit", style="bold")
        errors.add_column("Message")
        for err in result.errors:
            errors.add_row(err.ticker, err.message)
        console.print(errors)


def _run_job(
    ctx: click.Context,
    build: Callable[..., Awaitable],
    fmt: str,
    needs_client: bool = False,
    ticker: str | None = None,
    limit: int | None = None,
    offset: int = 0,
) -> None:
    """Create store (and client), build the runner, run it, print the result."""
    config = _load_config(ctx)

    async def _run():
        from fintra_ingest.ingestion import FmpClient
        from fintra_ingest.pipeline import run_with_timeout

        store = await _create_store_async(config)
        try:
            if needs_client:
                async with FmpClient(config.fmp) as client:
                    runner = await build(config, store, client)
                    return runner.name, await run_with_timeout(
                        runner, config.cron.max_duration_seconds, ticker, limit, offset
                    )
            runner = await build(config, store, None)
            return runner.name, await run_with_timeout(
                runner, config.cron.max_duration_seconds, ticker, limit, offset
            )
        finally:
            await store.close()

    try:
        name, result = _run_async(_run())
    except asyncio.TimeoutError:
        console.print(
            f"[red]Run exceeded {config.cron.max_duration_seconds}s time limit[/red]"
        )
        raise SystemExit(1)
    except Exception as e:
        console.print(f"[red]Run failed:[/red] {e}")
        raise SystemExit(1)
    _output_result(name, result, fmt)


def _loader(config):
    from fintra_ingest.ingestion import BulkSnapshotLoader

    return BulkSnapshotLoader.from_config(config.fmp)


_format_option = click.option(
    "--format",
    "-f",
    "fmt",
    type=click.Choice(["table", "json"], case_sensitive=False),
    default="table",
    help="Output format.",
)
_ticker_option = click.option("--ticker", "-t", default=None, help="Process only this ticker.")
_limit_option = click.option("--limit", "-n", type=click.IntRange(min=1), default=None)
_offset_option = click.option("--offset", type=click.IntRange(min=0), default=0)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    envvar="FINTRA_CONFIG",
    default=None,
    help="Path to fintra.yml config file.",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable debug logging.",
)
@click.version_option(package_name="fintra-ingest")
@click.pass_context
def cli(ctx: click.Context, config: str | None, verbose: bool) -> None:
    """Fintra ingest: scheduled financial data aggregation jobs."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["verbose"] = verbose
    ctx.obj["console"] = console
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# Per-ticker jobs
# ---------------------------------------------------------------------------


@cli.command("bulk-update")
@_ticker_option
@_limit_option
@_offset_option
@click.option("--live", is_flag=True, default=False, help="Fetch from the API instead of bulk files.")
@_format_option
@click.pass_context
def bulk_update(
    ctx: click.Context,
    ticker: str | None,
    limit: int | None,
    offset: int,
    live: bool,
    fmt: str,
) -> None:
    """Refresh per-ticker financial snapshots."""
    from fintra_ingest.pipeline import FinancialSnapshotPipeline

    async def build(config, store, client):
        if live:
            return FinancialSnapshotPipeline(
                store, client=client, concurrency=config.cron.concurrency
            )
        return FinancialSnapshotPipeline(
            store, _loader(config), concurrency=config.cron.concurrency
        )

    _run_job(ctx, build, fmt, needs_client=live, ticker=ticker, limit=limit, offset=offset)


@cli.command()
@_ticker_option
@_limit_option
@_offset_option
@_format_option
@click.pass_context
def financials(
    ctx: click.Context, ticker: str | None, limit: int | None, offset: int, fmt: str
) -> None:
    """Refresh FY, quarterly and TTM statement periods from bulk files."""
    from fintra_ingest.pipeline import FinancialsPipeline

    async def build(config, store, client):
        return FinancialsPipeline(store, _loader(config), concurrency=config.cron.concurrency)

    _run_job(ctx, build, fmt, ticker=ticker, limit=limit, offset=offset)


@cli.command()
@_ticker_option
@_limit_option
@_format_option
@click.pass_context
def valuation(ctx: click.Context, ticker: str | None, limit: int | None, fmt: str) -> None:
    """Refresh TTM valuation rows with sector percentiles."""
    from fintra_ingest.pipeline import ValuationPipeline

    async def build(config, store, client):
        return ValuationPipeline(store, _loader(config), concurrency=config.cron.concurrency)

    _run_job(ctx, build, fmt, ticker=ticker, limit=limit)


# ---------------------------------------------------------------------------
# Sector rollups
# ---------------------------------------------------------------------------


@cli.command("sector-performance")
@_format_option
@click.pass_context
def sector_performance(ctx: click.Context, fmt: str) -> None:
    """Store today's 1D sector returns."""
    from fintra_ingest.pipeline import SectorPerformanceAggregator

    async def build(config, store, client):
        return SectorPerformanceAggregator(store, client)

    _run_job(ctx, build, fmt, needs_client=True)


@cli.command("sector-pe")
@click.option(
    "--date",
    "pe_date",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    default=None,
    help="Snapshot date (default: latest weekday).",
)
@_format_option
@click.pass_context
def sector_pe(ctx: click.Context, pe_date, fmt: str) -> None:
    """Store the sector P/E snapshot."""
    from fintra_ingest.pipeline import SectorPeAggregator

    target = pe_date.date() if pe_date is not None else None

    async def build(config, store, client):
        return SectorPeAggregator(store, client, pe_date=target)

    _run_job(ctx, build, fmt, needs_client=True)


@cli.command("sector-growth")
@_format_option
@click.pass_context
def sector_growth(ctx: click.Context, fmt: str) -> None:
    """Roll stored FY growth history up to one row per sector."""
    from fintra_ingest.pipeline import SectorGrowthAggregator

    async def build(config, store, client):
        return SectorGrowthAggregator(store, concurrency=config.cron.concurrency)

    _run_job(ctx, build, fmt)


@cli.command("industry-performance")
@click.option(
    "--date",
    "performance_date",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    default=None,
    help="Snapshot date (default: previous weekday).",
)
@_format_option
@click.pass_context
def industry_performance(ctx: click.Context, performance_date, fmt: str) -> None:
    """Store the 1D industry performance snapshot."""
    from fintra_ingest.pipeline import IndustryPerformanceAggregator

    target = performance_date.date() if performance_date is not None else None

    async def build(config, store, client):
        return IndustryPerformanceAggregator(store, client, performance_date=target)

    _run_job(ctx, build, fmt, needs_client=True)


# ---------------------------------------------------------------------------
# Prices and dividends
# ---------------------------------------------------------------------------


@cli.command("prices-daily")
@_ticker_option
@_limit_option
@_offset_option
@click.option(
    "--date",
    "price_date",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    default=None,
    help="Trading date (default: today).",
)
@_format_option
@click.pass_context
def prices_daily(
    ctx: click.Context,
    ticker: str | None,
    limit: int | None,
    offset: int,
    price_date,
    fmt: str,
) -> None:
    """Store daily OHLC bars from the EOD bulk export."""
    from fintra_ingest.pipeline import PricesDailyPipeline

    target = price_date.date() if price_date is not None else None

    async def build(config, store, client):
        return PricesDailyPipeline(
            store,
            config.fmp.bulk_dir,
            client=client,
            price_date=target,
            concurrency=config.cron.concurrency,
        )

    _run_job(ctx, build, fmt, needs_client=True, ticker=ticker, limit=limit, offset=offset)


@cli.command()
@_ticker_option
@_limit_option
@_offset_option
@_format_option
@click.pass_context
def dividends(
    ctx: click.Context, ticker: str | None, limit: int | None, offset: int, fmt: str
) -> None:
    """Refresh yearly dividend rows from per-ticker payment history."""
    from fintra_ingest.pipeline import DividendsPipeline

    async def build(config, store, client):
        return DividendsPipeline(store, client, concurrency=config.cron.concurrency)

    _run_job(ctx, build, fmt, needs_client=True, ticker=ticker, limit=limit, offset=offset)


# ---------------------------------------------------------------------------
# download-bulk
# ---------------------------------------------------------------------------


@cli.command("download-bulk")
@_format_option
@click.pass_context
def download_bulk(ctx: click.Context, fmt: str) -> None:
    """Download bulk CSV exports into the configured directory."""
    config = _load_config(ctx)

    async def _run():
        from fintra_ingest.ingestion import FmpClient, download_bulk_files

        started = time.perf_counter()
        async with FmpClient(config.fmp) as client:
            summary = await asyncio.wait_for(
                download_bulk_files(client, config.fmp),
                timeout=config.cron.max_duration_seconds,
            )
        return summary.to_run_result(int((time.perf_counter() - started) * 1000))

    try:
        result = _run_async(_run())
    except asyncio.TimeoutError:
        console.print(
            f"[red]Download exceeded {config.cron.max_duration_seconds}s time limit[/red]"
        )
        raise SystemExit(1)
    except Exception as e:
        console.print(f"[red]Run failed:[/red] {e}")
        raise SystemExit(1)
    _output_result("download-bulk", result, fmt)


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--host", type=str, default=None, help="Bind address (default: api.host).")
@click.option("--port", "-p", type=int, default=None, help="Port number (default: api.port).")
@click.option("--reload", is_flag=True, default=False, help="Auto-reload on code changes.")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None, reload: bool) -> None:
    """Start the REST API server."""
    import uvicorn

    config = _load_config(ctx)
    host = host or config.api.host
    port = port or config.api.port

    # The app factory loads config itself; point it at the same file
    if ctx.obj.get("config_path"):
        os.environ["FINTRA_CONFIG"] = ctx.obj["config_path"]

    console.print(f"Starting fintra-ingest API on [bold]{host}:{port}[/bold]")
    console.print(f"API docs: http://{host}:{port}/docs")

    uvicorn.run(
        "fintra_ingest.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


# ---------------------------------------------------------------------------
# status
# ---------------------------------------------------------------------------


@cli.command()
@_format_option
@click.pass_context
def status(ctx: click.Context, fmt: str) -> None:
    """Show row counts per table and bulk file coverage."""
    config = _load_config(ctx)

    async def _run():
        store = await _create_store_async(config)
        try:
            return await store.table_counts()
        finally:
            await store.close()

    counts = _run_async(_run())
    bulk_dir = config.fmp.bulk_dir
    bulk_files = (
        sorted(p for p in os.listdir(bulk_dir) if p.endswith(".csv"))
        if os.path.isdir(bulk_dir)
        else []
    )

    if fmt == "json":
        import json

        click.echo(json.dumps({"tables": counts, "bulk_files": len(bulk_files)}, indent=2))
        return

    table = Table(title="Fintra Ingest Status")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Database path", config.storage.sqlite_path)
    table.add_row("Bulk directory", bulk_dir)
    table.add_row("Bulk CSV files", str(len(bulk_files)))
    table.add_row("Cron secret", "set" if config.cron.secret else "[red]missing[/red]")
    table.add_section()
    for name, count in counts.items():
        table.add_row(name, str(count))
    console.print(table)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
