"""FastAPI route definitions: protected cron triggers and read-only queries."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

import fintra_ingest
from fintra_ingest.api.deps import (
    get_config,
    get_loader,
    get_store,
    require_cron_secret,
)
from fintra_ingest.api.schemas import (
    DividendListResponse,
    ErrorResponse,
    FinancialsResponse,
    HealthResponse,
    PriceListResponse,
    SectorGrowthResponse,
)
from fintra_ingest.core.config import FintraConfig
from fintra_ingest.core.models import AggregationRunResult
from fintra_ingest.ingestion.bulk import BulkSnapshotLoader, download_bulk_files
from fintra_ingest.ingestion.client import FmpClient
from fintra_ingest.ingestion.store import SqliteStore
from fintra_ingest.pipeline import (
    AggregationRunner,
    DividendsPipeline,
    FinancialSnapshotPipeline,
    FinancialsPipeline,
    IndustryPerformanceAggregator,
    PricesDailyPipeline,
    SectorGrowthAggregator,
    SectorPeAggregator,
    SectorPerformanceAggregator,
    ValuationPipeline,
    run_with_timeout,
)

logger = logging.getLogger(__name__)

router = APIRouter()
cron_router = APIRouter(prefix="/cron", dependencies=[Depends(require_cron_secret)])


def _failure(message: str) -> JSONResponse:
    return JSONResponse(status_code=500, content=ErrorResponse(error=message).model_dump())


async def _execute(
    runner: AggregationRunner,
    config: FintraConfig,
    ticker: str | None = None,
    limit: int | None = None,
    offset: int = 0,
) -> AggregationRunResult | JSONResponse:
    """Run a job under the configured time cap; any failure becomes a 500."""
    try:
        return await run_with_timeout(
            runner,
            config.cron.max_duration_seconds,
            target_ticker=ticker,
            limit=limit,
            offset=offset,
        )
    except asyncio.TimeoutError:
        logger.error("%s exceeded %ds", runner.name, config.cron.max_duration_seconds)
        return _failure(
            f"{runner.name} exceeded {config.cron.max_duration_seconds}s time limit"
        )
    except Exception as e:
        logger.exception("%s run failed", runner.name)
        return _failure(str(e) or type(e).__name__)


# -- Cron triggers --


@cron_router.get("/bulk-update", response_model=AggregationRunResult)
async def bulk_update(
    ticker: str | None = Query(None, description="Process only this ticker"),
    limit: int | None = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    live: bool = Query(False, description="Fetch from the API instead of bulk files"),
    config: FintraConfig = Depends(get_config),
    store: SqliteStore = Depends(get_store),
    loader: BulkSnapshotLoader = Depends(get_loader),
):
    """Refresh per-ticker financial snapshots."""
    if live:
        async with FmpClient(config.fmp) as client:
            runner = FinancialSnapshotPipeline(
                store, client=client, concurrency=config.cron.concurrency
            )
            return await _execute(runner, config, ticker, limit, offset)
    runner = FinancialSnapshotPipeline(store, loader, concurrency=config.cron.concurrency)
    return await _execute(runner, config, ticker, limit, offset)


@cron_router.get("/financials-bulk", response_model=AggregationRunResult)
async def financials_bulk(
    ticker: str | None = Query(None),
    limit: int | None = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    config: FintraConfig = Depends(get_config),
    store: SqliteStore = Depends(get_store),
    loader: BulkSnapshotLoader = Depends(get_loader),
):
    """Refresh FY, quarterly and TTM statement periods."""
    runner = FinancialsPipeline(store, loader, concurrency=config.cron.concurrency)
    return await _execute(runner, config, ticker, limit, offset)


@cron_router.get("/valuation-bulk", response_model=AggregationRunResult)
async def valuation_bulk(
    ticker: str | None = Query(None),
    limit: int | None = Query(None, ge=1),
    config: FintraConfig = Depends(get_config),
    store: SqliteStore = Depends(get_store),
    loader: BulkSnapshotLoader = Depends(get_loader),
):
    """Refresh TTM valuation rows and sector percentiles."""
    runner = ValuationPipeline(store, loader, concurrency=config.cron.concurrency)
    return await _execute(runner, config, ticker, limit)


@cron_router.get("/sector-performance-aggregator", response_model=AggregationRunResult)
async def sector_performance_aggregator(
    config: FintraConfig = Depends(get_config),
    store: SqliteStore = Depends(get_store),
):
    """Store today's 1D sector returns."""
    async with FmpClient(config.fmp) as client:
        return await _execute(SectorPerformanceAggregator(store, client), config)


@cron_router.get("/sector-pe-aggregator", response_model=AggregationRunResult)
async def sector_pe_aggregator(
    config: FintraConfig = Depends(get_config),
    store: SqliteStore = Depends(get_store),
):
    """Store the sector P/E snapshot for the latest weekday."""
    async with FmpClient(config.fmp) as client:
        return await _execute(SectorPeAggregator(store, client), config)


@cron_router.get("/sector-growth-aggregator", response_model=AggregationRunResult)
async def sector_growth_aggregator(
    config: FintraConfig = Depends(get_config),
    store: SqliteStore = Depends(get_store),
):
    """Roll FY growth history up to one row per sector."""
    runner = SectorGrowthAggregator(store, concurrency=config.cron.concurrency)
    return await _execute(runner, config)


@cron_router.get("/prices-daily-bulk", response_model=AggregationRunResult)
async def prices_daily_bulk(
    ticker: str | None = Query(None),
    limit: int | None = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    price_date: date | None = Query(None, alias="date", description="Trading date (default: today)"),
    config: FintraConfig = Depends(get_config),
    store: SqliteStore = Depends(get_store),
):
    """Store daily OHLC bars for the active universe from the EOD bulk export."""
    async with FmpClient(config.fmp) as client:
        runner = PricesDailyPipeline(
            store,
            config.fmp.bulk_dir,
            client=client,
            price_date=price_date,
            concurrency=config.cron.concurrency,
        )
        return await _execute(runner, config, ticker, limit, offset)


@cron_router.get("/dividends-bulk", response_model=AggregationRunResult)
async def dividends_bulk(
    ticker: str | None = Query(None),
    limit: int | None = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    config: FintraConfig = Depends(get_config),
    store: SqliteStore = Depends(get_store),
):
    """Refresh yearly dividend rows from per-ticker payment history."""
    async with FmpClient(config.fmp) as client:
        runner = DividendsPipeline(store, client, concurrency=config.cron.concurrency)
        return await _execute(runner, config, ticker, limit, offset)


@cron_router.get("/industry-performance-aggregator", response_model=AggregationRunResult)
async def industry_performance_aggregator(
    config: FintraConfig = Depends(get_config),
    store: SqliteStore = Depends(get_store),
):
    """Store the previous weekday's 1D industry returns."""
    async with FmpClient(config.fmp) as client:
        return await _execute(IndustryPerformanceAggregator(store, client), config)


@cron_router.get("/download-bulk", response_model=AggregationRunResult)
async def download_bulk(config: FintraConfig = Depends(get_config)):
    """Download bulk CSV exports into the configured directory."""
    started = time.perf_counter()
    try:
        async with FmpClient(config.fmp) as client:
            summary = await asyncio.wait_for(
                download_bulk_files(client, config.fmp),
                timeout=config.cron.max_duration_seconds,
            )
    except asyncio.TimeoutError:
        return _failure(
            f"download-bulk exceeded {config.cron.max_duration_seconds}s time limit"
        )
    except Exception as e:
        logger.exception("download-bulk failed")
        return _failure(str(e) or type(e).__name__)
    return summary.to_run_result(int((time.perf_counter() - started) * 1000))


# -- Health --


@router.get("/health", response_model=HealthResponse)
async def health_check(
    store: SqliteStore = Depends(get_store),
    loader: BulkSnapshotLoader = Depends(get_loader),
):
    """Liveness plus database reachability."""
    return HealthResponse(
        status="ok",
        version=fintra_ingest.__version__,
        database=await store.health_check(),
        bulk_snapshot_loaded=loader.is_loaded,
    )


# -- Read routes --


@router.get("/financials/{ticker}", response_model=FinancialsResponse)
async def get_financials(
    ticker: str,
    limit: int = Query(40, ge=1, le=200, description="Max statement periods"),
    store: SqliteStore = Depends(get_store),
):
    """Latest snapshot and statement periods for a ticker."""
    ticker = ticker.upper()
    snapshot = await store.get_latest_snapshot(ticker)
    periods = await store.get_financial_periods(ticker, limit=limit)
    if snapshot is None and not periods:
        raise HTTPException(status_code=404, detail=f"No financial data for {ticker}")
    return FinancialsResponse(ticker=ticker, snapshot=snapshot, periods=periods)


@router.get("/prices/{ticker}", response_model=PriceListResponse)
async def get_prices(
    ticker: str,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    store: SqliteStore = Depends(get_store),
):
    """Daily bars for a ticker, newest first."""
    ticker = ticker.upper()
    items = await store.get_prices(ticker, limit=limit, offset=offset)
    return PriceListResponse(ticker=ticker, offset=offset, limit=limit, items=items)


@router.get("/dividends/{ticker}", response_model=DividendListResponse)
async def get_dividends(ticker: str, store: SqliteStore = Depends(get_store)):
    """Stored dividend years for a ticker, newest first."""
    ticker = ticker.upper()
    return DividendListResponse(ticker=ticker, items=await store.get_dividends(ticker))


@router.get("/sectors/growth", response_model=SectorGrowthResponse)
async def get_sector_growth(store: SqliteStore = Depends(get_store)):
    """Latest growth rollup per sector."""
    return SectorGrowthResponse(items=await store.list_sector_growth())


router.include_router(cron_router)
