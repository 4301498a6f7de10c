"""Aggregation jobs: the runner, growth math and the concrete pipelines."""

from fintra_ingest.pipeline.dividends import DividendsPipeline, compute_dividend_years
from fintra_ingest.pipeline.financials import FinancialsPipeline
from fintra_ingest.pipeline.growth import compute_growth_rows, rolling_average
from fintra_ingest.pipeline.prices import PricesDailyPipeline, parse_eod_row
from fintra_ingest.pipeline.runner import AggregationRunner, run_with_timeout
from fintra_ingest.pipeline.sectors import (
    IndustryPerformanceAggregator,
    SectorGrowthAggregator,
    SectorPeAggregator,
    SectorPerformanceAggregator,
    latest_weekday,
    previous_weekday,
)
from fintra_ingest.pipeline.snapshots import FinancialSnapshotPipeline
from fintra_ingest.pipeline.valuation import ValuationPipeline, apply_sector_percentiles

__all__ = [
    "AggregationRunner",
    "DividendsPipeline",
    "FinancialSnapshotPipeline",
    "FinancialsPipeline",
    "IndustryPerformanceAggregator",
    "PricesDailyPipeline",
    "SectorGrowthAggregator",
    "SectorPeAggregator",
    "SectorPerformanceAggregator",
    "ValuationPipeline",
    "apply_sector_percentiles",
    "compute_dividend_years",
    "compute_growth_rows",
    "latest_weekday",
    "parse_eod_row",
    "previous_weekday",
    "rolling_average",
    "run_with_timeout",
]
