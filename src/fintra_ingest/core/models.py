"""Pydantic data models — the system's type contracts."""

from __future__ import annotations

from datetime import date, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

# --- Type Aliases ---

Ticker = str
RawProviderRecord = dict[str, Any]

# --- Enumerations ---


class DatasetKind(StrEnum):
    """Bulk dataset kinds held by a BulkSnapshot."""

    PROFILES = "profiles"
    INCOME = "income"
    BALANCE = "balance"
    CASHFLOW = "cashflow"
    RATIOS = "ratios"
    METRICS = "metrics"


class PeriodType(StrEnum):
    """Financial statement period granularity."""

    FY = "FY"
    QUARTER = "Q"
    TTM = "TTM"


class WindowCode(StrEnum):
    """Performance windows for sector performance rows."""

    ONE_DAY = "1D"
    ONE_WEEK = "1W"
    ONE_MONTH = "1M"
    YTD = "YTD"
    ONE_YEAR = "1Y"


def _ticker_not_empty(v: str) -> str:
    v = v.strip().upper()
    if not v:
        raise ValueError("ticker must be non-empty")
    return v


# --- Validated Provider Records ---


class ProviderRecord(BaseModel):
    """Schema-checked wrapper around one raw provider record.

    The raw key/value pairs are kept in ``raw``; field-name resolution
    across provider variants is the normalizer's job.
    """

    model_config = ConfigDict(frozen=True)

    symbol: Ticker | None = None
    raw: dict[str, Any]

    def get(self, key: str, default: Any = None) -> Any:
        return self.raw.get(key, default)


class ProfileRecord(ProviderRecord):
    """Company profile (sector, industry, price, market cap)."""


class RatiosRecord(ProviderRecord):
    """TTM financial ratios."""


class MetricsRecord(ProviderRecord):
    """TTM key metrics."""


class QuoteRecord(ProviderRecord):
    """Real-time quote."""


# --- Normalized Records ---


class NormalizedFinancialRecord(BaseModel):
    """Canonical per-ticker financial snapshot.

    Numeric fields are None when the source value was absent or
    non-finite. They are never coerced to zero.
    """

    model_config = ConfigDict(frozen=True)

    ticker: Ticker
    sector: str | None = None
    industry: str | None = None
    pe_ttm: float | None = None
    debt_to_equity: float | None = None
    roe: float | None = None
    roic: float | None = None
    gross_margin: float | None = None
    operating_margin: float | None = None
    source: str
    normalized_at: datetime

    @field_validator("ticker")
    @classmethod
    def ticker_not_empty(cls, v: str) -> str:
        return _ticker_not_empty(v)

    @property
    def snapshot_date(self) -> date:
        return self.normalized_at.date()


class FinancialPeriodRow(BaseModel):
    """One statement period for one ticker (the ``datos_financieros`` table)."""

    model_config = ConfigDict(frozen=True)

    ticker: Ticker
    period_type: PeriodType
    period_label: str
    period_end_date: date
    revenue: float | None = None
    net_income: float | None = None
    free_cash_flow: float | None = None
    gross_margin: float | None = None
    operating_margin: float | None = None
    net_margin: float | None = None
    total_debt: float | None = None
    total_equity: float | None = None
    debt_to_equity: float | None = None
    ebitda: float | None = None
    source: str = "fmp_bulk"
    updated_at: datetime

    @field_validator("ticker")
    @classmethod
    def ticker_not_empty(cls, v: str) -> str:
        return _ticker_not_empty(v)

    @property
    def fiscal_year(self) -> int:
        return int(self.period_label[:4])


class ValuationRow(BaseModel):
    """TTM valuation multiples with sector-relative percentiles."""

    model_config = ConfigDict(frozen=True)

    ticker: Ticker
    valuation_date: date
    denominator_type: PeriodType = PeriodType.TTM
    denominator_period: str = "TTM"
    price: float
    market_cap: float | None = None
    enterprise_value: float | None = None
    pe_ratio: float | None = None
    peg_ratio: float | None = None
    ev_ebitda: float | None = None
    ev_sales: float | None = None
    price_to_book: float | None = None
    price_to_sales: float | None = None
    price_to_fcf: float | None = None
    dividend_yield: float | None = None
    sector: str
    pe_percentile: int | None = None
    ev_ebitda_percentile: int | None = None
    p_fcf_percentile: int | None = None
    composite_percentile: int | None = None
    source: str = "fmp_bulk_ttm"
    updated_at: datetime

    @field_validator("price")
    @classmethod
    def price_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"price must be positive, got {v}")
        return v

    @field_validator(
        "pe_percentile", "ev_ebitda_percentile", "p_fcf_percentile", "composite_percentile"
    )
    @classmethod
    def percentile_in_range(cls, v: int | None) -> int | None:
        if v is not None and not 0 <= v <= 100:
            raise ValueError(f"percentile must be in [0, 100], got {v}")
        return v


class GrowthRow(BaseModel):
    """Year-over-year growth between two consecutive fiscal years."""

    model_config = ConfigDict(frozen=True)

    ticker: Ticker
    fiscal_year: int
    period_end_date: date
    growth_revenue: float | None = None
    growth_net_income: float | None = None
    growth_free_cash_flow: float | None = None


# --- Sector Rollups ---


class SectorPerformanceRow(BaseModel):
    """Sector return over one window on one date."""

    model_config = ConfigDict(frozen=True)

    sector: str
    window_code: WindowCode
    performance_date: date
    return_percent: float | None = None
    source: str = "fmp_sectors_performance"


class IndustryPerformanceRow(BaseModel):
    """Industry return over one window on one date."""

    model_config = ConfigDict(frozen=True)

    industry: str
    window_code: WindowCode
    performance_date: date
    return_percent: float | None = None
    source: str = "fmp_industry_performance_snapshot"


class SectorPeRow(BaseModel):
    """Sector P/E snapshot for one date."""

    model_config = ConfigDict(frozen=True)

    sector: str
    pe_date: date
    pe: float | None = None
    source: str = "fmp_sector_pe_snapshot"


class SectorGrowthRow(BaseModel):
    """Rolling multi-year growth averaged across a sector's tickers."""

    model_config = ConfigDict(frozen=True)

    sector: str
    as_of_date: date
    revenue_growth: float | None = None
    earnings_growth: float | None = None
    fcf_growth: float | None = None
    ticker_count: int = 0

    @field_validator("ticker_count")
    @classmethod
    def count_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("ticker_count cannot be negative")
        return v


# --- Universe & Prices ---


class UniverseEntry(BaseModel):
    """One security in the tracked universe."""

    model_config = ConfigDict(frozen=True)

    ticker: Ticker
    name: str | None = None
    sector: str | None = None
    industry: str | None = None
    is_active: bool = True

    @field_validator("ticker")
    @classmethod
    def ticker_not_empty(cls, v: str) -> str:
        return _ticker_not_empty(v)


class PriceBar(BaseModel):
    """Daily OHLC bar for one ticker (the ``prices_daily`` table)."""

    model_config = ConfigDict(frozen=True)

    ticker: Ticker
    price_date: date
    close: float
    volume: int = 0
    open: float | None = None
    high: float | None = None
    low: float | None = None
    adj_close: float | None = None
    source: str = "fmp_eod_bulk"

    @field_validator("close")
    @classmethod
    def close_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"close must be positive, got {v}")
        return v


# --- Dividends ---


class DividendYearRow(BaseModel):
    """Dividends paid by one ticker in one calendar year (``datos_dividendos``).

    ``dividend_yield`` and both payout ratios are percentages.
    ``is_growing`` is None when the previous year has no row to compare;
    ``is_stable`` is None when neither neighbouring year has a row.
    """

    model_config = ConfigDict(frozen=True)

    ticker: Ticker
    year: int
    dividend_per_share: float
    payment_count: int
    average_price: float | None = None
    dividend_yield: float | None = None
    payout_eps: float | None = None
    payout_fcf: float | None = None
    has_dividend: bool
    is_growing: bool | None = None
    is_stable: bool | None = None
    source: str = "fmp_dividends"

    @field_validator("ticker")
    @classmethod
    def ticker_not_empty(cls, v: str) -> str:
        return _ticker_not_empty(v)

    @field_validator("payment_count")
    @classmethod
    def count_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("payment_count cannot be negative")
        return v


# --- Run Results ---


class TickerError(BaseModel):
    """A per-unit failure recorded during an aggregation run."""

    model_config = ConfigDict(frozen=True)

    ticker: str
    message: str


class AggregationRunResult(BaseModel):
    """Summary of one pipeline invocation. Returned, never persisted."""

    model_config = ConfigDict(frozen=True)

    success: bool
    processed_count: int
    error_count: int
    duration_ms: int
    errors: list[TickerError] = []
