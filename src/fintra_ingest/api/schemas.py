"""API-specific response schemas (Pydantic v2)."""

from __future__ import annotations

from pydantic import BaseModel

from fintra_ingest.core.models import (
    DividendYearRow,
    FinancialPeriodRow,
    NormalizedFinancialRecord,
    PriceBar,
    SectorGrowthRow,
)


# -- Pagination --


class PaginatedResponse(BaseModel):
    """Wrapper for paginated list responses."""

    offset: int
    limit: int


# -- Error --


class ErrorResponse(BaseModel):
    """Standard error envelope. Cron routes answer failures with this body."""

    error: str


# -- Read routes --


class FinancialsResponse(BaseModel):
    """Latest snapshot plus stored statement periods for one ticker."""

    ticker: str
    snapshot: NormalizedFinancialRecord | None = None
    periods: list[FinancialPeriodRow]


class PriceListResponse(PaginatedResponse):
    """Daily bars, newest first."""

    ticker: str
    items: list[PriceBar]


class DividendListResponse(BaseModel):
    """Dividend years for one ticker, newest first."""

    ticker: str
    items: list[DividendYearRow]


class SectorGrowthResponse(BaseModel):
    items: list[SectorGrowthRow]


# -- Health --


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    status: str = "ok"
    version: str
    database: bool
    bulk_snapshot_loaded: bool
