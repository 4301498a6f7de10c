"""Rate-limited async HTTP client for the Financial Modeling Prep API."""

from __future__ import annotations

import logging
from datetime import date
from typing import Any

import httpx
from aiolimiter import AsyncLimiter

from fintra_ingest.core.config import FmpConfig
from fintra_ingest.core.exceptions import DataError, ProviderError
from fintra_ingest.core.models import (
    MetricsRecord,
    ProfileRecord,
    QuoteRecord,
    RatiosRecord,
    RawProviderRecord,
)
from fintra_ingest.ingestion.normalizer import (
    parse_metrics,
    parse_profile,
    parse_quote,
    parse_ratios,
)

logger = logging.getLogger(__name__)

# FMP endpoint paths (relative to base_url)
_PROFILE_PATH = "/stable/profile"
_RATIOS_TTM_PATH = "/stable/ratios-ttm"
_KEY_METRICS_TTM_PATH = "/stable/key-metrics-ttm"
_QUOTE_PATH = "/stable/quote"
_SECTOR_PE_SNAPSHOT_PATH = "/stable/sector-pe-snapshot"
_SECTORS_PERFORMANCE_PATH = "/api/v3/sectors-performance"
_INDUSTRY_PERFORMANCE_SNAPSHOT_PATH = "/stable/industry-performance-snapshot"
_EOD_BULK_PATH = "/stable/eod-bulk"
_DIVIDEND_HISTORY_PATH = "/api/v3/historical-price-full/stock_dividend/{symbol}"
_PRICE_HISTORY_PATH = "/api/v3/historical-price-full/{symbol}"
_ANNUAL_RATIOS_PATH = "/api/v3/ratios/{symbol}"

QueryParams = dict[str, str | int | float | None]


class FmpClient:
    """Async client for FMP JSON and CSV endpoints.

    Every request is a single attempt: non-2xx responses and transport
    failures surface as ProviderError and the caller decides whether the
    failure is per-ticker or fatal. Requests are throttled by a token
    bucket (``rate_limit`` per second) but never retried.

    Use via `async with FmpClient(config) as client:`.
    """

    def __init__(self, config: FmpConfig) -> None:
        self._config = config
        self._limiter = AsyncLimiter(max_rate=config.rate_limit, time_period=1.0)
        self._client = httpx.AsyncClient(
            base_url=config.base_url,
            timeout=httpx.Timeout(config.request_timeout),
            follow_redirects=True,
        )

    async def __aenter__(self) -> FmpClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client. Called automatically by __aexit__."""
        await self._client.aclose()

    # --- Generic access ---

    async def fetch(self, endpoint_path: str, query_params: QueryParams | None = None) -> Any:
        """GET an endpoint and return its parsed JSON body, untyped.

        Raises:
            ProviderError: Non-2xx status, network failure, or invalid JSON.
        """
        response = await self._get(endpoint_path, query_params)
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(
                f"Invalid JSON from {endpoint_path}",
                context={"url": self._public_url(endpoint_path), "error": str(e)},
            ) from e

    async def fetch_text(
        self, endpoint_path: str, query_params: QueryParams | None = None
    ) -> str:
        """GET an endpoint and return the raw body (used for bulk CSV exports)."""
        response = await self._get(endpoint_path, query_params)
        return response.text

    # --- Typed endpoints ---

    async def get_profile(self, ticker: str) -> ProfileRecord | None:
        raw = await self.fetch(_PROFILE_PATH, {"symbol": ticker.upper()})
        return parse_profile(raw, ticker=ticker)

    async def get_ratios_ttm(self, ticker: str) -> RatiosRecord | None:
        raw = await self.fetch(_RATIOS_TTM_PATH, {"symbol": ticker.upper()})
        return parse_ratios(raw, ticker=ticker)

    async def get_key_metrics_ttm(self, ticker: str) -> MetricsRecord | None:
        raw = await self.fetch(_KEY_METRICS_TTM_PATH, {"symbol": ticker.upper()})
        return parse_metrics(raw, ticker=ticker)

    async def get_quote(self, ticker: str) -> QuoteRecord | None:
        raw = await self.fetch(_QUOTE_PATH, {"symbol": ticker.upper()})
        return parse_quote(raw, ticker=ticker)

    async def get_sectors_performance(self) -> list[RawProviderRecord]:
        """Real-time (1D) sector performance list."""
        raw = await self.fetch(_SECTORS_PERFORMANCE_PATH)
        return _expect_records(raw, dataset="sectors_performance")

    async def get_sector_pe_snapshot(self, as_of: date) -> list[RawProviderRecord]:
        """Sector P/E snapshot for one trading date."""
        raw = await self.fetch(_SECTOR_PE_SNAPSHOT_PATH, {"date": as_of.isoformat()})
        return _expect_records(raw, dataset="sector_pe_snapshot")

    async def get_industry_performance_snapshot(self, as_of: date) -> list[RawProviderRecord]:
        """Industry performance snapshot for one trading date."""
        raw = await self.fetch(
            _INDUSTRY_PERFORMANCE_SNAPSHOT_PATH, {"date": as_of.isoformat()}
        )
        return _expect_records(raw, dataset="industry_performance_snapshot")

    async def get_eod_bulk(self, as_of: date) -> str:
        """End-of-day prices for every symbol on one date, as CSV text."""
        return await self.fetch_text(
            _EOD_BULK_PATH, {"date": as_of.isoformat(), "datatype": "csv"}
        )

    async def get_dividend_history(
        self, ticker: str, start: date, end: date
    ) -> list[RawProviderRecord]:
        """Dividend payments between two dates (``date``, ``dividend`` keys)."""
        raw = await self.fetch(
            _DIVIDEND_HISTORY_PATH.format(symbol=ticker.upper()),
            {"from": start.isoformat(), "to": end.isoformat()},
        )
        return _historical_records(raw, dataset="stock_dividend")

    async def get_price_history(
        self, ticker: str, start: date, end: date
    ) -> list[RawProviderRecord]:
        """Daily price history between two dates (``date``, ``close`` keys)."""
        raw = await self.fetch(
            _PRICE_HISTORY_PATH.format(symbol=ticker.upper()),
            {"from": start.isoformat(), "to": end.isoformat()},
        )
        return _historical_records(raw, dataset="historical_price_full")

    async def get_annual_ratios(self, ticker: str, limit: int = 10) -> list[RawProviderRecord]:
        raw = await self.fetch(
            _ANNUAL_RATIOS_PATH.format(symbol=ticker.upper()),
            {"period": "annual", "limit": limit},
        )
        return _expect_records(raw, dataset="ratios")

    # --- Transport ---

    async def _get(self, endpoint_path: str, query_params: QueryParams | None) -> httpx.Response:
        params = {k: v for k, v in (query_params or {}).items() if v is not None}
        params["apikey"] = self._config.api_key
        url = self._public_url(endpoint_path)

        await self._limiter.acquire()
        try:
            response = await self._client.get(endpoint_path, params=params)
        except httpx.TransportError as e:
            raise ProviderError(
                f"Request to {url} failed: {e}",
                context={"url": url, "error": str(e)},
            ) from e

        if not response.is_success:
            logger.debug("FMP %s returned HTTP %d", endpoint_path, response.status_code)
            raise ProviderError(
                f"HTTP {response.status_code} from {url}",
                context={"url": url, "status_code": response.status_code},
            )
        return response

    def _public_url(self, endpoint_path: str) -> str:
        """URL for logs and error context; never includes the API key."""
        return f"{self._config.base_url}{endpoint_path}"


def _expect_records(raw: Any, dataset: str) -> list[RawProviderRecord]:
    if not isinstance(raw, list):
        raise DataError(
            f"Expected a list from {dataset}, got {type(raw).__name__}",
            context={"dataset": dataset, "reason": "not_a_list"},
        )
    return [r for r in raw if isinstance(r, dict)]


def _historical_records(raw: Any, dataset: str) -> list[RawProviderRecord]:
    """Unwrap ``{"symbol": ..., "historical": [...]}``; a bare list passes through.

    An empty object means the provider has no history for the symbol.
    """
    if isinstance(raw, dict):
        raw = raw.get("historical", [])
    return _expect_records(raw, dataset)
