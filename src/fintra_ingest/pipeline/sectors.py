"""Sector rollups (growth, performance, P/E) and the daily industry rollup."""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, timedelta
from typing import Any, ClassVar

from fintra_ingest.core.exceptions import DataError, ProviderError
from fintra_ingest.core.models import (
    IndustryPerformanceRow,
    PeriodType,
    RawProviderRecord,
    SectorGrowthRow,
    SectorPerformanceRow,
    SectorPeRow,
    WindowCode,
)
from fintra_ingest.ingestion.normalizer import lookup_number, lookup_text, utc_now
from fintra_ingest.pipeline.growth import compute_growth_rows, rolling_average
from fintra_ingest.pipeline.runner import AggregationRunner, dedupe_last

logger = logging.getLogger(__name__)

ROLLING_WINDOW_YEARS = 5

# GrowthRow field -> SectorGrowthRow field
_GROWTH_FIELDS = {
    "growth_revenue": "revenue_growth",
    "growth_net_income": "earnings_growth",
    "growth_free_cash_flow": "fcf_growth",
}


def latest_weekday(today: date | None = None) -> date:
    """Most recent Monday-Friday date on or before ``today``."""
    today = today or utc_now().date()
    weekday = today.weekday()
    if weekday == 5:
        return today - timedelta(days=1)
    if weekday == 6:
        return today - timedelta(days=2)
    return today


def previous_weekday(today: date | None = None) -> date:
    """The weekday before ``today``: yesterday, rewound past a weekend."""
    return latest_weekday((today or utc_now().date()) - timedelta(days=1))


def _mean(values: list[float]) -> float | None:
    return sum(values) / len(values) if values else None


class SectorRunner(AggregationRunner):
    """Runner whose units are sector or industry names, matched case-sensitively."""

    def normalize_target(self, target: str) -> str:
        return target.strip()


class SectorGrowthAggregator(SectorRunner):
    """Persisted FY history -> per-ticker rolling growth -> sector mean."""

    name: ClassVar[str] = "sector-growth-aggregator"

    def __init__(self, store, as_of: date | None = None, concurrency: int = 1) -> None:
        super().__init__(store, concurrency=concurrency)
        self._as_of = as_of
        self._members: dict[str, list[str]] = {}

    async def prepare(self) -> None:
        members: dict[str, list[str]] = defaultdict(list)
        for entry in await self._store.list_universe(active_only=True):
            if entry.sector:
                members[entry.sector].append(entry.ticker)
        self._members = dict(members)

    async def resolve_universe(self) -> list[str]:
        return sorted(self._members)

    async def process(self, unit: str) -> None:
        tickers = self._members.get(unit)
        if not tickers:
            raise DataError(
                f"Unknown or empty sector: {unit}",
                context={"dataset": "universe", "reason": "no_tickers"},
            )

        per_field: dict[str, list[float]] = {f: [] for f in _GROWTH_FIELDS}
        contributing = 0
        for ticker in tickers:
            history = await self._store.get_financial_periods(ticker, PeriodType.FY)
            growth = compute_growth_rows(history)
            contributed = False
            for field in _GROWTH_FIELDS:
                avg = rolling_average(growth, field, ROLLING_WINDOW_YEARS)
                if avg is not None:
                    per_field[field].append(avg)
                    contributed = True
            if contributed:
                contributing += 1

        row = SectorGrowthRow(
            sector=unit,
            as_of_date=self._as_of or utc_now().date(),
            ticker_count=contributing,
            **{target: _mean(per_field[src]) for src, target in _GROWTH_FIELDS.items()},
        )
        await self._store.upsert_sector_growth([row])


class SectorPerformanceAggregator(SectorRunner):
    """Real-time sector returns -> 1D ``sector_performance`` rows.

    A provider failure (typically 403 on the legacy endpoint) is
    recorded as a run error rather than failing the run.
    """

    name: ClassVar[str] = "sector-performance-aggregator"

    def __init__(self, store, client, performance_date: date | None = None) -> None:
        super().__init__(store)
        self._client = client
        self._performance_date = performance_date
        self._returns: dict[str, float | None] = {}

    async def prepare(self) -> None:
        self._returns = {}
        try:
            items = await self._client.get_sectors_performance()
        except (ProviderError, DataError) as e:
            status = e.context.get("status_code")
            logger.warning("Sector performance fetch failed (status=%s): %s", status, e)
            self.record_error(str(WindowCode.ONE_DAY), e)
            return
        self._returns = self._parse(items)

    async def resolve_universe(self) -> list[str]:
        return list(self._returns)

    @staticmethod
    def _parse(items: list[RawProviderRecord]) -> dict[str, float | None]:
        returns: dict[str, float | None] = {}
        for item in items:
            sector = lookup_text(item, ("sector",))
            if sector is None:
                continue
            returns[sector] = lookup_number(
                item, ("changesPercentage", "changePercentage", "averageChange")
            )
        return returns

    async def process(self, unit: str) -> None:
        if unit not in self._returns:
            raise DataError(
                f"No performance reported for sector {unit}",
                context={"dataset": "sectors_performance", "reason": "missing"},
            )
        row = SectorPerformanceRow(
            sector=unit,
            window_code=WindowCode.ONE_DAY,
            performance_date=self._performance_date or utc_now().date(),
            return_percent=self._returns[unit],
        )
        await self._store.upsert_sector_performance([row])


class SectorPeAggregator(SectorRunner):
    """Sector P/E snapshot for the latest weekday -> ``sector_pe``.

    The provider lists one entry per (sector, exchange); the last entry
    for a sector wins.
    """

    name: ClassVar[str] = "sector-pe-aggregator"

    def __init__(self, store, client, pe_date: date | None = None) -> None:
        super().__init__(store)
        self._client = client
        self._pe_date = pe_date
        self._rows: dict[str, SectorPeRow] = {}

    @property
    def pe_date(self) -> date:
        return self._pe_date or latest_weekday()

    async def prepare(self) -> None:
        target = self.pe_date
        items = await self._client.get_sector_pe_snapshot(target)
        rows = []
        for item in items:
            sector = lookup_text(item, ("sector",))
            if sector is None:
                continue
            rows.append(SectorPeRow(sector=sector, pe_date=target, pe=_parse_pe(item)))
        self._rows = {r.sector: r for r in dedupe_last(rows, key=lambda r: r.sector)}

    async def resolve_universe(self) -> list[str]:
        return list(self._rows)

    async def process(self, unit: str) -> None:
        row = self._rows.get(unit)
        if row is None:
            raise DataError(
                f"No P/E reported for sector {unit}",
                context={"dataset": "sector_pe_snapshot", "reason": "missing"},
            )
        await self._store.upsert_sector_pe([row])


def _parse_pe(item: dict[str, Any]) -> float | None:
    return lookup_number(item, ("pe",))


class IndustryPerformanceAggregator(SectorRunner):
    """Industry performance snapshot for the previous weekday -> 1D rows.

    Industries already stored for that date are left as they are. A
    failed snapshot fetch is recorded as a run error, not a fatal one.
    """

    name: ClassVar[str] = "industry-performance-aggregator"

    def __init__(self, store, client, performance_date: date | None = None) -> None:
        super().__init__(store)
        self._client = client
        self._performance_date = performance_date
        self._rows: dict[str, IndustryPerformanceRow] = {}

    @property
    def performance_date(self) -> date:
        return self._performance_date or previous_weekday()

    async def prepare(self) -> None:
        self._rows = {}
        target = self.performance_date
        try:
            items = await self._client.get_industry_performance_snapshot(target)
        except (ProviderError, DataError) as e:
            logger.warning("Industry performance fetch failed for %s: %s", target, e)
            self.record_error(str(WindowCode.ONE_DAY), e)
            return
        if not items:
            logger.warning("Industry performance snapshot empty for %s", target)

        stored = {
            row.industry
            for row in await self._store.list_industry_performance(target)
            if row.window_code == WindowCode.ONE_DAY
        }
        rows = []
        for item in items:
            industry = lookup_text(item, ("industry",))
            if industry is None or industry in stored:
                continue
            rows.append(
                IndustryPerformanceRow(
                    industry=industry,
                    window_code=WindowCode.ONE_DAY,
                    performance_date=target,
                    return_percent=lookup_number(item, ("averageChange", "changesPercentage")),
                )
            )
        self._rows = {r.industry: r for r in dedupe_last(rows, key=lambda r: r.industry)}
        if stored:
            logger.info("%d industries already stored for %s", len(stored), target)

    async def resolve_universe(self) -> list[str]:
        return list(self._rows)

    async def process(self, unit: str) -> None:
        row = self._rows.get(unit)
        if row is None:
            raise DataError(
                f"No new performance for industry {unit}",
                context={"dataset": "industry_performance_snapshot", "reason": "missing"},
            )
        await self._store.upsert_industry_performance([row])
