"""Dividends job (``dividends-bulk``): payment history -> ``datos_dividendos``."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from typing import ClassVar

from fintra_ingest.core.models import DividendYearRow, RawProviderRecord
from fintra_ingest.ingestion.normalizer import lookup_number, lookup_text, to_float, utc_now
from fintra_ingest.pipeline.runner import AggregationRunner

logger = logging.getLogger(__name__)

LOOKBACK_YEARS = 10

_PAYOUT_RATIO = ("dividendPayoutRatio", "payoutRatio")


@dataclass
class _YearTotals:
    dividends: float = 0.0
    payments: int = 0
    close_sum: float = 0.0
    close_count: int = 0
    ratios: RawProviderRecord | None = None


def _date_text(record: RawProviderRecord) -> str | None:
    text = lookup_text(record, ("date",))
    if text is None:
        return None
    try:
        date.fromisoformat(text[:10])
    except ValueError:
        return None
    return text[:10]


def _year(record: RawProviderRecord) -> int | None:
    text = _date_text(record)
    return int(text[:4]) if text else None


def _percent(numerator: float | None, denominator: float | None) -> float | None:
    if numerator is None or not denominator:
        return None
    return round(numerator / denominator * 100, 2)


def compute_dividend_years(
    ticker: str,
    dividends: Sequence[RawProviderRecord],
    prices: Sequence[RawProviderRecord],
    ratios: Sequence[RawProviderRecord],
) -> list[DividendYearRow]:
    """Aggregate payments by calendar year, oldest year first.

    Only years with at least one payment get a row. The yield uses the
    mean close over that year; payout ratios come from the annual ratios
    row dated in that year (the latest one if several are).
    """
    years: dict[int, _YearTotals] = {}
    for payment in dividends:
        year = _year(payment)
        amount = to_float(payment.get("dividend"))
        if year is None or amount is None:
            continue
        totals = years.setdefault(year, _YearTotals())
        totals.dividends += amount
        totals.payments += 1
    if not years:
        return []

    for bar in prices:
        year = _year(bar)
        close = to_float(bar.get("close"))
        if year in years and close is not None:
            years[year].close_sum += close
            years[year].close_count += 1

    dated = []
    for ratio in ratios:
        text = _date_text(ratio)
        if text is not None:
            dated.append((text, ratio))
    for text, ratio in sorted(dated, key=lambda item: item[0]):
        year = int(text[:4])
        if year in years:
            years[year].ratios = ratio

    rows = []
    for year in sorted(years):
        totals = years[year]
        dps = round(totals.dividends, 4)
        average_price = totals.close_sum / totals.close_count if totals.close_count else None

        payout_eps = payout_fcf = None
        if totals.ratios is not None:
            payout_ratio = lookup_number(totals.ratios, _PAYOUT_RATIO)
            if payout_ratio is not None:
                payout_eps = round(payout_ratio * 100, 2)
            payout_fcf = _percent(
                lookup_number(totals.ratios, ("dividendPerShare",)),
                lookup_number(totals.ratios, ("freeCashFlowPerShare",)),
            )

        previous = years.get(year - 1)
        neighbours = [years[y].payments for y in (year - 1, year + 1) if y in years]
        rows.append(
            DividendYearRow(
                ticker=ticker,
                year=year,
                dividend_per_share=dps,
                payment_count=totals.payments,
                average_price=average_price,
                dividend_yield=_percent(dps, average_price),
                payout_eps=payout_eps,
                payout_fcf=payout_fcf,
                has_dividend=dps > 0,
                is_growing=dps > round(previous.dividends, 4) if previous else None,
                is_stable=(
                    all(abs(n - totals.payments) <= 1 for n in neighbours)
                    if neighbours
                    else None
                ),
            )
        )
    return rows


class DividendsPipeline(AggregationRunner):
    """Per-ticker dividend, price and annual ratio history -> yearly rows.

    Looks back ten calendar years. A ticker that never paid a dividend
    in that window writes nothing and is not an error.
    """

    name: ClassVar[str] = "dividends-bulk"

    def __init__(self, store, client, today: date | None = None, concurrency: int = 1) -> None:
        super().__init__(store, concurrency=concurrency)
        self._client = client
        self._today = today

    async def resolve_universe(self) -> list[str]:
        return await self._store.list_active_tickers()

    async def process(self, unit: str) -> None:
        end = self._today or utc_now().date()
        start = date(end.year - LOOKBACK_YEARS, 1, 1)
        dividends, prices, ratios = await asyncio.gather(
            self._client.get_dividend_history(unit, start, end),
            self._client.get_price_history(unit, start, end),
            self._client.get_annual_ratios(unit, limit=LOOKBACK_YEARS),
        )
        rows = compute_dividend_years(unit, dividends, prices, ratios)
        if not rows:
            logger.debug("No dividends for %s since %s", unit, start)
            return
        await self._store.upsert_dividends(rows)
