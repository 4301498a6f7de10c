"""Year-over-year growth and rolling multi-year averages."""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import BaseModel

from fintra_ingest.core.models import FinancialPeriodRow, GrowthRow, PeriodType

MIN_ROLLING_ROWS = 3

_FISCAL_YEAR_KEYS = ("fiscal_year", "fiscalYear", "calendarYear", "year")


def _as_mapping(row: Mapping[str, Any] | BaseModel) -> Mapping[str, Any]:
    if isinstance(row, BaseModel):
        data = row.model_dump()
        fiscal_year = getattr(row, "fiscal_year", None)
        if fiscal_year is not None:
            data.setdefault("fiscal_year", fiscal_year)
        return data
    return row


def _fiscal_year(row: Mapping[str, Any]) -> int | None:
    for key in _FISCAL_YEAR_KEYS:
        value = row.get(key)
        if value is None:
            continue
        try:
            return int(str(value)[:4])
        except ValueError:
            continue
    return None


def _finite(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return result if math.isfinite(result) else None


def rolling_average(
    rows: Sequence[Mapping[str, Any] | BaseModel],
    field: str,
    window_years: int = 5,
) -> float | None:
    """Mean of ``field`` over the ``window_years`` most recent fiscal years.

    Rows whose value is missing or non-finite are dropped before the
    window is taken. Fewer than three usable rows gives None; with enough
    usable rows a window shorter than three still averages.
    """
    usable: list[tuple[int, float]] = []
    for row in rows:
        data = _as_mapping(row)
        value = _finite(data.get(field))
        year = _fiscal_year(data)
        if value is None or year is None:
            continue
        usable.append((year, value))

    if len(usable) < MIN_ROLLING_ROWS:
        return None

    usable.sort(key=lambda item: item[0], reverse=True)
    window = [value for _, value in usable[:window_years]]
    mean = sum(window) / len(window)
    return mean if math.isfinite(mean) else None


def _yoy(current: float | None, previous: float | None) -> float | None:
    if current is None or not previous:
        return None
    result = (current - previous) / abs(previous)
    return result if math.isfinite(result) else None


def compute_growth_rows(history: Sequence[FinancialPeriodRow]) -> list[GrowthRow]:
    """YoY growth between consecutive FY rows, newest first.

    Non-FY rows are ignored. The oldest year has no predecessor and gets
    no growth row.
    """
    fiscal = sorted(
        (r for r in history if r.period_type == PeriodType.FY),
        key=lambda r: r.fiscal_year,
    )
    growth: list[GrowthRow] = []
    for previous, current in zip(fiscal, fiscal[1:]):
        growth.append(
            GrowthRow(
                ticker=current.ticker,
                fiscal_year=current.fiscal_year,
                period_end_date=current.period_end_date,
                growth_revenue=_yoy(current.revenue, previous.revenue),
                growth_net_income=_yoy(current.net_income, previous.net_income),
                growth_free_cash_flow=_yoy(current.free_cash_flow, previous.free_cash_flow),
            )
        )
    growth.reverse()
    return growth
