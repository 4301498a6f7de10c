"""Statement period job (``financials-bulk``): FY, quarterly and TTM rows."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any, ClassVar

from fintra_ingest.core.exceptions import DataError
from fintra_ingest.core.models import DatasetKind, FinancialPeriodRow, PeriodType
from fintra_ingest.ingestion.normalizer import (
    lookup_number,
    lookup_text,
    normalize_statement_period,
    utc_now,
)
from fintra_ingest.pipeline.bulk import BulkPipeline
from fintra_ingest.pipeline.runner import dedupe_last

logger = logging.getLogger(__name__)

# Flow fields summed over four quarters for TTM rows
_INCOME_FLOWS = ("revenue", "grossProfit", "operatingIncome", "netIncome", "ebitda")
_CASHFLOW_FLOWS = ("operatingCashFlow", "capitalExpenditure", "freeCashFlow")


def _statement_key(row: Mapping[str, Any]) -> tuple[str, str]:
    return (
        (lookup_text(row, ("date",)) or "")[:10],
        (lookup_text(row, ("period",)) or "FY").upper(),
    )


def _quarter_index(row: Mapping[str, Any]) -> int | None:
    period = (lookup_text(row, ("period",)) or "").upper()
    if period not in ("Q1", "Q2", "Q3", "Q4"):
        return None
    year = lookup_text(row, ("calendarYear", "fiscalYear")) or (lookup_text(row, ("date",)) or "")[:4]
    try:
        return int(year[:4]) * 4 + int(period[1])
    except ValueError:
        return None


def sum_statements(
    rows: Sequence[Mapping[str, Any]], flow_fields: Sequence[str]
) -> dict[str, Any]:
    """Latest row with ``flow_fields`` replaced by their sum over ``rows``.

    A flow missing from any row is None in the result. Provider ratio
    columns are dropped so margins are re-derived from the sums.
    """
    latest = rows[0]
    result = {
        k: v for k, v in latest.items() if not str(k).lower().endswith("ratio")
    }
    for name in flow_fields:
        values = [lookup_number(r, (name,)) for r in rows]
        result[name] = None if any(v is None for v in values) else sum(values)
    return result


class FinancialsPipeline(BulkPipeline):
    """Bulk income, balance and cash flow rows -> ``datos_financieros``."""

    name: ClassVar[str] = "financials-bulk"

    async def process(self, unit: str) -> None:
        snapshot = self.snapshot
        incomes = snapshot.get_all(DatasetKind.INCOME, unit)
        if not incomes:
            raise DataError(
                f"No income statements for {unit}",
                context={"ticker": unit, "dataset": "income", "reason": "missing"},
            )
        balances = {_statement_key(r): r for r in snapshot.get_all(DatasetKind.BALANCE, unit)}
        cashflows = {_statement_key(r): r for r in snapshot.get_all(DatasetKind.CASHFLOW, unit)}

        now = utc_now()
        rows: list[FinancialPeriodRow] = []
        for income in incomes:
            key = _statement_key(income)
            row = normalize_statement_period(
                unit, income, balances.get(key), cashflows.get(key), updated_at=now
            )
            if row is not None:
                rows.append(row)

        ttm = self._build_ttm(unit, incomes, balances, cashflows, now)
        if ttm is not None:
            rows.append(ttm)

        rows = dedupe_last(rows, key=lambda r: (r.period_type, r.period_label))
        if not rows:
            raise DataError(
                f"No usable statement periods for {unit}",
                context={"ticker": unit, "dataset": "income", "reason": "unparseable"},
            )
        await self._store.upsert_financial_periods(rows)

    @staticmethod
    def _build_ttm(
        ticker: str,
        incomes: Sequence[Mapping[str, Any]],
        balances: Mapping[tuple[str, str], Mapping[str, Any]],
        cashflows: Mapping[tuple[str, str], Mapping[str, Any]],
        updated_at: datetime,
    ) -> FinancialPeriodRow | None:
        """TTM row from the four most recent consecutive quarters, if present."""
        quarters = [r for r in incomes if _quarter_index(r) is not None]
        quarters.sort(key=lambda r: _quarter_index(r), reverse=True)
        last4 = quarters[:4]
        if len(last4) < 4:
            return None
        indexes = [_quarter_index(r) for r in last4]
        if any(a - b != 1 for a, b in zip(indexes, indexes[1:])):
            return None

        last4_cashflow = [cashflows.get(_statement_key(r)) for r in last4]
        latest_balance = balances.get(_statement_key(last4[0]))
        if any(cf is None for cf in last4_cashflow) or latest_balance is None:
            return None

        latest = last4[0]
        label_year = (
            lookup_text(latest, ("calendarYear", "fiscalYear"))
            or (lookup_text(latest, ("date",)) or "")[:4]
        )
        label = f"{label_year[:4]}{lookup_text(latest, ('period',)).upper()}"
        return normalize_statement_period(
            ticker,
            sum_statements(last4, _INCOME_FLOWS),
            latest_balance,
            sum_statements(last4_cashflow, _CASHFLOW_FLOWS),
            period=(PeriodType.TTM, label),
            updated_at=updated_at,
        )
