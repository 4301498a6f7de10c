"""Normalizer: raw provider records -> canonical rows.

Provider payloads are inconsistent across endpoints and over time: the
same metric shows up as ``peRatioTTM`` in one export and
``priceEarningsRatioTTM`` in another, numbers arrive as strings, and
missing values are spelled ``""``, ``"N/A"`` or ``NaN``. Everything in
this module resolves those variants into the typed models of
``fintra_ingest.core.models``.

Absent or non-finite values always become None, never 0.
"""

from __future__ import annotations

import logging
import math
import threading
from collections.abc import Mapping, Sequence
from datetime import date, datetime, timezone
from typing import Any, TypeVar

from fintra_ingest.core.exceptions import DataError
from fintra_ingest.core.models import (
    FinancialPeriodRow,
    MetricsRecord,
    NormalizedFinancialRecord,
    PeriodType,
    ProfileRecord,
    ProviderRecord,
    QuoteRecord,
    RatiosRecord,
    ValuationRow,
)

logger = logging.getLogger(__name__)

RecordLike = ProviderRecord | Mapping[str, Any]
R = TypeVar("R", bound=ProviderRecord)

_MISSING_TOKENS = {"", "n/a", "na", "nan", "none", "null", "-", "--"}

# Provider field-name variants, in priority order
_PE_RATIOS = ("peRatioTTM", "priceEarningsRatioTTM", "peRatio")
_PE_QUOTE = ("pe",)
_DEBT_TO_EQUITY = ("debtEquityRatioTTM", "debtToEquityRatioTTM", "debtToEquityTTM")
_ROE = ("returnOnEquityTTM", "roeTTM")
_ROIC = ("roicTTM", "returnOnInvestedCapitalTTM")
_GROSS_MARGIN = ("grossProfitMarginTTM",)
_OPERATING_MARGIN = ("operatingProfitMarginTTM",)
_SECTOR = ("sector", "Sector")
_INDUSTRY = ("industry", "Industry")

_PRICE = ("price", "Price")
_MARKET_CAP = ("mktCap", "marketCap")
_MARKET_CAP_METRICS = ("marketCapTTM", "marketCap")
_EV = ("enterpriseValueTTM", "enterpriseValue")
_EV_EBITDA = ("evToEBITDATTM", "enterpriseValueOverEBITDATTM", "evToEbitdaTTM")
_EV_SALES = ("evToSalesTTM", "enterpriseValueToSalesTTM")
_PEG = ("pegRatioTTM", "priceEarningsToGrowthRatioTTM", "priceToEarningsGrowthRatioTTM")
_PRICE_TO_BOOK = ("priceToBookRatioTTM", "pbRatioTTM", "ptbRatioTTM")
_PRICE_TO_SALES = ("priceToSalesRatioTTM", "priceSalesRatioTTM")
_PRICE_TO_FCF = ("priceToFreeCashFlowsRatioTTM", "priceToFreeCashFlowRatioTTM", "pfcfRatioTTM")
_FCF_YIELD = ("freeCashFlowYieldTTM",)
_DIVIDEND_YIELD = ("dividendYieldTTM", "dividendYielTTM")


# --- Scalar coercion ---


def to_float(value: Any) -> float | None:
    """Coerce a provider scalar to a finite float, or None.

    Accepts ints, floats and numeric strings (thousands separators and a
    trailing ``%`` are stripped). Booleans are not numbers here.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        result = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if text.lower() in _MISSING_TOKENS:
            return None
        text = text.rstrip("%").replace(",", "").strip()
        try:
            result = float(text)
        except ValueError:
            return None
    else:
        return None
    return result if math.isfinite(result) else None


def _to_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if text.lower() in _MISSING_TOKENS:
        return None
    return text


def _fields(record: RecordLike | None) -> Mapping[str, Any]:
    if record is None:
        return {}
    if isinstance(record, ProviderRecord):
        return record.raw
    return record


def _raw_lookup(record: RecordLike | None, names: Sequence[str]) -> Any:
    """First present value among ``names``; falls back to a case-insensitive match."""
    data = _fields(record)
    if not data:
        return None
    for name in names:
        value = data.get(name)
        if value is not None and _to_text(value) is not None:
            return value
    lowered = {str(k).lower(): v for k, v in data.items()}
    for name in names:
        value = lowered.get(name.lower())
        if value is not None and _to_text(value) is not None:
            return value
    return None


def lookup_number(record: RecordLike | None, names: Sequence[str]) -> float | None:
    """Resolve a numeric field across provider name variants."""
    data = _fields(record)
    for name in names:
        result = to_float(data.get(name))
        if result is not None:
            return result
    return to_float(_raw_lookup(record, names))


def lookup_text(record: RecordLike | None, names: Sequence[str]) -> str | None:
    """Resolve a text field across provider name variants."""
    return _to_text(_raw_lookup(record, names))


# --- Validated intermediates ---


def _parse(raw: Any, model: type[R], dataset: str, ticker: str | None) -> R | None:
    """Validate one raw payload into an intermediate record.

    Endpoints return either a mapping or a list holding one mapping; an
    empty list or None means the provider has nothing for the symbol.
    """
    if raw is None:
        return None
    if isinstance(raw, model):
        return raw
    if isinstance(raw, ProviderRecord):
        return model(symbol=raw.symbol, raw=dict(raw.raw))
    if isinstance(raw, list):
        if not raw:
            return None
        raw = raw[0]
    if not isinstance(raw, Mapping):
        raise DataError(
            f"Malformed {dataset} record for {ticker or 'unknown'}: "
            f"expected a mapping, got {type(raw).__name__}",
            context={"ticker": ticker, "dataset": dataset, "reason": "not_a_mapping"},
        )
    symbol = _to_text(raw.get("symbol")) or (ticker.strip().upper() if ticker else None)
    return model(symbol=symbol, raw=dict(raw))


def parse_profile(raw: Any, ticker: str | None = None) -> ProfileRecord | None:
    return _parse(raw, ProfileRecord, "profile", ticker)


def parse_ratios(raw: Any, ticker: str | None = None) -> RatiosRecord | None:
    return _parse(raw, RatiosRecord, "ratios", ticker)


def parse_metrics(raw: Any, ticker: str | None = None) -> MetricsRecord | None:
    return _parse(raw, MetricsRecord, "metrics", ticker)


def parse_quote(raw: Any, ticker: str | None = None) -> QuoteRecord | None:
    return _parse(raw, QuoteRecord, "quote", ticker)


# --- Timestamps ---

_clock_lock = threading.Lock()
_last_timestamp: datetime | None = None


def utc_now() -> datetime:
    """UTC wall clock that never goes backwards within the process."""
    global _last_timestamp
    with _clock_lock:
        now = datetime.now(timezone.utc)
        if _last_timestamp is not None and now < _last_timestamp:
            now = _last_timestamp
        _last_timestamp = now
        return now


# --- Snapshot normalization ---


def normalize(
    ticker: str,
    profile: RecordLike | None,
    ratios: RecordLike | None,
    metrics: RecordLike | None,
    quote: RecordLike | None = None,
    source: str = "fmp_bulk",
) -> NormalizedFinancialRecord | None:
    """Merge profile, ratios, metrics and an optional quote into one snapshot.

    Returns None when any of profile, ratios or metrics is absent. An
    empty mapping counts as present: the ticker is known but every field
    resolves to None. The ticker is stripped and upper-cased on the way
    into the record, so "brk.b" comes back as "BRK.B".
    """
    if profile is None or ratios is None or metrics is None:
        return None

    pe_ttm = lookup_number(ratios, _PE_RATIOS)
    if pe_ttm is None:
        pe_ttm = lookup_number(quote, _PE_QUOTE)

    roe = lookup_number(ratios, _ROE)
    if roe is None:
        roe = lookup_number(metrics, _ROE)

    roic = lookup_number(metrics, _ROIC)
    if roic is None:
        roic = lookup_number(ratios, _ROIC)

    return NormalizedFinancialRecord(
        ticker=ticker,
        sector=lookup_text(profile, _SECTOR),
        industry=lookup_text(profile, _INDUSTRY),
        pe_ttm=pe_ttm,
        debt_to_equity=lookup_number(ratios, _DEBT_TO_EQUITY),
        roe=roe,
        roic=roic,
        gross_margin=lookup_number(ratios, _GROSS_MARGIN),
        operating_margin=lookup_number(ratios, _OPERATING_MARGIN),
        source=source,
        normalized_at=utc_now(),
    )


# --- Statement periods ---


def _ratio(numerator: float | None, denominator: float | None) -> float | None:
    if numerator is None or not denominator:
        return None
    result = numerator / denominator
    return result if math.isfinite(result) else None


def _parse_date(value: Any) -> date | None:
    text = _to_text(value)
    if text is None:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def period_label_for(income: RecordLike) -> tuple[PeriodType, str] | None:
    """Derive ``(period_type, period_label)`` from a statement row.

    FY rows are labelled by year (``"2024"``), quarters by year and
    quarter (``"2024Q3"``).
    """
    period = (lookup_text(income, ("period",)) or "FY").upper()
    end = _parse_date(_raw_lookup(income, ("date",)))
    year = lookup_text(income, ("calendarYear", "fiscalYear"))
    if year is None and end is not None:
        year = str(end.year)
    if year is None:
        return None
    year = year[:4]
    if period == "FY":
        return PeriodType.FY, year
    if period in ("Q1", "Q2", "Q3", "Q4"):
        return PeriodType.QUARTER, f"{year}{period}"
    return None


def normalize_statement_period(
    ticker: str,
    income: RecordLike | None,
    balance: RecordLike | None,
    cashflow: RecordLike | None,
    period: tuple[PeriodType, str] | None = None,
    updated_at: datetime | None = None,
) -> FinancialPeriodRow | None:
    """Build one ``datos_financieros`` row from matching statement rows.

    The income statement is required (it carries the period end date);
    balance sheet and cash flow fields are None when those rows are
    missing. ``period`` overrides the label derived from the income row.
    """
    if income is None:
        return None
    period_end = _parse_date(_raw_lookup(income, ("date", "periodEndDate")))
    if period_end is None:
        return None
    resolved = period or period_label_for(income)
    if resolved is None:
        return None
    period_type, period_label = resolved

    revenue = lookup_number(income, ("revenue", "totalRevenue"))
    net_income = lookup_number(income, ("netIncome",))
    gross_profit = lookup_number(income, ("grossProfit",))
    operating_income = lookup_number(income, ("operatingIncome",))

    gross_margin = lookup_number(income, ("grossProfitRatio",))
    if gross_margin is None:
        gross_margin = _ratio(gross_profit, revenue)
    operating_margin = lookup_number(income, ("operatingIncomeRatio",))
    if operating_margin is None:
        operating_margin = _ratio(operating_income, revenue)
    net_margin = lookup_number(income, ("netIncomeRatio",))
    if net_margin is None:
        net_margin = _ratio(net_income, revenue)

    free_cash_flow = lookup_number(cashflow, ("freeCashFlow",))
    if free_cash_flow is None:
        operating_cf = lookup_number(cashflow, ("operatingCashFlow",))
        capex = lookup_number(cashflow, ("capitalExpenditure",))
        if operating_cf is not None:
            free_cash_flow = operating_cf - abs(capex or 0.0)

    total_debt = lookup_number(balance, ("totalDebt",))
    total_equity = lookup_number(balance, ("totalStockholdersEquity", "totalEquity"))
    debt_to_equity = None
    if total_debt is not None and total_equity is not None and total_equity > 0:
        debt_to_equity = total_debt / total_equity

    return FinancialPeriodRow(
        ticker=ticker,
        period_type=period_type,
        period_label=period_label,
        period_end_date=period_end,
        revenue=revenue,
        net_income=net_income,
        free_cash_flow=free_cash_flow,
        gross_margin=gross_margin,
        operating_margin=operating_margin,
        net_margin=net_margin,
        total_debt=total_debt,
        total_equity=total_equity,
        debt_to_equity=debt_to_equity,
        ebitda=lookup_number(income, ("ebitda",)),
        updated_at=updated_at or utc_now(),
    )


# --- Valuation ---


def normalize_valuation(
    ticker: str,
    profile: RecordLike | None,
    ratios: RecordLike | None,
    metrics: RecordLike | None,
    valuation_date: date,
    updated_at: datetime | None = None,
) -> ValuationRow | None:
    """Build the TTM valuation row for one ticker, percentiles unset.

    Returns None without a profile, a sector, or a positive price:
    a valuation without a price is meaningless.
    """
    if profile is None:
        return None
    sector = lookup_text(profile, _SECTOR)
    price = lookup_number(profile, _PRICE)
    if sector is None or price is None or price <= 0:
        return None

    pe = lookup_number(metrics, _PE_RATIOS)
    if pe is None:
        pe = lookup_number(ratios, _PE_RATIOS)

    price_to_fcf = lookup_number(ratios, _PRICE_TO_FCF)
    if price_to_fcf is None:
        fcf_yield = lookup_number(metrics, _FCF_YIELD)
        if fcf_yield is not None and fcf_yield > 0:
            price_to_fcf = 1 / fcf_yield

    market_cap = lookup_number(profile, _MARKET_CAP)
    if market_cap is None:
        market_cap = lookup_number(metrics, _MARKET_CAP_METRICS)

    def either(names: Sequence[str]) -> float | None:
        value = lookup_number(metrics, names)
        return value if value is not None else lookup_number(ratios, names)

    return ValuationRow(
        ticker=ticker,
        valuation_date=valuation_date,
        price=price,
        market_cap=market_cap,
        enterprise_value=lookup_number(metrics, _EV),
        pe_ratio=pe,
        peg_ratio=lookup_number(ratios, _PEG),
        ev_ebitda=lookup_number(metrics, _EV_EBITDA),
        ev_sales=lookup_number(metrics, _EV_SALES),
        price_to_book=either(_PRICE_TO_BOOK),
        price_to_sales=either(_PRICE_TO_SALES),
        price_to_fcf=price_to_fcf,
        dividend_yield=either(_DIVIDEND_YIELD),
        sector=sector,
        updated_at=updated_at or utc_now(),
    )
