"""Shared pytest fixtures for fintra-ingest."""

from datetime import date, datetime, timezone
from pathlib import Path

import pytest

from fintra_ingest.core.config import CronConfig, FintraConfig, FmpConfig, StorageConfig
from fintra_ingest.core.models import (
    FinancialPeriodRow,
    NormalizedFinancialRecord,
    PeriodType,
    UniverseEntry,
    ValuationRow,
)
from fintra_ingest.ingestion.store import SqliteStore

CRON_SECRET = "test-cron-secret"
FMP_BASE = "https://fmp.test"

PROFILE_CSV = """symbol,companyName,price,mktCap,sector,industry
AAPL,Apple Inc.,190.5,2950000000000,Technology,Consumer Electronics
MSFT,Microsoft Corporation,410.2,3050000000000,Technology,Software
XOM,Exxon Mobil,105.1,420000000000,Energy,Oil & Gas
NOPE,No Price Co,0,,Industrials,Machinery
"""

RATIOS_CSV = """symbol,peRatioTTM,debtEquityRatioTTM,returnOnEquityTTM,grossProfitMarginTTM,operatingProfitMarginTTM,pegRatioTTM,priceToFreeCashFlowsRatioTTM
AAPL,29.5,1.8,1.6,0.45,0.30,2.1,27.0
MSFT,35.1,0.4,0.38,0.69,0.44,2.4,40.0
XOM,12.3,0.2,0.18,0.32,0.15,1.1,10.0
"""

# XOM deliberately has no metrics row
METRICS_CSV = """symbol,roicTTM,enterpriseValueTTM,evToEBITDATTM,evToSalesTTM,priceToBookRatioTTM,priceToSalesRatioTTM,dividendYieldTTM
AAPL,0.55,2990000000000,22.0,7.6,45.0,7.5,0.005
MSFT,0.28,3000000000000,25.0,12.0,12.0,13.0,0.007
"""

INCOME_HEADER = "symbol,date,calendarYear,period,revenue,grossProfit,operatingIncome,netIncome,ebitda\n"
BALANCE_HEADER = "symbol,date,calendarYear,period,totalDebt,totalStockholdersEquity\n"
CASHFLOW_HEADER = "symbol,date,calendarYear,period,operatingCashFlow,capitalExpenditure,freeCashFlow\n"

STATEMENT_FILES = {
    "income_2022_FY.csv": INCOME_HEADER
    + "AAPL,2022-09-24,2022,FY,394328000000,170782000000,119437000000,99803000000,130541000000\n",
    "income_2023_FY.csv": INCOME_HEADER
    + "AAPL,2023-09-30,2023,FY,383285000000,169148000000,114301000000,96995000000,125820000000\n",
    "balance_2023_FY.csv": BALANCE_HEADER
    + "AAPL,2023-09-30,2023,FY,111088000000,62146000000\n",
    "cashflow_2023_FY.csv": CASHFLOW_HEADER
    + "AAPL,2023-09-30,2023,FY,110543000000,-10959000000,99584000000\n",
}


def write_bulk_dir(path: Path, include_statements: bool = True) -> Path:
    """Populate a directory with a small, realistic bulk export."""
    path.mkdir(parents=True, exist_ok=True)
    (path / "profile.csv").write_text(PROFILE_CSV)
    (path / "ratios_ttm.csv").write_text(RATIOS_CSV)
    (path / "metrics_ttm.csv").write_text(METRICS_CSV)
    if include_statements:
        for name, content in STATEMENT_FILES.items():
            (path / name).write_text(content)
    return path


@pytest.fixture
def bulk_dir(tmp_path: Path) -> Path:
    return write_bulk_dir(tmp_path / "fmp-bulk")


@pytest.fixture
def make_config(tmp_path: Path):
    """Factory for FintraConfig with test-friendly defaults."""

    def _make(secret: str | None = CRON_SECRET, **fmp_overrides) -> FintraConfig:
        fmp = dict(
            api_key="test-key",
            base_url=FMP_BASE,
            bulk_dir=str(tmp_path / "fmp-bulk"),
        )
        fmp.update(fmp_overrides)
        return FintraConfig(
            fmp=FmpConfig(**fmp),
            storage=StorageConfig(sqlite_path=str(tmp_path / "test.db")),
            cron=CronConfig(secret=secret, max_duration_seconds=30),
        )

    return _make


@pytest.fixture
async def store():
    """Create an in-memory SqliteStore for testing."""
    s = SqliteStore(StorageConfig(sqlite_path=":memory:"))
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def make_snapshot():
    def _make(**overrides) -> NormalizedFinancialRecord:
        defaults = dict(
            ticker="AAPL",
            sector="Technology",
            industry="Consumer Electronics",
            pe_ttm=29.5,
            debt_to_equity=1.8,
            roe=1.6,
            roic=0.55,
            gross_margin=0.45,
            operating_margin=0.30,
            source="fmp_bulk",
            normalized_at=datetime(2024, 6, 3, 12, 0, tzinfo=timezone.utc),
        )
        defaults.update(overrides)
        return NormalizedFinancialRecord(**defaults)

    return _make


@pytest.fixture
def make_period():
    def _make(**overrides) -> FinancialPeriodRow:
        year = overrides.pop("year", 2023)
        defaults = dict(
            ticker="AAPL",
            period_type=PeriodType.FY,
            period_label=str(year),
            period_end_date=date(year, 9, 30),
            revenue=100.0,
            net_income=20.0,
            free_cash_flow=15.0,
            updated_at=datetime(2024, 6, 3, 12, 0, tzinfo=timezone.utc),
        )
        defaults.update(overrides)
        return FinancialPeriodRow(**defaults)

    return _make


@pytest.fixture
def make_valuation():
    def _make(**overrides) -> ValuationRow:
        defaults = dict(
            ticker="AAPL",
            valuation_date=date(2024, 6, 3),
            price=190.5,
            sector="Technology",
            pe_ratio=29.5,
            ev_ebitda=22.0,
            price_to_fcf=27.0,
            updated_at=datetime(2024, 6, 3, 12, 0, tzinfo=timezone.utc),
        )
        defaults.update(overrides)
        return ValuationRow(**defaults)

    return _make


@pytest.fixture
def make_universe():
    def _make(tickers, sector="Technology") -> list[UniverseEntry]:
        return [UniverseEntry(ticker=t, sector=sector) for t in tickers]

    return _make
