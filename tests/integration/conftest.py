"""Integration test fixtures: real SQLite files and bulk CSV exports, no network."""

from __future__ import annotations

import csv
from pathlib import Path

import pytest

from fintra_ingest.core.config import CronConfig, FintraConfig, FmpConfig, StorageConfig
from fintra_ingest.ingestion.store import SqliteStore

CRON_SECRET = "integration-secret"
YEARS = [2019, 2020, 2021, 2022, 2023]

# ticker -> (name, sector, price, base revenue, annual growth)
COMPANIES = {
    "AAPL": ("Apple Inc.", "Technology", 190.5, 260e9, 0.10),
    "MSFT": ("Microsoft Corporation", "Technology", 410.2, 125e9, 0.20),
    "NVDA": ("NVIDIA Corporation", "Technology", 120.8, 11e9, 0.30),
    "XOM": ("Exxon Mobil Corporation", "Energy", 105.1, 250e9, 0.05),
    "CVX": ("Chevron Corporation", "Energy", 155.3, 140e9, -0.05),
}

# ticker -> (pe, ev/ebitda, p/fcf)
MULTIPLES = {
    "AAPL": (29.5, 22.0, 27.0),
    "MSFT": (35.1, 25.0, 40.0),
    "NVDA": (60.0, 45.0, 70.0),
    "XOM": (12.3, 6.5, 10.0),
    "CVX": (14.1, 7.2, 11.5),
}


def _write_csv(path: Path, rows: list[dict]) -> None:
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=list(rows[0]))
        writer.writeheader()
        writer.writerows(rows)


def _revenue(ticker: str, year: int) -> float:
    _, _, _, base, growth = COMPANIES[ticker]
    return round(base * (1 + growth) ** (year - YEARS[0]), 2)


def write_bulk_export(bulk_dir: Path) -> Path:
    """Five years of FY statements for five tickers, plus 2023 quarters for AAPL."""
    bulk_dir.mkdir(parents=True, exist_ok=True)

    _write_csv(
        bulk_dir / "profile.csv",
        [
            {
                "symbol": t, "companyName": name, "price": price,
                "mktCap": round(price * 1e9, 2), "sector": sector, "industry": "",
            }
            for t, (name, sector, price, _, _) in COMPANIES.items()
        ],
    )
    _write_csv(
        bulk_dir / "ratios_ttm.csv",
        [
            {"symbol": t, "peRatioTTM": pe, "priceToFreeCashFlowsRatioTTM": pfcf, "returnOnEquityTTM": 0.25}
            for t, (pe, _, pfcf) in MULTIPLES.items()
        ],
    )
    _write_csv(
        bulk_dir / "metrics_ttm.csv",
        [
            {"symbol": t, "evToEBITDATTM": ev, "roicTTM": 0.18}
            for t, (_, ev, _) in MULTIPLES.items()
        ],
    )

    for year in YEARS:
        income, balance, cashflow = [], [], []
        for ticker in COMPANIES:
            revenue = _revenue(ticker, year)
            common = {"symbol": ticker, "date": f"{year}-12-31", "calendarYear": year, "period": "FY"}
            income.append({**common, "revenue": revenue, "grossProfit": revenue * 0.4, "netIncome": revenue * 0.2})
            balance.append({**common, "totalDebt": revenue * 0.5, "totalStockholdersEquity": revenue})
            cashflow.append({**common, "operatingCashFlow": revenue * 0.15, "capitalExpenditure": -revenue * 0.05})
        _write_csv(bulk_dir / f"income_{year}_FY.csv", income)
        _write_csv(bulk_dir / f"balance_{year}_FY.csv", balance)
        _write_csv(bulk_dir / f"cashflow_{year}_FY.csv", cashflow)

    for q, end in enumerate(["2023-03-31", "2023-06-30", "2023-09-30", "2023-12-31"], start=1):
        common = {"symbol": "AAPL", "date": end, "calendarYear": 2023, "period": f"Q{q}"}
        _write_csv(bulk_dir / f"income_2023_Q{q}.csv", [{**common, "revenue": 90e9, "netIncome": 20e9}])
        _write_csv(bulk_dir / f"balance_2023_Q{q}.csv", [{**common, "totalDebt": 100e9, "totalStockholdersEquity": 50e9}])
        _write_csv(bulk_dir / f"cashflow_2023_Q{q}.csv", [{**common, "freeCashFlow": 25e9}])

    return bulk_dir


@pytest.fixture
def export_dir(tmp_path: Path) -> Path:
    return write_bulk_export(tmp_path / "export")


@pytest.fixture
def integration_config(tmp_path: Path, export_dir: Path) -> FintraConfig:
    return FintraConfig(
        fmp=FmpConfig(
            api_key="integration-key",
            base_url="https://fmp.test",
            bulk_dir=str(export_dir),
            years=YEARS,
            periods=["FY", "Q1", "Q2", "Q3", "Q4"],
        ),
        storage=StorageConfig(sqlite_path=str(tmp_path / "integration.db")),
        cron=CronConfig(secret=CRON_SECRET, max_duration_seconds=60, concurrency=2),
    )


@pytest.fixture
async def integration_store(integration_config: FintraConfig) -> SqliteStore:
    """An initialized file-backed SqliteStore."""
    store = SqliteStore(integration_config.storage)
    await store.initialize()
    yield store
    await store.close()
