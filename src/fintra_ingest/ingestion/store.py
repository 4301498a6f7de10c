"""Storage backend: Protocol definition, SQLite implementation, factory."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import date, datetime, timezone
from typing import Any, ClassVar, Protocol, runtime_checkable

import aiosqlite

from fintra_ingest.core.config import StorageConfig
from fintra_ingest.core.exceptions import StorageError
from fintra_ingest.core.models import (
    DividendYearRow,
    FinancialPeriodRow,
    IndustryPerformanceRow,
    NormalizedFinancialRecord,
    PeriodType,
    PriceBar,
    SectorGrowthRow,
    SectorPerformanceRow,
    SectorPeRow,
    UniverseEntry,
    ValuationRow,
    WindowCode,
)

logger = logging.getLogger(__name__)

TABLES = (
    "universe",
    "financial_snapshots",
    "datos_financieros",
    "datos_valuacion",
    "sector_performance",
    "sector_pe",
    "sector_growth",
    "prices_daily",
    "datos_dividendos",
    "industry_performance",
)


@runtime_checkable
class StorageProtocol(Protocol):
    """Abstract storage interface for fintra-ingest data."""

    async def upsert_universe(self, entries: Sequence[UniverseEntry]) -> int: ...
    async def list_active_tickers(
        self, limit: int | None = None, offset: int = 0
    ) -> list[str]: ...
    async def list_universe(self, active_only: bool = True) -> list[UniverseEntry]: ...
    async def upsert_financial_snapshots(
        self, records: Sequence[NormalizedFinancialRecord]
    ) -> int: ...
    async def get_latest_snapshot(self, ticker: str) -> NormalizedFinancialRecord | None: ...
    async def upsert_financial_periods(self, rows: Sequence[FinancialPeriodRow]) -> int: ...
    async def get_financial_periods(
        self,
        ticker: str,
        period_type: PeriodType | None = None,
        limit: int | None = None,
    ) -> list[FinancialPeriodRow]: ...
    async def upsert_valuations(self, rows: Sequence[ValuationRow]) -> int: ...
    async def upsert_sector_performance(self, rows: Sequence[SectorPerformanceRow]) -> int: ...
    async def upsert_sector_pe(self, rows: Sequence[SectorPeRow]) -> int: ...
    async def upsert_sector_growth(self, rows: Sequence[SectorGrowthRow]) -> int: ...
    async def list_sector_growth(self) -> list[SectorGrowthRow]: ...
    async def upsert_prices(self, bars: Sequence[PriceBar]) -> int: ...
    async def get_prices(
        self, ticker: str, limit: int = 100, offset: int = 0
    ) -> list[PriceBar]: ...
    async def upsert_dividends(self, rows: Sequence[DividendYearRow]) -> int: ...
    async def get_dividends(self, ticker: str) -> list[DividendYearRow]: ...
    async def upsert_industry_performance(
        self, rows: Sequence[IndustryPerformanceRow]
    ) -> int: ...
    async def table_counts(self) -> dict[str, int]: ...
    async def initialize(self) -> None: ...
    async def close(self) -> None: ...
    async def health_check(self) -> bool: ...


def _iso(value: date | datetime | None) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()
    return value.isoformat()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SqliteStore:
    """SQLite implementation of the storage protocol.

    Uses aiosqlite for async access, WAL mode for concurrent reads,
    and a version-tracked migration system.

    Every write is an upsert on the table's natural key. Tables fed by
    timestamped rows only accept a conflicting row whose timestamp is at
    least the stored one, so an older run finishing late cannot clobber
    a newer one.
    """

    _MIGRATIONS: ClassVar[dict[int, tuple[str, list[str]]]] = {
        1: (
            "Initial schema",
            [
                """CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT DEFAULT (datetime('now'))
                )""",
                """CREATE TABLE IF NOT EXISTS universe (
                    ticker TEXT PRIMARY KEY,
                    name TEXT,
                    sector TEXT,
                    industry TEXT,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    updated_at TEXT NOT NULL
                )""",
                """CREATE TABLE IF NOT EXISTS financial_snapshots (
                    ticker TEXT NOT NULL,
                    snapshot_date TEXT NOT NULL,
                    sector TEXT,
                    industry TEXT,
                    pe_ttm REAL,
                    debt_to_equity REAL,
                    roe REAL,
                    roic REAL,
                    gross_margin REAL,
                    operating_margin REAL,
                    source TEXT NOT NULL,
                    normalized_at TEXT NOT NULL,
                    PRIMARY KEY(ticker, snapshot_date)
                )""",
                """CREATE TABLE IF NOT EXISTS datos_financieros (
                    ticker TEXT NOT NULL,
                    period_type TEXT NOT NULL,
                    period_label TEXT NOT NULL,
                    period_end_date TEXT NOT NULL,
                    revenue REAL,
                    net_income REAL,
                    free_cash_flow REAL,
                    gross_margin REAL,
                    operating_margin REAL,
                    net_margin REAL,
                    total_debt REAL,
                    total_equity REAL,
                    debt_to_equity REAL,
                    ebitda REAL,
                    source TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY(ticker, period_type, period_label)
                )""",
                """CREATE TABLE IF NOT EXISTS datos_valuacion (
                    ticker TEXT NOT NULL,
                    valuation_date TEXT NOT NULL,
                    denominator_type TEXT NOT NULL,
                    denominator_period TEXT NOT NULL,
                    price REAL NOT NULL,
                    market_cap REAL,
                    enterprise_value REAL,
                    pe_ratio REAL,
                    peg_ratio REAL,
                    ev_ebitda REAL,
                    ev_sales REAL,
                    price_to_book REAL,
                    price_to_sales REAL,
                    price_to_fcf REAL,
                    dividend_yield REAL,
                    sector TEXT NOT NULL,
                    pe_percentile INTEGER,
                    ev_ebitda_percentile INTEGER,
                    p_fcf_percentile INTEGER,
                    composite_percentile INTEGER,
                    source TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY(ticker, valuation_date, denominator_type, denominator_period)
                )""",
                """CREATE TABLE IF NOT EXISTS sector_performance (
                    sector TEXT NOT NULL,
                    window_code TEXT NOT NULL,
                    performance_date TEXT NOT NULL,
                    return_percent REAL,
                    source TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY(sector, window_code, performance_date)
                )""",
                """CREATE TABLE IF NOT EXISTS sector_pe (
                    sector TEXT NOT NULL,
                    pe_date TEXT NOT NULL,
                    pe REAL,
                    source TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY(sector, pe_date)
                )""",
                """CREATE TABLE IF NOT EXISTS sector_growth (
                    sector TEXT NOT NULL,
                    as_of_date TEXT NOT NULL,
                    revenue_growth REAL,
                    earnings_growth REAL,
                    fcf_growth REAL,
                    ticker_count INTEGER NOT NULL DEFAULT 0,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY(sector, as_of_date)
                )""",
                """CREATE TABLE IF NOT EXISTS prices_daily (
                    ticker TEXT NOT NULL,
                    price_date TEXT NOT NULL,
                    close REAL NOT NULL,
                    volume INTEGER NOT NULL DEFAULT 0,
                    PRIMARY KEY(ticker, price_date)
                )""",
                # Indexes
                "CREATE INDEX IF NOT EXISTS idx_universe_sector ON universe(sector)",
                "CREATE INDEX IF NOT EXISTS idx_fin_ticker_type ON datos_financieros(ticker, period_type)",
                "CREATE INDEX IF NOT EXISTS idx_val_sector_date ON datos_valuacion(sector, valuation_date)",
                "CREATE INDEX IF NOT EXISTS idx_prices_ticker_date ON prices_daily(ticker, price_date)",
            ],
        ),
        2: (
            "OHLC prices, dividends, industry performance",
            [
                "ALTER TABLE prices_daily ADD COLUMN open REAL",
                "ALTER TABLE prices_daily ADD COLUMN high REAL",
                "ALTER TABLE prices_daily ADD COLUMN low REAL",
                "ALTER TABLE prices_daily ADD COLUMN adj_close REAL",
                "ALTER TABLE prices_daily ADD COLUMN source TEXT NOT NULL DEFAULT 'fmp_eod_bulk'",
                """CREATE TABLE IF NOT EXISTS datos_dividendos (
                    ticker TEXT NOT NULL,
                    year INTEGER NOT NULL,
                    dividend_per_share REAL NOT NULL,
                    payment_count INTEGER NOT NULL,
                    average_price REAL,
                    dividend_yield REAL,
                    payout_eps REAL,
                    payout_fcf REAL,
                    has_dividend INTEGER NOT NULL,
                    is_growing INTEGER,
                    is_stable INTEGER,
                    source TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY(ticker, year)
                )""",
                """CREATE TABLE IF NOT EXISTS industry_performance (
                    industry TEXT NOT NULL,
                    window_code TEXT NOT NULL,
                    performance_date TEXT NOT NULL,
                    return_percent REAL,
                    source TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY(industry, window_code, performance_date)
                )""",
            ],
        ),
    }

    def __init__(self, config: StorageConfig) -> None:
        self._path = config.sqlite_path
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open connection, enable WAL, run migrations."""
        try:
            self._db = await aiosqlite.connect(self._path)
            self._db.row_factory = aiosqlite.Row
            await self._db.execute("PRAGMA journal_mode=WAL")
            current = await self._get_schema_version()
            await self._apply_migrations(current)
            await self._db.commit()
        except Exception as e:
            raise StorageError(
                f"Failed to initialize SQLite store: {e}",
                context={"operation": "initialize", "path": self._path},
            ) from e

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def health_check(self) -> bool:
        if self._db is None:
            return False
        try:
            async with self._db.execute("SELECT 1") as cursor:
                row = await cursor.fetchone()
            return row is not None
        except Exception:
            return False

    # --- Schema Migration ---

    async def _get_schema_version(self) -> int:
        try:
            async with self._db.execute(
                "SELECT MAX(version) FROM schema_version"
            ) as cursor:
                row = await cursor.fetchone()
            return row[0] if row[0] is not None else 0
        except aiosqlite.OperationalError:
            return 0

    async def _apply_migrations(self, current_version: int) -> None:
        for version in sorted(self._MIGRATIONS.keys()):
            if version <= current_version:
                continue
            desc, statements = self._MIGRATIONS[version]
            logger.info("Applying migration %d: %s", version, desc)
            for sql in statements:
                await self._db.execute(sql)
            await self._db.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )

    # --- Generic upsert ---

    async def _upsert_many(
        self,
        table: str,
        columns: Sequence[str],
        key_columns: Sequence[str],
        rows: Sequence[tuple[Any, ...]],
        guard_column: str | None = None,
    ) -> int:
        """INSERT ... ON CONFLICT DO UPDATE for a batch, one commit.

        With ``guard_column`` the update only applies when the incoming
        value is >= the stored one.
        """
        if not rows:
            return 0
        placeholders = ", ".join("?" for _ in columns)
        updates = ", ".join(
            f"{c} = excluded.{c}" for c in columns if c not in key_columns
        )
        sql = (
            f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders}) "
            f"ON CONFLICT({', '.join(key_columns)}) DO UPDATE SET {updates}"
        )
        if guard_column is not None:
            sql += f" WHERE excluded.{guard_column} >= {table}.{guard_column}"
        try:
            await self._db.executemany(sql, rows)
            await self._db.commit()
        except Exception as e:
            raise StorageError(
                f"Failed to upsert into {table}: {e}",
                context={"operation": "upsert", "table": table, "rows": len(rows)},
            ) from e
        return len(rows)

    async def _fetch_all(
        self, table: str, query: str, params: Sequence[Any] = ()
    ) -> list[aiosqlite.Row]:
        try:
            async with self._db.execute(query, params) as cursor:
                return list(await cursor.fetchall())
        except Exception as e:
            raise StorageError(
                f"Failed to query {table}: {e}",
                context={"operation": "query", "table": table},
            ) from e

    # --- Universe ---

    async def upsert_universe(self, entries: Sequence[UniverseEntry]) -> int:
        now = _now_iso()
        return await self._upsert_many(
            "universe",
            ("ticker", "name", "sector", "industry", "is_active", "updated_at"),
            ("ticker",),
            [
                (e.ticker, e.name, e.sector, e.industry, int(e.is_active), now)
                for e in entries
            ],
        )

    async def list_active_tickers(
        self, limit: int | None = None, offset: int = 0
    ) -> list[str]:
        query = "SELECT ticker FROM universe WHERE is_active = 1 ORDER BY ticker"
        params: list = []
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            params.extend([limit, offset])
        elif offset:
            query += " LIMIT -1 OFFSET ?"
            params.append(offset)
        rows = await self._fetch_all("universe", query, params)
        return [r["ticker"] for r in rows]

    async def list_universe(self, active_only: bool = True) -> list[UniverseEntry]:
        query = "SELECT * FROM universe"
        if active_only:
            query += " WHERE is_active = 1"
        query += " ORDER BY ticker"
        rows = await self._fetch_all("universe", query)
        return [self._row_to_universe_entry(r) for r in rows]

    # --- Financial snapshots ---

    async def upsert_financial_snapshots(
        self, records: Sequence[NormalizedFinancialRecord]
    ) -> int:
        return await self._upsert_many(
            "financial_snapshots",
            (
                "ticker", "snapshot_date", "sector", "industry", "pe_ttm",
                "debt_to_equity", "roe", "roic", "gross_margin",
                "operating_margin", "source", "normalized_at",
            ),
            ("ticker", "snapshot_date"),
            [
                (
                    r.ticker,
                    _iso(r.snapshot_date),
                    r.sector,
                    r.industry,
                    r.pe_ttm,
                    r.debt_to_equity,
                    r.roe,
                    r.roic,
                    r.gross_margin,
                    r.operating_margin,
                    r.source,
                    _iso(r.normalized_at),
                )
                for r in records
            ],
            guard_column="normalized_at",
        )

    async def upsert_financial_snapshot(self, record: NormalizedFinancialRecord) -> None:
        await self.upsert_financial_snapshots([record])

    async def get_latest_snapshot(self, ticker: str) -> NormalizedFinancialRecord | None:
        rows = await self._fetch_all(
            "financial_snapshots",
            """SELECT * FROM financial_snapshots WHERE ticker = ?
               ORDER BY snapshot_date DESC LIMIT 1""",
            (ticker.upper(),),
        )
        return self._row_to_snapshot(rows[0]) if rows else None

    # --- Statement periods ---

    async def upsert_financial_periods(self, rows: Sequence[FinancialPeriodRow]) -> int:
        return await self._upsert_many(
            "datos_financieros",
            (
                "ticker", "period_type", "period_label", "period_end_date",
                "revenue", "net_income", "free_cash_flow", "gross_margin",
                "operating_margin", "net_margin", "total_debt", "total_equity",
                "debt_to_equity", "ebitda", "source", "updated_at",
            ),
            ("ticker", "period_type", "period_label"),
            [
                (
                    r.ticker,
                    str(r.period_type),
                    r.period_label,
                    _iso(r.period_end_date),
                    r.revenue,
                    r.net_income,
                    r.free_cash_flow,
                    r.gross_margin,
                    r.operating_margin,
                    r.net_margin,
                    r.total_debt,
                    r.total_equity,
                    r.debt_to_equity,
                    r.ebitda,
                    r.source,
                    _iso(r.updated_at),
                )
                for r in rows
            ],
            guard_column="updated_at",
        )

    async def get_financial_periods(
        self,
        ticker: str,
        period_type: PeriodType | None = None,
        limit: int | None = None,
    ) -> list[FinancialPeriodRow]:
        """Statement periods for a ticker, newest period end first."""
        query = "SELECT * FROM datos_financieros WHERE ticker = ?"
        params: list = [ticker.upper()]
        if period_type is not None:
            query += " AND period_type = ?"
            params.append(str(period_type))
        query += " ORDER BY period_end_date DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        rows = await self._fetch_all("datos_financieros", query, params)
        return [self._row_to_period(r) for r in rows]

    # --- Valuation ---

    async def upsert_valuations(self, rows: Sequence[ValuationRow]) -> int:
        return await self._upsert_many(
            "datos_valuacion",
            (
                "ticker", "valuation_date", "denominator_type", "denominator_period",
                "price", "market_cap", "enterprise_value", "pe_ratio", "peg_ratio",
                "ev_ebitda", "ev_sales", "price_to_book", "price_to_sales",
                "price_to_fcf", "dividend_yield", "sector", "pe_percentile",
                "ev_ebitda_percentile", "p_fcf_percentile", "composite_percentile",
                "source", "updated_at",
            ),
            ("ticker", "valuation_date", "denominator_type", "denominator_period"),
            [
                (
                    r.ticker,
                    _iso(r.valuation_date),
                    str(r.denominator_type),
                    r.denominator_period,
                    r.price,
                    r.market_cap,
                    r.enterprise_value,
                    r.pe_ratio,
                    r.peg_ratio,
                    r.ev_ebitda,
                    r.ev_sales,
                    r.price_to_book,
                    r.price_to_sales,
                    r.price_to_fcf,
                    r.dividend_yield,
                    r.sector,
                    r.pe_percentile,
                    r.ev_ebitda_percentile,
                    r.p_fcf_percentile,
                    r.composite_percentile,
                    r.source,
                    _iso(r.updated_at),
                )
                for r in rows
            ],
            guard_column="updated_at",
        )

    async def get_valuations(self, ticker: str, limit: int = 30) -> list[ValuationRow]:
        rows = await self._fetch_all(
            "datos_valuacion",
            """SELECT * FROM datos_valuacion WHERE ticker = ?
               ORDER BY valuation_date DESC LIMIT ?""",
            (ticker.upper(), limit),
        )
        return [self._row_to_valuation(r) for r in rows]

    # --- Sector rollups ---

    async def upsert_sector_performance(self, rows: Sequence[SectorPerformanceRow]) -> int:
        now = _now_iso()
        return await self._upsert_many(
            "sector_performance",
            ("sector", "window_code", "performance_date", "return_percent", "source", "updated_at"),
            ("sector", "window_code", "performance_date"),
            [
                (r.sector, str(r.window_code), _iso(r.performance_date), r.return_percent, r.source, now)
                for r in rows
            ],
        )

    async def list_sector_performance(
        self, performance_date: date | None = None
    ) -> list[SectorPerformanceRow]:
        query = "SELECT * FROM sector_performance"
        params: list = []
        if performance_date is not None:
            query += " WHERE performance_date = ?"
            params.append(performance_date.isoformat())
        query += " ORDER BY performance_date DESC, sector"
        rows = await self._fetch_all("sector_performance", query, params)
        return [
            SectorPerformanceRow(
                sector=r["sector"],
                window_code=WindowCode(r["window_code"]),
                performance_date=date.fromisoformat(r["performance_date"]),
                return_percent=r["return_percent"],
                source=r["source"],
            )
            for r in rows
        ]

    async def upsert_sector_pe(self, rows: Sequence[SectorPeRow]) -> int:
        now = _now_iso()
        return await self._upsert_many(
            "sector_pe",
            ("sector", "pe_date", "pe", "source", "updated_at"),
            ("sector", "pe_date"),
            [(r.sector, _iso(r.pe_date), r.pe, r.source, now) for r in rows],
        )

    async def list_sector_pe(self, pe_date: date | None = None) -> list[SectorPeRow]:
        query = "SELECT * FROM sector_pe"
        params: list = []
        if pe_date is not None:
            query += " WHERE pe_date = ?"
            params.append(pe_date.isoformat())
        query += " ORDER BY pe_date DESC, sector"
        rows = await self._fetch_all("sector_pe", query, params)
        return [
            SectorPeRow(
                sector=r["sector"],
                pe_date=date.fromisoformat(r["pe_date"]),
                pe=r["pe"],
                source=r["source"],
            )
            for r in rows
        ]

    async def upsert_industry_performance(
        self, rows: Sequence[IndustryPerformanceRow]
    ) -> int:
        now = _now_iso()
        return await self._upsert_many(
            "industry_performance",
            ("industry", "window_code", "performance_date", "return_percent", "source", "updated_at"),
            ("industry", "window_code", "performance_date"),
            [
                (r.industry, str(r.window_code), _iso(r.performance_date), r.return_percent, r.source, now)
                for r in rows
            ],
        )

    async def list_industry_performance(
        self, performance_date: date | None = None
    ) -> list[IndustryPerformanceRow]:
        query = "SELECT * FROM industry_performance"
        params: list = []
        if performance_date is not None:
            query += " WHERE performance_date = ?"
            params.append(performance_date.isoformat())
        query += " ORDER BY performance_date DESC, industry"
        rows = await self._fetch_all("industry_performance", query, params)
        return [
            IndustryPerformanceRow(
                industry=r["industry"],
                window_code=WindowCode(r["window_code"]),
                performance_date=date.fromisoformat(r["performance_date"]),
                return_percent=r["return_percent"],
                source=r["source"],
            )
            for r in rows
        ]

    async def upsert_sector_growth(self, rows: Sequence[SectorGrowthRow]) -> int:
        now = _now_iso()
        return await self._upsert_many(
            "sector_growth",
            (
                "sector", "as_of_date", "revenue_growth", "earnings_growth",
                "fcf_growth", "ticker_count", "updated_at",
            ),
            ("sector", "as_of_date"),
            [
                (
                    r.sector,
                    _iso(r.as_of_date),
                    r.revenue_growth,
                    r.earnings_growth,
                    r.fcf_growth,
                    r.ticker_count,
                    now,
                )
                for r in rows
            ],
        )

    async def list_sector_growth(self) -> list[SectorGrowthRow]:
        """Latest growth row per sector."""
        rows = await self._fetch_all(
            "sector_growth",
            """SELECT g.* FROM sector_growth g
               JOIN (SELECT sector, MAX(as_of_date) AS as_of_date
                     FROM sector_growth GROUP BY sector) latest
                 ON g.sector = latest.sector AND g.as_of_date = latest.as_of_date
               ORDER BY g.sector""",
        )
        return [
            SectorGrowthRow(
                sector=r["sector"],
                as_of_date=date.fromisoformat(r["as_of_date"]),
                revenue_growth=r["revenue_growth"],
                earnings_growth=r["earnings_growth"],
                fcf_growth=r["fcf_growth"],
                ticker_count=r["ticker_count"],
            )
            for r in rows
        ]

    # --- Prices ---

    async def upsert_prices(self, bars: Sequence[PriceBar]) -> int:
        return await self._upsert_many(
            "prices_daily",
            (
                "ticker", "price_date", "open", "high", "low", "close",
                "adj_close", "volume", "source",
            ),
            ("ticker", "price_date"),
            [
                (
                    b.ticker,
                    _iso(b.price_date),
                    b.open,
                    b.high,
                    b.low,
                    b.close,
                    b.adj_close,
                    b.volume,
                    b.source,
                )
                for b in bars
            ],
        )

    async def get_prices(
        self, ticker: str, limit: int = 100, offset: int = 0
    ) -> list[PriceBar]:
        """Daily closes for a ticker, newest first."""
        rows = await self._fetch_all(
            "prices_daily",
            """SELECT * FROM prices_daily WHERE ticker = ?
               ORDER BY price_date DESC LIMIT ? OFFSET ?""",
            (ticker.upper(), limit, offset),
        )
        return [
            PriceBar(
                ticker=r["ticker"],
                price_date=date.fromisoformat(r["price_date"]),
                close=r["close"],
                volume=r["volume"],
                open=r["open"],
                high=r["high"],
                low=r["low"],
                adj_close=r["adj_close"],
                source=r["source"],
            )
            for r in rows
        ]

    # --- Dividends ---

    async def upsert_dividends(self, rows: Sequence[DividendYearRow]) -> int:
        now = _now_iso()
        return await self._upsert_many(
            "datos_dividendos",
            (
                "ticker", "year", "dividend_per_share", "payment_count",
                "average_price", "dividend_yield", "payout_eps", "payout_fcf",
                "has_dividend", "is_growing", "is_stable", "source", "updated_at",
            ),
            ("ticker", "year"),
            [
                (
                    r.ticker,
                    r.year,
                    r.dividend_per_share,
                    r.payment_count,
                    r.average_price,
                    r.dividend_yield,
                    r.payout_eps,
                    r.payout_fcf,
                    int(r.has_dividend),
                    None if r.is_growing is None else int(r.is_growing),
                    None if r.is_stable is None else int(r.is_stable),
                    r.source,
                    now,
                )
                for r in rows
            ],
        )

    async def get_dividends(self, ticker: str) -> list[DividendYearRow]:
        """Dividend years for a ticker, newest first."""
        rows = await self._fetch_all(
            "datos_dividendos",
            "SELECT * FROM datos_dividendos WHERE ticker = ? ORDER BY year DESC",
            (ticker.upper(),),
        )
        return [
            DividendYearRow(
                ticker=r["ticker"],
                year=r["year"],
                dividend_per_share=r["dividend_per_share"],
                payment_count=r["payment_count"],
                average_price=r["average_price"],
                dividend_yield=r["dividend_yield"],
                payout_eps=r["payout_eps"],
                payout_fcf=r["payout_fcf"],
                has_dividend=bool(r["has_dividend"]),
                is_growing=None if r["is_growing"] is None else bool(r["is_growing"]),
                is_stable=None if r["is_stable"] is None else bool(r["is_stable"]),
                source=r["source"],
            )
            for r in rows
        ]

    # --- Status ---

    async def table_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for table in TABLES:
            rows = await self._fetch_all(table, f"SELECT COUNT(*) AS n FROM {table}")
            counts[table] = rows[0]["n"]
        return counts

    # --- Row Mappers ---

    @staticmethod
    def _row_to_universe_entry(row: aiosqlite.Row) -> UniverseEntry:
        return UniverseEntry(
            ticker=row["ticker"],
            name=row["name"],
            sector=row["sector"],
            industry=row["industry"],
            is_active=bool(row["is_active"]),
        )

    @staticmethod
    def _row_to_snapshot(row: aiosqlite.Row) -> NormalizedFinancialRecord:
        return NormalizedFinancialRecord(
            ticker=row["ticker"],
            sector=row["sector"],
            industry=row["industry"],
            pe_ttm=row["pe_ttm"],
            debt_to_equity=row["debt_to_equity"],
            roe=row["roe"],
            roic=row["roic"],
            gross_margin=row["gross_margin"],
            operating_margin=row["operating_margin"],
            source=row["source"],
            normalized_at=datetime.fromisoformat(row["normalized_at"]),
        )

    @staticmethod
    def _row_to_period(row: aiosqlite.Row) -> FinancialPeriodRow:
        return FinancialPeriodRow(
            ticker=row["ticker"],
            period_type=PeriodType(row["period_type"]),
            period_label=row["period_label"],
            period_end_date=date.fromisoformat(row["period_end_date"]),
            revenue=row["revenue"],
            net_income=row["net_income"],
            free_cash_flow=row["free_cash_flow"],
            gross_margin=row["gross_margin"],
            operating_margin=row["operating_margin"],
            net_margin=row["net_margin"],
            total_debt=row["total_debt"],
            total_equity=row["total_equity"],
            debt_to_equity=row["debt_to_equity"],
            ebitda=row["ebitda"],
            source=row["source"],
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    @staticmethod
    def _row_to_valuation(row: aiosqlite.Row) -> ValuationRow:
        return ValuationRow(
            ticker=row["ticker"],
            valuation_date=date.fromisoformat(row["valuation_date"]),
            denominator_type=PeriodType(row["denominator_type"]),
            denominator_period=row["denominator_period"],
            price=row["price"],
            market_cap=row["market_cap"],
            enterprise_value=row["enterprise_value"],
            pe_ratio=row["pe_ratio"],
            peg_ratio=row["peg_ratio"],
            ev_ebitda=row["ev_ebitda"],
            ev_sales=row["ev_sales"],
            price_to_book=row["price_to_book"],
            price_to_sales=row["price_to_sales"],
            price_to_fcf=row["price_to_fcf"],
            dividend_yield=row["dividend_yield"],
            sector=row["sector"],
            pe_percentile=row["pe_percentile"],
            ev_ebitda_percentile=row["ev_ebitda_percentile"],
            p_fcf_percentile=row["p_fcf_percentile"],
            composite_percentile=row["composite_percentile"],
            source=row["source"],
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )


async def create_store(config: StorageConfig) -> SqliteStore:
    """Create and initialize the SQLite store."""
    store = SqliteStore(config)
    await store.initialize()
    return store
