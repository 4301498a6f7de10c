"""Daily prices job (``prices-daily-bulk``): EOD bulk export -> ``prices_daily``."""

from __future__ import annotations

import asyncio
import logging
from datetime import date
from pathlib import Path
from typing import ClassVar

from fintra_ingest.core.exceptions import DataError, StorageError
from fintra_ingest.core.models import PriceBar, RawProviderRecord
from fintra_ingest.ingestion.bulk import eod_file_name, read_bulk_csv, write_atomic
from fintra_ingest.ingestion.normalizer import lookup_number, lookup_text, to_float, utc_now
from fintra_ingest.pipeline.runner import AggregationRunner

logger = logging.getLogger(__name__)

EOD_SUBDIR = "eod"
BATCH_SIZE = 1000


def parse_eod_row(row: RawProviderRecord, default_date: date) -> PriceBar | None:
    """Build a bar from one EOD export row, or None if it fails the quality gate.

    A row is rejected when volume is missing or non-positive, when any of
    open, high, low, close or adjClose is missing, or when the high/low
    do not bracket open and close.
    """
    symbol = lookup_text(row, ("symbol",))
    open_ = lookup_number(row, ("open",))
    high = lookup_number(row, ("high",))
    low = lookup_number(row, ("low",))
    close = lookup_number(row, ("close",))
    adj_close = lookup_number(row, ("adjClose", "adj_close"))
    volume = to_float(row.get("volume"))

    if symbol is None or volume is None or volume <= 0 or adj_close is None:
        return None
    if open_ is None or high is None or low is None or close is None:
        return None
    if high < max(open_, close) or low > min(open_, close) or close <= 0:
        return None

    raw_date = lookup_text(row, ("date",))
    if raw_date is None:
        price_date = default_date
    else:
        try:
            price_date = date.fromisoformat(raw_date[:10])
        except ValueError:
            return None

    return PriceBar(
        ticker=symbol,
        price_date=price_date,
        open=open_,
        high=high,
        low=low,
        close=close,
        adj_close=adj_close,
        volume=round(volume),
    )


class PricesDailyPipeline(AggregationRunner):
    """One EOD bulk export per date, filtered to the active universe.

    The export is cached as ``eod/eod_<date>.csv`` under the bulk
    directory and fetched through ``client`` when missing. Without a
    client a missing export fails the run. Bars are buffered and written
    in batches in ``finalize``; a failed batch is recorded against each
    of its tickers.
    """

    name: ClassVar[str] = "prices-daily-bulk"

    def __init__(
        self,
        store,
        bulk_dir: str | Path,
        client=None,
        price_date: date | None = None,
        concurrency: int = 1,
    ) -> None:
        super().__init__(store, concurrency=concurrency)
        self._bulk_dir = Path(bulk_dir)
        self._client = client
        self._price_date = price_date
        self._target: date | None = None
        self._rows: dict[str, RawProviderRecord] = {}
        self._pending: list[PriceBar] = []

    @property
    def target_date(self) -> date:
        return self._target or self._price_date or utc_now().date()

    def cache_path(self, price_date: date) -> Path:
        return self._bulk_dir / EOD_SUBDIR / eod_file_name(price_date)

    async def prepare(self) -> None:
        self._target = self._price_date or utc_now().date()
        self._pending = []
        path = self.cache_path(self._target)
        if path.exists():
            logger.info("Using cached EOD export %s", path)
        elif self._client is None:
            raise DataError(
                f"No EOD export for {self._target} at {path}",
                context={"dataset": "eod_bulk", "reason": "missing_file"},
            )
        else:
            body = await self._client.get_eod_bulk(self._target)
            path.parent.mkdir(parents=True, exist_ok=True)
            write_atomic(path, body)
            logger.info("Downloaded EOD export for %s (%d bytes)", self._target, len(body))

        rows = await asyncio.to_thread(read_bulk_csv, path)
        self._rows = {}
        for row in rows:
            symbol = (row.get("symbol") or "").strip().upper()
            if symbol:
                self._rows[symbol] = row
        logger.info("EOD export for %s has %d symbols", self._target, len(self._rows))

    async def resolve_universe(self) -> list[str]:
        tickers = await self._store.list_active_tickers()
        if not tickers:
            logger.warning("Active universe is empty; no prices to store")
        return tickers

    async def process(self, unit: str) -> None:
        row = self._rows.get(unit)
        if row is None:
            raise DataError(
                f"No EOD row for {unit} on {self.target_date}",
                context={"ticker": unit, "dataset": "eod_bulk", "reason": "missing_row"},
            )
        bar = parse_eod_row(row, self.target_date)
        if bar is None:
            raise DataError(
                f"EOD row for {unit} failed the quality check",
                context={"ticker": unit, "dataset": "eod_bulk", "reason": "invalid_bar"},
            )
        self._pending.append(bar)

    async def finalize(self) -> None:
        written = 0
        for start in range(0, len(self._pending), BATCH_SIZE):
            batch = self._pending[start:start + BATCH_SIZE]
            try:
                written += await self._store.upsert_prices(batch)
            except StorageError as e:
                logger.warning("Price batch write failed: %s", e)
                self.fail_units([bar.ticker for bar in batch], e)
        logger.info("Wrote %d daily bars for %s", written, self.target_date)
        self._pending = []
