"""Bulk CSV snapshot: one-time load of provider exports, plus the downloader.

Bulk exports are large and change at most daily, so a process reads them
once and serves every later request from memory. The snapshot is never
invalidated; a fresh export is picked up on process restart.
"""

from __future__ import annotations

import csv
import logging
import os
import re
import tempfile
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import ClassVar

from fintra_ingest.core.config import FmpConfig
from fintra_ingest.core.exceptions import ProviderError
from fintra_ingest.core.models import (
    AggregationRunResult,
    DatasetKind,
    RawProviderRecord,
    TickerError,
)

logger = logging.getLogger(__name__)

# Single-file datasets: kind -> (file name, bulk endpoint)
_SNAPSHOT_FILES: dict[DatasetKind, tuple[str, str]] = {
    DatasetKind.PROFILES: ("profile.csv", "/stable/profile-bulk"),
    DatasetKind.RATIOS: ("ratios_ttm.csv", "/stable/ratios-ttm-bulk"),
    DatasetKind.METRICS: ("metrics_ttm.csv", "/stable/key-metrics-ttm-bulk"),
}

# Per-period statement datasets: kind -> bulk endpoint
_STATEMENT_ENDPOINTS: dict[DatasetKind, str] = {
    DatasetKind.INCOME: "/stable/income-statement-bulk",
    DatasetKind.BALANCE: "/stable/balance-sheet-statement-bulk",
    DatasetKind.CASHFLOW: "/stable/cash-flow-statement-bulk",
}

_STATEMENT_FILE_RE = re.compile(r"^(income|balance|cashflow)_(\d{4})_(FY|Q[1-4])\.csv$")


def statement_file_name(kind: DatasetKind, year: int, period: str) -> str:
    return f"{kind.value}_{year}_{period}.csv"


def eod_file_name(price_date: date) -> str:
    return f"eod_{price_date.isoformat()}.csv"


@dataclass(frozen=True)
class BulkSnapshot:
    """Parsed bulk rows per dataset kind, indexed by symbol.

    Statement kinds hold one row per (symbol, year, period), so every
    index entry is a list in file order.
    """

    tables: Mapping[DatasetKind, tuple[RawProviderRecord, ...]]
    _indexes: dict[DatasetKind, dict[str, list[RawProviderRecord]]] = field(
        default_factory=dict, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        for kind in DatasetKind:
            index: dict[str, list[RawProviderRecord]] = {}
            for row in self.tables.get(kind, ()):
                symbol = (row.get("symbol") or "").strip().upper()
                if symbol:
                    index.setdefault(symbol, []).append(row)
            self._indexes[kind] = index

    def rows(self, kind: DatasetKind) -> tuple[RawProviderRecord, ...]:
        return self.tables.get(kind, ())

    def by_symbol(self, kind: DatasetKind) -> dict[str, list[RawProviderRecord]]:
        return self._indexes.get(kind, {})

    def get(self, kind: DatasetKind, ticker: str) -> RawProviderRecord | None:
        """Latest row for a ticker in a single-row-per-symbol dataset."""
        rows = self.by_symbol(kind).get(ticker.strip().upper())
        return rows[-1] if rows else None

    def get_all(self, kind: DatasetKind, ticker: str) -> list[RawProviderRecord]:
        return list(self.by_symbol(kind).get(ticker.strip().upper(), []))

    def symbols(self, kind: DatasetKind = DatasetKind.PROFILES) -> list[str]:
        """Symbols present in a dataset, in first-seen order."""
        return list(self.by_symbol(kind).keys())

    def row_counts(self) -> dict[str, int]:
        return {kind.value: len(self.rows(kind)) for kind in DatasetKind}


class BulkSnapshotLoader:
    """Reads the bulk CSV directory at most once per loader.

    ``load_once()`` is safe to call from any thread or task: the first
    caller reads the files under a lock, later callers get the cached
    snapshot object without touching disk.
    """

    _registry: ClassVar[dict[Path, BulkSnapshotLoader]] = {}
    _registry_lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(
        self,
        bulk_dir: str | Path,
        years: Iterable[int] | None = None,
        periods: Iterable[str] | None = None,
    ) -> None:
        self._bulk_dir = Path(bulk_dir)
        self._years = list(years) if years is not None else None
        self._periods = list(periods) if periods is not None else None
        self._snapshot: BulkSnapshot | None = None
        self._lock = threading.Lock()

    @classmethod
    def shared(
        cls,
        bulk_dir: str | Path,
        years: Iterable[int] | None = None,
        periods: Iterable[str] | None = None,
    ) -> BulkSnapshotLoader:
        """Process-wide loader for a directory. First caller's years/periods win."""
        key = Path(bulk_dir).resolve()
        with cls._registry_lock:
            loader = cls._registry.get(key)
            if loader is None:
                loader = cls(bulk_dir, years=years, periods=periods)
                cls._registry[key] = loader
            return loader

    @classmethod
    def from_config(cls, config: FmpConfig) -> BulkSnapshotLoader:
        return cls.shared(config.bulk_dir, years=config.years, periods=config.periods)

    @property
    def bulk_dir(self) -> Path:
        return self._bulk_dir

    @property
    def is_loaded(self) -> bool:
        return self._snapshot is not None

    def load_once(self) -> BulkSnapshot:
        snapshot = self._snapshot
        if snapshot is not None:
            return snapshot
        with self._lock:
            if self._snapshot is None:
                self._snapshot = self._read_all()
            return self._snapshot

    # --- Disk reads ---

    def _read_all(self) -> BulkSnapshot:
        logger.info("Loading bulk snapshot from %s", self._bulk_dir)
        tables: dict[DatasetKind, tuple[RawProviderRecord, ...]] = {}

        for kind, (file_name, _endpoint) in _SNAPSHOT_FILES.items():
            tables[kind] = tuple(self._read_csv(self._bulk_dir / file_name))

        for kind in _STATEMENT_ENDPOINTS:
            rows: list[RawProviderRecord] = []
            for path in self._statement_paths(kind):
                rows.extend(self._read_csv(path))
            tables[kind] = tuple(rows)

        snapshot = BulkSnapshot(tables=tables)
        logger.info("Bulk snapshot loaded: %s", snapshot.row_counts())
        return snapshot

    def _statement_paths(self, kind: DatasetKind) -> list[Path]:
        if self._years is not None and self._periods is not None:
            return [
                self._bulk_dir / statement_file_name(kind, year, period)
                for year in self._years
                for period in self._periods
            ]
        if not self._bulk_dir.is_dir():
            return []
        found = []
        for path in sorted(self._bulk_dir.iterdir()):
            match = _STATEMENT_FILE_RE.match(path.name)
            if match and match.group(1) == kind.value:
                found.append(path)
        return found

    def _read_csv(self, path: Path) -> list[RawProviderRecord]:
        return read_bulk_csv(path)


def read_bulk_csv(path: Path) -> list[RawProviderRecord]:
    """Rows as dicts with stripped headers. Values stay strings."""
    if not path.exists():
        logger.warning("Bulk file missing, using empty table: %s", path)
        return []
    with open(path, newline="", encoding="utf-8-sig") as f:
        reader = csv.DictReader(f)
        if reader.fieldnames is not None:
            reader.fieldnames = [h.strip() for h in reader.fieldnames]
        return [
            {k: v for k, v in row.items() if k is not None}
            for row in reader
        ]


# --- Downloads ---


def write_atomic(path: Path, body: str) -> None:
    """Write ``body`` to ``path`` through a temp file in the same directory.

    Readers see either the old file or the complete new one. On failure
    the temp file is removed and the target is left as it was.
    """
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(body)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def is_mutable_period(year: int | None, period: str, today: date | None = None) -> bool:
    """Whether a bulk file for (year, period) can still change upstream.

    TTM exports always change. The current year is open; the previous
    year stays open through March while late filers report. Anything
    older is final.
    """
    if period.upper() == "TTM" or year is None:
        return True
    today = today or date.today()
    if year >= today.year:
        return True
    if year == today.year - 1:
        return today.month <= 3
    return False


@dataclass
class BulkDownloadSummary:
    downloaded: list[str] = field(default_factory=list)
    cached: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    def to_run_result(self, duration_ms: int) -> AggregationRunResult:
        return AggregationRunResult(
            success=True,
            processed_count=len(self.downloaded) + len(self.cached),
            error_count=len(self.failed),
            duration_ms=duration_ms,
            errors=[TickerError(ticker=name, message=msg) for name, msg in self.failed.items()],
        )


async def download_bulk_files(
    client,
    config: FmpConfig,
    today: date | None = None,
) -> BulkDownloadSummary:
    """Fetch the bulk CSV exports into ``config.bulk_dir``.

    Files for closed periods that already exist on disk are kept. A
    provider or write failure on one file is logged and the rest
    continue. Each file is replaced atomically, so an interrupted run
    never leaves a truncated export behind to be cached.
    """
    bulk_dir = Path(config.bulk_dir)
    bulk_dir.mkdir(parents=True, exist_ok=True)
    summary = BulkDownloadSummary()

    jobs: list[tuple[str, str, dict, bool]] = []
    for file_name, endpoint in _SNAPSHOT_FILES.values():
        jobs.append((file_name, endpoint, {}, True))
    for kind, endpoint in _STATEMENT_ENDPOINTS.items():
        for year in config.years:
            for period in config.periods:
                jobs.append(
                    (
                        statement_file_name(kind, year, period),
                        endpoint,
                        {"year": year, "period": period},
                        is_mutable_period(year, period, today),
                    )
                )

    for file_name, endpoint, params, mutable in jobs:
        path = bulk_dir / file_name
        if path.exists() and not mutable:
            summary.cached.append(file_name)
            continue
        try:
            body = await client.fetch_text(endpoint, params or None)
        except ProviderError as e:
            logger.warning("Bulk download failed for %s: %s", file_name, e)
            summary.failed[file_name] = str(e)
            continue
        try:
            write_atomic(path, body)
        except OSError as e:
            logger.warning("Could not write bulk file %s: %s", file_name, e)
            summary.failed[file_name] = f"write failed: {e}"
            continue
        summary.downloaded.append(file_name)
        logger.debug("Downloaded %s (%d bytes)", file_name, len(body))

    logger.info(
        "Bulk download complete: %d downloaded, %d cached, %d failed",
        len(summary.downloaded),
        len(summary.cached),
        len(summary.failed),
    )
    return summary
