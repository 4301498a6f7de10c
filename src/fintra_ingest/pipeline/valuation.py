"""Valuation job (``valuation-bulk``): TTM multiples plus sector percentiles."""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from collections.abc import Sequence
from datetime import date
from typing import ClassVar

from fintra_ingest.core.exceptions import DataError, StorageError
from fintra_ingest.core.models import DatasetKind, ValuationRow
from fintra_ingest.ingestion.bulk import BulkSnapshotLoader
from fintra_ingest.ingestion.normalizer import normalize_valuation, utc_now
from fintra_ingest.pipeline.bulk import BulkPipeline

logger = logging.getLogger(__name__)

MIN_SECTOR_SIZE = 2

# row attribute -> percentile attribute
_PERCENTILE_FIELDS = {
    "pe_ratio": "pe_percentile",
    "ev_ebitda": "ev_ebitda_percentile",
    "price_to_fcf": "p_fcf_percentile",
}


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def percentile_rank(value: float, sorted_values: Sequence[float]) -> int:
    """Share of ``sorted_values`` <= ``value``, as a 0-100 integer."""
    if not sorted_values:
        return 0
    rank = 0
    for v in sorted_values:
        if value >= v:
            rank += 1
        else:
            break
    return _round_half_up(rank / len(sorted_values) * 100)


def apply_sector_percentiles(rows: Sequence[ValuationRow]) -> list[ValuationRow]:
    """Fill percentile columns relative to each row's sector.

    Only positive multiples are ranked; a row with a missing or
    non-positive multiple keeps None for that percentile. Sectors with
    fewer than two rows are left untouched. The composite is the rounded
    mean of whichever percentiles a row has.
    """
    by_sector: dict[str, list[int]] = defaultdict(list)
    for i, row in enumerate(rows):
        by_sector[row.sector].append(i)

    result = list(rows)
    for sector, indexes in by_sector.items():
        if len(indexes) < MIN_SECTOR_SIZE:
            continue
        distributions: dict[str, list[float]] = {}
        for attr in _PERCENTILE_FIELDS:
            values = [getattr(rows[i], attr) for i in indexes]
            distributions[attr] = sorted(v for v in values if v is not None and v > 0)
        for i in indexes:
            row = rows[i]
            update: dict[str, int | None] = {}
            for attr, pct_attr in _PERCENTILE_FIELDS.items():
                value = getattr(row, attr)
                if value is not None and value > 0:
                    update[pct_attr] = percentile_rank(value, distributions[attr])
            available = [p for p in update.values() if p is not None]
            if available:
                update["composite_percentile"] = _round_half_up(
                    sum(available) / len(available)
                )
            result[i] = row.model_copy(update=update)
    return result


class ValuationPipeline(BulkPipeline):
    """Bulk profiles, ratios and metrics -> ``datos_valuacion``.

    Rows are buffered during the run; percentiles need the whole sector,
    so they are computed and written in ``finalize``, one sector per
    write. A sector whose write fails is recorded against each of its
    tickers and the other sectors still land.
    """

    name: ClassVar[str] = "valuation-bulk"

    def __init__(
        self,
        store,
        loader: BulkSnapshotLoader,
        valuation_date: date | None = None,
        concurrency: int = 1,
    ) -> None:
        super().__init__(store, loader, concurrency=concurrency)
        self._valuation_date = valuation_date
        self._pending: dict[str, ValuationRow] = {}

    async def prepare(self) -> None:
        await super().prepare()
        self._pending = {}

    async def process(self, unit: str) -> None:
        snapshot = self.snapshot
        row = normalize_valuation(
            unit,
            snapshot.get(DatasetKind.PROFILES, unit),
            snapshot.get(DatasetKind.RATIOS, unit),
            snapshot.get(DatasetKind.METRICS, unit),
            valuation_date=self._valuation_date or utc_now().date(),
        )
        if row is None:
            raise DataError(
                f"No valuation for {unit}: missing profile, sector or price",
                context={"ticker": unit, "dataset": "profile", "reason": "no_price_or_sector"},
            )
        self._pending[row.ticker] = row

    async def finalize(self) -> None:
        if not self._pending:
            return
        rows = apply_sector_percentiles(list(self._pending.values()))
        by_sector: dict[str, list[ValuationRow]] = defaultdict(list)
        for row in rows:
            by_sector[row.sector].append(row)
        written = 0
        for sector, group in by_sector.items():
            try:
                written += await self._store.upsert_valuations(group)
            except StorageError as e:
                logger.warning("Valuation write failed for sector %s: %s", sector, e)
                self.fail_units([row.ticker for row in group], e)
        logger.info("Wrote %d valuation rows", written)
        self._pending = {}
