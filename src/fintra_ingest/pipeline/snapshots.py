"""Per-ticker financial snapshot job (``bulk-update``)."""

from __future__ import annotations

import asyncio
import logging
from typing import ClassVar

from fintra_ingest.core.exceptions import DataError, ProviderError
from fintra_ingest.core.models import DatasetKind, QuoteRecord, UniverseEntry
from fintra_ingest.ingestion.bulk import BulkSnapshotLoader
from fintra_ingest.ingestion.normalizer import (
    lookup_text,
    normalize,
    parse_metrics,
    parse_profile,
    parse_ratios,
)
from fintra_ingest.pipeline.bulk import BulkPipeline

logger = logging.getLogger(__name__)


class FinancialSnapshotPipeline(BulkPipeline):
    """Profile + TTM ratios + TTM metrics -> one snapshot row per ticker.

    In bulk mode the three records come from the CSV snapshot. With a
    ``client`` (live mode) they are fetched per ticker from the API,
    together with the quote as a P/E fallback. A quote that cannot be
    fetched is skipped; the other three are required.
    """

    name: ClassVar[str] = "bulk-update"

    def __init__(
        self,
        store,
        loader: BulkSnapshotLoader | None = None,
        client=None,
        concurrency: int = 1,
    ) -> None:
        super().__init__(store, loader, concurrency=concurrency)
        self._client = client

    @property
    def live(self) -> bool:
        return self._client is not None

    async def prepare(self) -> None:
        if not self.live:
            await super().prepare()

    async def resolve_universe(self) -> list[str]:
        if self.live:
            return await self._store.list_active_tickers()
        return await super().resolve_universe()

    async def process(self, unit: str) -> None:
        if self.live:
            profile, ratios, metrics, quote = await asyncio.gather(
                self._client.get_profile(unit),
                self._client.get_ratios_ttm(unit),
                self._client.get_key_metrics_ttm(unit),
                self._optional_quote(unit),
            )
            source = "fmp_api"
        else:
            snapshot = self.snapshot
            profile = parse_profile(snapshot.get(DatasetKind.PROFILES, unit), unit)
            ratios = parse_ratios(snapshot.get(DatasetKind.RATIOS, unit), unit)
            metrics = parse_metrics(snapshot.get(DatasetKind.METRICS, unit), unit)
            quote = None
            source = "fmp_bulk"

        record = normalize(unit, profile, ratios, metrics, quote, source=source)
        if record is None:
            missing = [
                name
                for name, value in (("profile", profile), ("ratios", ratios), ("metrics", metrics))
                if value is None
            ]
            raise DataError(
                f"Incomplete source data for {unit}: missing {', '.join(missing)}",
                context={"ticker": unit, "dataset": ",".join(missing), "reason": "missing"},
            )

        await self._store.upsert_financial_snapshot(record)
        await self._store.upsert_universe(
            [
                UniverseEntry(
                    ticker=record.ticker,
                    name=lookup_text(profile, ("companyName", "name")),
                    sector=record.sector,
                    industry=record.industry,
                )
            ]
        )

    async def _optional_quote(self, unit: str) -> QuoteRecord | None:
        """The quote only backs up P/E, so a failed fetch leaves it out."""
        try:
            return await self._client.get_quote(unit)
        except (ProviderError, DataError) as e:
            logger.info("Quote unavailable for %s, continuing without it: %s", unit, e)
            return None
