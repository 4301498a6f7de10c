"""Shared base for jobs that read the bulk CSV snapshot."""

from __future__ import annotations

import asyncio
import logging

from fintra_ingest.core.models import DatasetKind
from fintra_ingest.ingestion.bulk import BulkSnapshot, BulkSnapshotLoader
from fintra_ingest.ingestion.normalizer import lookup_number, lookup_text
from fintra_ingest.pipeline.runner import AggregationRunner

logger = logging.getLogger(__name__)


def eligible_profile_symbols(snapshot: BulkSnapshot) -> list[str]:
    """Profile symbols with a sector and a positive price, in file order."""
    symbols = []
    for symbol, rows in snapshot.by_symbol(DatasetKind.PROFILES).items():
        profile = rows[-1]
        price = lookup_number(profile, ("price",))
        if price is None or price <= 0:
            continue
        if lookup_text(profile, ("sector", "Sector")) is None:
            continue
        symbols.append(symbol)
    return symbols


class BulkPipeline(AggregationRunner):
    """Runner whose units are tickers looked up in the bulk snapshot.

    The universe is the store's active tickers; before the universe
    table has been populated it falls back to the snapshot's eligible
    profiles.
    """

    def __init__(
        self, store, loader: BulkSnapshotLoader | None, concurrency: int = 1
    ) -> None:
        super().__init__(store, concurrency=concurrency)
        self._loader = loader
        self._snapshot: BulkSnapshot | None = None

    @property
    def snapshot(self) -> BulkSnapshot:
        if self._snapshot is None:
            raise RuntimeError("bulk snapshot not loaded; call prepare() first")
        return self._snapshot

    async def prepare(self) -> None:
        if self._loader is None:
            raise RuntimeError(f"{self.name} needs a bulk snapshot loader")
        if self._loader.is_loaded:
            self._snapshot = self._loader.load_once()
        else:
            self._snapshot = await asyncio.to_thread(self._loader.load_once)

    async def resolve_universe(self) -> list[str]:
        tickers = await self._store.list_active_tickers()
        if tickers:
            return tickers
        logger.info("Universe table empty; using bulk profiles for %s", self.name)
        return eligible_profile_symbols(self.snapshot)
