"""Aggregation runner: universe resolution, per-unit isolation, run summary."""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Hashable, Iterable
from typing import ClassVar, TypeVar

from fintra_ingest.core.models import AggregationRunResult, TickerError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def dedupe_last(rows: Iterable[T], key: Callable[[T], Hashable]) -> list[T]:
    """Collapse rows sharing a key; the last one wins, first-seen order kept."""
    by_key: dict[Hashable, T] = {}
    for row in rows:
        by_key[key(row)] = row
    return list(by_key.values())


class AggregationRunner(ABC):
    """Base class for every cron job.

    A run resolves its universe of units (tickers, sectors, ...),
    processes each unit in isolation and reports counts. One unit
    failing never stops the others; only a failure while resolving the
    universe (or in ``prepare``/``finalize``) aborts the run.

    Subclasses implement ``resolve_universe`` and ``process``.
    """

    name: ClassVar[str] = "aggregation"

    def __init__(self, store, concurrency: int = 1) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._store = store
        self._concurrency = concurrency
        self._errors: list[TickerError] = []
        self._late_failures: set[str] = set()

    @abstractmethod
    async def resolve_universe(self) -> list[str]:
        """All units this job would process when no target is given."""

    @abstractmethod
    async def process(self, unit: str) -> None:
        """Fetch or look up data for one unit, normalize, upsert."""

    async def prepare(self) -> None:
        """Hook run once before the universe is resolved."""

    async def finalize(self) -> None:
        """Hook run once after every unit has been processed."""

    def normalize_target(self, target: str) -> str:
        """Canonical form of an explicitly requested unit."""
        return target.strip().upper()

    def record_error(self, unit: str, error: BaseException | str) -> None:
        message = error if isinstance(error, str) else str(error) or type(error).__name__
        self._errors.append(TickerError(ticker=unit, message=message))

    def fail_units(self, units: Iterable[str], error: BaseException | str) -> None:
        """Record a failure for units that already passed ``process``.

        Used by ``finalize`` when a buffered write fails; those units drop
        out of ``processed_count``.
        """
        for unit in units:
            if unit not in self._late_failures:
                self._late_failures.add(unit)
                self.record_error(unit, error)

    async def run(
        self,
        target_ticker: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> AggregationRunResult:
        """Execute one aggregation run.

        With ``target_ticker`` the universe is just that unit; otherwise
        the resolved universe is sliced to ``[offset, offset + limit)``.
        """
        started = time.perf_counter()
        self._errors = []
        self._late_failures = set()
        logger.info("Starting %s run", self.name)

        await self.prepare()
        if target_ticker:
            universe = [self.normalize_target(target_ticker)]
        else:
            universe = await self.resolve_universe()
            end = offset + limit if limit is not None else None
            universe = universe[offset:end]
        universe = list(dict.fromkeys(universe))
        logger.info("%s universe: %d units", self.name, len(universe))

        if self._concurrency == 1:
            outcomes = [await self._process_one(unit) for unit in universe]
        else:
            semaphore = asyncio.Semaphore(self._concurrency)

            async def bounded(unit: str) -> bool:
                async with semaphore:
                    return await self._process_one(unit)

            outcomes = await asyncio.gather(*(bounded(u) for u in universe))

        await self.finalize()

        processed = sum(
            1
            for unit, ok in zip(universe, outcomes)
            if ok and unit not in self._late_failures
        )
        duration_ms = int((time.perf_counter() - started) * 1000)
        result = AggregationRunResult(
            success=True,
            processed_count=processed,
            error_count=len(self._errors),
            duration_ms=duration_ms,
            errors=list(self._errors),
        )
        logger.info(
            "%s run complete: %d processed, %d errors in %dms",
            self.name,
            result.processed_count,
            result.error_count,
            result.duration_ms,
        )
        return result

    async def _process_one(self, unit: str) -> bool:
        try:
            await self.process(unit)
        except Exception as e:
            logger.warning("%s failed for %s: %s", self.name, unit, e)
            self.record_error(unit, e)
            return False
        return True


async def run_with_timeout(
    runner: AggregationRunner,
    max_duration_seconds: float,
    target_ticker: str | None = None,
    limit: int | None = None,
    offset: int = 0,
) -> AggregationRunResult:
    """Run with a wall-clock cap. Raises asyncio.TimeoutError when exceeded."""
    return await asyncio.wait_for(
        runner.run(target_ticker=target_ticker, limit=limit, offset=offset),
        timeout=max_duration_seconds,
    )
