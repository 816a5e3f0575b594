"""Bounded-concurrency fan-out of reachability probes.

Workers pull entities from an input queue and push ``(entity, outcome)`` pairs
into a results queue. Nothing reads the results until every worker has
finished; then a single consumer drains them. Each probe carries its own
timeout, so a stalled host ties up one worker slot and nothing else.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
import logging
import time
from typing import Protocol, TypeVar

from ..domain.model import Outcome
from ..errors import LivenessCheckError
from ..utils.probe import ReachabilityProbe


logger = logging.getLogger(__name__)


class HasUrl(Protocol):
    url: str


E = TypeVar("E", bound=HasUrl)


class LivenessChecker:
    """Probe many entities once each with at most ``pool_size`` in flight."""

    def __init__(self, probe: ReachabilityProbe, *, pool_size: int = 32, progress_interval: int = 500):
        if pool_size < 1:
            raise ValueError("pool_size must be at least 1")
        self.probe = probe
        self.pool_size = pool_size
        self.progress_interval = progress_interval
        self._completed = 0
        self._total = 0

    @property
    def completed(self) -> int:
        """Probes finished in the current (or last) batch; for operator display only."""
        return self._completed

    @property
    def total(self) -> int:
        return self._total

    @property
    def progress(self) -> dict[str, int]:
        return {"completed": self._completed, "total": self._total}

    async def check_all(self, entities: Sequence[E]) -> list[tuple[E, Outcome]]:
        """Probe every entity exactly once and return all outcomes together.

        Raises:
            LivenessCheckError: a worker died; the partial batch is discarded
        """
        self._completed = 0
        self._total = len(entities)
        if not entities:
            return []

        start = time.perf_counter()
        pending: asyncio.Queue[E | None] = asyncio.Queue()
        results: asyncio.Queue[tuple[E, Outcome]] = asyncio.Queue()
        for entity in entities:
            pending.put_nowait(entity)
        worker_count = min(self.pool_size, len(entities))
        for _ in range(worker_count):
            pending.put_nowait(None)

        async def worker() -> None:
            while True:
                entity = await pending.get()
                if entity is None:
                    return
                outcome = await self.probe.probe(entity.url)
                results.put_nowait((entity, outcome))
                self._completed += 1
                if self._completed % self.progress_interval == 0:
                    logger.info("Checked %d/%d urls", self._completed, self._total)

        workers = [asyncio.create_task(worker()) for _ in range(worker_count)]
        try:
            await asyncio.gather(*workers)
        except Exception as exc:
            logger.error("Liveness check aborted after %d/%d probes", self._completed, self._total, exc_info=True)
            raise LivenessCheckError(f"Liveness check aborted: {exc}") from exc
        finally:
            # Also reached on cancellation
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

        collected: list[tuple[E, Outcome]] = []
        while not results.empty():
            collected.append(results.get_nowait())

        if len(collected) != len(entities):
            raise LivenessCheckError(f"Collected {len(collected)} outcomes for {len(entities)} entities")

        reachable = sum(1 for _, outcome in collected if outcome is Outcome.REACHABLE)
        logger.info(
            "Checked %d urls in %.1fs: %d reachable, %d unreachable",
            len(collected),
            time.perf_counter() - start,
            reachable,
            len(collected) - reachable,
        )
        return collected
