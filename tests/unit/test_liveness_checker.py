"""Unit tests for the bounded probe fan-out."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from od_discovery.domain.model import Outcome, Root
from od_discovery.errors import LivenessCheckError
from od_discovery.services.liveness_checker import LivenessChecker


class RecordingProbe:
    """Probe double that tracks concurrency and answers from a fixed table."""

    def __init__(self, outcomes: dict[str, Outcome] | None = None, delay: float = 0.001):
        self.outcomes = outcomes or {}
        self.delay = delay
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def probe(self, url: str) -> Outcome:
        self.calls.append(url)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1
        return self.outcomes.get(url, Outcome.REACHABLE)


def _roots(count: int) -> list[Root]:
    return [Root(url=f"http://od{i}.example/", id=str(i)) for i in range(count)]


@pytest.mark.unit
class TestLivenessChecker:
    @pytest.mark.asyncio
    async def test_every_entity_probed_exactly_once(self):
        roots = _roots(50)
        probe = RecordingProbe({"http://od3.example/": Outcome.UNREACHABLE})
        checker = LivenessChecker(probe, pool_size=8)

        results = await checker.check_all(roots)

        assert sorted(probe.calls) == sorted(root.url for root in roots)
        assert len(results) == 50
        assert {root.url for root, _ in results} == {root.url for root in roots}
        outcomes = {root.url: outcome for root, outcome in results}
        assert outcomes["http://od3.example/"] is Outcome.UNREACHABLE
        assert outcomes["http://od4.example/"] is Outcome.REACHABLE

    @pytest.mark.asyncio
    async def test_concurrency_bounded_by_pool_size(self):
        probe = RecordingProbe(delay=0.01)
        checker = LivenessChecker(probe, pool_size=4)

        await checker.check_all(_roots(40))

        assert 1 <= probe.max_in_flight <= 4

    @pytest.mark.asyncio
    async def test_fewer_entities_than_workers(self):
        probe = RecordingProbe()
        checker = LivenessChecker(probe, pool_size=32)

        results = await checker.check_all(_roots(3))

        assert len(results) == 3
        assert probe.max_in_flight <= 3

    @pytest.mark.asyncio
    async def test_empty_batch(self):
        probe = RecordingProbe()
        checker = LivenessChecker(probe)

        assert await checker.check_all([]) == []
        assert checker.progress == {"completed": 0, "total": 0}

    @pytest.mark.asyncio
    async def test_progress_counts_completed_probes(self):
        checker = LivenessChecker(RecordingProbe(), pool_size=2, progress_interval=5)

        await checker.check_all(_roots(12))

        assert checker.completed == 12
        assert checker.total == 12

    @pytest.mark.asyncio
    async def test_worker_crash_discards_batch(self):
        probe = AsyncMock()
        probe.probe.side_effect = [Outcome.REACHABLE, RuntimeError("boom"), Outcome.REACHABLE, Outcome.REACHABLE]
        checker = LivenessChecker(probe, pool_size=1)

        with pytest.raises(LivenessCheckError, match="boom"):
            await checker.check_all(_roots(4))

    @pytest.mark.asyncio
    async def test_cancelled_check_stops_its_workers(self):
        probe = RecordingProbe(delay=10)
        checker = LivenessChecker(probe, pool_size=3)

        check = asyncio.create_task(checker.check_all(_roots(10)))
        while probe.in_flight < 3:
            await asyncio.sleep(0.001)
        check.cancel()

        with pytest.raises(asyncio.CancelledError):
            await check
        assert probe.in_flight == 0
        assert len(probe.calls) == 3

    @pytest.mark.asyncio
    async def test_stalled_probe_only_occupies_one_slot(self):
        class OneSlowProbe(RecordingProbe):
            async def probe(self, url: str) -> Outcome:
                if url == "http://od0.example/":
                    await asyncio.sleep(0.2)
                    return Outcome.UNREACHABLE
                return await super().probe(url)

        probe = OneSlowProbe()
        checker = LivenessChecker(probe, pool_size=2)

        results = await checker.check_all(_roots(20))

        assert len(results) == 20
        assert len(probe.calls) == 19

    def test_pool_size_must_be_positive(self):
        with pytest.raises(ValueError):
            LivenessChecker(RecordingProbe(), pool_size=0)
