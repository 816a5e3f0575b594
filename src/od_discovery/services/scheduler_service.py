"""Tick-driven scheduler for the fixed set of background tasks.

Every ``tick_interval`` seconds the scheduler walks its task list in order and
runs each task whose frequency divides the tick counter. Counter 0 is the first
tick, so every enabled task runs once at startup. A frequency of 0 disables a
task. A failing task is logged and counted; with ``continue_on_error`` the
remaining tasks of the same tick still run, and the loop always moves on to the
next tick.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import logging
from typing import Any

from ..observability.context import bound_fields
from ..observability.metrics import SCHEDULER_TASK_LATENCY, SCHEDULER_TASK_RUNS, track_latency
from ..observability.tracing import create_span


logger = logging.getLogger(__name__)

TICK_COUNTER_MODULUS = 2**64


class TaskKind(str, Enum):
    """The closed set of things the scheduler knows how to run."""

    RECONCILE_ROOTS = "reconcile roots"
    UPDATE_STATS = "update stats"
    RESYNC_INDEX = "resync index"


@dataclass(frozen=True, slots=True)
class ScheduledTask:
    kind: TaskKind
    frequency: int
    run: Callable[[], Awaitable[Any]]

    @property
    def name(self) -> str:
        return self.kind.value

    def is_due(self, tick: int) -> bool:
        return self.frequency > 0 and tick % self.frequency == 0


@dataclass(slots=True)
class TickResult:
    tick: int
    ran: list[TaskKind] = field(default_factory=list)
    failed: list[TaskKind] = field(default_factory=list)
    skipped: list[TaskKind] = field(default_factory=list)


class TickScheduler:
    """Run ``tasks`` on independent frequency counters in one background loop."""

    def __init__(
        self,
        tasks: Sequence[ScheduledTask],
        *,
        tick_interval: float = 3.0,
        continue_on_error: bool = True,
    ):
        kinds = [task.kind for task in tasks]
        if len(set(kinds)) != len(kinds):
            raise ValueError("Each task kind may be scheduled only once")
        if any(task.frequency < 0 for task in tasks):
            raise ValueError("Task frequencies must not be negative")

        self.tasks = list(tasks)
        self.tick_interval = tick_interval
        self.continue_on_error = continue_on_error

        self._tick = 0
        self._ticks_run = 0
        self._run_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._loop_task: asyncio.Task | None = None
        self._runs: dict[TaskKind, int] = {kind: 0 for kind in kinds}
        self._errors: dict[TaskKind, int] = {kind: 0 for kind in kinds}
        self._last_error: dict[str, Any] | None = None
        self._last_tick_at: datetime | None = None
        self._last_results: dict[TaskKind, Any] = {}

    @property
    def tick(self) -> int:
        """Counter value the next tick will use."""
        return self._tick

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "next_tick": self._tick,
            "ticks_run": self._ticks_run,
            "last_tick_at": self._last_tick_at.isoformat() if self._last_tick_at else None,
            "tasks": {
                task.name: {
                    "frequency": task.frequency,
                    "runs": self._runs[task.kind],
                    "errors": self._errors[task.kind],
                }
                for task in self.tasks
            },
            "last_error": self._last_error,
        }

    def last_result(self, kind: TaskKind) -> Any:
        return self._last_results.get(kind)

    async def run_tick(self) -> TickResult:
        """Run one tick and advance the counter."""
        tick = self._tick
        result = TickResult(tick=tick)
        for position, task in enumerate(self.tasks):
            if not task.is_due(tick):
                continue
            ok = await self._run_task(task)
            result.ran.append(task.kind)
            if not ok:
                result.failed.append(task.kind)
                if not self.continue_on_error:
                    result.skipped.extend(t.kind for t in self.tasks[position + 1 :] if t.is_due(tick))
                    break

        self._tick = (tick + 1) % TICK_COUNTER_MODULUS
        self._ticks_run += 1
        self._last_tick_at = datetime.now(timezone.utc)
        return result

    async def trigger(self, kind: TaskKind) -> bool:
        """Run one task right now, outside the tick cadence."""
        for task in self.tasks:
            if task.kind is kind:
                return await self._run_task(task)
        raise KeyError(f"No scheduled task of kind {kind.value!r}")

    async def _run_task(self, task: ScheduledTask) -> bool:
        async with self._run_lock:
            with bound_fields(task=task.name), create_span("scheduler.task", attributes={"task": task.name}):
                return await self._run_and_record(task)

    async def _run_and_record(self, task: ScheduledTask) -> bool:
        try:
            with track_latency(SCHEDULER_TASK_LATENCY, task=task.name):
                self._last_results[task.kind] = await task.run()
        except Exception as exc:
            self._errors[task.kind] += 1
            self._last_error = {
                "task": task.name,
                "error": str(exc),
                "at": datetime.now(timezone.utc).isoformat(),
            }
            SCHEDULER_TASK_RUNS.labels(task=task.name, status="error").inc()
            logger.error("Failed to run task '%s' due to error: %s", task.name, exc, exc_info=True)
            return False
        finally:
            self._runs[task.kind] += 1
        SCHEDULER_TASK_RUNS.labels(task=task.name, status="ok").inc()
        return True

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._loop_task = asyncio.create_task(self.run_forever())

    async def stop(self) -> None:
        self._stop_event.set()
        if self._loop_task is not None:
            self._loop_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._loop_task
            self._loop_task = None

    async def run_forever(self, stop_event: asyncio.Event | None = None) -> None:
        """Tick until ``stop_event`` (or the scheduler's own stop event) is set."""
        stop = stop_event or self._stop_event
        logger.info(
            "Started scheduler: %s",
            ", ".join(f"{task.name} every {task.frequency} ticks" for task in self.tasks if task.frequency),
        )
        while not stop.is_set():
            try:
                await self.run_tick()
            except Exception:  # pragma: no cover - run_tick already isolates tasks
                logger.error("Scheduler tick failed", exc_info=True)
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.tick_interval)
            except asyncio.TimeoutError:
                continue
        logger.info("Scheduler stopped after %d ticks", self._ticks_run)
