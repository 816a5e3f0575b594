"""Task table wiring services into the scheduler."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .scheduler_service import ScheduledTask, TaskKind, TickScheduler


if TYPE_CHECKING:
    from ..context import AppContext


def build_tasks(ctx: AppContext) -> list[ScheduledTask]:
    """Tasks in the order they run within a tick."""
    settings = ctx.settings

    async def reconcile_roots():
        return (await ctx.engine.run_cycle()).to_dict()

    async def update_stats():
        return (await ctx.stats.update()).to_dict()

    async def resync_index():
        return (await ctx.index_sync.reexport(ctx.datastore, ctx.policy)).to_dict()

    return [
        ScheduledTask(TaskKind.RECONCILE_ROOTS, settings.reconcile_frequency, reconcile_roots),
        ScheduledTask(TaskKind.UPDATE_STATS, settings.stats_frequency, update_stats),
        ScheduledTask(TaskKind.RESYNC_INDEX, settings.resync_index_frequency, resync_index),
    ]


def build_scheduler(ctx: AppContext) -> TickScheduler:
    return TickScheduler(
        build_tasks(ctx),
        tick_interval=ctx.settings.tick_interval_seconds,
        continue_on_error=ctx.settings.continue_on_task_error,
    )
