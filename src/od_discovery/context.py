"""Application context shared by the scheduler loop and operator commands.

Built once at startup and handed to whoever needs the store, the index or the
scheduler; there are no module-level singletons.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
import logging

from .adapters.datastore import AbstractDatastore
from .adapters.elastic_index import ElasticsearchIndex
from .adapters.search_index import AbstractSearchIndex
from .adapters.sqlite_datastore import SqliteDatastore
from .config import Settings
from .domain.liveness import LivenessPolicy
from .services.index_sync import IndexSync
from .services.ingest_service import IngestService
from .services.liveness_checker import LivenessChecker
from .services.reconciliation import ReconciliationEngine
from .services.scheduler_service import TickScheduler
from .services.stats_service import StatsService
from .services.tasks import build_scheduler
from .utils.probe import ReachabilityProbe


logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    settings: Settings
    policy: LivenessPolicy
    datastore: AbstractDatastore
    index: AbstractSearchIndex
    probe: ReachabilityProbe
    index_sync: IndexSync
    checker: LivenessChecker
    engine: ReconciliationEngine
    ingest: IngestService
    stats: StatsService
    scheduler: TickScheduler = field(init=False)


@asynccontextmanager
async def open_context(
    settings: Settings,
    *,
    datastore: AbstractDatastore | None = None,
    index: AbstractSearchIndex | None = None,
    probe: ReachabilityProbe | None = None,
) -> AsyncIterator[AppContext]:
    """Wire every component from ``settings``; injected adapters replace the defaults."""
    policy = settings.liveness_policy()
    datastore = datastore or SqliteDatastore(
        settings.datastore_path,
        dead_threshold=policy.dead_threshold,
        insert_chunk_size=settings.link_insert_chunk_size,
    )
    index = index or ElasticsearchIndex(
        settings.elastic_url,
        index_name=settings.elastic_index,
        username=settings.elastic_user,
        password=settings.elastic_password,
        timeout=settings.elastic_timeout_seconds,
    )
    probe = probe or ReachabilityProbe(
        timeout=settings.probe_timeout_seconds,
        domain_aliases=settings.probe_domain_aliases,
        user_agent=settings.probe_user_agent,
        max_connections=settings.worker_pool_size,
    )

    try:
        clamped = await datastore.clamp_streaks(policy.streak_cap)
        if clamped:
            logger.info("Clamped %d stored streaks above %d", clamped, policy.streak_cap)

        async with probe:
            index_sync = IndexSync(
                index,
                add_chunk_size=settings.index_add_chunk_size,
                remove_chunk_size=settings.index_remove_chunk_size,
                stream_batch_size=settings.index_stream_batch_size,
            )
            checker = LivenessChecker(
                probe,
                pool_size=settings.worker_pool_size,
                progress_interval=settings.progress_interval,
            )
            ctx = AppContext(
                settings=settings,
                policy=policy,
                datastore=datastore,
                index=index,
                probe=probe,
                index_sync=index_sync,
                checker=checker,
                engine=ReconciliationEngine(
                    datastore,
                    index_sync,
                    policy,
                    checker=checker,
                    track_link_liveness=settings.track_link_liveness,
                ),
                ingest=IngestService(datastore, index_sync, probe, policy),
                stats=StatsService(datastore, settings.stats_path),
            )
            ctx.scheduler = build_scheduler(ctx)
            try:
                yield ctx
            finally:
                await ctx.scheduler.stop()
    finally:
        await index.close()
        await datastore.close()
