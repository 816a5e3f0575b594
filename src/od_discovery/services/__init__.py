"""Service layer for dependency injection and better testability."""

from .index_sync import BulkReport, IndexSync, chunked
from .ingest_service import IngestResult, IngestService
from .liveness_checker import LivenessChecker
from .reconciliation import ReconcileReport, ReconciliationEngine
from .scheduler_service import ScheduledTask, TaskKind, TickScheduler
from .stats_service import CorpusStats, StatsService


__all__ = [
    "BulkReport",
    "CorpusStats",
    "IndexSync",
    "IngestResult",
    "IngestService",
    "LivenessChecker",
    "ReconcileReport",
    "ReconciliationEngine",
    "ScheduledTask",
    "StatsService",
    "TaskKind",
    "TickScheduler",
    "chunked",
]
