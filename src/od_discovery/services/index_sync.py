"""Chunked bulk synchronization between the datastore and the search index.

Every add or remove is split into bounded chunks and each chunk becomes one
bulk request. A failed chunk is logged and recorded; the rest still go out.
There is no retry queue: the reconciler repeats removals at resync points and
the re-export task rewrites the whole corpus, and both operations are
idempotent.
"""

from __future__ import annotations

from collections.abc import AsyncIterable, Iterator, Sequence
from dataclasses import dataclass, field
import logging
from typing import TypeVar

from ..adapters.datastore import AbstractDatastore
from ..adapters.search_index import AbstractSearchIndex, BulkAction
from ..domain.liveness import LivenessPolicy
from ..domain.model import IndexEntry, Link
from ..errors import DatastoreError, IndexSyncError
from ..observability.metrics import INDEX_CHUNKS


logger = logging.getLogger(__name__)

T = TypeVar("T")


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of at most ``size`` items."""
    if size < 1:
        raise ValueError("chunk size must be at least 1")
    for start in range(0, len(items), size):
        yield items[start : start + size]


@dataclass(slots=True)
class ChunkResult:
    index: int
    size: int
    ok: bool
    error: str | None = None


@dataclass(slots=True)
class BulkReport:
    """Outcome of one chunked bulk operation."""

    operation: str
    total: int = 0
    chunks: list[ChunkResult] = field(default_factory=list)

    @property
    def failed_chunks(self) -> list[ChunkResult]:
        return [chunk for chunk in self.chunks if not chunk.ok]

    @property
    def succeeded(self) -> bool:
        return not self.failed_chunks

    @property
    def submitted(self) -> int:
        return sum(chunk.size for chunk in self.chunks if chunk.ok)

    def merge(self, other: BulkReport) -> BulkReport:
        offset = len(self.chunks)
        self.total += other.total
        for chunk in other.chunks:
            self.chunks.append(ChunkResult(offset + chunk.index, chunk.size, chunk.ok, chunk.error))
        return self

    def to_dict(self) -> dict:
        return {
            "operation": self.operation,
            "total": self.total,
            "chunks": len(self.chunks),
            "failed_chunks": len(self.failed_chunks),
            "submitted": self.submitted,
        }


@dataclass(slots=True)
class ExportReport:
    roots_added: int = 0
    roots_removed: int = 0
    roots_failed: int = 0
    added: BulkReport = field(default_factory=lambda: BulkReport("add"))
    removed: BulkReport = field(default_factory=lambda: BulkReport("remove"))

    def to_dict(self) -> dict:
        return {
            "roots_added": self.roots_added,
            "roots_removed": self.roots_removed,
            "roots_failed": self.roots_failed,
            "added": self.added.to_dict(),
            "removed": self.removed.to_dict(),
        }


class IndexSync:
    """Translate add/remove decisions into chunked bulk requests."""

    def __init__(
        self,
        index: AbstractSearchIndex,
        *,
        add_chunk_size: int = 5_000,
        remove_chunk_size: int = 5_000,
        stream_batch_size: int = 50_000,
    ):
        self.index = index
        self.add_chunk_size = add_chunk_size
        self.remove_chunk_size = remove_chunk_size
        self.stream_batch_size = stream_batch_size

    async def add_bulk(self, entries: Sequence[IndexEntry]) -> BulkReport:
        """Index ``entries``; projections are built by the caller, once."""
        if entries:
            logger.info("Adding %d links to the search index", len(entries))
        actions = [BulkAction.index(entry) for entry in entries]
        return await self._submit("add", actions, self.add_chunk_size)

    async def remove_bulk(self, ids: Sequence[str]) -> BulkReport:
        """Delete the documents with store ids ``ids``."""
        if ids:
            logger.info("Removing %d links from the search index", len(ids))
        actions = [BulkAction.delete(entry_id) for entry_id in ids]
        return await self._submit("remove", actions, self.remove_chunk_size)

    async def _submit(self, operation: str, actions: list[BulkAction], chunk_size: int) -> BulkReport:
        report = BulkReport(operation=operation, total=len(actions))
        for number, chunk in enumerate(chunked(actions, chunk_size)):
            try:
                await self.index.bulk(chunk)
            except IndexSyncError as exc:
                logger.warning(
                    "Failed to %s chunk %d (%d links) in the search index: %s",
                    operation,
                    number,
                    len(chunk),
                    exc,
                )
                report.chunks.append(ChunkResult(number, len(chunk), ok=False, error=str(exc)))
                INDEX_CHUNKS.labels(operation=operation, status="failed").inc()
                continue
            report.chunks.append(ChunkResult(number, len(chunk), ok=True))
            INDEX_CHUNKS.labels(operation=operation, status="ok").inc()
        return report

    async def add_links(self, links: AsyncIterable[Link]) -> BulkReport:
        """Stream ``links`` into the index in batches of ``stream_batch_size``."""
        report = BulkReport("add")
        batch: list[IndexEntry] = []
        async for link in links:
            batch.append(IndexEntry.from_link(link))
            if len(batch) >= self.stream_batch_size:
                report.merge(await self.add_bulk(batch))
                batch = []
        if batch:
            report.merge(await self.add_bulk(batch))
        return report

    async def readd_root_links(
        self,
        datastore: AbstractDatastore,
        root_url: str,
        *,
        policy: LivenessPolicy | None = None,
    ) -> BulkReport:
        """Put every link of ``root_url`` back; with ``policy``, skip individually dead links."""

        async def alive_links():
            async for link in datastore.list_links(root_url):
                if policy is None or policy.is_alive(link.unreachable_streak):
                    yield link

        return await self.add_links(alive_links())

    async def remove_root_links(self, datastore: AbstractDatastore, root_url: str) -> BulkReport:
        """Drop every link of ``root_url`` from the index."""
        report = BulkReport("remove")
        batch: list[str] = []
        async for link in datastore.list_links(root_url):
            if link.id is not None:
                batch.append(link.id)
            if len(batch) >= self.stream_batch_size:
                report.merge(await self.remove_bulk(batch))
                batch = []
        if batch:
            report.merge(await self.remove_bulk(batch))
        return report

    async def reexport(self, datastore: AbstractDatastore, policy: LivenessPolicy) -> ExportReport:
        """Rewrite the whole corpus: links of alive roots in, links of dead roots out."""
        export = ExportReport()
        roots = [root async for root in datastore.list_roots(include_dead=True)]
        logger.info("Re-exporting %d roots to the search index", len(roots))
        for root in roots:
            try:
                if policy.is_alive(root.unreachable_streak):
                    export.added.merge(await self.readd_root_links(datastore, root.url, policy=policy))
                    export.roots_added += 1
                else:
                    export.removed.merge(await self.remove_root_links(datastore, root.url))
                    export.roots_removed += 1
            except DatastoreError as exc:
                logger.warning("Skipping %s during re-export: %s", root.url, exc)
                export.roots_failed += 1
        logger.info(
            "Re-export finished: %d roots added, %d removed, %d failed chunks",
            export.roots_added,
            export.roots_removed,
            len(export.added.failed_chunks) + len(export.removed.failed_chunks),
        )
        return export
