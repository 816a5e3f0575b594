"""Registration of freshly scanned roots and their files.

Parsing scan output is someone else's job; this service takes a root URL plus
the file URLs found under it and records them. A root is created once, together
with its links, so a failed write leaves nothing behind and the scan can be
retried. A second scan of the same root is rejected rather than duplicating its
links.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import asdict, dataclass
import logging

from ..adapters.datastore import AbstractDatastore
from ..domain.liveness import LivenessPolicy
from ..domain.model import CreateResult, Outcome
from ..utils.probe import ReachabilityProbe
from .index_sync import IndexSync


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class IngestResult:
    root_url: str
    result: CreateResult
    links_inserted: int = 0
    reachable: bool | None = None
    links_indexed: int = 0
    index_failed_chunks: int = 0

    @property
    def created(self) -> bool:
        return self.result is CreateResult.CREATED

    def to_dict(self) -> dict:
        payload = asdict(self)
        payload["result"] = self.result.value
        return payload


class IngestService:
    def __init__(
        self,
        datastore: AbstractDatastore,
        index_sync: IndexSync,
        probe: ReachabilityProbe,
        policy: LivenessPolicy,
    ):
        self.datastore = datastore
        self.index_sync = index_sync
        self.probe = probe
        self.policy = policy

    async def register_scan(self, root_url: str, file_urls: Iterable[str]) -> IngestResult:
        """Create ``root_url`` with its links, then index them if the root answers."""
        result, inserted = await self.datastore.create_root_with_links(root_url, file_urls)
        if result is CreateResult.ALREADY_EXISTS:
            logger.warning("Root %s is already tracked; ignoring duplicate scan", root_url)
            return IngestResult(root_url=root_url, result=result)

        ingest = IngestResult(root_url=root_url, result=result, links_inserted=inserted)
        logger.info("Saved %s with %d links", root_url, ingest.links_inserted)

        outcome = await self.probe.probe(root_url)
        ingest.reachable = outcome is Outcome.REACHABLE
        if ingest.reachable:
            bulk = await self.index_sync.readd_root_links(self.datastore, root_url)
            ingest.links_indexed = bulk.submitted
            ingest.index_failed_chunks = len(bulk.failed_chunks)
            return ingest

        root = await self.datastore.get_root(root_url)
        if root is not None:
            transition = self.policy.apply(root.unreachable_streak, outcome)
            root.unreachable_streak = transition.streak
            await self.datastore.save_root(root)
        logger.info("Root %s did not answer; links stay out of the index for now", root_url)
        return ingest
