"""Corpus statistics snapshot written for the presentation layer."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
import logging
from pathlib import Path
import shutil

import anyio
import orjson

from ..adapters.datastore import AbstractDatastore
from ..observability.metrics import CORPUS_SIZE


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CorpusStats:
    roots: int
    alive_roots: int
    dead_roots: int
    links: int
    alive_links: int
    updated_at: str

    def to_dict(self) -> dict:
        return asdict(self)


class StatsService:
    def __init__(self, datastore: AbstractDatastore, stats_path: Path):
        self.datastore = datastore
        self.stats_path = stats_path

    async def collect(self) -> CorpusStats:
        roots = await self.datastore.count_roots(include_dead=True)
        alive_roots = await self.datastore.count_roots(include_dead=False)
        links = await self.datastore.count_links()
        alive_links = await self.datastore.count_links(alive_roots_only=True)
        stats = CorpusStats(
            roots=roots,
            alive_roots=alive_roots,
            dead_roots=roots - alive_roots,
            links=links,
            alive_links=alive_links,
            updated_at=datetime.now(timezone.utc).isoformat(),
        )
        for kind in ("roots", "alive_roots", "dead_roots", "links", "alive_links"):
            CORPUS_SIZE.labels(kind=kind).set(getattr(stats, kind))
        return stats

    async def update(self) -> CorpusStats:
        """Collect stats and atomically replace ``stats_path``."""
        logger.info("Updating stats")
        stats = await self.collect()
        await self._write_json(self.stats_path, stats.to_dict())
        logger.info("Stats saved to %s", self.stats_path)
        return stats

    async def _write_json(self, path: Path, payload: dict) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        async with await anyio.open_file(tmp_path, "wb") as fp:
            await fp.write(orjson.dumps(payload, option=orjson.OPT_INDENT_2 | orjson.OPT_SORT_KEYS))
        await anyio.to_thread.run_sync(shutil.move, str(tmp_path), str(path))
