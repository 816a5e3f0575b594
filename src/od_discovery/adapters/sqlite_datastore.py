"""SQLite-backed datastore for roots and links.

One connection guarded by a lock; every statement runs in a worker thread via
``anyio.to_thread`` so the event loop keeps probing while the store works.
Listing uses keyset pagination so a root with tens of thousands of links never
has to sit in memory at once.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterable, Sequence
from itertools import islice
import logging
from pathlib import Path
import sqlite3
import threading
from typing import Any

import anyio

from ..domain.model import CreateResult, Link, Root
from ..errors import DatastoreError
from .datastore import AbstractDatastore


logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS roots (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    url TEXT NOT NULL UNIQUE,
    unreachable_streak INTEGER NOT NULL DEFAULT 0 CHECK (unreachable_streak >= 0)
);
CREATE TABLE IF NOT EXISTS links (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    root_url TEXT NOT NULL,
    url TEXT NOT NULL,
    unreachable_streak INTEGER CHECK (unreachable_streak IS NULL OR unreachable_streak >= 0)
);
CREATE INDEX IF NOT EXISTS idx_links_root_url ON links (root_url, id);
CREATE INDEX IF NOT EXISTS idx_roots_streak ON roots (unreachable_streak);
"""

# File-backed stores only; :memory: ignores most of these
_PRAGMAS = (
    "busy_timeout = 30000",
    "journal_mode = WAL",
    "synchronous = NORMAL",
    "cache_size = -65536",
    "temp_store = MEMORY",
)


class SqliteDatastore(AbstractDatastore):
    """Production datastore.

    Args:
        db_path: Database file, or ``":memory:"``
        dead_threshold: Streak at which ``list_roots(include_dead=False)`` drops a root
        page_size: Rows fetched per round trip when streaming
        insert_chunk_size: Links written per transaction in ``insert_links_bulk``
    """

    def __init__(
        self,
        db_path: str | Path,
        *,
        dead_threshold: int = 10,
        page_size: int = 1_000,
        insert_chunk_size: int = 1_000,
    ):
        super().__init__(dead_threshold=dead_threshold)
        self.db_path = str(db_path)
        self.page_size = page_size
        self.insert_chunk_size = insert_chunk_size
        self._lock = threading.Lock()
        self._conn = self._connect()

    def _connect(self) -> sqlite3.Connection:
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            conn = sqlite3.connect(self.db_path, check_same_thread=False)
            if self.db_path != ":memory:":
                for pragma in _PRAGMAS:
                    conn.execute(f"PRAGMA {pragma}")
            conn.executescript(_SCHEMA)
            conn.commit()
        except sqlite3.Error as exc:
            raise DatastoreError(f"Failed to open datastore at {self.db_path}: {exc}") from exc
        logger.info("Opened datastore %s", self.db_path)
        return conn

    async def close(self) -> None:
        await anyio.to_thread.run_sync(self._close_sync)

    def _close_sync(self) -> None:
        with self._lock:
            self._conn.close()

    # ------------------------------------------------------------------
    # Low-level helpers
    # ------------------------------------------------------------------
    def _execute_sync(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        with self._lock:
            try:
                cursor = self._conn.execute(sql, params)
                self._conn.commit()
                return cursor
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise DatastoreError(f"Datastore statement failed: {exc}") from exc

    def _fetch_sync(self, sql: str, params: Sequence[Any] = ()) -> list[tuple]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as exc:
                raise DatastoreError(f"Datastore query failed: {exc}") from exc

    async def _fetch(self, sql: str, params: Sequence[Any] = ()) -> list[tuple]:
        return await anyio.to_thread.run_sync(self._fetch_sync, sql, params)

    async def _paged(self, sql: str, params: Sequence[Any]) -> AsyncIterator[tuple]:
        """Yield rows of ``sql`` page by page; ``sql`` must filter on ``id > ?`` last."""
        last_id = 0
        while True:
            rows = await self._fetch(sql, (*params, last_id, self.page_size))
            for row in rows:
                yield row
            if len(rows) < self.page_size:
                return
            last_id = rows[-1][0]

    # ------------------------------------------------------------------
    # AbstractDatastore
    # ------------------------------------------------------------------
    async def list_roots(self, *, include_dead: bool) -> AsyncIterator[Root]:
        if include_dead:
            sql = "SELECT id, url, unreachable_streak FROM roots WHERE id > ? ORDER BY id LIMIT ?"
            params: tuple = ()
        else:
            sql = (
                "SELECT id, url, unreachable_streak FROM roots "
                "WHERE unreachable_streak < ? AND id > ? ORDER BY id LIMIT ?"
            )
            params = (self.dead_threshold,)
        async for row_id, url, streak in self._paged(sql, params):
            yield Root(url=url, unreachable_streak=streak, id=str(row_id))

    async def list_links(self, root_url: str) -> AsyncIterator[Link]:
        sql = (
            "SELECT id, url, root_url, unreachable_streak FROM links "
            "WHERE root_url = ? AND id > ? ORDER BY id LIMIT ?"
        )
        async for row_id, url, owner, streak in self._paged(sql, (root_url,)):
            yield Link(url=url, root_url=owner, unreachable_streak=streak, id=str(row_id))

    async def get_root(self, url: str) -> Root | None:
        rows = await self._fetch("SELECT id, url, unreachable_streak FROM roots WHERE url = ?", (url,))
        if not rows:
            return None
        row_id, root_url, streak = rows[0]
        return Root(url=root_url, unreachable_streak=streak, id=str(row_id))

    async def save_root(self, root: Root) -> None:
        cursor = await anyio.to_thread.run_sync(
            self._execute_sync,
            "UPDATE roots SET unreachable_streak = ? WHERE url = ?",
            (root.unreachable_streak, root.url),
        )
        if cursor.rowcount == 0:
            raise DatastoreError(f"Root {root.url} does not exist")

    async def save_link(self, link: Link) -> None:
        if link.id is None:
            raise DatastoreError(f"Link {link.url} has no id")
        cursor = await anyio.to_thread.run_sync(
            self._execute_sync,
            "UPDATE links SET unreachable_streak = ? WHERE id = ?",
            (link.unreachable_streak, int(link.id)),
        )
        if cursor.rowcount == 0:
            raise DatastoreError(f"Link {link.url} does not exist")

    async def create_root_if_absent(self, url: str) -> CreateResult:
        return await anyio.to_thread.run_sync(self._create_root_sync, url)

    def _create_root_sync(self, url: str) -> CreateResult:
        with self._lock:
            try:
                self._conn.execute("INSERT INTO roots (url, unreachable_streak) VALUES (?, 0)", (url,))
                self._conn.commit()
            except sqlite3.IntegrityError:
                self._conn.rollback()
                return CreateResult.ALREADY_EXISTS
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise DatastoreError(f"Failed to create root {url}: {exc}") from exc
        return CreateResult.CREATED

    async def insert_links_bulk(self, root_url: str, urls: Iterable[str]) -> int:
        iterator = iter(urls)
        inserted = 0
        while chunk := list(islice(iterator, self.insert_chunk_size)):
            inserted += await anyio.to_thread.run_sync(self._insert_links_sync, root_url, chunk)
        return inserted

    def _insert_links_sync(self, root_url: str, urls: list[str]) -> int:
        with self._lock:
            try:
                self._conn.executemany(
                    "INSERT INTO links (root_url, url, unreachable_streak) VALUES (?, ?, 0)",
                    [(root_url, url) for url in urls],
                )
                self._conn.commit()
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise DatastoreError(f"Failed to insert links for {root_url}: {exc}") from exc
        return len(urls)

    async def create_root_with_links(self, url: str, urls: Iterable[str]) -> tuple[CreateResult, int]:
        return await anyio.to_thread.run_sync(self._create_root_with_links_sync, url, urls)

    def _create_root_with_links_sync(self, url: str, urls: Iterable[str]) -> tuple[CreateResult, int]:
        iterator = iter(urls)
        inserted = 0
        with self._lock:
            try:
                try:
                    self._conn.execute("INSERT INTO roots (url, unreachable_streak) VALUES (?, 0)", (url,))
                except sqlite3.IntegrityError:
                    self._conn.rollback()
                    return CreateResult.ALREADY_EXISTS, 0
                # Chunked statements, one commit
                while chunk := list(islice(iterator, self.insert_chunk_size)):
                    self._conn.executemany(
                        "INSERT INTO links (root_url, url, unreachable_streak) VALUES (?, ?, 0)",
                        [(url, link_url) for link_url in chunk],
                    )
                    inserted += len(chunk)
                self._conn.commit()
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise DatastoreError(f"Failed to create root {url} with its links: {exc}") from exc
        return CreateResult.CREATED, inserted

    async def count_roots(self, *, include_dead: bool = True) -> int:
        if include_dead:
            rows = await self._fetch("SELECT COUNT(*) FROM roots")
        else:
            rows = await self._fetch("SELECT COUNT(*) FROM roots WHERE unreachable_streak < ?", (self.dead_threshold,))
        return int(rows[0][0])

    async def count_links(self, *, alive_roots_only: bool = False) -> int:
        if not alive_roots_only:
            rows = await self._fetch("SELECT COUNT(*) FROM links")
        else:
            rows = await self._fetch(
                "SELECT COUNT(*) FROM links JOIN roots ON roots.url = links.root_url "
                "WHERE roots.unreachable_streak < ?",
                (self.dead_threshold,),
            )
        return int(rows[0][0])

    async def clamp_streaks(self, cap: int) -> int:
        cursor = await anyio.to_thread.run_sync(
            self._execute_sync,
            "UPDATE roots SET unreachable_streak = ? WHERE unreachable_streak > ?",
            (cap, cap),
        )
        if cursor.rowcount:
            logger.info("Clamped %d root streaks to %d", cursor.rowcount, cap)
        return cursor.rowcount
