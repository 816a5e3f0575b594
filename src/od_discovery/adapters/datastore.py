"""Datastore abstraction for roots and links.

Following the Repository Pattern: services only see ``AbstractDatastore``;
``SqliteDatastore`` is the production backend and ``FakeDatastore`` is the
in-memory double used by tests.

Failures surface as ``DatastoreError``. Duplicate root creation is not a
failure; it comes back as ``CreateResult.ALREADY_EXISTS``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Iterable
from dataclasses import replace
import logging

from ..domain.model import CreateResult, Link, Root
from ..errors import DatastoreError


logger = logging.getLogger(__name__)


class AbstractDatastore(ABC):
    """Persistent store of roots and their links.

    ``dead_threshold`` decides which roots ``list_roots(include_dead=False)``
    leaves out.
    """

    def __init__(self, *, dead_threshold: int = 10):
        self.dead_threshold = dead_threshold

    @abstractmethod
    def list_roots(self, *, include_dead: bool) -> AsyncIterator[Root]:
        """Stream roots, optionally skipping those at or above the dead threshold."""
        raise NotImplementedError

    @abstractmethod
    def list_links(self, root_url: str) -> AsyncIterator[Link]:
        """Stream the links recorded under ``root_url``."""
        raise NotImplementedError

    @abstractmethod
    async def save_root(self, root: Root) -> None:
        """Persist the mutable fields of an existing root."""
        raise NotImplementedError

    @abstractmethod
    async def save_link(self, link: Link) -> None:
        """Persist the mutable fields of an existing link."""
        raise NotImplementedError

    @abstractmethod
    async def create_root_if_absent(self, url: str) -> CreateResult:
        """Create a root with a zero streak unless one already exists for ``url``."""
        raise NotImplementedError

    @abstractmethod
    async def insert_links_bulk(self, root_url: str, urls: Iterable[str]) -> int:
        """Insert links under ``root_url`` and return how many were written."""
        raise NotImplementedError

    @abstractmethod
    async def create_root_with_links(self, url: str, urls: Iterable[str]) -> tuple[CreateResult, int]:
        """Create ``url`` and its links as one unit of work.

        Either the root and every link are stored, or nothing is. An existing
        root comes back as ``ALREADY_EXISTS`` with no links written.
        """
        raise NotImplementedError

    @abstractmethod
    async def count_roots(self, *, include_dead: bool = True) -> int:
        raise NotImplementedError

    @abstractmethod
    async def count_links(self, *, alive_roots_only: bool = False) -> int:
        raise NotImplementedError

    @abstractmethod
    async def clamp_streaks(self, cap: int) -> int:
        """Pull stored streaks above ``cap`` down to it; returns rows touched."""
        raise NotImplementedError

    async def get_root(self, url: str) -> Root | None:
        async for root in self.list_roots(include_dead=True):
            if root.url == url:
                return root
        return None

    async def close(self) -> None:
        """Release backend resources."""
        return


class FakeDatastore(AbstractDatastore):
    """In-memory datastore for testing.

    ``fail_saves_for`` holds URLs whose ``save_root``/``save_link`` raise, to
    exercise per-entity failure isolation. Root URLs in ``fail_link_inserts_for``
    make link inserts raise.
    """

    def __init__(self, *, dead_threshold: int = 10):
        super().__init__(dead_threshold=dead_threshold)
        self._roots: dict[str, Root] = {}
        self._links: dict[str, Link] = {}
        self._next_id = 1
        self.fail_saves_for: set[str] = set()
        self.fail_link_inserts_for: set[str] = set()
        self.saved_roots: list[Root] = []
        self.saved_links: list[Link] = []

    def _allocate_id(self) -> str:
        value = str(self._next_id)
        self._next_id += 1
        return value

    def add_root(self, url: str, *, unreachable_streak: int = 0) -> Root:
        """Seed a root directly, bypassing ``create_root_if_absent``."""
        root = Root(url=url, unreachable_streak=unreachable_streak, id=self._allocate_id())
        self._roots[url] = root
        return replace(root)

    def add_link(self, root_url: str, url: str, *, unreachable_streak: int | None = None) -> Link:
        link = Link(url=url, root_url=root_url, unreachable_streak=unreachable_streak, id=self._allocate_id())
        self._links[link.id] = link
        return replace(link)

    def root(self, url: str) -> Root:
        return self._roots[url]

    def link(self, link_id: str) -> Link:
        return self._links[link_id]

    async def list_roots(self, *, include_dead: bool) -> AsyncIterator[Root]:
        for root in list(self._roots.values()):
            if include_dead or root.unreachable_streak < self.dead_threshold:
                yield replace(root)

    async def list_links(self, root_url: str) -> AsyncIterator[Link]:
        for link in list(self._links.values()):
            if link.root_url == root_url:
                yield replace(link)

    async def save_root(self, root: Root) -> None:
        if root.url in self.fail_saves_for:
            raise DatastoreError(f"Simulated write failure for {root.url}")
        if root.url not in self._roots:
            raise DatastoreError(f"Unknown root {root.url}")
        self._roots[root.url] = replace(root)
        self.saved_roots.append(replace(root))

    async def save_link(self, link: Link) -> None:
        if link.url in self.fail_saves_for:
            raise DatastoreError(f"Simulated write failure for {link.url}")
        if link.id not in self._links:
            raise DatastoreError(f"Unknown link {link.url}")
        self._links[link.id] = replace(link)
        self.saved_links.append(replace(link))

    async def create_root_if_absent(self, url: str) -> CreateResult:
        if url in self._roots:
            return CreateResult.ALREADY_EXISTS
        self._roots[url] = Root(url=url, unreachable_streak=0, id=self._allocate_id())
        return CreateResult.CREATED

    async def insert_links_bulk(self, root_url: str, urls: Iterable[str]) -> int:
        if root_url in self.fail_link_inserts_for:
            raise DatastoreError(f"Simulated link insert failure for {root_url}")
        inserted = 0
        for url in urls:
            self.add_link(root_url, url, unreachable_streak=0)
            inserted += 1
        return inserted

    async def create_root_with_links(self, url: str, urls: Iterable[str]) -> tuple[CreateResult, int]:
        if url in self._roots:
            return CreateResult.ALREADY_EXISTS, 0
        if url in self.fail_link_inserts_for:
            raise DatastoreError(f"Simulated link insert failure for {url}")
        await self.create_root_if_absent(url)
        return CreateResult.CREATED, await self.insert_links_bulk(url, urls)

    async def count_roots(self, *, include_dead: bool = True) -> int:
        return sum(1 for root in self._roots.values() if include_dead or root.unreachable_streak < self.dead_threshold)

    async def count_links(self, *, alive_roots_only: bool = False) -> int:
        if not alive_roots_only:
            return len(self._links)
        alive = {url for url, root in self._roots.items() if root.unreachable_streak < self.dead_threshold}
        return sum(1 for link in self._links.values() if link.root_url in alive)

    async def clamp_streaks(self, cap: int) -> int:
        touched = 0
        for root in self._roots.values():
            if root.unreachable_streak > cap:
                root.unreachable_streak = cap
                touched += 1
        return touched
