"""Unit tests for the SQLite datastore."""

from pathlib import Path

import pytest

from od_discovery.adapters.sqlite_datastore import SqliteDatastore
from od_discovery.domain.model import CreateResult, Root
from od_discovery.errors import DatastoreError


ROOT = "http://od.example/pub/"


@pytest.fixture
def store():
    datastore = SqliteDatastore(":memory:", dead_threshold=10, page_size=3, insert_chunk_size=4)
    yield datastore
    datastore._close_sync()


@pytest.mark.unit
class TestSqliteDatastore:
    @pytest.mark.asyncio
    async def test_create_root_twice(self, store):
        assert await store.create_root_if_absent(ROOT) is CreateResult.CREATED
        assert await store.create_root_if_absent(ROOT) is CreateResult.ALREADY_EXISTS

        assert await store.count_roots() == 1
        root = await store.get_root(ROOT)
        assert root is not None
        assert root.unreachable_streak == 0

    @pytest.mark.asyncio
    async def test_get_missing_root(self, store):
        assert await store.get_root("http://nowhere.example/") is None

    @pytest.mark.asyncio
    async def test_insert_and_list_links_across_pages(self, store):
        await store.create_root_if_absent(ROOT)
        urls = [f"{ROOT}file{i}.zip" for i in range(10)]

        inserted = await store.insert_links_bulk(ROOT, iter(urls))
        links = [link async for link in store.list_links(ROOT)]

        assert inserted == 10
        assert [link.url for link in links] == urls
        assert len({link.id for link in links}) == 10
        assert all(link.root_url == ROOT for link in links)

    @pytest.mark.asyncio
    async def test_create_root_with_links(self, store):
        urls = [f"{ROOT}file{i}.zip" for i in range(6)]

        assert await store.create_root_with_links(ROOT, iter(urls)) == (CreateResult.CREATED, 6)
        assert await store.create_root_with_links(ROOT, iter(urls)) == (CreateResult.ALREADY_EXISTS, 0)

        assert await store.count_roots() == 1
        assert await store.count_links() == 6

    @pytest.mark.asyncio
    async def test_create_root_with_links_rolls_back_every_chunk(self, store):
        # The NULL url breaks the NOT NULL constraint in the second chunk
        urls = [f"{ROOT}file{i}.zip" for i in range(5)] + [None]

        with pytest.raises(DatastoreError):
            await store.create_root_with_links(ROOT, urls)

        assert await store.get_root(ROOT) is None
        assert await store.count_links() == 0
        assert await store.create_root_with_links(ROOT, [f"{ROOT}a.zip"]) == (CreateResult.CREATED, 1)

    @pytest.mark.asyncio
    async def test_list_roots_filters_dead(self, store):
        for i in range(7):
            await store.create_root_if_absent(f"http://od{i}.example/")
        dead = await store.get_root("http://od2.example/")
        dead.unreachable_streak = 10
        await store.save_root(dead)

        everything = [root.url async for root in store.list_roots(include_dead=True)]
        alive = [root.url async for root in store.list_roots(include_dead=False)]

        assert len(everything) == 7
        assert "http://od2.example/" in everything
        assert "http://od2.example/" not in alive
        assert len(alive) == 6
        assert await store.count_roots(include_dead=False) == 6

    @pytest.mark.asyncio
    async def test_save_root_persists_streak(self, store):
        await store.create_root_if_absent(ROOT)
        root = await store.get_root(ROOT)
        root.unreachable_streak = 4

        await store.save_root(root)

        assert (await store.get_root(ROOT)).unreachable_streak == 4

    @pytest.mark.asyncio
    async def test_save_unknown_root_raises(self, store):
        with pytest.raises(DatastoreError):
            await store.save_root(Root(url="http://ghost.example/", unreachable_streak=1))

    @pytest.mark.asyncio
    async def test_save_link_streak(self, store):
        await store.create_root_if_absent(ROOT)
        await store.insert_links_bulk(ROOT, [f"{ROOT}a.txt"])
        link = [link async for link in store.list_links(ROOT)][0]
        link.unreachable_streak = 3

        await store.save_link(link)

        reloaded = [link async for link in store.list_links(ROOT)][0]
        assert reloaded.unreachable_streak == 3

    @pytest.mark.asyncio
    async def test_count_links_of_alive_roots(self, store):
        await store.create_root_if_absent(ROOT)
        await store.create_root_if_absent("http://dead.example/")
        await store.insert_links_bulk(ROOT, ["a", "b"])
        await store.insert_links_bulk("http://dead.example/", ["c"])
        dead = await store.get_root("http://dead.example/")
        dead.unreachable_streak = 12
        await store.save_root(dead)

        assert await store.count_links() == 3
        assert await store.count_links(alive_roots_only=True) == 2

    @pytest.mark.asyncio
    async def test_clamp_streaks(self, store):
        await store.create_root_if_absent(ROOT)
        await store.create_root_if_absent("http://fine.example/")
        legacy = await store.get_root(ROOT)
        legacy.unreachable_streak = 4000
        await store.save_root(legacy)

        touched = await store.clamp_streaks(110)

        assert touched == 1
        assert (await store.get_root(ROOT)).unreachable_streak == 110
        assert (await store.get_root("http://fine.example/")).unreachable_streak == 0
        assert await store.clamp_streaks(110) == 0

    @pytest.mark.asyncio
    async def test_file_backed_store_survives_reopen(self, tmp_path: Path):
        db_path = tmp_path / "nested" / "od.sqlite3"
        first = SqliteDatastore(db_path)
        await first.create_root_if_absent(ROOT)
        await first.close()

        second = SqliteDatastore(db_path)
        try:
            assert await second.create_root_if_absent(ROOT) is CreateResult.ALREADY_EXISTS
        finally:
            await second.close()
