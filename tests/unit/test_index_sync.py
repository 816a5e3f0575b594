"""Unit tests for chunked index synchronization."""

import math

import pytest

from od_discovery.adapters.search_index import BulkOp, FakeSearchIndex
from od_discovery.domain.model import IndexEntry
from od_discovery.services.index_sync import BulkReport, ChunkResult, IndexSync, chunked


ROOT = "http://od.example/"


def _entries(count: int) -> list[IndexEntry]:
    return [IndexEntry(id=str(i), url=f"{ROOT}f{i}.bin", filename=f"f{i}.bin", extension="bin") for i in range(count)]


@pytest.mark.unit
class TestChunked:
    def test_chunk_sizes(self):
        chunks = list(chunked(list(range(10)), 4))

        assert [len(chunk) for chunk in chunks] == [4, 4, 2]

    def test_empty(self):
        assert list(chunked([], 3)) == []

    def test_rejects_zero_size(self):
        with pytest.raises(ValueError):
            list(chunked([1], 0))


@pytest.mark.unit
class TestIndexSyncBulk:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(("count", "chunk_size"), [(1, 5), (5, 5), (6, 5), (23, 4), (100, 7)])
    async def test_add_issues_ceil_n_over_c_requests(self, count, chunk_size):
        index = FakeSearchIndex()
        sync = IndexSync(index, add_chunk_size=chunk_size)

        report = await sync.add_bulk(_entries(count))

        assert len(index.requests) == math.ceil(count / chunk_size)
        assert all(len(request) <= chunk_size for request in index.requests)
        submitted_ids = [action.id for request in index.requests for action in request]
        assert sorted(submitted_ids) == sorted(str(i) for i in range(count))
        assert len(submitted_ids) == len(set(submitted_ids))
        assert report.succeeded
        assert report.submitted == count

    @pytest.mark.asyncio
    async def test_empty_input_sends_nothing(self):
        index = FakeSearchIndex()
        sync = IndexSync(index)

        report = await sync.add_bulk([])
        removed = await sync.remove_bulk([])

        assert index.requests == []
        assert report.total == 0 and removed.total == 0

    @pytest.mark.asyncio
    async def test_failed_chunk_does_not_stop_later_chunks(self):
        index = FakeSearchIndex(fail_requests={2})
        sync = IndexSync(index, add_chunk_size=3)

        report = await sync.add_bulk(_entries(9))

        assert len(index.requests) == 3
        assert [chunk.ok for chunk in report.chunks] == [True, False, True]
        assert report.failed_chunks[0].index == 1
        assert "Simulated" in report.failed_chunks[0].error
        assert report.submitted == 6
        assert set(index.documents) == {"0", "1", "2", "6", "7", "8"}

    @pytest.mark.asyncio
    async def test_remove_is_idempotent(self):
        index = FakeSearchIndex()
        sync = IndexSync(index, remove_chunk_size=2)
        await sync.add_bulk(_entries(4))

        first = await sync.remove_bulk(["0", "1", "2"])
        second = await sync.remove_bulk(["0", "1", "2"])

        assert first.succeeded and second.succeeded
        assert set(index.documents) == {"3"}
        assert len(index.requests_for(BulkOp.DELETE)) == 4

    @pytest.mark.asyncio
    async def test_add_twice_leaves_same_documents(self):
        index = FakeSearchIndex()
        sync = IndexSync(index)

        await sync.add_bulk(_entries(3))
        snapshot = dict(index.documents)
        await sync.add_bulk(_entries(3))

        assert index.documents == snapshot

    def test_report_merge_renumbers_chunks(self):
        left = BulkReport("add", total=2, chunks=[ChunkResult(0, 2, ok=True)])
        right = BulkReport("add", total=3, chunks=[ChunkResult(0, 3, ok=False, error="x")])

        merged = left.merge(right)

        assert merged.total == 5
        assert [chunk.index for chunk in merged.chunks] == [0, 1]
        assert merged.to_dict() == {"operation": "add", "total": 5, "chunks": 2, "failed_chunks": 1, "submitted": 2}


@pytest.mark.unit
class TestIndexSyncStreaming:
    @pytest.mark.asyncio
    async def test_readd_root_links_streams_in_batches(self, fake_datastore, fake_index):
        fake_datastore.add_root(ROOT)
        for i in range(7):
            fake_datastore.add_link(ROOT, f"{ROOT}file{i}.mp4")
        fake_datastore.add_link("http://other.example/", "http://other.example/x.mp4")
        sync = IndexSync(fake_index, add_chunk_size=2, stream_batch_size=3)

        report = await sync.readd_root_links(fake_datastore, ROOT)

        assert report.total == 7
        # batches of 3, 3, 1 -> chunks of 2+1, 2+1, 1
        assert len(fake_index.requests) == 5
        assert {doc["url"] for doc in fake_index.documents.values()} == {f"{ROOT}file{i}.mp4" for i in range(7)}
        assert all(doc["extension"] == "mp4" for doc in fake_index.documents.values())

    @pytest.mark.asyncio
    async def test_readd_with_policy_skips_individually_dead_links(self, fake_datastore, fake_index, policy):
        fake_datastore.add_root(ROOT)
        alive = fake_datastore.add_link(ROOT, f"{ROOT}alive.txt", unreachable_streak=2)
        never_probed = fake_datastore.add_link(ROOT, f"{ROOT}fresh.txt")
        fake_datastore.add_link(ROOT, f"{ROOT}dead.txt", unreachable_streak=10)
        sync = IndexSync(fake_index)

        await sync.readd_root_links(fake_datastore, ROOT, policy=policy)

        assert set(fake_index.documents) == {alive.id, never_probed.id}

    @pytest.mark.asyncio
    async def test_remove_root_links(self, fake_datastore, fake_index):
        fake_datastore.add_root(ROOT)
        links = [fake_datastore.add_link(ROOT, f"{ROOT}{i}.iso") for i in range(5)]
        sync = IndexSync(fake_index, remove_chunk_size=2)
        await sync.readd_root_links(fake_datastore, ROOT)

        report = await sync.remove_root_links(fake_datastore, ROOT)

        assert report.total == 5
        assert len(report.chunks) == 3
        assert not set(fake_index.documents) & {link.id for link in links}

    @pytest.mark.asyncio
    async def test_reexport_adds_alive_and_removes_dead(self, fake_datastore, fake_index, policy):
        alive_root = "http://alive.example/"
        dead_root = "http://dead.example/"
        fake_datastore.add_root(alive_root, unreachable_streak=3)
        fake_datastore.add_root(dead_root, unreachable_streak=40)
        alive_link = fake_datastore.add_link(alive_root, f"{alive_root}a.pdf")
        dead_link = fake_datastore.add_link(dead_root, f"{dead_root}b.pdf")
        fake_index.documents[dead_link.id] = {"url": dead_link.url, "filename": "b.pdf", "extension": "pdf"}
        sync = IndexSync(fake_index)

        export = await sync.reexport(fake_datastore, policy)

        assert export.roots_added == 1
        assert export.roots_removed == 1
        assert export.roots_failed == 0
        assert set(fake_index.documents) == {alive_link.id}
        assert export.to_dict()["added"]["submitted"] == 1

    @pytest.mark.asyncio
    async def test_reexport_twice_is_stable(self, fake_datastore, fake_index, policy):
        fake_datastore.add_root(ROOT)
        fake_datastore.add_link(ROOT, f"{ROOT}a.pdf")
        sync = IndexSync(fake_index)

        await sync.reexport(fake_datastore, policy)
        snapshot = dict(fake_index.documents)
        await sync.reexport(fake_datastore, policy)

        assert fake_index.documents == snapshot
