"""
Tests for MemoryService against the in-process Qdrant index and a temporary
SQLite record store.

Embeddings are hash-seeded: identical text matches with score 1.0 and
unrelated text falls far below the similarity threshold.
"""

from unittest.mock import AsyncMock

import pytest

from mcp_namespaced_memory.errors import InvalidInputError, NotFoundError
from mcp_namespaced_memory.storage.base import VectorHit


class TestStore:
    async def test_store_returns_uuid_and_persists_record(self, memory_service, record_store):
        memory_id = await memory_service.store("The sky is blue", "user:alice")

        record = await record_store.get(memory_id)
        assert record is not None
        assert record.namespace == "user:alice"
        assert record.content == "The sky is blue"
        assert record.deleted_at is None

    async def test_store_generates_distinct_ids(self, memory_service):
        first = await memory_service.store("same text", "user:alice")
        second = await memory_service.store("same text", "user:alice")
        assert first != second

    async def test_store_rejects_empty_content(self, memory_service, embedder):
        with pytest.raises(InvalidInputError):
            await memory_service.store("   ", "user:alice")
        assert embedder.calls == []

    async def test_store_rejects_missing_namespace(self, memory_service):
        with pytest.raises(InvalidInputError):
            await memory_service.store("content", "")

    async def test_embedding_failure_keeps_record(self, memory_service, embedder, record_store):
        embedder.fail = True
        memory_id = await memory_service.store("kept without a vector", "user:alice")

        assert await record_store.get(memory_id) is not None

    async def test_record_store_failure_propagates(self, memory_service, record_store):
        record_store.insert = AsyncMock(side_effect=RuntimeError("disk full"))
        with pytest.raises(RuntimeError, match="disk full"):
            await memory_service.store("doomed", "user:alice")

    async def test_vector_metadata_carries_content_and_created_at(self, memory_service, vector_index, embedder):
        await memory_service.store("tagged memory", "user:alice", metadata={"tags": ["#x"]})

        hits = await vector_index.query(await embedder.embed("tagged memory"), "user:alice", 1)
        assert hits[0].metadata["content"] == "tagged memory"
        assert hits[0].metadata["tags"] == ["#x"]
        assert "created_at" in hits[0].metadata


class TestSearch:
    async def test_sky_scenario(self, memory_service, embedder):
        embedder.aliases["sky"] = "The sky is blue"
        await memory_service.store("The sky is blue", "user:alice")

        alice = await memory_service.search("sky", "user:alice")
        assert [m.content for m in alice] == ["The sky is blue"]

        assert await memory_service.search("sky", "user:bob") == []

    async def test_unrelated_query_below_threshold(self, memory_service):
        await memory_service.store("The sky is blue", "user:alice")
        assert await memory_service.search("database migrations", "user:alice") == []

    async def test_deleted_memory_never_returned(self, memory_service):
        memory_id = await memory_service.store("ephemeral fact", "user:alice")
        await memory_service.delete(memory_id, "user:alice")

        results = await memory_service.search("ephemeral fact", "user:alice")
        assert memory_id not in [m.id for m in results]

    async def test_soft_deleted_record_filtered_even_if_vector_remains(self, memory_service, vector_index):
        memory_id = await memory_service.store("stale vector", "user:alice")
        vector_index.delete_ids = AsyncMock(side_effect=RuntimeError("index down"))

        await memory_service.delete(memory_id, "user:alice")

        assert await memory_service.search("stale vector", "user:alice") == []

    async def test_results_sorted_and_truncated(self, memory_service, search_settings):
        memory_service.vector_index = AsyncMock()
        memory_service.vector_index.query.return_value = [
            VectorHit(id=f"m{i}", score=s, namespace="user:a", metadata={"content": f"c{i}"})
            for i, s in enumerate([0.5, 0.9, 0.31, 0.3, 0.7])
        ]
        memory_service.record_store = AsyncMock()
        memory_service.record_store.filter_active.return_value = {"m0", "m1", "m2", "m3", "m4"}

        results = await memory_service.search("q", "user:a", limit=3)

        assert [m.score for m in results] == [0.9, 0.7, 0.5]
        # top_k is twice the limit
        assert memory_service.vector_index.query.call_args.args[2] == 6

    async def test_threshold_is_strict(self, memory_service):
        memory_service.vector_index = AsyncMock()
        memory_service.vector_index.query.return_value = [
            VectorHit(id="edge", score=0.3, namespace="user:a", metadata={"content": "edge"}),
            VectorHit(id="above", score=0.3001, namespace="user:a", metadata={"content": "above"}),
        ]
        memory_service.record_store = AsyncMock()
        memory_service.record_store.filter_active.return_value = {"edge", "above"}

        results = await memory_service.search("q", "user:a")
        assert [m.id for m in results] == ["above"]

    async def test_top_k_capped_at_100(self, memory_service):
        memory_service.vector_index = AsyncMock()
        memory_service.vector_index.query.return_value = []

        await memory_service.search("q", "user:a", limit=80)
        assert memory_service.vector_index.query.call_args.args[2] == 100

    async def test_embedding_failure_returns_empty(self, memory_service, embedder):
        await memory_service.store("something", "user:alice")
        embedder.fail = True
        assert await memory_service.search("something", "user:alice") == []

    async def test_index_failure_returns_empty(self, memory_service):
        memory_service.vector_index = AsyncMock()
        memory_service.vector_index.query.side_effect = RuntimeError("boom")
        assert await memory_service.search("q", "user:a") == []

    async def test_empty_query_rejected(self, memory_service):
        with pytest.raises(InvalidInputError):
            await memory_service.search("", "user:alice")


class TestUpdate:
    async def test_update_missing_id_raises_not_found(self, memory_service):
        with pytest.raises(NotFoundError):
            await memory_service.update("does-not-exist", "user:a", "text")

    async def test_update_rewrites_content_and_vector(self, memory_service):
        memory_id = await memory_service.store("old text", "user:alice")

        record = await memory_service.update(memory_id, "user:alice", "new text")

        assert record.content == "new text"
        assert record.updated_at is not None
        results = await memory_service.search("new text", "user:alice")
        assert [m.id for m in results] == [memory_id]
        assert await memory_service.search("old text", "user:alice") == []

    async def test_update_in_other_namespace_not_found(self, memory_service):
        memory_id = await memory_service.store("private", "user:alice")
        with pytest.raises(NotFoundError):
            await memory_service.update(memory_id, "user:bob", "hijacked")

    async def test_update_after_delete_not_found(self, memory_service):
        memory_id = await memory_service.store("gone soon", "user:alice")
        await memory_service.delete(memory_id, "user:alice")
        with pytest.raises(NotFoundError):
            await memory_service.update(memory_id, "user:alice", "too late")


class TestDelete:
    async def test_delete_twice_raises_not_found(self, memory_service):
        memory_id = await memory_service.store("delete me", "user:alice")
        await memory_service.delete(memory_id, "user:alice")
        with pytest.raises(NotFoundError):
            await memory_service.delete(memory_id, "user:alice")

    async def test_delete_from_wrong_namespace_keeps_memory(self, memory_service):
        memory_id = await memory_service.store("alice only", "user:alice")

        with pytest.raises(NotFoundError):
            await memory_service.delete(memory_id, "user:bob")

        results = await memory_service.search("alice only", "user:alice")
        assert [m.id for m in results] == [memory_id]

    async def test_record_is_kept_physically(self, memory_service, record_store):
        memory_id = await memory_service.store("soft", "user:alice")
        await memory_service.delete(memory_id, "user:alice")

        assert await record_store.get(memory_id) is None
        assert await record_store.count_active("user:alice") == 0

    async def test_bulk_delete_counts_only_matches(self, memory_service):
        ids = [await memory_service.store(f"bulk {i}", "user:alice") for i in range(3)]

        deleted = await memory_service.bulk_delete([*ids, "unknown"], "user:alice")

        assert deleted == 3


class TestDeleteNamespace:
    async def test_delete_namespace_scenario(self, memory_service):
        for text in ("alpha", "beta", "gamma"):
            await memory_service.store(text, "project:x")

        assert await memory_service.delete_namespace("project:x") == 3
        for text in ("alpha", "beta", "gamma"):
            assert await memory_service.search(text, "project:x") == []

    async def test_second_call_returns_zero(self, memory_service):
        await memory_service.store("only one", "project:x")
        await memory_service.delete_namespace("project:x")
        assert await memory_service.delete_namespace("project:x") == 0

    async def test_vector_failures_do_not_abort(self, memory_service, vector_index):
        for text in ("one", "two"):
            await memory_service.store(text, "project:y")
        vector_index.delete_ids = AsyncMock(side_effect=[RuntimeError("flaky"), None])

        assert await memory_service.delete_namespace("project:y") == 2
        assert vector_index.delete_ids.await_count == 2

    async def test_other_namespaces_untouched(self, memory_service):
        keep = await memory_service.store("keep me", "project:keep")
        await memory_service.store("drop me", "project:drop")

        await memory_service.delete_namespace("project:drop")

        results = await memory_service.search("keep me", "project:keep")
        assert [m.id for m in results] == [keep]


class TestListing:
    async def test_list_namespaces_groups_by_type(self, memory_service, record_store):
        await memory_service.store("a", "user:alice")
        await memory_service.store("b", "project:frontend")
        await memory_service.store("c", "all")
        await memory_service.store("d", "weird-namespace")

        listing = await memory_service.list_namespaces()

        assert listing.users == ["alice"]
        assert listing.projects == ["frontend"]
        assert listing.all is True

    async def test_all_false_when_global_namespace_empty(self, memory_service):
        memory_id = await memory_service.store("c", "all")
        await memory_service.delete(memory_id, "all")

        listing = await memory_service.list_namespaces()
        assert listing.all is False

    async def test_list_memories_pages_newest_first(self, memory_service):
        for i in range(5):
            await memory_service.store(f"memory {i}", "user:alice")

        page, total = await memory_service.list_memories("user:alice", page=1, limit=2)

        assert total == 5
        assert [r.content for r in page] == ["memory 4", "memory 3"]

    async def test_check_health(self, memory_service):
        result = await memory_service.check_health()
        assert result["healthy"] is True
