"""Tests for the enhanced search pipeline."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import aiosqlite
import pytest

from mcp_namespaced_memory.errors import InvalidInputError
from mcp_namespaced_memory.models.memory import MemoryMatch
from mcp_namespaced_memory.services.enhanced_search import BOOST_REASON, EnhancedSearch, merge_by_max_score
from mcp_namespaced_memory.services.query_expansion import QueryExpander
from mcp_namespaced_memory.services.session_context import SessionContext


def _match(memory_id: str, score: float) -> MemoryMatch:
    return MemoryMatch(id=memory_id, content=memory_id, score=score, namespace="user:a")


class TestMergeByMaxScore:
    def test_keeps_highest_score_per_id(self):
        merged = merge_by_max_score([[_match("a", 0.4), _match("b", 0.9)], [_match("a", 0.7)]])
        assert [(m.id, m.score) for m in merged] == [("b", 0.9), ("a", 0.7)]

    def test_order_independent(self):
        batches = [[_match("a", 0.4)], [_match("a", 0.8), _match("c", 0.5)]]
        forward = merge_by_max_score(batches)
        backward = merge_by_max_score(list(reversed(batches)))
        assert [(m.id, m.score) for m in forward] == [(m.id, m.score) for m in backward]


class TestEnhancedSearch:
    async def test_expanded_variants_find_more(self, memory_service):
        await memory_service.store("test driven development", "user:a")
        await QueryExpander(memory_service).store_expansion("tdd", ["test driven development"])

        pipeline = EnhancedSearch(memory_service)
        result = await pipeline.search("TDD", "user:a")
        await pipeline.drain()

        assert result.expanded_queries == ["tdd", "test driven development"]
        assert [r.content for r in result.results] == ["test driven development"]
        assert result.session_id is None

    async def test_reason_set_when_score_rises(self, memory_service):
        pipeline = EnhancedSearch(memory_service)
        pipeline.expander.expand = AsyncMock(return_value=["q"])
        created = datetime.now(timezone.utc).isoformat()
        memory_service.search = AsyncMock(
            return_value=[
                MemoryMatch(id="m1", content="c", score=0.5, namespace="user:a", metadata={"created_at": created})
            ]
        )

        result = await pipeline.search("q", "user:a")
        await pipeline.drain()

        assert result.results[0].adjusted_score == pytest.approx(0.6)
        assert result.results[0].reason == BOOST_REASON

    async def test_session_records_search_and_views(self, memory_service, record_store):
        memory_id = await memory_service.store("session memory", "user:a")
        pipeline = EnhancedSearch(memory_service)

        first = await pipeline.search("session memory", "user:a", session_id="s1")
        second = await pipeline.search("session memory", "user:a", session_id="s1")
        await pipeline.drain()

        assert first.session_id == second.session_id == "s1"
        session = await SessionContext.load(record_store, "s1")
        assert len(session.data.searches) == 2
        assert session.data.viewed_memories == [memory_id]

    async def test_no_session_without_id(self, memory_service, record_store):
        await memory_service.store("the sky is blue", "user:alice")
        pipeline = EnhancedSearch(memory_service)
        pipeline.scorer.score = AsyncMock(wraps=pipeline.scorer.score)

        for _ in range(3):
            result = await pipeline.search("the sky is blue", "user:alice")
            assert result.session_id is None
        await pipeline.drain()

        for call in pipeline.scorer.score.await_args_list:
            assert call.args[1].recent_searches == []
            assert call.args[1].session_id is None
        async with aiosqlite.connect(record_store.db_path) as db:
            async with db.execute("SELECT COUNT(*) FROM sessions") as cursor:
                assert (await cursor.fetchone())[0] == 0

    async def test_unknown_session_id_starts_session(self, memory_service, record_store):
        pipeline = EnhancedSearch(memory_service)

        result = await pipeline.search("fresh start", "user:a", session_id="new-session")

        assert result.session_id == "new-session"
        assert await SessionContext.load(record_store, "new-session") is not None

    async def test_suggestions_include_topics_and_tags(self, memory_service):
        await memory_service.store("api gateway notes", "user:a", metadata={"tags": ["#api", "#gateway"]})

        pipeline = EnhancedSearch(memory_service)
        result = await pipeline.search("api gateway notes", "user:a", session_id="s1")
        await pipeline.drain()

        assert result.suggested_searches[0] == "authentication patterns"
        assert "gateway" not in result.suggested_searches
        assert len(result.suggested_searches) <= 5

    async def test_factors_written_in_background(self, memory_service, record_store):
        memory_id = await memory_service.store("factor memory", "user:a")

        pipeline = EnhancedSearch(memory_service)
        await pipeline.search("factor memory", "user:a")
        await pipeline.drain()

        factors = await record_store.get_scoring_factors(memory_id)
        assert [f.factor for f in factors] == ["age_days"]

    async def test_session_failure_degrades(self, memory_service, record_store):
        await memory_service.store("still found", "user:a")
        record_store.load_session = AsyncMock(side_effect=RuntimeError("db locked"))

        pipeline = EnhancedSearch(memory_service)
        result = await pipeline.search("still found", "user:a", session_id="s1")
        await pipeline.drain()

        assert [r.content for r in result.results] == ["still found"]
        assert result.session_id is None

    async def test_limit_truncates(self, memory_service):
        pipeline = EnhancedSearch(memory_service)
        pipeline.expander.expand = AsyncMock(return_value=["q"])
        memory_service.search = AsyncMock(return_value=[_match(f"m{i}", 0.9 - i * 0.05) for i in range(6)])

        result = await pipeline.search("q", "user:a", limit=3)
        await pipeline.drain()

        assert [r.id for r in result.results] == ["m0", "m1", "m2"]
        assert memory_service.search.await_args.kwargs["limit"] == 6

    async def test_empty_query_rejected(self, memory_service):
        with pytest.raises(InvalidInputError):
            await EnhancedSearch(memory_service).search("", "user:a")
