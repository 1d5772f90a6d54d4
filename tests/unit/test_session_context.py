"""Tests for session tracking, persistence and expiry."""

import time

import pytest

from mcp_namespaced_memory.config import SessionSettings
from mcp_namespaced_memory.errors import SessionConflictError
from mcp_namespaced_memory.services.session_context import SessionContext


class TestPersistence:
    async def test_fresh_session_not_persisted_until_mutated(self, record_store):
        session = SessionContext(record_store)
        assert await SessionContext.load(record_store, session.session_id) is None

    async def test_record_search_round_trip(self, record_store):
        session = SessionContext(record_store, session_id="s1")
        await session.record_search("api design", 3)
        await session.record_memory_view("m1")
        await session.record_memory_view("m1")

        loaded = await SessionContext.load(record_store, "s1")

        assert [s.query for s in loaded.data.searches] == ["api design"]
        assert loaded.data.searches[0].results_count == 3
        assert loaded.data.viewed_memories == ["m1"]
        assert loaded.data.version == 3

    async def test_load_missing_returns_none(self, record_store):
        assert await SessionContext.load(record_store, "nope") is None

    async def test_concurrent_writers_conflict(self, record_store):
        await SessionContext(record_store, session_id="s1").record_search("first", 1)
        writer_a = await SessionContext.load(record_store, "s1")
        writer_b = await SessionContext.load(record_store, "s1")

        await writer_a.record_search("from a", 1)
        with pytest.raises(SessionConflictError):
            await writer_b.record_search("from b", 1)

        reloaded = await SessionContext.load(record_store, "s1")
        assert [s.query for s in reloaded.data.searches] == ["first", "from a"]


class TestExpiry:
    async def test_expired_session_treated_as_absent(self, record_store):
        settings = SessionSettings(ttl_days=1)
        session = SessionContext(record_store, session_id="old", settings=settings)
        await session.record_search("stale", 0)
        session.data.last_activity_time = time.time() - 2 * 86400
        await session.save()

        assert await SessionContext.load(record_store, "old", settings) is None

    async def test_expired_session_restarts_under_same_id(self, record_store):
        settings = SessionSettings(ttl_days=1)
        session = SessionContext(record_store, session_id="old", settings=settings)
        await session.record_search("stale", 0)
        session.data.last_activity_time = time.time() - 2 * 86400
        await session.save()

        restarted = await SessionContext.load_or_create(record_store, "old", settings)
        await restarted.record_search("fresh", 0)

        loaded = await SessionContext.load(record_store, "old", settings)
        assert [s.query for s in loaded.data.searches] == ["fresh"]

    async def test_purge_expired(self, record_store):
        settings = SessionSettings(ttl_days=1)
        stale = SessionContext(record_store, session_id="stale", settings=settings)
        stale.data.last_activity_time = time.time() - 3 * 86400
        await stale.save()
        await SessionContext(record_store, session_id="live", settings=settings).record_search("q", 0)

        assert await SessionContext.purge_expired(record_store, settings) == 1
        assert await record_store.load_session("stale") is None
        assert await record_store.load_session("live") is not None


class TestInsights:
    async def test_unexplored_topics_rules(self, record_store):
        session = SessionContext(record_store)
        await session.record_search("how to add a feature", 1)
        await session.record_search("error handling", 1)
        await session.record_search("public API", 1)

        assert session.get_unexplored_topics() == [
            "TDD practices",
            "logging patterns",
            "authentication patterns",
        ]

    async def test_paired_term_suppresses_suggestion(self, record_store):
        session = SessionContext(record_store)
        await session.record_search("add tests with tdd", 1)
        await session.record_search("api auth tokens", 1)

        assert session.get_unexplored_topics() == []

    async def test_terms_match_whole_words(self, record_store):
        session = SessionContext(record_store)
        await session.record_search("street address format", 1)
        await session.record_search("rapid prototyping", 1)

        assert session.get_unexplored_topics() == []

    async def test_longer_word_does_not_suppress(self, record_store):
        session = SessionContext(record_store)
        await session.record_search("api author field", 1)

        assert session.get_unexplored_topics() == ["authentication patterns"]

    async def test_recent_searches(self, record_store):
        session = SessionContext(record_store)
        for i in range(7):
            await session.record_search(f"q{i}", 0)

        assert session.get_recent_searches() == ["q2", "q3", "q4", "q5", "q6"]
        assert session.get_recent_searches(2) == ["q5", "q6"]

    async def test_session_summary(self, record_store):
        session = SessionContext(record_store)
        await session.record_search("error codes", 2)
        await session.record_search("error codes", 2)
        await session.record_search("caching", 0)
        await session.record_memory_views(["m1", "m2"])

        summary = session.get_session_summary()

        assert summary["search_count"] == 3
        assert summary["memories_viewed"] == 2
        assert summary["top_searches"] == ["error codes", "caching"]
        assert summary["unexplored_topics"] == ["logging patterns"]
        assert summary["duration"] >= 0
