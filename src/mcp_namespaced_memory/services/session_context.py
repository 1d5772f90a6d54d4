"""
Session context tracking.

A session records the searches a caller issued and the memories they were
shown.  Each mutation persists the full snapshot with an optimistic version
check, so two writers racing on one session surface a
``SessionConflictError`` instead of silently losing an update.  Sessions idle
longer than the configured TTL are treated as absent and can be purged.
"""

import logging
import re
import time
import uuid
from collections import Counter
from typing import Any

from ..config import SessionSettings
from ..models.session import SessionData, SessionSearch
from ..storage.base import RecordStore, StoredSession

logger = logging.getLogger(__name__)

# (trigger term, paired term, suggested topic)
UNEXPLORED_TOPIC_RULES = (
    ("add", "tdd", "TDD practices"),
    ("error", "logging", "logging patterns"),
    ("api", "auth", "authentication patterns"),
)

WORD_PATTERN = re.compile(r"[a-z0-9]+")
TOP_SEARCHES = 5
SECONDS_PER_DAY = 86400


def _is_expired(stored: StoredSession, settings: SessionSettings) -> bool:
    return time.time() > stored.last_activity_time + settings.ttl_days * SECONDS_PER_DAY


class SessionContext:
    """In-memory view of one session, persisted on every change."""

    def __init__(
        self,
        record_store: RecordStore,
        session_id: str | None = None,
        settings: SessionSettings | None = None,
        data: SessionData | None = None,
    ):
        self.record_store = record_store
        self.settings = settings or SessionSettings()
        self.data = data or SessionData(session_id=session_id or str(uuid.uuid4()))

    @property
    def session_id(self) -> str:
        return self.data.session_id

    @classmethod
    async def load(
        cls,
        record_store: RecordStore,
        session_id: str,
        settings: SessionSettings | None = None,
    ) -> "SessionContext | None":
        """Reload a stored session; ``None`` when missing or expired."""
        settings = settings or SessionSettings()
        stored = await record_store.load_session(session_id)
        if stored is None:
            return None

        if _is_expired(stored, settings):
            logger.info(f"Session {session_id} expired, ignoring stored snapshot")
            return None

        data = SessionData.from_dict(stored.data, version=stored.version)
        return cls(record_store, settings=settings, data=data)

    @classmethod
    async def load_or_create(
        cls,
        record_store: RecordStore,
        session_id: str | None = None,
        settings: SessionSettings | None = None,
    ) -> "SessionContext":
        settings = settings or SessionSettings()
        if session_id:
            stored = await record_store.load_session(session_id)
            if stored is not None:
                if not _is_expired(stored, settings):
                    data = SessionData.from_dict(stored.data, version=stored.version)
                    return cls(record_store, settings=settings, data=data)
                # Restart under the same id; the next save overwrites the stale snapshot
                logger.info(f"Session {session_id} expired, starting it afresh")
                fresh = SessionData(session_id=session_id, version=stored.version)
                return cls(record_store, settings=settings, data=fresh)
        return cls(record_store, session_id=session_id, settings=settings)

    @staticmethod
    async def purge_expired(record_store: RecordStore, settings: SessionSettings | None = None) -> int:
        settings = settings or SessionSettings()
        return await record_store.purge_sessions(time.time() - settings.ttl_days * SECONDS_PER_DAY)

    async def save(self) -> None:
        self.data.version = await self.record_store.save_session(
            self.session_id,
            self.data.to_dict(),
            self.data.last_activity_time,
            expected_version=self.data.version,
        )

    async def record_search(self, query: str, results_count: int) -> None:
        now = time.time()
        self.data.searches.append(SessionSearch(query=query, timestamp=now, results_count=results_count))
        self.data.last_activity_time = now
        self.data.suggested_topics = self.get_unexplored_topics()
        await self.save()

    async def record_memory_view(self, memory_id: str) -> None:
        if memory_id not in self.data.viewed_memories:
            self.data.viewed_memories.append(memory_id)
        self.data.last_activity_time = time.time()
        await self.save()

    async def record_memory_views(self, memory_ids: list[str]) -> None:
        """Record several views with a single snapshot write."""
        for memory_id in memory_ids:
            if memory_id not in self.data.viewed_memories:
                self.data.viewed_memories.append(memory_id)
        self.data.last_activity_time = time.time()
        await self.save()

    def get_recent_searches(self, limit: int | None = None) -> list[str]:
        limit = limit or self.settings.recent_searches
        return [s.query for s in self.data.searches[-limit:]]

    def get_unexplored_topics(self) -> list[str]:
        """Fixed heuristic: a searched trigger term without its paired term suggests a topic.

        Terms match whole words of past queries, so "address" does not count as "add".
        """
        searched = {term for s in self.data.searches for term in WORD_PATTERN.findall(s.query.lower())}
        return [
            topic for trigger, paired, topic in UNEXPLORED_TOPIC_RULES if trigger in searched and paired not in searched
        ]

    def get_session_summary(self) -> dict[str, Any]:
        counts = Counter(s.query for s in self.data.searches)
        return {
            "session_id": self.session_id,
            "duration": max(0.0, time.time() - self.data.start_time),
            "search_count": len(self.data.searches),
            "memories_viewed": len(self.data.viewed_memories),
            "top_searches": [query for query, _ in counts.most_common(TOP_SEARCHES)],
            "unexplored_topics": self.get_unexplored_topics(),
        }
