"""
Enhanced search pipeline.

Combines query expansion, per-variant namespace search, relevance scoring
and session tracking into one call.  Only the variant searches are required
to succeed; every enrichment step degrades to a plain result when it fails.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from ..config import SessionSettings
from ..models.memory import MemoryMatch, ScoredMemory
from .memory_service import MemoryService, require_namespace, require_text
from .query_expansion import QueryExpander
from .relevance_scoring import RelevanceScorer, ScoringContext
from .session_context import SessionContext

logger = logging.getLogger(__name__)

BOOST_REASON = "Boosted: matches preferences/recent context"


@dataclass
class EnhancedSearchResult:
    results: list[ScoredMemory] = field(default_factory=list)
    expanded_queries: list[str] = field(default_factory=list)
    suggested_searches: list[str] = field(default_factory=list)
    session_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "results": [r.model_dump() for r in self.results],
            "expanded_queries": self.expanded_queries,
            "suggested_searches": self.suggested_searches,
            "session_id": self.session_id,
        }


def merge_by_max_score(batches: list[list[MemoryMatch]]) -> list[MemoryMatch]:
    """Collapse duplicate ids across batches, keeping the highest-scoring match."""
    best: dict[str, MemoryMatch] = {}
    for batch in batches:
        for match in batch:
            current = best.get(match.id)
            if current is None or match.score > current.score:
                best[match.id] = match
    return sorted(best.values(), key=lambda m: m.score, reverse=True)


class EnhancedSearch:
    """Runs the full expansion + scoring + session pipeline."""

    def __init__(
        self,
        memory_service: MemoryService,
        expander: QueryExpander | None = None,
        scorer: RelevanceScorer | None = None,
        session_settings: SessionSettings | None = None,
    ):
        self.memory_service = memory_service
        self.expander = expander or QueryExpander(memory_service)
        self.scorer = scorer or RelevanceScorer(memory_service)
        self.session_settings = session_settings or SessionSettings()
        self._background: set[asyncio.Task] = set()

    async def _open_session(self, session_id: str | None) -> SessionContext | None:
        """Load or start the caller's session; searches without a session id stay untracked."""
        if not session_id:
            return None
        try:
            return await SessionContext.load_or_create(
                self.memory_service.record_store, session_id, self.session_settings
            )
        except Exception as e:
            logger.warning(f"Session unavailable, searching without it: {e}")
            return None

    def _suggest(self, query: str, scored: list[ScoredMemory], session: SessionContext | None) -> list[str]:
        max_suggestions = self.memory_service.search_settings.max_suggestions
        suggestions: dict[str, None] = {}
        if session is not None:
            for topic in session.get_unexplored_topics():
                suggestions.setdefault(topic, None)

        lowered = query.lower()
        for memory in scored:
            for tag in memory.metadata.get("tags") or []:
                if not isinstance(tag, str) or not tag.startswith("#"):
                    continue
                term = tag[1:]
                if term and term.lower() not in lowered:
                    suggestions.setdefault(term, None)
        return list(suggestions)[:max_suggestions]

    def _persist_factors(self, scored: list[ScoredMemory]) -> None:
        if not any(s.factors for s in scored):
            return

        async def _write():
            try:
                await self.scorer.record_factors(scored)
            except Exception as e:
                logger.warning(f"Failed to persist scoring factors: {e}")

        task = asyncio.create_task(_write())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def drain(self) -> None:
        """Wait for pending background writes (shutdown and tests)."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def search(
        self,
        query: str,
        namespace: str,
        session_id: str | None = None,
        limit: int | None = None,
    ) -> EnhancedSearchResult:
        require_text(query, "query")
        require_namespace(namespace)
        limit = limit or self.memory_service.search_settings.default_limit

        expanded = await self.expander.expand(query)
        batches = await asyncio.gather(
            *(self.memory_service.search(variant, namespace, limit=limit * 2) for variant in expanded)
        )
        merged = merge_by_max_score(list(batches))

        session = await self._open_session(session_id)
        recent: list[str] = []
        if session is not None:
            try:
                await session.record_search(query, len(merged))
            except Exception as e:
                logger.warning(f"Could not record search for session {session.session_id}: {e}")
            recent = session.get_recent_searches(self.session_settings.recent_searches)

        context = ScoringContext(recent_searches=recent, session_id=session.session_id if session else None)
        scored = await self.scorer.score(merged, context)
        top = scored[:limit]

        for memory in top:
            if memory.boosted:
                memory.reason = BOOST_REASON

        suggestions = self._suggest(query, top, session)

        if session is not None and top:
            try:
                await session.record_memory_views([m.id for m in top])
            except Exception as e:
                logger.warning(f"Could not record views for session {session.session_id}: {e}")

        self._persist_factors(top)

        return EnhancedSearchResult(
            results=top,
            expanded_queries=expanded,
            suggested_searches=suggestions,
            session_id=session.session_id if session else None,
        )
