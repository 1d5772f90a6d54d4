"""
Relevance scoring for search results.

Adjusts raw similarity scores with three multiplicative/additive boosts:
    - Preference: similarity to stored user-preference signals (additive)
    - Recency: memories younger than a week (x1.2)
    - Session: memories matching the caller's recent searches (x1.1)

Every boost is clamped to 1.0 and independently best-effort: a failing step
skips only its own adjustment.  ``score()`` is read-only; the computed
factors are written by a separate ``record_factors()`` call so the caller
decides whether to persist them inline or in the background.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from dateutil import parser as dateutil_parser

from ..config import GLOBAL_NAMESPACE, SCORING_FACTORS_NAMESPACE, SearchSettings
from ..models.memory import MemoryMatch, ScoredMemory, ScoringFactor
from .memory_service import MemoryService, require_text

logger = logging.getLogger(__name__)

PREFERENCE_TYPE = "user-preference"
PREFERENCE_QUERY_PREFIX = "user preference "
PREFERENCE_CONTENT_CHARS = 100
PREFERENCE_TOP_K = 3
SECONDS_PER_DAY = 86400.0


@dataclass
class ScoringContext:
    """Caller context that personalises scoring."""

    recent_searches: list[str] = field(default_factory=list)
    session_id: str | None = None


def _created_at_timestamp(value: Any) -> float | None:
    """Accept ISO strings or epoch numbers; anything else is ignored."""
    if value is None:
        return None
    if isinstance(value, int | float):
        return float(value)
    if isinstance(value, str):
        try:
            parsed = dateutil_parser.isoparse(value)
        except (ValueError, TypeError):
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.timestamp()
    return None


class RelevanceScorer:
    """Post-retrieval score adjustment."""

    def __init__(self, memory_service: MemoryService, search_settings: SearchSettings | None = None):
        self.memory_service = memory_service
        self.search_settings = search_settings or memory_service.search_settings

    async def _preference_boost(self, memory: MemoryMatch, score: float) -> float:
        query = PREFERENCE_QUERY_PREFIX + memory.content[:PREFERENCE_CONTENT_CHARS]
        vector = await self.memory_service.embedder.embed(query)
        hits = await self.memory_service.vector_index.query(
            vector,
            SCORING_FACTORS_NAMESPACE,
            PREFERENCE_TOP_K,
            filters={"type": PREFERENCE_TYPE},
        )
        if not hits:
            return score
        top = max(h.score for h in hits)
        return min(score + top * self.search_settings.preference_weight, 1.0)

    def _recency_boost(self, memory: MemoryMatch, score: float, factors: dict[str, float], now: float) -> float:
        created = _created_at_timestamp(memory.metadata.get("created_at"))
        if created is None:
            return score
        age_days = max(0.0, (now - created) / SECONDS_PER_DAY)
        factors["age_days"] = age_days
        if age_days < self.search_settings.recency_window_days:
            return min(score * self.search_settings.recency_boost, 1.0)
        return score

    async def _session_boost(self, memory: MemoryMatch, score: float, context: ScoringContext) -> float:
        terms = " ".join(q for q in context.recent_searches if q)
        if not terms.strip():
            return score
        namespace = memory.namespace or memory.metadata.get("namespace") or GLOBAL_NAMESPACE
        vector = await self.memory_service.embedder.embed(terms)
        hits = await self.memory_service.vector_index.query(vector, namespace, 1, ids=[memory.id])
        if hits:
            return min(score * self.search_settings.session_boost, 1.0)
        return score

    async def _score_one(self, memory: MemoryMatch, context: ScoringContext | None, now: float) -> ScoredMemory:
        score = memory.score
        factors: dict[str, float] = {}

        try:
            score = await self._preference_boost(memory, score)
        except Exception as e:
            logger.warning(f"Preference boost skipped for {memory.id}: {e}")

        try:
            score = self._recency_boost(memory, score, factors, now)
        except Exception as e:
            logger.warning(f"Recency boost skipped for {memory.id}: {e}")

        if context and context.recent_searches:
            try:
                score = await self._session_boost(memory, score, context)
            except Exception as e:
                logger.warning(f"Session boost skipped for {memory.id}: {e}")

        return ScoredMemory(
            id=memory.id,
            content=memory.content,
            original_score=memory.score,
            adjusted_score=score,
            metadata=memory.metadata,
            namespace=memory.namespace,
            factors=factors,
        )

    async def score(self, memories: list[MemoryMatch], context: ScoringContext | None = None) -> list[ScoredMemory]:
        """
        Score memories and sort by adjusted score, descending.

        Ties keep their input order.
        """
        now = time.time()
        scored = await asyncio.gather(*(self._score_one(m, context, now) for m in memories))
        return sorted(scored, key=lambda s: s.adjusted_score, reverse=True)

    async def record_factors(self, scored: list[ScoredMemory]) -> int:
        """Persist the factors computed by ``score()``. Returns rows written."""
        now = time.time()
        factors = [
            ScoringFactor(memory_id=s.id, factor=name, value=value, recorded_at=now)
            for s in scored
            for name, value in s.factors.items()
        ]
        return await self.memory_service.record_store.insert_scoring_factors(factors)

    async def record_preference(self, content: str) -> str:
        """Store a user-preference signal that later boosts similar memories."""
        require_text(content, "content")
        return await self.memory_service.store(
            content,
            SCORING_FACTORS_NAMESPACE,
            metadata={"type": PREFERENCE_TYPE, "recorded_at": datetime.now(timezone.utc).isoformat()},
            embed_text=PREFERENCE_QUERY_PREFIX + content[:PREFERENCE_CONTENT_CHARS],
        )
