"""
Query expansion from learned associations.

Expansions are ordinary memory records in the reserved expansion namespace,
so the system "learns" related queries through side-stored data rather than
a trained model.  Every record's vector is the embedding of its original
query, which lets a later similar query discover it.
"""

import json
import logging
import time
import uuid

from ..config import GLOBAL_NAMESPACE, QUERY_EXPANSION_NAMESPACE, SearchSettings
from .memory_service import MemoryService, require_text

logger = logging.getLogger(__name__)


def _parse_expansion(content: str) -> list[str]:
    """Related queries from a stored expansion; unparsable content is taken literally."""
    try:
        data = json.loads(content)
    except (json.JSONDecodeError, TypeError):
        return [content]
    if isinstance(data, dict):
        related = data.get("related_queries", [])
        if isinstance(related, list):
            return [str(q) for q in related]
    return [content]


class QueryExpander:
    """Derives extra query strings from a seed query."""

    def __init__(self, memory_service: MemoryService, search_settings: SearchSettings | None = None):
        self.memory_service = memory_service
        self.search_settings = search_settings or memory_service.search_settings

    async def expand(self, query: str) -> list[str]:
        """
        Expand ``query`` into a deduplicated list, seed (lower-cased) first.

        Best-effort: any failure returns what was gathered so far, which is
        always at least the seed.
        """
        require_text(query, "query")
        seed = query.lower()
        expanded: dict[str, None] = {seed: None}

        try:
            stored = await self.memory_service.search(
                seed, QUERY_EXPANSION_NAMESPACE, limit=self.search_settings.expansion_lookup_limit
            )
            for match in stored:
                for related in _parse_expansion(match.content):
                    if related.strip():
                        expanded.setdefault(related.lower(), None)

            tagged = await self.memory_service.search(
                seed, GLOBAL_NAMESPACE, limit=self.search_settings.tag_lookup_limit
            )
            for match in tagged:
                if match.score <= self.search_settings.tag_expansion_min_score:
                    continue
                for tag in match.metadata.get("tags") or []:
                    if isinstance(tag, str) and tag.startswith("#") and len(tag) > 1:
                        expanded.setdefault(tag[1:].lower(), None)
        except Exception as e:
            logger.warning(f"Query expansion failed for '{query}': {e}")

        return list(expanded)

    async def store_expansion(self, query: str, related_queries: list[str]) -> str:
        """Persist an expansion so later searches for ``query`` pick up ``related_queries``."""
        require_text(query, "query")
        related = [q for q in related_queries if q and q.strip()]
        content = json.dumps(
            {
                "original_query": query,
                "related_queries": related,
                "created_at": time.time(),
            }
        )
        expansion_id = await self.memory_service.store(
            content,
            QUERY_EXPANSION_NAMESPACE,
            metadata={"type": "query-expansion"},
            memory_id=f"expansion-{uuid.uuid4()}",
            embed_text=query,
        )
        logger.debug(f"Stored expansion for '{query}': {related}")
        return expansion_id
