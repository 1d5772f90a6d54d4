"""Cross-namespace fan-out search."""

import asyncio
import logging

from ..config import SearchSettings
from ..models.memory import MemoryMatch, NamespaceMatch, NamespaceResults
from .memory_service import MemoryService, require_text

logger = logging.getLogger(__name__)


class CrossNamespaceAggregator:
    """
    Runs one query against every known namespace and groups the hits.

    Results stay grouped by namespace in enumeration order rather than merged
    into a single ranking, so callers can see which namespace matched.
    """

    def __init__(self, memory_service: MemoryService, search_settings: SearchSettings | None = None):
        self.memory_service = memory_service
        self.search_settings = search_settings or memory_service.search_settings

    async def _search_one(self, query: str, namespace: str, limit: int | None) -> list[MemoryMatch]:
        try:
            return await self.memory_service.search(query, namespace, limit=limit)
        except Exception as e:
            logger.warning(f"Search in namespace {namespace} failed, omitting it: {e}")
            return []

    async def search_all(
        self,
        query: str,
        limit: int | None = None,
        namespaces: list[str] | None = None,
    ) -> list[NamespaceResults]:
        """
        Search every active namespace (or the given subset), capped at
        ``max_namespaces`` per call.  Namespaces with no matches, or whose
        search failed, are omitted.
        """
        require_text(query, "query")

        if namespaces is None:
            try:
                namespaces = await self.memory_service.record_store.distinct_namespaces()
            except Exception as e:
                logger.error(f"Could not enumerate namespaces: {e}")
                return []

        cap = self.search_settings.max_namespaces
        if len(namespaces) > cap:
            logger.info(f"Capping cross-namespace search at {cap} of {len(namespaces)} namespaces")
            namespaces = namespaces[:cap]

        per_namespace = await asyncio.gather(*(self._search_one(query, ns, limit) for ns in namespaces))

        results = []
        for namespace, matches in zip(namespaces, per_namespace):
            if not matches:
                continue
            results.append(
                NamespaceResults(
                    namespace=namespace,
                    memories=[NamespaceMatch(content=m.content, score=m.score) for m in matches],
                )
            )
        return results
