"""
Memory Service - shared business logic for namespaced memory operations.

Single source of truth for store/search/update/delete used by both the MCP
tools and the REST API.  The record store is authoritative; the vector index
is a best-effort projection of it:

* record-store write failures propagate to the caller,
* vector-index write failures are logged and swallowed,
* read-path failures degrade to an empty result.
"""

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any

from ..config import GLOBAL_NAMESPACE, SearchSettings
from ..errors import InvalidInputError, NotFoundError
from ..models.memory import MemoryMatch, MemoryRecord, NamespaceListing
from ..models.validators import parse_namespace
from ..storage.base import EmbeddingProvider, RecordStore, VectorIndex

logger = logging.getLogger(__name__)


def require_text(value: str, field: str) -> str:
    if not value or not value.strip():
        raise InvalidInputError(f"{field} must not be empty")
    return value


def require_namespace(namespace: str) -> str:
    if not namespace or not namespace.strip():
        raise InvalidInputError("namespace is required")
    return namespace


class MemoryService:
    """
    Orchestrates the embedding provider, vector index and record store.

    The service never picks a default namespace: callers (the protocol
    layers) resolve it before calling in.
    """

    def __init__(
        self,
        embedder: EmbeddingProvider,
        vector_index: VectorIndex,
        record_store: RecordStore,
        search_settings: SearchSettings | None = None,
    ):
        self.embedder = embedder
        self.vector_index = vector_index
        self.record_store = record_store
        self.search_settings = search_settings or SearchSettings()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _index(
        self,
        memory_id: str,
        content: str,
        namespace: str,
        metadata: dict[str, Any],
        embed_text: str | None = None,
    ) -> bool:
        """Embed and upsert one vector entry. Returns False (after logging) on any failure."""
        try:
            vector = await self.embedder.embed(embed_text or content)
            await self.vector_index.upsert(memory_id, vector, namespace, {**metadata, "content": content})
            return True
        except Exception as e:
            logger.warning(f"Vector indexing failed for {memory_id} in {namespace} (record kept): {e}")
            return False

    async def store(
        self,
        content: str,
        namespace: str,
        metadata: dict[str, Any] | None = None,
        memory_id: str | None = None,
        embed_text: str | None = None,
    ) -> str:
        """
        Store a memory in ``namespace``.

        Args:
            content: Memory text
            namespace: Target namespace, already resolved by the caller
            metadata: Extra vector payload (tags, category, type, ...)
            memory_id: Explicit id; a uuid4 is generated when omitted
            embed_text: Text to embed instead of the content (lookup records)

        Returns:
            The new memory id

        Raises:
            InvalidInputError: empty content or namespace
            Exception: any record-store failure
        """
        require_text(content, "content")
        require_namespace(namespace)

        memory_id = memory_id or str(uuid.uuid4())
        now = time.time()
        created_iso = datetime.fromtimestamp(now, tz=timezone.utc).isoformat()

        indexed = await self._index(
            memory_id,
            content,
            namespace,
            {**(metadata or {}), "created_at": created_iso},
            embed_text=embed_text,
        )

        await self.record_store.insert(MemoryRecord(id=memory_id, namespace=namespace, content=content, created_at=now))

        logger.debug(f"Stored memory {memory_id} in {namespace} (indexed={indexed})")
        return memory_id

    async def update(self, memory_id: str, namespace: str, content: str) -> MemoryRecord:
        """
        Rewrite an active memory's content and re-index it under the same id.

        Raises:
            NotFoundError: no active record matches id + namespace
        """
        require_text(content, "content")
        require_namespace(namespace)

        updated = await self.record_store.update_content(memory_id, namespace, content)
        if updated == 0:
            raise NotFoundError(memory_id, namespace)

        record = await self.record_store.get(memory_id, namespace)
        if record is None:
            # Deleted between the update and the read
            raise NotFoundError(memory_id, namespace)

        await self._index(memory_id, content, namespace, {"created_at": record.created_at_iso})
        logger.info(f"Updated memory {memory_id} in {namespace}")
        return record

    async def delete(self, memory_id: str, namespace: str) -> None:
        """
        Soft-delete a memory and drop its vector entry.

        Raises:
            NotFoundError: no active record matches id + namespace
        """
        require_namespace(namespace)

        deleted = await self.record_store.soft_delete(memory_id, namespace)
        if deleted == 0:
            raise NotFoundError(memory_id, namespace)

        try:
            await self.vector_index.delete_ids([memory_id], namespace=namespace)
        except Exception as e:
            logger.warning(f"Vector delete failed for {memory_id} (record soft-deleted): {e}")

        logger.info(f"Deleted memory {memory_id} from {namespace}")

    async def bulk_delete(self, memory_ids: list[str], namespace: str) -> int:
        """Soft-delete several memories in one namespace. Unknown ids are ignored."""
        require_namespace(namespace)
        if not memory_ids:
            return 0

        try:
            await self.vector_index.delete_ids(memory_ids, namespace=namespace)
        except Exception as e:
            logger.warning(f"Bulk vector delete failed in {namespace}: {e}")

        count = await self.record_store.soft_delete_many(memory_ids, namespace)
        logger.info(f"Bulk deleted {count} memories from {namespace}")
        return count

    async def delete_namespace(self, namespace: str) -> int:
        """
        Soft-delete every active memory in ``namespace``.

        Vector entries are removed one id at a time; a failed id is logged and
        skipped so the batch always completes.

        Returns:
            Number of records soft-deleted (0 when already empty)
        """
        require_namespace(namespace)

        memory_ids = await self.record_store.active_ids(namespace)
        failed = 0
        for memory_id in memory_ids:
            try:
                await self.vector_index.delete_ids([memory_id], namespace=namespace)
            except Exception as e:
                failed += 1
                logger.warning(f"Failed to delete vector {memory_id} from {namespace}: {e}")

        count = await self.record_store.soft_delete_namespace(namespace)
        if failed:
            logger.warning(f"Namespace {namespace}: {failed}/{len(memory_ids)} vector deletes failed")
        logger.info(f"Deleted namespace {namespace} ({count} memories)")
        return count

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def search(
        self,
        query: str,
        namespace: str,
        limit: int | None = None,
        filters: dict[str, Any] | None = None,
    ) -> list[MemoryMatch]:
        """
        Semantic search within one namespace.

        Keeps matches scoring strictly above the similarity threshold, drops
        soft-deleted ids, and returns at most ``limit`` matches by descending
        score.  Downstream failures are logged and yield ``[]``.

        Raises:
            InvalidInputError: empty query or namespace
        """
        require_text(query, "query")
        require_namespace(namespace)
        limit = limit or self.search_settings.default_limit
        top_k = min(limit * 2, self.search_settings.max_top_k)

        try:
            vector = await self.embedder.embed(query)
            hits = await self.vector_index.query(vector, namespace, top_k, filters=filters)

            threshold = self.search_settings.min_similarity
            hits = [h for h in hits if h.score > threshold and h.namespace == namespace]
            if not hits:
                return []

            active = await self.record_store.filter_active([h.id for h in hits])
        except Exception as e:
            logger.error(f"Search failed in {namespace}: {e}")
            return []

        matches = [
            MemoryMatch(
                id=h.id,
                content=h.metadata.get("content", ""),
                score=h.score,
                namespace=h.namespace,
                metadata=h.metadata,
            )
            for h in hits
            if h.id in active
        ]
        matches.sort(key=lambda m: m.score, reverse=True)
        return matches[:limit]

    async def get(self, memory_id: str, namespace: str | None = None) -> MemoryRecord | None:
        return await self.record_store.get(memory_id, namespace)

    async def list_memories(self, namespace: str, page: int = 1, limit: int = 10) -> tuple[list[MemoryRecord], int]:
        """Page through active memories in a namespace, newest first."""
        require_namespace(namespace)
        offset = (page - 1) * limit
        records = await self.record_store.list_active(namespace, limit=limit, offset=offset)
        total = await self.record_store.count_active(namespace)
        return records, total

    async def list_namespaces(self) -> NamespaceListing:
        """
        Known namespaces grouped into user and project identifiers.

        Strings not following ``type:identifier`` are left out of the buckets.
        """
        listing = NamespaceListing()
        for namespace in await self.record_store.distinct_namespaces():
            if namespace == GLOBAL_NAMESPACE:
                listing.all = True
                continue
            parsed = parse_namespace(namespace)
            if parsed is None:
                continue
            ns_type, identifier = parsed
            if ns_type == "user":
                listing.users.append(identifier)
            else:
                listing.projects.append(identifier)
        return listing

    async def check_health(self) -> dict[str, Any]:
        """Check the record store with a cheap namespace scan."""
        try:
            namespaces = await self.record_store.distinct_namespaces()
            return {"healthy": True, "namespaces": len(namespaces)}
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return {"healthy": False, "error": str(e)}
