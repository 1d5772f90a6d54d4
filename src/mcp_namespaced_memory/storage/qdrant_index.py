# Copyright 2024 Heinrich Krupp
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Qdrant vector index for namespaced memories.

Every point carries its namespace in the payload; queries and deletes are
always filtered on it so one namespace can never see or remove another's
entries.  Calls run in the default executor behind a circuit breaker with
tenacity retries on transient 5xx errors.
"""

import asyncio
import hashlib
import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from qdrant_client import QdrantClient
from qdrant_client.http import exceptions as qdrant_exceptions
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    FilterSelector,
    HasIdCondition,
    HnswConfigDiff,
    MatchValue,
    PayloadSchemaType,
    PointStruct,
    VectorParams,
)
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from ..config import QdrantSettings
from ..errors import StorageError
from .base import VectorHit, VectorIndex

logger = logging.getLogger(__name__)

IN_MEMORY_LOCATION = ":memory:"


def is_retryable_error(exception: BaseException) -> bool:
    """
    Determine if an exception is retryable (transient 5xx server errors only).

    Notes:
        - 4xx client errors are permanent (configuration/validation) and NOT retryable
        - Dimension mismatches are NOT retryable (configuration error)
    """
    if isinstance(exception, qdrant_exceptions.UnexpectedResponse):
        return hasattr(exception, "status_code") and 500 <= exception.status_code < 600
    return False


class QdrantVectorIndex(VectorIndex):
    """
    Qdrant-backed vector index in server, embedded or in-memory mode.

    Provides circuit breaker fault tolerance: after 5 consecutive failures
    calls fail fast with ``StorageError`` for 60 seconds.
    """

    def __init__(
        self,
        vector_size: int,
        collection_name: str = "namespaced_memories",
        url: str | None = None,
        storage_path: str | None = None,
        config: QdrantSettings | None = None,
    ):
        """
        Args:
            vector_size: Embedding dimension, fixed for the collection's lifetime
            collection_name: Qdrant collection name
            url: Qdrant server URL, or ":memory:" for an in-process index
            storage_path: Directory for embedded mode (single process only)
            config: HNSW tuning; defaults to environment settings
        """
        if url and storage_path:
            raise ValueError("Cannot specify both url and storage_path. Choose embedded OR server mode.")
        if not url and not storage_path:
            raise ValueError("Must specify either url (server mode) or storage_path (embedded mode).")

        self.url = url
        self.storage_path = storage_path
        self.collection_name = collection_name
        self.vector_size = vector_size
        self.config = config or QdrantSettings()

        # Circuit breaker state
        self._failure_count = 0
        self._circuit_open_until: datetime | None = None
        self._failure_threshold = 5
        self._circuit_timeout = 60

        self.client: QdrantClient | None = None

    def _create_client(self) -> QdrantClient:
        if self.url == IN_MEMORY_LOCATION:
            return QdrantClient(location=IN_MEMORY_LOCATION)
        if self.url:
            return QdrantClient(url=self.url)
        return QdrantClient(path=self.storage_path)

    async def initialize(self) -> None:
        """
        Connect and ensure the collection and payload indexes exist.

        Safe to call on every start: existing collections are verified, not
        recreated, and payload index creation is idempotent.
        """
        loop = asyncio.get_running_loop()
        if self.client is None:
            self.client = await loop.run_in_executor(None, self._create_client)
            mode = "embedded" if self.storage_path else ("in-memory" if self.url == IN_MEMORY_LOCATION else "server")
            logger.info(f"Connected to Qdrant ({mode}): {self.url or self.storage_path}")

        if await self._collection_exists():
            await self._verify_vector_size()
        else:
            await loop.run_in_executor(
                None,
                lambda: self.client.create_collection(
                    collection_name=self.collection_name,
                    vectors_config=VectorParams(size=self.vector_size, distance=Distance.COSINE),
                    hnsw_config=HnswConfigDiff(
                        m=self.config.HNSW_M,
                        ef_construct=self.config.HNSW_EF_CONSTRUCT,
                        full_scan_threshold=self.config.HNSW_FULL_SCAN_THRESHOLD,
                    ),
                    on_disk_payload=self.config.ON_DISK_PAYLOAD,
                ),
            )
            logger.info(f"Created collection '{self.collection_name}' with vector size {self.vector_size}")

        await self._ensure_payload_indexes()

    async def _collection_exists(self) -> bool:
        loop = asyncio.get_running_loop()
        collections = await loop.run_in_executor(None, self.client.get_collections)
        return self.collection_name in {col.name for col in collections.collections}

    async def _verify_vector_size(self) -> None:
        loop = asyncio.get_running_loop()
        info = await loop.run_in_executor(None, self.client.get_collection, self.collection_name)
        vectors = info.config.params.vectors
        existing_size = getattr(vectors, "size", None)
        if existing_size is not None and existing_size != self.vector_size:
            raise StorageError(
                f"Collection '{self.collection_name}' vector size ({existing_size}) doesn't match "
                f"current embedding dimensions ({self.vector_size}). Re-index into a new collection."
            )
        logger.info(f"Collection '{self.collection_name}' exists, vector size verified")

    async def _ensure_payload_indexes(self) -> None:
        loop = asyncio.get_running_loop()
        for field_name in ("namespace", "memory_id"):
            await loop.run_in_executor(
                None,
                lambda f=field_name: self.client.create_payload_index(
                    collection_name=self.collection_name,
                    field_name=f,
                    field_schema=PayloadSchemaType.KEYWORD,
                ),
            )
        logger.debug("Ensured keyword payload indexes on 'namespace' and 'memory_id'")

    # ------------------------------------------------------------------
    # Circuit breaker
    # ------------------------------------------------------------------

    def _check_circuit_breaker(self) -> None:
        """
        Fail fast while the circuit is open.

        Raises:
            StorageError: If circuit breaker is open with retry timestamp
        """
        if self._circuit_open_until is not None:
            if datetime.now() < self._circuit_open_until:
                retry_time = self._circuit_open_until.strftime("%Y-%m-%d %H:%M:%S")
                raise StorageError(f"Circuit breaker is open until {retry_time}. Vector index temporarily unavailable.")
            logger.info("Circuit breaker timeout expired, resetting to closed state")
            self._circuit_open_until = None
            self._failure_count = 0

    def _record_failure(self) -> None:
        self._failure_count += 1
        logger.warning(f"Recorded vector index failure #{self._failure_count}")

        if self._failure_count >= self._failure_threshold:
            self._circuit_open_until = datetime.now() + timedelta(seconds=self._circuit_timeout)
            logger.error(
                f"Circuit breaker opened after {self._failure_count} consecutive failures. "
                f"Will retry at {self._circuit_open_until.strftime('%Y-%m-%d %H:%M:%S')}"
            )

    def _record_success(self) -> None:
        if self._failure_count > 0:
            logger.info(f"Operation successful, resetting circuit breaker (was at {self._failure_count} failures)")
        self._failure_count = 0
        self._circuit_open_until = None

    @retry(
        retry=retry_if_exception(is_retryable_error),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        reraise=True,
    )
    async def _execute(self, call: Callable[[], Any]) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, call)

    async def _guarded(self, operation: str, call: Callable[[], Any]) -> Any:
        """Run a client call behind the circuit breaker, converting failures to StorageError."""
        self._check_circuit_breaker()
        if self.client is None:
            raise StorageError("Vector index not initialized")
        try:
            result = await self._execute(call)
        except Exception as e:
            self._record_failure()
            logger.error(f"Qdrant {operation} failed: {e}")
            raise StorageError(f"Qdrant {operation} failed: {e}") from e
        self._record_success()
        return result

    # ------------------------------------------------------------------
    # Point operations
    # ------------------------------------------------------------------

    @staticmethod
    def _to_point_id(memory_id: str) -> str:
        """
        Map a memory id to a Qdrant point id.

        UUID ids are used as-is; anything else is hashed into a UUID. The
        original id is kept in the ``memory_id`` payload field.
        """
        try:
            return str(uuid.UUID(memory_id))
        except ValueError:
            return str(uuid.UUID(hashlib.sha256(memory_id.encode()).hexdigest()[:32]))

    def _build_filter(
        self,
        namespace: str,
        filters: dict[str, Any] | None = None,
        ids: list[str] | None = None,
    ) -> Filter:
        must: list[Any] = [FieldCondition(key="namespace", match=MatchValue(value=namespace))]
        for key, value in (filters or {}).items():
            must.append(FieldCondition(key=f"metadata.{key}", match=MatchValue(value=value)))
        if ids:
            must.append(HasIdCondition(has_id=[self._to_point_id(i) for i in ids]))
        return Filter(must=must)

    async def upsert(self, memory_id: str, vector: list[float], namespace: str, metadata: dict[str, Any]) -> None:
        if len(vector) != self.vector_size:
            raise ValueError(f"Embedding dimension mismatch: expected {self.vector_size}, got {len(vector)}")

        point = PointStruct(
            id=self._to_point_id(memory_id),
            vector=vector,
            payload={"memory_id": memory_id, "namespace": namespace, "metadata": metadata},
        )
        await self._guarded("upsert", lambda: self.client.upsert(collection_name=self.collection_name, points=[point]))
        logger.debug(f"Upserted vector {memory_id} in {namespace}")

    async def query(
        self,
        vector: list[float],
        namespace: str,
        top_k: int,
        filters: dict[str, Any] | None = None,
        ids: list[str] | None = None,
    ) -> list[VectorHit]:
        query_filter = self._build_filter(namespace, filters, ids)
        response = await self._guarded(
            "query",
            lambda: self.client.query_points(
                collection_name=self.collection_name,
                query=vector,
                query_filter=query_filter,
                limit=top_k,
                with_payload=True,
                with_vectors=False,
            ),
        )

        hits = []
        for point in response.points:
            payload = point.payload or {}
            hits.append(
                VectorHit(
                    id=payload.get("memory_id", str(point.id)),
                    score=float(point.score),
                    namespace=payload.get("namespace", namespace),
                    metadata=payload.get("metadata") or {},
                )
            )
        return hits

    async def delete_ids(self, memory_ids: list[str], namespace: str | None = None) -> None:
        if not memory_ids:
            return
        point_ids = [self._to_point_id(i) for i in memory_ids]
        must: list[Any] = [HasIdCondition(has_id=point_ids)]
        if namespace is not None:
            must.append(FieldCondition(key="namespace", match=MatchValue(value=namespace)))
        selector = FilterSelector(filter=Filter(must=must))
        await self._guarded(
            "delete",
            lambda: self.client.delete(collection_name=self.collection_name, points_selector=selector),
        )
        logger.debug(f"Deleted {len(point_ids)} vector(s) from {namespace or 'all namespaces'}")

    async def close(self) -> None:
        """Close the Qdrant client. Safe to call multiple times."""
        if self.client is not None:
            try:
                loop = asyncio.get_running_loop()
                await loop.run_in_executor(None, self.client.close)
                logger.info("Qdrant client closed successfully")
            except Exception as e:
                logger.warning(f"Error closing Qdrant client: {e}")
            finally:
                self.client = None
