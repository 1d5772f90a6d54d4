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
Abstract collaborator interfaces for the memory service.

The service core talks to three external collaborators: an embedding
provider, a vector index and a durable record store.  Concrete backends
live next to this module (sentence-transformers/HTTP, Qdrant, SQLite).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from ..models.memory import MemoryRecord, ScoringFactor


@dataclass
class VectorHit:
    """A single similarity match from the vector index."""

    id: str
    score: float
    namespace: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class StoredSession:
    """Raw session row as persisted by the record store."""

    session_id: str
    data: dict[str, Any]
    version: int
    last_activity_time: float


class EmbeddingProvider(ABC):
    """Converts text to a fixed-length vector."""

    @property
    @abstractmethod
    def vector_size(self) -> int:
        """Dimension of every vector this provider produces."""

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """
        Embed a single text.

        Raises:
            EmbeddingError: provider unreachable or output malformed
        """

    async def close(self) -> None:
        """Release provider resources. Default is a no-op."""


class VectorIndex(ABC):
    """Similarity-searchable store of (id, vector, namespace, metadata)."""

    @abstractmethod
    async def initialize(self) -> None:
        """Ensure the collection and its payload indexes exist. Idempotent."""

    @abstractmethod
    async def upsert(self, memory_id: str, vector: list[float], namespace: str, metadata: dict[str, Any]) -> None:
        """Insert or replace the vector entry for ``memory_id``."""

    @abstractmethod
    async def query(
        self,
        vector: list[float],
        namespace: str,
        top_k: int,
        filters: dict[str, Any] | None = None,
        ids: list[str] | None = None,
    ) -> list[VectorHit]:
        """
        Similarity query scoped to ``namespace``.

        Args:
            vector: Query embedding
            namespace: Namespace the hits must belong to
            top_k: Maximum number of hits
            filters: Exact-match conditions on metadata keys
            ids: Restrict hits to these memory ids
        """

    @abstractmethod
    async def delete_ids(self, memory_ids: list[str], namespace: str | None = None) -> None:
        """Delete vector entries by id, restricted to ``namespace`` when given."""

    async def close(self) -> None:
        """Close the index connection. Default is a no-op."""


class RecordStore(ABC):
    """Durable table of memory records with soft-delete semantics."""

    @abstractmethod
    async def initialize(self) -> None:
        """Ensure the schema exists. Idempotent; safe to call on every start."""

    @abstractmethod
    async def insert(self, record: MemoryRecord) -> None:
        """Insert a new record. Failures propagate."""

    @abstractmethod
    async def get(self, memory_id: str, namespace: str | None = None) -> MemoryRecord | None:
        """Fetch an active record by id (and namespace, when given)."""

    @abstractmethod
    async def update_content(self, memory_id: str, namespace: str, content: str) -> int:
        """Rewrite content of an active record. Returns rows affected."""

    @abstractmethod
    async def soft_delete(self, memory_id: str, namespace: str) -> int:
        """Mark an active record deleted. Returns rows affected."""

    @abstractmethod
    async def soft_delete_many(self, memory_ids: list[str], namespace: str) -> int:
        """Mark several active records in one namespace deleted."""

    @abstractmethod
    async def soft_delete_namespace(self, namespace: str) -> int:
        """Mark every active record in ``namespace`` deleted. Returns the count."""

    @abstractmethod
    async def active_ids(self, namespace: str) -> list[str]:
        """Ids of all active records in ``namespace``."""

    @abstractmethod
    async def filter_active(self, memory_ids: list[str]) -> set[str]:
        """Subset of ``memory_ids`` whose records exist and are active."""

    @abstractmethod
    async def distinct_namespaces(self, include_reserved: bool = False) -> list[str]:
        """Distinct namespaces holding at least one active record, in first-seen order."""

    @abstractmethod
    async def list_active(self, namespace: str, limit: int, offset: int = 0) -> list[MemoryRecord]:
        """Active records in ``namespace``, newest first."""

    @abstractmethod
    async def count_active(self, namespace: str) -> int:
        """Number of active records in ``namespace``."""

    @abstractmethod
    async def insert_scoring_factors(self, factors: list[ScoringFactor]) -> int:
        """Persist learned scoring factors. Returns rows written."""

    @abstractmethod
    async def get_scoring_factors(self, memory_id: str) -> list[ScoringFactor]:
        """Factors recorded for one memory, oldest first."""

    @abstractmethod
    async def load_session(self, session_id: str) -> StoredSession | None:
        """Fetch a stored session snapshot."""

    @abstractmethod
    async def save_session(
        self,
        session_id: str,
        data: dict[str, Any],
        last_activity_time: float,
        expected_version: int,
    ) -> int:
        """
        Persist a full session snapshot.

        Returns:
            The new version number

        Raises:
            SessionConflictError: stored version differs from ``expected_version``
        """

    @abstractmethod
    async def purge_sessions(self, inactive_before: float) -> int:
        """Delete sessions idle since before ``inactive_before``. Returns the count."""

    async def close(self) -> None:
        """Close connections. Default is a no-op."""
