"""Memory-related data models.

``MemoryRecord`` mirrors a row of the record store.  ``MemoryMatch`` and
``ScoredMemory`` are transient search results and are never persisted.
"""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field


def iso_from_timestamp(ts: float | None) -> str | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat().replace("+00:00", "Z")


class MemoryRecord(BaseModel):
    """A stored memory as held by the record store."""

    id: str
    namespace: str
    content: str
    created_at: float
    updated_at: float | None = None
    deleted_at: float | None = None

    @property
    def is_active(self) -> bool:
        return self.deleted_at is None

    @property
    def created_at_iso(self) -> str | None:
        return iso_from_timestamp(self.created_at)

    def to_api_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "namespace": self.namespace,
            "content": self.content,
            "created_at": self.created_at_iso,
            "updated_at": iso_from_timestamp(self.updated_at),
        }


class MemoryMatch(BaseModel):
    """A similarity hit returned by ``MemoryService.search``."""

    id: str
    content: str
    score: float
    namespace: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class ScoredMemory(BaseModel):
    """A match after relevance adjustment."""

    id: str
    content: str
    original_score: float
    adjusted_score: float
    metadata: dict[str, Any] = Field(default_factory=dict)
    namespace: str | None = None
    reason: str | None = None

    # Signals computed while scoring (e.g. age_days); persisted separately
    factors: dict[str, float] = Field(default_factory=dict, exclude=True)

    @property
    def boosted(self) -> bool:
        return self.adjusted_score > self.original_score


class NamespaceListing(BaseModel):
    """Known namespaces grouped by type."""

    users: list[str] = Field(default_factory=list)
    projects: list[str] = Field(default_factory=list)
    all: bool = False


class NamespaceMatch(BaseModel):
    content: str
    score: float


class NamespaceResults(BaseModel):
    """Matches for one namespace within a cross-namespace search."""

    namespace: str
    memories: list[NamespaceMatch]


class ScoringFactor(BaseModel):
    """A learned signal computed while scoring, persisted separately from the read."""

    memory_id: str
    factor: str
    value: float
    recorded_at: float
