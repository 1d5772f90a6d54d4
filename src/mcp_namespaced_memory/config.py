"""
Configuration for the MCP Namespaced Memory service.

Each concern has its own pydantic-settings class with a dedicated ``MCP_*``
environment prefix.  ``Settings`` aggregates them and a module-level
``settings`` instance is shared by the servers and the storage factory.
"""

from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

SERVICE_NAME = "MCP Namespaced Memory"
SERVICE_VERSION = "0.4.0"

# Reserved namespaces for internal concerns; user callers may not write here
SYSTEM_NAMESPACE_PREFIX = "system:"
QUERY_EXPANSION_NAMESPACE = "system:query-expansions"
SCORING_FACTORS_NAMESPACE = "system:scoring-factors"
SESSIONS_NAMESPACE = "system:sessions"
PROCEDURES_NAMESPACE = "system:procedures"

GLOBAL_NAMESPACE = "all"
NAMESPACE_TYPES = ("user", "project")


class QdrantSettings(BaseSettings):
    """Vector index connection and collection tuning."""

    model_config = SettingsConfigDict(
        env_prefix="MCP_QDRANT_",
        extra="ignore",
        populate_by_name=True,
    )

    # ":memory:" selects the in-process index used by the test-suite
    url: str | None = Field(default=None, validation_alias=AliasChoices("MCP_QDRANT_URL", "QDRANT_URL"))
    storage_path: str | None = Field(
        default=None, validation_alias=AliasChoices("MCP_QDRANT_STORAGE_PATH", "QDRANT_STORAGE_PATH")
    )
    COLLECTION_NAME: str = "namespaced_memories"
    HNSW_M: int = Field(default=16, ge=4, le=64)
    HNSW_EF_CONSTRUCT: int = Field(default=100, ge=8)
    HNSW_FULL_SCAN_THRESHOLD: int = Field(default=10000, ge=0)
    ON_DISK_PAYLOAD: bool = False


class EmbeddingSettings(BaseSettings):
    """Embedding provider selection."""

    model_config = SettingsConfigDict(
        env_prefix="MCP_EMBEDDING_",
        extra="ignore",
        protected_namespaces=("settings_",),
    )

    provider: Literal["local", "http"] = "local"
    model_name: str = "all-MiniLM-L6-v2"
    http_url: str | None = None
    api_key: SecretStr | None = None
    timeout: float = Field(default=10.0, gt=0.0)
    vector_size: int | None = Field(default=None, ge=1)


class StorageSettings(BaseSettings):
    """Record store location."""

    model_config = SettingsConfigDict(env_prefix="MCP_STORAGE_", extra="ignore")

    base_dir: Path = Path.home() / ".mcp_namespaced_memory"
    db_filename: str = "memories.db"

    @property
    def db_path(self) -> Path:
        return self.base_dir / self.db_filename


class SearchSettings(BaseSettings):
    """Similarity thresholds, fan-out bounds and scoring weights."""

    model_config = SettingsConfigDict(env_prefix="MCP_SEARCH_", extra="ignore")

    min_similarity: float = Field(default=0.3, ge=0.0, le=1.0)
    default_limit: int = Field(default=10, ge=1, le=100)
    max_top_k: int = Field(default=100, ge=1)
    max_namespaces: int = Field(default=50, ge=1)

    expansion_lookup_limit: int = Field(default=10, ge=1)
    tag_lookup_limit: int = Field(default=5, ge=1)
    tag_expansion_min_score: float = Field(default=0.8, ge=0.0, le=1.0)

    preference_weight: float = Field(default=0.3, ge=0.0, le=1.0)
    recency_boost: float = Field(default=1.2, ge=1.0)
    recency_window_days: float = Field(default=7.0, gt=0.0)
    session_boost: float = Field(default=1.1, ge=1.0)
    max_suggestions: int = Field(default=5, ge=0)


class SessionSettings(BaseSettings):
    """Session retention."""

    model_config = SettingsConfigDict(env_prefix="MCP_SESSION_", extra="ignore")

    ttl_days: float = Field(default=30.0, gt=0.0)
    recent_searches: int = Field(default=5, ge=1)


class HTTPSettings(BaseSettings):
    """REST interface binding."""

    model_config = SettingsConfigDict(env_prefix="MCP_HTTP_", extra="ignore")

    host: str = "0.0.0.0"
    port: int = Field(default=8080, ge=1, le=65535)


class Settings(BaseSettings):
    """Aggregate settings for the whole service."""

    model_config = SettingsConfigDict(env_prefix="MCP_", extra="ignore")

    default_namespace: str = GLOBAL_NAMESPACE

    qdrant: QdrantSettings = Field(default_factory=QdrantSettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    search: SearchSettings = Field(default_factory=SearchSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    http: HTTPSettings = Field(default_factory=HTTPSettings)


settings = Settings()
