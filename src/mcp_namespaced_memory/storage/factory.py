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
Storage backend factory for the MCP Namespaced Memory service.

Creates and initializes the embedding provider, the Qdrant vector index and
the SQLite record store from configuration.
"""

import logging
from dataclasses import dataclass

from ..config import Settings
from .base import EmbeddingProvider, RecordStore, VectorIndex
from .embeddings import HTTPEmbedding, SentenceTransformerEmbedding
from .qdrant_index import QdrantVectorIndex
from .sqlite_records import SQLiteRecordStore

logger = logging.getLogger(__name__)


@dataclass
class StorageBackends:
    """The three collaborators the service core runs on."""

    embedder: EmbeddingProvider
    vector_index: VectorIndex
    record_store: RecordStore

    async def close(self) -> None:
        for name, component in (
            ("vector index", self.vector_index),
            ("record store", self.record_store),
            ("embedding provider", self.embedder),
        ):
            try:
                await component.close()
            except Exception as e:
                logger.warning(f"Error closing {name}: {e}")


def create_embedding_provider(config: Settings) -> EmbeddingProvider:
    emb = config.embedding
    if emb.provider == "http":
        if not emb.http_url:
            raise ValueError("MCP_EMBEDDING_HTTP_URL is required when MCP_EMBEDDING_PROVIDER=http")
        logger.info(f"Using HTTP embedding provider at {emb.http_url} (model={emb.model_name})")
        return HTTPEmbedding(
            url=emb.http_url,
            model_name=emb.model_name,
            api_key=emb.api_key.get_secret_value() if emb.api_key else None,
            timeout=emb.timeout,
            vector_size=emb.vector_size,
        )
    logger.info(f"Using local sentence-transformers embedding model {emb.model_name}")
    return SentenceTransformerEmbedding(emb.model_name, vector_size=emb.vector_size)


def create_vector_index(config: Settings, vector_size: int) -> QdrantVectorIndex:
    qdrant = config.qdrant
    if qdrant.url:
        logger.info(f"Qdrant server mode: {qdrant.url}")
        return QdrantVectorIndex(
            vector_size=vector_size,
            collection_name=qdrant.COLLECTION_NAME,
            url=qdrant.url,
            config=qdrant,
        )
    storage_path = qdrant.storage_path or str(config.storage.base_dir / "qdrant")
    logger.info(f"Qdrant embedded mode: {storage_path}")
    return QdrantVectorIndex(
        vector_size=vector_size,
        collection_name=qdrant.COLLECTION_NAME,
        storage_path=storage_path,
        config=qdrant,
    )


async def create_storage_backends(config: Settings | None = None) -> StorageBackends:
    """
    Create and initialize all storage backends.

    Schema and collection creation are idempotent, so this is safe to run on
    every cold start.
    """
    if config is None:
        from ..config import settings as config

    embedder = create_embedding_provider(config)
    vector_index = create_vector_index(config, embedder.vector_size)
    record_store = SQLiteRecordStore(str(config.storage.db_path))

    await record_store.initialize()
    await vector_index.initialize()
    logger.info("Storage backends initialized successfully")

    return StorageBackends(embedder=embedder, vector_index=vector_index, record_store=record_store)
