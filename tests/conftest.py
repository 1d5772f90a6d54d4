import hashlib
import os
import random
import sys
import uuid

import pytest

# Force CPU-only mode for tests (avoids CUDA compatibility issues)
os.environ["CUDA_VISIBLE_DEVICES"] = ""

# In-process Qdrant: no server, no exclusive file lock shared between test processes
if "QDRANT_URL" not in os.environ and "QDRANT_STORAGE_PATH" not in os.environ:
    os.environ["QDRANT_URL"] = ":memory:"

# Add src directory to Python path
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(__file__)), "src"))

from mcp_namespaced_memory.config import SearchSettings, SessionSettings  # noqa: E402
from mcp_namespaced_memory.errors import EmbeddingError  # noqa: E402
from mcp_namespaced_memory.services.memory_service import MemoryService  # noqa: E402
from mcp_namespaced_memory.storage.base import EmbeddingProvider  # noqa: E402
from mcp_namespaced_memory.storage.factory import StorageBackends  # noqa: E402
from mcp_namespaced_memory.storage.qdrant_index import QdrantVectorIndex  # noqa: E402
from mcp_namespaced_memory.storage.sqlite_records import SQLiteRecordStore  # noqa: E402

VECTOR_SIZE = 384


def deterministic_embedding(text: str, vector_size: int = VECTOR_SIZE) -> list[float]:
    """Create a deterministic embedding from the text hash.

    Identical texts score 1.0 against each other; unrelated texts land near 0,
    well under the 0.3 similarity threshold.
    """
    seed = int(hashlib.sha256(text.encode()).hexdigest(), 16) % (2**32)
    rng = random.Random(seed)
    return [rng.random() * 2 - 1 for _ in range(vector_size)]


class DeterministicEmbedding(EmbeddingProvider):
    """Hash-seeded embedding provider; no model download required."""

    def __init__(self, vector_size: int = VECTOR_SIZE):
        self._vector_size = vector_size
        self.calls: list[str] = []
        self.fail = False
        # Texts that should embed exactly like another text (simulated synonyms)
        self.aliases: dict[str, str] = {}

    @property
    def vector_size(self) -> int:
        return self._vector_size

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.fail:
            raise EmbeddingError("embedding provider unavailable")
        return deterministic_embedding(self.aliases.get(text, text), self._vector_size)


@pytest.fixture
def embedder():
    return DeterministicEmbedding()


@pytest.fixture
async def vector_index():
    index = QdrantVectorIndex(
        vector_size=VECTOR_SIZE,
        collection_name=f"test_{uuid.uuid4().hex[:8]}",
        url=":memory:",
    )
    await index.initialize()
    yield index
    await index.close()


@pytest.fixture
async def record_store(tmp_path):
    store = SQLiteRecordStore(str(tmp_path / "memories.db"))
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def search_settings():
    return SearchSettings()


@pytest.fixture
def session_settings():
    return SessionSettings()


@pytest.fixture
def memory_service(embedder, vector_index, record_store, search_settings):
    return MemoryService(embedder, vector_index, record_store, search_settings=search_settings)


@pytest.fixture
def backends(embedder, vector_index, record_store):
    return StorageBackends(embedder=embedder, vector_index=vector_index, record_store=record_store)
