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
Embedding providers.

``SentenceTransformerEmbedding`` runs a local model in a worker thread;
``HTTPEmbedding`` calls an OpenAI-compatible ``/embeddings`` endpoint.
Both raise ``EmbeddingError`` on any failure so callers can treat the
provider as a single opaque dependency.
"""

import asyncio
import logging
import threading

import httpx
import numpy as np
from sentence_transformers import SentenceTransformer
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from ..errors import EmbeddingError
from .base import EmbeddingProvider

logger = logging.getLogger(__name__)

# Dimensions for common models so the index can be created before the model loads
KNOWN_MODEL_DIMENSIONS = {
    "all-MiniLM-L6-v2": 384,
    "all-MiniLM-L12-v2": 384,
    "all-mpnet-base-v2": 768,
    "text-embedding-ada-002": 1536,
    "text-embedding-3-small": 1536,
    "@cf/baai/bge-base-en-v1.5": 768,
    "BAAI/bge-small-en-v1.5": 384,
    "BAAI/bge-base-en-v1.5": 768,
    "BAAI/bge-large-en-v1.5": 1024,
    "nomic-ai/nomic-embed-text-v1.5": 768,
}

DEFAULT_VECTOR_SIZE = 384


def detect_vector_size(model_name: str) -> int:
    """Look up the output dimension for a model name, defaulting to 384."""
    for known_model, dims in KNOWN_MODEL_DIMENSIONS.items():
        if known_model in model_name:
            return dims
    logger.warning(f"Unknown model {model_name}, defaulting to {DEFAULT_VECTOR_SIZE} dimensions")
    return DEFAULT_VECTOR_SIZE


def _validate_vector(raw, expected_size: int) -> list[float]:
    try:
        vector = np.asarray(raw, dtype=float).ravel()
    except (TypeError, ValueError) as e:
        raise EmbeddingError(f"Embedding is not numeric: {e}") from e
    if vector.size == 0:
        raise EmbeddingError("Embedding provider returned an empty vector")
    if vector.size != expected_size:
        raise EmbeddingError(f"Embedding dimension mismatch: expected {expected_size}, got {vector.size}")
    if not np.all(np.isfinite(vector)):
        raise EmbeddingError("Embedding contains non-finite values")
    return vector.tolist()


class SentenceTransformerEmbedding(EmbeddingProvider):
    """Local sentence-transformers model, loaded lazily on first use."""

    def __init__(self, model_name: str, vector_size: int | None = None):
        self.model_name = model_name
        self._vector_size = vector_size or detect_vector_size(model_name)
        self._model: SentenceTransformer | None = None
        self._model_lock = threading.Lock()

    @property
    def vector_size(self) -> int:
        return self._vector_size

    def _load_model(self) -> SentenceTransformer:
        # Double-checked so concurrent first requests load the model once
        if self._model is None:
            with self._model_lock:
                if self._model is None:
                    logger.info(f"Loading embedding model: {self.model_name}")
                    self._model = SentenceTransformer(self.model_name, trust_remote_code=True)
                    logger.info(f"Loaded model: {self.model_name}")
        return self._model

    def _encode(self, text: str) -> list[float]:
        model = self._load_model()
        return _validate_vector(model.encode(text, convert_to_tensor=False), self._vector_size)

    async def embed(self, text: str) -> list[float]:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self._encode, text)
        except EmbeddingError:
            raise
        except Exception as e:
            logger.error(f"Failed to generate embedding: {e.__class__.__name__}: {e}")
            raise EmbeddingError(f"Failed to generate embedding: {e}") from e


def is_retryable_http_error(exception: BaseException) -> bool:
    """Retry transport failures and 5xx responses; 4xx responses are permanent."""
    if isinstance(exception, httpx.TransportError):
        return True
    if isinstance(exception, httpx.HTTPStatusError):
        return 500 <= exception.response.status_code < 600
    return False


class HTTPEmbedding(EmbeddingProvider):
    """Remote embedding endpoint speaking the OpenAI ``/embeddings`` shape."""

    def __init__(
        self,
        url: str,
        model_name: str,
        api_key: str | None = None,
        timeout: float = 10.0,
        vector_size: int | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.url = url
        self.model_name = model_name
        self._vector_size = vector_size or detect_vector_size(model_name)
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = client or httpx.AsyncClient(timeout=timeout, headers=headers)

    @property
    def vector_size(self) -> int:
        return self._vector_size

    @retry(
        retry=retry_if_exception(is_retryable_http_error),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        reraise=True,
    )
    async def _post(self, text: str) -> dict:
        response = await self._client.post(self.url, json={"input": text, "model": self.model_name})
        response.raise_for_status()
        return response.json()

    async def embed(self, text: str) -> list[float]:
        try:
            data = await self._post(text)
        except httpx.HTTPStatusError as e:
            logger.warning(f"Embedding endpoint HTTP error {e.response.status_code}")
            raise EmbeddingError(f"Embedding endpoint returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.warning(f"Embedding endpoint unreachable: {type(e).__name__}")
            raise EmbeddingError(f"Embedding endpoint unreachable: {e}") from e

        # OpenAI shape first, then a bare {"embedding": [...]}
        try:
            raw = data["data"][0]["embedding"] if "data" in data else data["embedding"]
        except (KeyError, IndexError, TypeError) as e:
            raise EmbeddingError("Malformed embedding response") from e
        return _validate_vector(raw, self._vector_size)

    async def close(self) -> None:
        await self._client.aclose()
