"""Tests for the embedding providers (HTTP provider via httpx.MockTransport)."""

from unittest.mock import MagicMock, patch

import httpx
import numpy as np
import pytest

from mcp_namespaced_memory.errors import EmbeddingError
from mcp_namespaced_memory.storage.embeddings import (
    HTTPEmbedding,
    SentenceTransformerEmbedding,
    _validate_vector,
    detect_vector_size,
    is_retryable_http_error,
)


def _provider(handler, vector_size: int = 3) -> HTTPEmbedding:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HTTPEmbedding(
        url="http://embeddings.test/v1/embeddings",
        model_name="test-model",
        vector_size=vector_size,
        client=client,
    )


class TestVectorValidation:
    def test_accepts_numpy_arrays(self):
        assert _validate_vector(np.array([0.1, 0.2, 0.3]), 3) == pytest.approx([0.1, 0.2, 0.3])

    def test_rejects_wrong_dimension(self):
        with pytest.raises(EmbeddingError, match="dimension mismatch"):
            _validate_vector([0.1, 0.2], 3)

    def test_rejects_empty(self):
        with pytest.raises(EmbeddingError, match="empty"):
            _validate_vector([], 3)

    def test_rejects_non_finite(self):
        with pytest.raises(EmbeddingError, match="non-finite"):
            _validate_vector([0.1, float("nan"), 0.3], 3)

    def test_rejects_non_numeric(self):
        with pytest.raises(EmbeddingError, match="not numeric"):
            _validate_vector(["a", "b", "c"], 3)


class TestDetectVectorSize:
    def test_known_model(self):
        assert detect_vector_size("sentence-transformers/all-mpnet-base-v2") == 768

    def test_unknown_model_defaults(self):
        assert detect_vector_size("mystery-model") == 384


class TestHTTPEmbedding:
    async def test_openai_response_shape(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = request.content
            return httpx.Response(200, json={"data": [{"embedding": [0.1, 0.2, 0.3]}]})

        provider = _provider(handler)
        assert await provider.embed("hello") == pytest.approx([0.1, 0.2, 0.3])
        assert b'"input":"hello"' in seen["body"].replace(b" ", b"")
        await provider.close()

    async def test_bare_embedding_shape(self):
        provider = _provider(lambda request: httpx.Response(200, json={"embedding": [1.0, 0.0, 0.0]}))
        assert await provider.embed("x") == [1.0, 0.0, 0.0]

    async def test_malformed_response(self):
        provider = _provider(lambda request: httpx.Response(200, json={"unexpected": True}))
        with pytest.raises(EmbeddingError, match="Malformed"):
            await provider.embed("x")

    async def test_client_error_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(401, json={"error": "unauthorized"})

        provider = _provider(handler)
        with pytest.raises(EmbeddingError, match="401"):
            await provider.embed("x")
        assert len(calls) == 1

    async def test_server_error_retried_then_succeeds(self):
        responses = iter(
            [
                httpx.Response(503),
                httpx.Response(200, json={"embedding": [0.0, 1.0, 0.0]}),
            ]
        )
        provider = _provider(lambda request: next(responses))

        assert await provider.embed("x") == [0.0, 1.0, 0.0]

    async def test_authorization_header(self):
        provider = HTTPEmbedding(url="http://e.test", model_name="m", api_key="secret", vector_size=3)
        assert provider._client.headers["Authorization"] == "Bearer secret"
        await provider.close()

    def test_retry_classification(self):
        request = httpx.Request("POST", "http://e.test")
        assert is_retryable_http_error(httpx.ConnectError("refused", request=request))
        server_error = httpx.HTTPStatusError("boom", request=request, response=httpx.Response(502, request=request))
        client_error = httpx.HTTPStatusError("bad", request=request, response=httpx.Response(422, request=request))
        assert is_retryable_http_error(server_error)
        assert not is_retryable_http_error(client_error)


class TestSentenceTransformerEmbedding:
    async def test_model_loaded_lazily_once(self):
        model = MagicMock()
        model.encode.return_value = np.zeros(384) + 0.5

        with patch(
            "mcp_namespaced_memory.storage.embeddings.SentenceTransformer", return_value=model
        ) as model_cls:
            provider = SentenceTransformerEmbedding("all-MiniLM-L6-v2")
            model_cls.assert_not_called()

            await provider.embed("first")
            await provider.embed("second")

        model_cls.assert_called_once()
        assert model.encode.call_count == 2

    async def test_encoder_failure_wrapped(self):
        model = MagicMock()
        model.encode.side_effect = RuntimeError("CUDA exploded")

        with patch("mcp_namespaced_memory.storage.embeddings.SentenceTransformer", return_value=model):
            provider = SentenceTransformerEmbedding("all-MiniLM-L6-v2")
            with pytest.raises(EmbeddingError, match="CUDA exploded"):
                await provider.embed("x")
