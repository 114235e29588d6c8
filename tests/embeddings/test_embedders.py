"""
Tests for the embedding model clients.

The HTTP embedder runs against httpx.MockTransport; the Vertex AI SDK is
replaced with mocks.
"""

import json
from unittest.mock import MagicMock

import httpx
import numpy as np
import pytest

from repo_embeddings.embeddings import EmbeddingConfig, EmbeddingError, HTTPEmbedder, MockEmbedder
from repo_embeddings.embeddings.vertex_ai import VertexAIEmbedder


def http_embedder(handler, **config):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HTTPEmbedder(EmbeddingConfig(api_url="http://embed.test/v1/embeddings", **config), client=client)


class TestHTTPEmbedder:

    @pytest.mark.asyncio
    async def test_posts_model_and_input(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"data": [{"embedding": [0.5, 0.25, 1]}]})

        embedder = http_embedder(handler, model_name="qodo-embed-1")

        vector = await embedder.embed("def f(): pass")

        assert vector == [0.5, 0.25, 1.0]
        assert seen["url"] == "http://embed.test/v1/embeddings"
        assert seen["body"] == {"model": "qodo-embed-1", "input": "def f(): pass"}
        await embedder.close()

    @pytest.mark.asyncio
    async def test_error_status(self):
        embedder = http_embedder(lambda request: httpx.Response(503, text="overloaded"))

        with pytest.raises(EmbeddingError, match="503"):
            await embedder.embed("x")

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        embedder = http_embedder(handler)

        with pytest.raises(EmbeddingError, match="request failed"):
            await embedder.embed("x")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(200, text="not json"),
            httpx.Response(200, json={"data": []}),
            httpx.Response(200, json={"unexpected": True}),
        ],
    )
    async def test_unusable_responses(self, response):
        embedder = http_embedder(lambda request: response)

        with pytest.raises(EmbeddingError):
            await embedder.embed("x")


class TestMockEmbedder:

    @pytest.mark.asyncio
    async def test_deterministic_unit_vectors(self):
        embedder = MockEmbedder(EmbeddingConfig(dimensions=64))

        first = await embedder.embed("hello")
        second = await embedder.embed("hello")
        other = await embedder.embed("world")

        assert first == second
        assert first != other
        assert len(first) == 64
        assert np.linalg.norm(first) == pytest.approx(1.0)

    def test_stats_flag_mock(self):
        assert MockEmbedder().get_stats()["mock"] is True


class TestVertexAIEmbedder:

    @pytest.fixture
    def embedder(self):
        embedder = VertexAIEmbedder(EmbeddingConfig(model_name="text-embedding-004", dimensions=3, rate_limit_rpm=0))
        embedder._model = MagicMock()
        embedder._model.get_embeddings.return_value = [MagicMock(values=[0.1, 0.2, 0.3])]
        embedder._text_embedding_input = MagicMock()
        embedder._vertexai_initialized = True
        return embedder

    @pytest.mark.asyncio
    async def test_document_and_query_task_types(self, embedder):
        assert await embedder.embed("code") == [0.1, 0.2, 0.3]
        embedder._text_embedding_input.assert_called_with(text="code", task_type="RETRIEVAL_DOCUMENT")

        await embedder.embed("question", is_query=True)
        embedder._text_embedding_input.assert_called_with(text="question", task_type="RETRIEVAL_QUERY")
        embedder._model.get_embeddings.assert_called_with(
            [embedder._text_embedding_input.return_value], output_dimensionality=3
        )

    @pytest.mark.asyncio
    async def test_sdk_failure_becomes_embedding_error(self, embedder):
        embedder._model.get_embeddings.side_effect = RuntimeError("quota exceeded")

        with pytest.raises(EmbeddingError, match="quota exceeded"):
            await embedder.embed("code")

    def test_rate_limit_tracks_requests(self, embedder):
        embedder.config.rate_limit_rpm = 100

        embedder.generate_embedding("a")
        embedder.generate_embedding("b")

        assert embedder.get_stats()["recent_requests"] == 2
