import json
import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock

from kb_ingest.core.embedder import (
    BaseEmbeddingProvider,
    Embedder,
    HttpEmbeddingProvider,
    create_embedding_provider,
)
from kb_ingest.errors import EmbeddingError


@pytest.fixture
def mock_provider():
    """Mocks an embedding provider."""
    provider = MagicMock(spec=BaseEmbeddingProvider)
    provider.generate_embedding = AsyncMock(return_value=[0.1, 0.2, 0.3])
    provider.aclose = AsyncMock()
    return provider


@pytest.mark.asyncio
async def test_embed_returns_provider_vector(mock_provider):
    embedder = Embedder(provider=mock_provider)

    assert await embedder.embed("some text") == [0.1, 0.2, 0.3]
    mock_provider.generate_embedding.assert_awaited_once_with("some text")


@pytest.mark.asyncio
async def test_provider_failure_becomes_embedding_error(mock_provider):
    mock_provider.generate_embedding.side_effect = TimeoutError("timed out")
    embedder = Embedder(provider=mock_provider)

    with pytest.raises(EmbeddingError, match="timed out"):
        await embedder.embed("some text")


@pytest.mark.asyncio
async def test_empty_vector_is_an_error(mock_provider):
    mock_provider.generate_embedding.return_value = []
    embedder = Embedder(provider=mock_provider)

    with pytest.raises(EmbeddingError):
        await embedder.embed("some text")


@pytest.mark.asyncio
async def test_aclose_closes_provider(mock_provider):
    embedder = Embedder(provider=mock_provider)
    await embedder.aclose()
    mock_provider.aclose.assert_awaited_once()


def _http_provider(handler) -> HttpEmbeddingProvider:
    provider = HttpEmbeddingProvider(endpoint="http://embeddings.local/v1/", model="nomic-embed-text", api_key="secret")
    provider.client = httpx.AsyncClient(headers=provider.client.headers, transport=httpx.MockTransport(handler))
    return provider


@pytest.mark.asyncio
async def test_http_provider_posts_to_embeddings_endpoint():
    seen = {}

    def handler(request: httpx.Request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"data": [{"embedding": [1, 2.5, -3]}]})

    provider = _http_provider(handler)
    embedding = await provider.generate_embedding("hello")
    await provider.aclose()

    assert embedding == [1.0, 2.5, -3.0]
    assert seen["url"] == "http://embeddings.local/v1/embeddings"
    assert seen["auth"] == "Bearer secret"
    assert seen["body"] == {"model": "nomic-embed-text", "input": "hello"}


@pytest.mark.asyncio
async def test_http_provider_error_status_surfaces_as_embedding_error():
    provider = _http_provider(lambda request: httpx.Response(503, json={"error": "overloaded"}))
    embedder = Embedder(provider=provider)

    with pytest.raises(EmbeddingError):
        await embedder.embed("hello")
    await embedder.aclose()


def test_unknown_provider_is_rejected():
    with pytest.raises(ValueError):
        create_embedding_provider("gemini")
