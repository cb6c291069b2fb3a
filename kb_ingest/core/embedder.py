import asyncio
import logging
from typing import List, Optional
from abc import ABC, abstractmethod

import httpx

from kb_ingest.config import settings
from kb_ingest.errors import EmbeddingError

logger = logging.getLogger(__name__)

# --- Abstract Base Class for Embedding Providers ---

class BaseEmbeddingProvider(ABC):
    """
    A client for one embedding backend. Providers raise on failure; retry
    policy, if any, belongs here rather than in the Embedder.
    """
    @abstractmethod
    async def generate_embedding(self, text: str) -> List[float]:
        pass

    async def aclose(self) -> None:
        pass

# --- OpenAI Provider Implementation ---

class OpenAIEmbeddingProvider(BaseEmbeddingProvider):
    def __init__(self):
        from openai import AsyncOpenAI

        if not settings.OPENAI_API_KEY:
            raise ValueError("OPENAI_API_KEY must be set when EMBEDDING_PROVIDER is 'openai'.")
        self.client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY, timeout=settings.EMBEDDING_TIMEOUT_SECONDS)
        self.model = settings.OPENAI_EMBEDDING_MODEL
        logger.info(f"Initialized OpenAIEmbeddingProvider: {self.model}")

    async def generate_embedding(self, text: str) -> List[float]:
        response = await self.client.embeddings.create(input=text, model=self.model)
        return list(response.data[0].embedding)

    async def aclose(self) -> None:
        await self.client.close()

# --- OpenAI-compatible HTTP Endpoint (e.g. Ollama) ---

class HttpEmbeddingProvider(BaseEmbeddingProvider):
    """
    Calls an OpenAI-compatible `/embeddings` endpoint directly over HTTP.
    """
    def __init__(self, endpoint: str, model: str, api_key: str = "", timeout: float = 30):
        self.endpoint = endpoint.rstrip("/")
        self.model = model
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self.client = httpx.AsyncClient(headers=headers, timeout=timeout)
        logger.info(f"Initialized HttpEmbeddingProvider: {self.model} at {self.endpoint}")

    async def generate_embedding(self, text: str) -> List[float]:
        response = await self.client.post(
            f"{self.endpoint}/embeddings",
            json={"model": self.model, "input": text},
        )
        response.raise_for_status()
        data = response.json()
        return [float(x) for x in data["data"][0]["embedding"]]

    async def aclose(self) -> None:
        await self.client.aclose()

# --- Local Sentence Transformer Implementation ---

class LocalSentenceTransformerProvider(BaseEmbeddingProvider):
    def __init__(self):
        from sentence_transformers import SentenceTransformer

        self.model_name = settings.LOCAL_EMBEDDING_MODEL
        # Use CPU unless GPU is explicitly configured
        self.model = SentenceTransformer(self.model_name, device="cpu")
        logger.info(f"Initialized LocalSentenceTransformerProvider: {self.model_name}")

    async def generate_embedding(self, text: str) -> List[float]:
        # encode() is CPU bound; keep it off the event loop
        embedding = await asyncio.to_thread(self.model.encode, text, convert_to_numpy=True)
        # Convert numpy floats to plain Python floats
        return embedding.tolist()

# --- Embedder Adapter ---

def create_embedding_provider(provider_name: str) -> BaseEmbeddingProvider:
    provider = provider_name.lower()
    if provider == "openai":
        return OpenAIEmbeddingProvider()
    if provider == "http":
        return HttpEmbeddingProvider(
            endpoint=settings.EMBEDDING_ENDPOINT,
            model=settings.EMBEDDING_MODEL,
            api_key=settings.EMBEDDING_API_KEY,
            timeout=settings.EMBEDDING_TIMEOUT_SECONDS,
        )
    if provider == "local":
        return LocalSentenceTransformerProvider()
    raise ValueError(f"Unsupported EMBEDDING_PROVIDER: {provider_name}")


class Embedder:
    """
    Turns chunk text into a vector using the configured provider.

    Every provider failure, including an empty vector, surfaces as an
    EmbeddingError so callers can isolate it to the chunk that caused it.
    The provider is created on first use.
    """
    def __init__(self, provider: Optional[BaseEmbeddingProvider] = None):
        self._provider = provider

    @property
    def provider(self) -> BaseEmbeddingProvider:
        if self._provider is None:
            self._provider = create_embedding_provider(settings.EMBEDDING_PROVIDER)
            logger.info(f"Active embedding provider initialized: {settings.EMBEDDING_PROVIDER}")
        return self._provider

    async def embed(self, text: str) -> List[float]:
        try:
            embedding = await self.provider.generate_embedding(text)
        except EmbeddingError:
            raise
        except Exception as e:
            raise EmbeddingError(f"Embedding request failed: {e}") from e
        if not embedding:
            raise EmbeddingError("Embedding provider returned an empty vector.")
        return embedding

    async def aclose(self) -> None:
        if self._provider is not None:
            await self._provider.aclose()
