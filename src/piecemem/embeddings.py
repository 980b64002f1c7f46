"""Embedding gateway implementations.

Backend errors are never retried or masked: a piece cannot be stored or
searched without a valid vector, so failures reach the caller as raised.
"""

import hashlib
import math
import re
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from piecemem.utils.logging import get_logger

logger = get_logger(__name__)


class BaseEmbedding(ABC):
    """Abstract base class for embedding backends."""

    model: str

    @abstractmethod
    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed several texts in one backend call, preserving order."""

    async def embed(self, text: str) -> list[float]:
        """Embed a single text."""
        embeddings = await self._embed_input(text)
        return embeddings[0]

    async def _embed_input(self, text: str) -> list[list[float]]:
        return await self.embed_batch([text])

    async def close(self) -> None:
        """Release backend resources. Override if needed."""


class OllamaEmbedding(BaseEmbedding):
    """Embeddings from an Ollama server (``POST /api/embed``)."""

    def __init__(
        self,
        model: str = "nomic-embed-text-v2-moe",
        base_url: str = "http://localhost:11434",
        timeout: float = 120.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)
        return self._client

    async def _request(self, input: str | list[str]) -> list[list[float]]:
        response = await self._get_client().post(
            "/api/embed", json={"model": self.model, "input": input}
        )
        response.raise_for_status()
        return response.json()["embeddings"]

    async def _embed_input(self, text: str) -> list[list[float]]:
        return await self._request(text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        embeddings = await self._request(texts)
        logger.debug(f"Embedded {len(texts)} texts with {self.model}")
        return embeddings

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class OpenAIEmbedding(BaseEmbedding):
    """Embeddings from the OpenAI API or any OpenAI-compatible endpoint."""

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 120.0,
    ):
        self.model = model
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self._client = None

    def _get_client(self):
        if self._client is None:
            from openai import AsyncOpenAI
            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url, timeout=self.timeout)
        return self._client

    async def _embed_input(self, text: str) -> list[list[float]]:
        response = await self._get_client().embeddings.create(model=self.model, input=text)
        return [item.embedding for item in response.data]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        response = await self._get_client().embeddings.create(model=self.model, input=texts)
        return [item.embedding for item in response.data]

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None


class FakeEmbedding(BaseEmbedding):
    """Deterministic bag-of-words embedding for tests and offline use.

    Each lowercase word is hashed into one dimension, so texts sharing words
    get a positive cosine similarity.
    """

    _WORD = re.compile(r"\w+")

    def __init__(self, dimension: int = 64, seed: int = 42):
        self.model = "fake"
        self.dimension = dimension
        self.seed = seed

    def _hash_text(self, text: str) -> list[float]:
        vector = [0.0] * self.dimension
        for word in self._WORD.findall(text.lower()):
            digest = hashlib.sha256(f"{self.seed}:{word}".encode()).digest()
            vector[int.from_bytes(digest[:4], "big") % self.dimension] += 1.0
        norm = math.sqrt(sum(x * x for x in vector))
        if norm == 0:
            return vector
        return [x / norm for x in vector]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [self._hash_text(text) for text in texts]


def build_embedding(
    provider: str,
    model: str,
    base_url: Optional[str] = None,
    api_key: Optional[str] = None,
    timeout: float = 120.0,
) -> BaseEmbedding:
    """
    Factory: create an embedding backend.

    Args:
        provider: "ollama", "openai" or "fake"
        model: Embedding model name
        base_url: Backend endpoint
        api_key: API key for OpenAI-compatible backends
        timeout: Request timeout in seconds

    Raises:
        ValueError: Unknown provider
    """
    if provider == "ollama":
        return OllamaEmbedding(model=model, base_url=base_url or "http://localhost:11434", timeout=timeout)
    elif provider == "openai":
        return OpenAIEmbedding(model=model, api_key=api_key, base_url=base_url, timeout=timeout)
    elif provider == "fake":
        return FakeEmbedding()
    else:
        raise ValueError(f"Unknown embedding provider: {provider!r}")
