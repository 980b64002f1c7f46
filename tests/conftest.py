"""
Test configuration and fixtures.
"""

import asyncio
from typing import Any, Optional

import pytest

from piecemem.embeddings import FakeEmbedding
from piecemem.memory import PieceMemory
from piecemem.providers.base import ChatMessage, LLMProvider, LLMResponse
from piecemem.store import PieceStore
from piecemem.vectorstore import BaseVectorClient, MemoryVectorClient


class CountingEmbedding(FakeEmbedding):
    """FakeEmbedding that records every text it embeds."""

    def __init__(self, fail_with: Optional[Exception] = None):
        super().__init__()
        self.calls: list[str] = []
        self.fail_with = fail_with

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if self.fail_with is not None:
            raise self.fail_with
        self.calls.extend(texts)
        return await super().embed_batch(texts)


class FakeProvider(LLMProvider):
    """Generation backend returning a canned answer."""

    def __init__(self, answer: str = "Generated answer [1]", fail_with: Optional[Exception] = None):
        self.answer = answer
        self.fail_with = fail_with
        self.calls: list[dict[str, Any]] = []

    async def chat(self, messages: list[ChatMessage], *, model: str) -> LLMResponse:
        self.calls.append({"messages": messages, "model": model})
        if self.fail_with is not None:
            raise self.fail_with
        return LLMResponse(content=self.answer, model=model)


class CountingVectorClient(BaseVectorClient):
    """In-memory vector client that counts collection-creation calls.

    The first ``failures`` calls raise ConnectionError.
    """

    def __init__(self, delay: float = 0.01, failures: int = 0):
        self.inner = MemoryVectorClient()
        self.delay = delay
        self.failures = failures
        self.calls: list[dict[str, Any]] = []

    async def get_or_create_collection(self, name, metadata=None):
        self.calls.append({"name": name, "metadata": metadata})
        await asyncio.sleep(self.delay)
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError("ChromaDB unreachable")
        return await self.inner.get_or_create_collection(name, metadata)


@pytest.fixture
def embedding():
    return CountingEmbedding()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def vector_client():
    return CountingVectorClient()


@pytest.fixture
def store(vector_client, embedding):
    """An uninitialized store over an in-memory index."""
    return PieceStore(vector_client, embedding, collection_name="test-pieces")


@pytest.fixture
def memory(vector_client, embedding, provider):
    """A PieceMemory wired to in-memory backends."""
    return PieceMemory(
        {"collection_name": "test-pieces", "generation_model": "test-model"},
        vector_client=vector_client,
        embedding=embedding,
        provider=provider,
    )
