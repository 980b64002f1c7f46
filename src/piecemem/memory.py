"""
Service facade shared by the HTTP, MCP and CLI front ends.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence

from piecemem.embeddings import BaseEmbedding, build_embedding
from piecemem.providers.base import LLMProvider, build_provider
from piecemem.rag import RagPipeline
from piecemem.store import PieceStore, StoreState
from piecemem.types import DEFAULT_TOP_K, Piece, QueryResult, RagResult
from piecemem.utils.config import MemoryConfig, resolve_config
from piecemem.utils.logging import get_logger
from piecemem.vectorstore import BaseVectorClient, build_vector_client

logger = get_logger(__name__)


class PieceMemory:
    """
    One piece store plus its RAG pipeline, built from a MemoryConfig.

    Backends not passed in are created from the configuration: Chroma (or
    the in-memory index) for vectors, Ollama (or an OpenAI-compatible
    endpoint) for embeddings and generation.
    """

    def __init__(
        self,
        config: MemoryConfig | dict[str, Any] | None = None,
        *,
        vector_client: Optional[BaseVectorClient] = None,
        embedding: Optional[BaseEmbedding] = None,
        provider: Optional[LLMProvider] = None,
    ):
        self.config = resolve_config(config)
        backend_url = self.config.base_url or (
            self.config.ollama_url if self.config.provider == "ollama" else None
        )

        self.embedding = embedding or build_embedding(
            self.config.provider,
            self.config.embedding_model,
            base_url=backend_url,
            api_key=self.config.api_key,
            timeout=self.config.request_timeout,
        )
        self.provider = provider or build_provider(
            self.config.provider,
            base_url=backend_url,
            api_key=self.config.api_key,
            timeout=self.config.request_timeout,
        )
        self.store = PieceStore(
            vector_client or build_vector_client(self.config.vector_backend, self.config.chroma_url),
            self.embedding,
            collection_name=self.config.collection_name,
        )
        self.rag = RagPipeline(self.store, self.provider, model=self.config.generation_model)

    @property
    def state(self) -> StoreState:
        return self.store.state

    async def init(self) -> None:
        await self.store.init()

    async def add_piece(self, content: str, tags: Sequence[str] = ()) -> Piece:
        return await self.store.add_piece(content, tags)

    async def get_piece(self, id: str) -> Optional[Piece]:
        return await self.store.get_piece(id)

    async def update_piece(
        self,
        id: str,
        content: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
    ) -> Optional[Piece]:
        return await self.store.update_piece(id, content, tags)

    async def delete_piece(self, id: str) -> None:
        await self.store.delete_piece(id)

    async def query_pieces(
        self,
        query: str,
        tags: Optional[Sequence[str]] = None,
        top_k: Optional[int] = None,
    ) -> list[QueryResult]:
        return await self.store.query_pieces(
            query, tags=tags, top_k=top_k if top_k is not None else DEFAULT_TOP_K
        )

    async def rag_query(
        self,
        query: str,
        tags: Optional[Sequence[str]] = None,
        top_k: Optional[int] = None,
    ) -> RagResult:
        return await self.rag.query(query, tags=tags, top_k=top_k)

    async def count(self) -> int:
        return await self.store.count()

    async def close(self) -> None:
        """Close backend HTTP clients."""
        await self.embedding.close()
        await self.provider.close()
        logger.debug("Backends closed")

    async def __aenter__(self) -> "PieceMemory":
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
