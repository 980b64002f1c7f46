"""Vector index adapters.

Both backends expose the same async collection contract, with results in
Chroma's column-oriented shape (``{"ids": [...], "documents": [...], ...}``;
query results carry one extra level of nesting per query embedding).
"""

import asyncio
import functools
import math
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional, Sequence
from urllib.parse import urlparse

from piecemem.utils.logging import get_logger

logger = get_logger(__name__)

COSINE_SPACE = {"hnsw:space": "cosine"}
DEFAULT_GET_INCLUDE = ("documents", "metadatas")
DEFAULT_QUERY_INCLUDE = ("documents", "metadatas", "distances")


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Calculate cosine similarity between two vectors."""
    if len(a) != len(b):
        raise ValueError("Vectors must have the same dimension")
    dot_product = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(x * x for x in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot_product / (norm_a * norm_b)


class BaseCollection(ABC):
    """Abstract interface for a named collection of embedded documents."""

    @abstractmethod
    async def add(
        self,
        ids: list[str],
        embeddings: list[list[float]],
        documents: list[str],
        metadatas: list[dict[str, Any]],
    ) -> None:
        pass

    @abstractmethod
    async def get(self, ids: list[str], include: Sequence[str] = DEFAULT_GET_INCLUDE) -> dict[str, Any]:
        pass

    @abstractmethod
    async def update(
        self,
        ids: list[str],
        documents: Optional[list[str]] = None,
        embeddings: Optional[list[list[float]]] = None,
        metadatas: Optional[list[dict[str, Any]]] = None,
    ) -> None:
        pass

    @abstractmethod
    async def delete(self, ids: list[str]) -> None:
        pass

    @abstractmethod
    async def query(
        self,
        query_embeddings: list[list[float]],
        n_results: int,
        where: Optional[dict[str, Any]] = None,
        include: Sequence[str] = DEFAULT_QUERY_INCLUDE,
    ) -> dict[str, Any]:
        pass

    @abstractmethod
    async def count(self) -> int:
        pass


class BaseVectorClient(ABC):
    """Abstract interface for a vector index server."""

    @abstractmethod
    async def get_or_create_collection(
        self, name: str, metadata: Optional[dict[str, Any]] = None
    ) -> BaseCollection:
        pass


def matches_where(metadata: dict[str, Any], where: Optional[dict[str, Any]]) -> bool:
    """Evaluate a Chroma-style ``where`` clause against one metadata dict.

    Supports ``$and``, ``$or``, ``{field: {"$contains": s}}``,
    ``{field: {"$eq": v}}``, ``{field: {"$ne": v}}`` and ``{field: v}``.
    """
    if not where:
        return True
    for key, condition in where.items():
        if key == "$and":
            if not all(matches_where(metadata, clause) for clause in condition):
                return False
        elif key == "$or":
            if not any(matches_where(metadata, clause) for clause in condition):
                return False
        elif isinstance(condition, dict):
            value = metadata.get(key)
            for op, operand in condition.items():
                if op == "$contains":
                    if value is None or operand not in value:
                        return False
                elif op == "$eq":
                    if value != operand:
                        return False
                elif op == "$ne":
                    if value == operand:
                        return False
                else:
                    raise ValueError(f"Unsupported where operator: {op}")
        elif metadata.get(key) != condition:
            return False
    return True


class MemoryCollection(BaseCollection):
    """In-memory collection for testing and small datasets."""

    def __init__(self, name: str, metadata: Optional[dict[str, Any]] = None):
        self.name = name
        self.metadata = metadata or {}
        self._embeddings: dict[str, list[float]] = {}
        self._documents: dict[str, str] = {}
        self._metadatas: dict[str, dict[str, Any]] = {}

    async def add(self, ids, embeddings, documents, metadatas) -> None:
        if not (len(ids) == len(embeddings) == len(documents) == len(metadatas)):
            raise ValueError("ids, embeddings, documents and metadatas must have the same length")
        for id, embedding, document, metadata in zip(ids, embeddings, documents, metadatas):
            if id in self._embeddings:
                raise ValueError(f"ID already exists: {id}")
            self._embeddings[id] = list(embedding)
            self._documents[id] = document
            self._metadatas[id] = dict(metadata)

    async def get(self, ids, include=DEFAULT_GET_INCLUDE) -> dict[str, Any]:
        found = [id for id in ids if id in self._embeddings]
        result: dict[str, Any] = {"ids": found}
        if "documents" in include:
            result["documents"] = [self._documents[id] for id in found]
        if "metadatas" in include:
            result["metadatas"] = [dict(self._metadatas[id]) for id in found]
        if "embeddings" in include:
            result["embeddings"] = [list(self._embeddings[id]) for id in found]
        return result

    async def update(self, ids, documents=None, embeddings=None, metadatas=None) -> None:
        for i, id in enumerate(ids):
            if id not in self._embeddings:
                logger.warning(f"Update of missing ID ignored: {id}")
                continue
            if documents is not None:
                self._documents[id] = documents[i]
            if embeddings is not None:
                self._embeddings[id] = list(embeddings[i])
            if metadatas is not None:
                self._metadatas[id] = dict(metadatas[i])

    async def delete(self, ids) -> None:
        for id in ids:
            self._embeddings.pop(id, None)
            self._documents.pop(id, None)
            self._metadatas.pop(id, None)

    async def query(self, query_embeddings, n_results, where=None, include=DEFAULT_QUERY_INCLUDE) -> dict[str, Any]:
        result: dict[str, Any] = {"ids": []}
        for key in ("documents", "metadatas", "distances"):
            if key in include:
                result[key] = []

        for query_embedding in query_embeddings:
            scored = []
            for id, embedding in self._embeddings.items():
                if not matches_where(self._metadatas[id], where):
                    continue
                scored.append((id, 1.0 - cosine_similarity(query_embedding, embedding)))
            scored.sort(key=lambda item: item[1])
            top = scored[:n_results]

            result["ids"].append([id for id, _ in top])
            if "documents" in result:
                result["documents"].append([self._documents[id] for id, _ in top])
            if "metadatas" in result:
                result["metadatas"].append([dict(self._metadatas[id]) for id, _ in top])
            if "distances" in result:
                result["distances"].append([distance for _, distance in top])
        return result

    async def count(self) -> int:
        return len(self._embeddings)


class MemoryVectorClient(BaseVectorClient):
    """In-process stand-in for a vector index server."""

    def __init__(self):
        self._collections: dict[str, MemoryCollection] = {}

    async def get_or_create_collection(self, name, metadata=None) -> MemoryCollection:
        if name not in self._collections:
            self._collections[name] = MemoryCollection(name, metadata)
        return self._collections[name]


async def _run_blocking(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))


class ChromaCollection(BaseCollection):
    """Async wrapper over a ``chromadb`` collection.

    The chromadb client is synchronous; calls run in the default executor.
    """

    def __init__(self, collection: Any):
        self._collection = collection

    @property
    def name(self) -> str:
        return self._collection.name

    async def add(self, ids, embeddings, documents, metadatas) -> None:
        await _run_blocking(
            self._collection.add,
            ids=ids, embeddings=embeddings, documents=documents, metadatas=metadatas,
        )

    async def get(self, ids, include=DEFAULT_GET_INCLUDE) -> dict[str, Any]:
        return await _run_blocking(self._collection.get, ids=ids, include=list(include))

    async def update(self, ids, documents=None, embeddings=None, metadatas=None) -> None:
        kwargs: dict[str, Any] = {"ids": ids}
        if documents is not None:
            kwargs["documents"] = documents
        if embeddings is not None:
            kwargs["embeddings"] = embeddings
        if metadatas is not None:
            kwargs["metadatas"] = metadatas
        await _run_blocking(self._collection.update, **kwargs)

    async def delete(self, ids) -> None:
        await _run_blocking(self._collection.delete, ids=ids)

    async def query(self, query_embeddings, n_results, where=None, include=DEFAULT_QUERY_INCLUDE) -> dict[str, Any]:
        return await _run_blocking(
            self._collection.query,
            query_embeddings=query_embeddings,
            n_results=n_results,
            where=where,
            include=list(include),
        )

    async def count(self) -> int:
        return await _run_blocking(self._collection.count)


class ChromaVectorClient(BaseVectorClient):
    """ChromaDB server client (``chromadb.HttpClient``)."""

    def __init__(self, url: str = "http://localhost:8000"):
        self.url = url
        self._client = None

    def _connect(self):
        import chromadb

        parsed = urlparse(self.url)
        ssl = parsed.scheme == "https"
        port = parsed.port or (443 if ssl else 8000)
        client = chromadb.HttpClient(host=parsed.hostname or "localhost", port=port, ssl=ssl)
        logger.info(f"Chroma: connected to {self.url}")
        return client

    async def get_or_create_collection(self, name, metadata=None) -> ChromaCollection:
        if self._client is None:
            self._client = await _run_blocking(self._connect)
        collection = await _run_blocking(
            self._client.get_or_create_collection, name=name, metadata=metadata
        )
        return ChromaCollection(collection)


def build_vector_client(backend: str = "chroma", url: Optional[str] = None) -> BaseVectorClient:
    """
    Factory: create a vector index client.

    Args:
        backend: "chroma" or "memory"
        url: Chroma server URL (chroma only)

    Raises:
        ValueError: Unknown backend
    """
    if backend == "chroma":
        return ChromaVectorClient(url or "http://localhost:8000")
    elif backend == "memory":
        return MemoryVectorClient()
    else:
        raise ValueError(
            f"Unknown vector store backend: {backend!r}. "
            f"Supported: 'chroma', 'memory'"
        )
