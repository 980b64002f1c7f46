"""Piece store: tagged text pieces over a vector index."""

import asyncio
import uuid
from enum import Enum
from typing import Any, Optional, Sequence

from piecemem.embeddings import BaseEmbedding
from piecemem.exceptions import BackendUnavailableError, NotInitializedError, PieceValidationError
from piecemem.tags import TAG_DELIMITER, TAGS_FIELD, build_tag_filter, decode_tags, encode_tags
from piecemem.types import DEFAULT_TOP_K, Piece, QueryResult
from piecemem.utils.logging import get_logger
from piecemem.vectorstore import COSINE_SPACE, BaseCollection, BaseVectorClient

logger = get_logger(__name__)


class StoreState(str, Enum):
    """Initialization state of a PieceStore."""
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


def validate_text(field: str, value: Any) -> str:
    if not isinstance(value, str):
        raise PieceValidationError(field, f"expected a string, got {type(value).__name__}")
    return value


def validate_tags(tags: Any) -> list[str]:
    """Check a tag list and drop duplicates, keeping first occurrences."""
    if isinstance(tags, str) or not isinstance(tags, (list, tuple)):
        raise PieceValidationError("tags", "expected a list of strings")
    unique: list[str] = []
    for tag in tags:
        if not isinstance(tag, str) or not tag:
            raise PieceValidationError("tags", "every tag must be a non-empty string")
        if TAG_DELIMITER in tag:
            raise PieceValidationError("tags", f"tag {tag!r} contains {TAG_DELIMITER!r}")
        if tag not in unique:
            unique.append(tag)
    return unique


def validate_top_k(top_k: Any) -> int:
    if isinstance(top_k, bool) or not isinstance(top_k, int) or top_k < 1:
        raise PieceValidationError("top_k", "expected a positive integer")
    return top_k


def _column(result: dict[str, Any], key: str) -> list[Any]:
    return result.get(key) or []


def _first_row(result: dict[str, Any], key: str) -> list[Any]:
    rows = result.get(key) or []
    return (rows[0] or []) if rows else []


def _at(values: list[Any], index: int) -> Any:
    return values[index] if index < len(values) else None


def _consume_exception(task: asyncio.Future) -> None:
    # Every waiter may have been cancelled; retrieve the error so asyncio does not report it.
    if not task.cancelled():
        task.exception()


def _to_piece(id: str, document: Optional[str], metadata: Optional[dict[str, Any]]) -> Piece:
    """Normalize possibly-missing index fields into a Piece."""
    encoded = (metadata or {}).get(TAGS_FIELD) or ""
    if not isinstance(encoded, str):
        encoded = ""
    return Piece(id=id, content=document or "", tags=decode_tags(encoded))


class PieceStore:
    """
    Stores pieces in a vector index and searches them by similarity.

    ``init()`` must complete before any data operation. Concurrent ``init()``
    calls share one in-flight initialization; a failed one leaves the store
    uninitialized so the next call retries.

    Tags never reach the embedding backend, so a tag-only update keeps the
    existing embedding.
    """

    def __init__(
        self,
        vector_client: BaseVectorClient,
        embedding: BaseEmbedding,
        collection_name: str = "pieces",
    ):
        self.vector_client = vector_client
        self.embedding = embedding
        self.collection_name = collection_name
        self._collection: Optional[BaseCollection] = None
        self._init_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> StoreState:
        if self._collection is not None:
            return StoreState.READY
        if self._init_task is not None:
            return StoreState.INITIALIZING
        return StoreState.UNINITIALIZED

    async def init(self) -> None:
        """Fetch or create the cosine-space collection, once."""
        if self._collection is not None:
            return

        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._open_collection())
            self._init_task.add_done_callback(_consume_exception)
        task = self._init_task

        try:
            await asyncio.shield(task)
        except Exception:
            if self._init_task is task:
                self._init_task = None
            raise

    async def _open_collection(self) -> None:
        logger.info(f"Opening collection {self.collection_name!r}")
        try:
            collection = await self.vector_client.get_or_create_collection(
                name=self.collection_name, metadata=dict(COSINE_SPACE)
            )
        except Exception as e:
            logger.warning(f"Collection {self.collection_name!r} unavailable: {e}")
            self._init_task = None
            raise BackendUnavailableError(f"Failed to open collection {self.collection_name!r}: {e}") from e
        self._collection = collection
        self._init_task = None
        logger.info(f"Collection {self.collection_name!r} ready")

    def _get_collection(self) -> BaseCollection:
        if self._collection is None:
            raise NotInitializedError()
        return self._collection

    async def add_piece(self, content: str, tags: Sequence[str] = ()) -> Piece:
        """Embed and persist a new piece."""
        collection = self._get_collection()
        content = validate_text("content", content)
        tags = validate_tags(tags)

        id = str(uuid.uuid4())
        embedding = await self.embedding.embed(content)

        await collection.add(
            ids=[id],
            embeddings=[embedding],
            documents=[content],
            metadatas=[{TAGS_FIELD: encode_tags(tags)}],
        )
        logger.debug(f"Added piece {id} with tags {tags}")
        return Piece(id=id, content=content, tags=tags)

    async def get_piece(self, id: str) -> Optional[Piece]:
        """Return the piece, or None if it does not exist."""
        collection = self._get_collection()
        id = validate_text("id", id)

        result = await collection.get(ids=[id], include=["documents", "metadatas"])
        ids = _column(result, "ids")
        if not ids:
            return None

        return _to_piece(
            ids[0],
            _at(_column(result, "documents"), 0),
            _at(_column(result, "metadatas"), 0),
        )

    async def update_piece(
        self,
        id: str,
        content: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
    ) -> Optional[Piece]:
        """
        Update content and/or tags; omitted fields keep their value.

        Returns None, without writing, if the piece does not exist.
        """
        collection = self._get_collection()
        id = validate_text("id", id)
        if content is not None:
            content = validate_text("content", content)
        if tags is not None:
            tags = validate_tags(tags)

        existing = await self.get_piece(id)
        if existing is None:
            return None

        new_content = content if content is not None else existing.content
        new_tags = tags if tags is not None else existing.tags

        if content is not None:
            embedding = await self.embedding.embed(new_content)
            await collection.update(
                ids=[id],
                documents=[new_content],
                embeddings=[embedding],
                metadatas=[{TAGS_FIELD: encode_tags(new_tags)}],
            )
        else:
            await collection.update(ids=[id], metadatas=[{TAGS_FIELD: encode_tags(new_tags)}])

        logger.debug(f"Updated piece {id} (content changed: {content is not None})")
        return Piece(id=id, content=new_content, tags=list(new_tags))

    async def delete_piece(self, id: str) -> None:
        """Delete a piece. Deleting a missing id is a no-op."""
        collection = self._get_collection()
        id = validate_text("id", id)
        await collection.delete(ids=[id])
        logger.debug(f"Deleted piece {id}")

    async def query_pieces(
        self,
        query: str,
        tags: Optional[Sequence[str]] = None,
        top_k: int = DEFAULT_TOP_K,
    ) -> list[QueryResult]:
        """
        Semantic search, nearest first.

        Args:
            query: Text to search for
            tags: Every returned piece carries all of these tags
            top_k: Maximum number of results

        Returns:
            Results with ``score = 1 - cosine distance``, in index order
        """
        collection = self._get_collection()
        query = validate_text("query", query)
        tag_filter = build_tag_filter(validate_tags(tags) if tags is not None else None)
        top_k = validate_top_k(top_k)

        query_embedding = await self.embedding.embed(query)
        results = await collection.query(
            query_embeddings=[query_embedding],
            n_results=top_k,
            where=tag_filter.to_where(),
            include=["documents", "metadatas", "distances"],
        )

        ids = _first_row(results, "ids")
        documents = _first_row(results, "documents")
        metadatas = _first_row(results, "metadatas")
        distances = _first_row(results, "distances")

        query_results = []
        for i, piece_id in enumerate(ids):
            distance = _at(distances, i)
            query_results.append(QueryResult(
                piece=_to_piece(piece_id, _at(documents, i), _at(metadatas, i)),
                score=1 - (distance if distance is not None else 0.0),
            ))

        logger.debug(f"Query returned {len(query_results)} pieces (filter: {tag_filter})")
        return query_results

    async def count(self) -> int:
        """Number of stored pieces."""
        return await self._get_collection().count()
