"""Tests for the piece store."""

import asyncio
import gc
from unittest.mock import AsyncMock, MagicMock

import pytest

from piecemem.exceptions import BackendUnavailableError, NotInitializedError, PieceValidationError
from piecemem.store import PieceStore, StoreState

from conftest import CountingEmbedding, CountingVectorClient


def mocked_store(collection: MagicMock, embedding=None) -> PieceStore:
    """A store whose collection is a mock returning canned index results."""
    client = MagicMock()
    client.get_or_create_collection = AsyncMock(return_value=collection)
    return PieceStore(client, embedding or CountingEmbedding(), collection_name="mocked")


class TestInitialization:
    """Tests for store initialization."""

    @pytest.mark.asyncio
    async def test_creates_cosine_collection(self, store, vector_client):
        await store.init()

        assert store.state == StoreState.READY
        assert vector_client.calls == [
            {"name": "test-pieces", "metadata": {"hnsw:space": "cosine"}}
        ]

    @pytest.mark.asyncio
    async def test_operations_before_init_fail(self, store, embedding):
        assert store.state == StoreState.UNINITIALIZED

        with pytest.raises(NotInitializedError):
            await store.add_piece("content", ["tag"])
        with pytest.raises(NotInitializedError):
            await store.get_piece("id")
        with pytest.raises(NotInitializedError):
            await store.query_pieces("query")

        assert embedding.calls == []
        assert store.state == StoreState.UNINITIALIZED

    @pytest.mark.asyncio
    async def test_concurrent_init_is_coalesced(self, store, vector_client):
        await asyncio.gather(*(store.init() for _ in range(10)))

        assert len(vector_client.calls) == 1
        assert store.state == StoreState.READY

    @pytest.mark.asyncio
    async def test_repeated_init_is_noop(self, store, vector_client):
        await store.init()
        await store.init()

        assert len(vector_client.calls) == 1

    @pytest.mark.asyncio
    async def test_state_while_initializing(self, store):
        task = asyncio.create_task(store.init())
        await asyncio.sleep(0)

        assert store.state == StoreState.INITIALIZING

        await task
        assert store.state == StoreState.READY

    @pytest.mark.asyncio
    async def test_failure_resets_and_retries(self, embedding):
        vector_client = CountingVectorClient(failures=1)
        store = PieceStore(vector_client, embedding)

        with pytest.raises(BackendUnavailableError, match="ChromaDB unreachable") as exc_info:
            await store.init()

        assert isinstance(exc_info.value.__cause__, ConnectionError)
        assert store.state == StoreState.UNINITIALIZED

        await store.init()
        assert store.state == StoreState.READY
        assert len(vector_client.calls) == 2

    @pytest.mark.asyncio
    async def test_concurrent_failure_shared(self, embedding):
        vector_client = CountingVectorClient(failures=1)
        store = PieceStore(vector_client, embedding)

        results = await asyncio.gather(*(store.init() for _ in range(5)), return_exceptions=True)

        assert all(isinstance(r, BackendUnavailableError) for r in results)
        assert len(vector_client.calls) == 1
        assert store.state == StoreState.UNINITIALIZED

    @pytest.mark.asyncio
    async def test_failure_after_waiters_cancelled_is_retrieved(self, embedding):
        loop = asyncio.get_running_loop()
        reported = []
        previous_handler = loop.get_exception_handler()
        loop.set_exception_handler(lambda loop, context: reported.append(context))
        try:
            vector_client = CountingVectorClient(failures=1)
            store = PieceStore(vector_client, embedding)

            waiter = asyncio.create_task(store.init())
            await asyncio.sleep(0)
            waiter.cancel()
            with pytest.raises(asyncio.CancelledError):
                await waiter

            await asyncio.sleep(vector_client.delay * 5)
            gc.collect()

            assert store.state == StoreState.UNINITIALIZED
            assert reported == []
        finally:
            loop.set_exception_handler(previous_handler)

        await store.init()
        assert store.state == StoreState.READY


class TestPieceLifecycle:
    """Tests for add / get / update / delete."""

    @pytest.mark.asyncio
    async def test_add_and_get(self, store, embedding):
        await store.init()

        piece = await store.add_piece("Hello world", ["greeting", "test"])

        assert piece.content == "Hello world"
        assert piece.tags == ["greeting", "test"]
        assert piece.id
        assert embedding.calls == ["Hello world"]

        fetched = await store.get_piece(piece.id)
        assert fetched == piece

    @pytest.mark.asyncio
    async def test_add_stores_encoded_tags(self, store, vector_client):
        await store.init()
        piece = await store.add_piece("content", ["a", "b"])

        collection = await vector_client.inner.get_or_create_collection("test-pieces")
        stored = await collection.get(ids=[piece.id])

        assert stored["metadatas"] == [{"tags": ",a,b,"}]
        assert stored["documents"] == ["content"]

    @pytest.mark.asyncio
    async def test_add_without_tags(self, store):
        await store.init()

        piece = await store.add_piece("No tags")

        assert piece.tags == []
        assert (await store.get_piece(piece.id)).tags == []

    @pytest.mark.asyncio
    async def test_ids_are_unique(self, store):
        await store.init()

        first = await store.add_piece("one")
        second = await store.add_piece("two")

        assert first.id != second.id

    @pytest.mark.asyncio
    async def test_duplicate_tags_collapsed(self, store):
        await store.init()

        piece = await store.add_piece("content", ["a", "b", "a"])

        assert piece.tags == ["a", "b"]

    @pytest.mark.asyncio
    async def test_embedding_failure_persists_nothing(self, vector_client):
        store = PieceStore(vector_client, CountingEmbedding(fail_with=RuntimeError("Ollama down")))
        await store.init()

        with pytest.raises(RuntimeError, match="Ollama down"):
            await store.add_piece("will fail", ["tag"])

        assert await store.count() == 0

    @pytest.mark.asyncio
    async def test_get_missing(self, store):
        await store.init()

        assert await store.get_piece("nonexistent") is None

    @pytest.mark.asyncio
    async def test_get_normalizes_missing_fields(self):
        collection = MagicMock()
        collection.get = AsyncMock(return_value={
            "ids": ["p1"],
            "documents": [None],
            "metadatas": [None],
        })
        store = mocked_store(collection)
        await store.init()

        piece = await store.get_piece("p1")

        assert piece.id == "p1"
        assert piece.content == ""
        assert piece.tags == []

    @pytest.mark.asyncio
    async def test_update_tags_only_skips_embedding(self, store, embedding):
        await store.init()
        piece = await store.add_piece("Original content", ["old"])
        calls_before = len(embedding.calls)

        updated = await store.update_piece(piece.id, tags=["new", "tags"])

        assert len(embedding.calls) == calls_before
        assert updated.content == "Original content"
        assert updated.tags == ["new", "tags"]
        assert await store.get_piece(piece.id) == updated

    @pytest.mark.asyncio
    async def test_update_content_reembeds_and_keeps_tags(self, store, embedding):
        await store.init()
        piece = await store.add_piece("Original content", ["keep", "me"])

        updated = await store.update_piece(piece.id, content="New content")

        assert embedding.calls[-1] == "New content"
        assert updated.content == "New content"
        assert updated.tags == ["keep", "me"]
        assert await store.get_piece(piece.id) == updated

    @pytest.mark.asyncio
    async def test_update_content_changes_search_vector(self, store):
        await store.init()
        piece = await store.add_piece("apples and pears")
        await store.add_piece("bananas")

        await store.update_piece(piece.id, content="bananas bananas")
        results = await store.query_pieces("bananas", top_k=2)

        assert {r.piece.id for r in results} >= {piece.id}
        assert all(r.score == pytest.approx(1.0) for r in results)

    @pytest.mark.asyncio
    async def test_update_missing_writes_nothing(self):
        collection = MagicMock()
        collection.get = AsyncMock(return_value={"ids": [], "documents": [], "metadatas": []})
        collection.update = AsyncMock()
        embedding = CountingEmbedding()
        store = mocked_store(collection, embedding)
        await store.init()

        assert await store.update_piece("missing", content="x", tags=["y"]) is None
        collection.update.assert_not_called()
        assert embedding.calls == []

    @pytest.mark.asyncio
    async def test_delete_twice(self, store):
        await store.init()
        piece = await store.add_piece("temporary")

        await store.delete_piece(piece.id)
        await store.delete_piece(piece.id)

        assert await store.get_piece(piece.id) is None


class TestQueryPieces:
    """Tests for semantic search."""

    @pytest.mark.asyncio
    async def test_scores_from_distances(self):
        collection = MagicMock()
        collection.query = AsyncMock(return_value={
            "ids": [["p1", "p2"]],
            "documents": [["first", "second"]],
            "metadatas": [[{"tags": ",a,"}, {"tags": ",b,"}]],
            "distances": [[0.2, 0.5]],
        })
        store = mocked_store(collection)
        await store.init()

        results = await store.query_pieces("query")

        assert [r.piece.id for r in results] == ["p1", "p2"]
        assert [r.score for r in results] == pytest.approx([0.8, 0.5])
        assert results[0].piece.tags == ["a"]

    @pytest.mark.asyncio
    async def test_missing_distances_score_one(self):
        collection = MagicMock()
        collection.query = AsyncMock(return_value={
            "ids": [["p1"]],
            "documents": [["only"]],
            "metadatas": [[{}]],
            "distances": None,
        })
        store = mocked_store(collection)
        await store.init()

        results = await store.query_pieces("query")

        assert results[0].score == 1.0
        assert results[0].piece.tags == []

    @pytest.mark.asyncio
    async def test_empty_index_result(self):
        collection = MagicMock()
        collection.query = AsyncMock(return_value={"ids": [[]], "documents": [[]], "metadatas": [[]], "distances": [[]]})
        store = mocked_store(collection)
        await store.init()

        assert await store.query_pieces("anything") == []

    @pytest.mark.asyncio
    async def test_filter_and_top_k_passed_to_index(self):
        collection = MagicMock()
        collection.query = AsyncMock(return_value={"ids": [[]]})
        store = mocked_store(collection)
        await store.init()

        await store.query_pieces("q", tags=["python", "rag"], top_k=3)

        kwargs = collection.query.call_args.kwargs
        assert kwargs["n_results"] == 3
        assert kwargs["where"] == {
            "$and": [
                {"tags": {"$contains": ",python,"}},
                {"tags": {"$contains": ",rag,"}},
            ]
        }
        assert set(kwargs["include"]) == {"documents", "metadatas", "distances"}

    @pytest.mark.asyncio
    async def test_no_filter_without_tags(self):
        collection = MagicMock()
        collection.query = AsyncMock(return_value={"ids": [[]]})
        store = mocked_store(collection)
        await store.init()

        await store.query_pieces("q", tags=[])

        assert collection.query.call_args.kwargs["where"] is None
        assert collection.query.call_args.kwargs["n_results"] == 10

    @pytest.mark.asyncio
    async def test_filter_conjunction(self, store):
        await store.init()
        both = await store.add_piece("Retrieval in Python", ["python", "rag"])
        await store.add_piece("Python only", ["python"])
        await store.add_piece("RAG only", ["rag"])
        superset = await store.add_piece("Python RAG tutorial", ["tutorial", "rag", "python"])

        results = await store.query_pieces("python rag", tags=["python", "rag"])

        assert {r.piece.id for r in results} == {both.id, superset.id}
        for result in results:
            assert {"python", "rag"} <= set(result.piece.tags)

    @pytest.mark.asyncio
    async def test_tag_filter_is_exact(self, store):
        await store.init()
        await store.add_piece("Starting out", ["start"])
        art = await store.add_piece("Painting", ["art"])

        results = await store.query_pieces("anything", tags=["art"])

        assert [r.piece.id for r in results] == [art.id]

    @pytest.mark.asyncio
    async def test_results_ordered_by_score(self, store):
        await store.init()
        await store.add_piece("cats and dogs")
        await store.add_piece("dogs")
        await store.add_piece("weather report")

        results = await store.query_pieces("dogs")
        scores = [r.score for r in results]

        assert scores == sorted(scores, reverse=True)
        assert results[0].piece.content == "dogs"

    @pytest.mark.asyncio
    async def test_scenario_add_query_delete(self, store):
        await store.init()
        piece = await store.add_piece(
            "TypeScript is a typed superset of JavaScript.", ["typescript", "programming"]
        )
        await store.add_piece("Bread needs flour, water and yeast.", ["cooking"])

        results = await store.query_pieces("TypeScript typed languages")

        assert results[0].piece.id == piece.id
        assert results[0].score > 0

        await store.delete_piece(piece.id)
        assert await store.get_piece(piece.id) is None


class TestValidation:
    """Malformed input is rejected before any backend call."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content, tags", [
        (42, []),
        (None, []),
        ("ok", "not-a-list"),
        ("ok", ["fine", 3]),
        ("ok", [""]),
        ("ok", ["has,comma"]),
    ])
    async def test_add_rejects(self, store, embedding, content, tags):
        await store.init()

        with pytest.raises(PieceValidationError):
            await store.add_piece(content, tags)

        assert embedding.calls == []
        assert await store.count() == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("top_k", [0, -1, 2.5, True, "5"])
    async def test_query_rejects_bad_top_k(self, store, embedding, top_k):
        await store.init()

        with pytest.raises(PieceValidationError, match="top_k"):
            await store.query_pieces("query", top_k=top_k)

        assert embedding.calls == []

    @pytest.mark.asyncio
    async def test_query_rejects_non_string(self, store, embedding):
        await store.init()

        with pytest.raises(PieceValidationError, match="query"):
            await store.query_pieces(["not", "a", "string"])

        assert embedding.calls == []

    @pytest.mark.asyncio
    async def test_update_rejects_bad_tags(self, store, embedding):
        await store.init()
        piece = await store.add_piece("content")
        calls_before = len(embedding.calls)

        with pytest.raises(PieceValidationError):
            await store.update_piece(piece.id, content="new", tags=["a,b"])

        assert len(embedding.calls) == calls_before
        assert (await store.get_piece(piece.id)).content == "content"
