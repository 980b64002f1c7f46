"""Retrieval-augmented question answering over the piece store."""

from typing import Optional, Sequence

from piecemem.providers.base import ChatMessage, LLMProvider
from piecemem.store import PieceStore
from piecemem.types import DEFAULT_TOP_K, QueryResult, RagResult
from piecemem.utils.logging import get_logger

logger = get_logger(__name__)

NO_CONTEXT_ANSWER = (
    "I don't have enough context to answer this question. "
    "No relevant pieces were found in the knowledge base."
)

SYSTEM_PROMPT = (
    "You are a helpful assistant. Answer the user's question based on the provided context. "
    "If the context does not contain enough information, say so. "
    "Cite sources by their number when relevant."
)


def build_context(sources: list[QueryResult]) -> str:
    """Number each retrieved piece from 1 and list its tags above its content."""
    return "\n\n".join(
        f"[{i + 1}] (tags: {', '.join(source.piece.tags)})\n{source.piece.content}"
        for i, source in enumerate(sources)
    )


def build_messages(question: str, sources: list[QueryResult]) -> list[ChatMessage]:
    """The system instruction plus one user message holding context and question."""
    user_prompt = f"Context:\n{build_context(sources)}\n\nQuestion: {question}"
    return [
        ChatMessage(role="system", content=SYSTEM_PROMPT),
        ChatMessage(role="user", content=user_prompt),
    ]


class RagPipeline:
    """Retrieve pieces, then answer from them with a generation backend.

    The generation backend is never called without retrieved context.
    """

    def __init__(self, store: PieceStore, provider: LLMProvider, model: str = "llama3.2"):
        self.store = store
        self.provider = provider
        self.model = model

    async def query(
        self,
        question: str,
        tags: Optional[Sequence[str]] = None,
        top_k: Optional[int] = None,
    ) -> RagResult:
        sources = await self.store.query_pieces(
            question, tags=tags, top_k=top_k if top_k is not None else DEFAULT_TOP_K
        )

        if not sources:
            logger.info("No pieces matched; skipping generation")
            return RagResult(answer=NO_CONTEXT_ANSWER, sources=[])

        response = await self.provider.chat(build_messages(question, sources), model=self.model)
        logger.debug(f"Generated answer from {len(sources)} sources with {self.model}")

        return RagResult(answer=response.content, sources=sources)
