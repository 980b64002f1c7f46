"""Piece and search result data structures."""

from pydantic import BaseModel, Field

DEFAULT_TOP_K = 10


class Piece(BaseModel):
    """A stored, tagged unit of text.

    Attributes:
        id: Unique identifier, assigned on creation and never changed
        content: The text body; its embedding always matches it
        tags: Labels used for filtering, unique within a piece
    """

    id: str
    content: str
    tags: list[str] = Field(default_factory=list)

    def __repr__(self) -> str:
        content_preview = self.content[:50] + "..." if len(self.content) > 50 else self.content
        return f"Piece(id={self.id!r}, content={content_preview!r}, tags={self.tags!r})"


class QueryResult(BaseModel):
    """A piece returned by semantic search with its similarity score."""
    piece: Piece
    score: float


class RagResult(BaseModel):
    """Generated answer plus the pieces it was grounded on."""
    answer: str
    sources: list[QueryResult] = Field(default_factory=list)
