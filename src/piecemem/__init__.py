"""
piecemem - Tagged text memory with semantic search and retrieval-augmented answers.
"""

__version__ = "0.1.0"

from piecemem.embeddings import BaseEmbedding, FakeEmbedding, OllamaEmbedding, OpenAIEmbedding
from piecemem.exceptions import (
    BackendUnavailableError,
    NotInitializedError,
    PieceMemoryError,
    PieceValidationError,
)
from piecemem.memory import PieceMemory
from piecemem.providers import LLMProvider, OllamaProvider, OpenAIProvider
from piecemem.rag import NO_CONTEXT_ANSWER, RagPipeline
from piecemem.store import PieceStore, StoreState
from piecemem.tags import build_tag_filter, decode_tags, encode_tags
from piecemem.types import Piece, QueryResult, RagResult
from piecemem.utils.config import MemoryConfig, load_config, resolve_config
from piecemem.vectorstore import ChromaVectorClient, MemoryVectorClient

__all__ = [
    # Core
    "PieceMemory",
    "PieceStore",
    "StoreState",
    "RagPipeline",
    "NO_CONTEXT_ANSWER",
    # Data
    "Piece",
    "QueryResult",
    "RagResult",
    # Tags
    "encode_tags",
    "decode_tags",
    "build_tag_filter",
    # Backends
    "BaseEmbedding",
    "FakeEmbedding",
    "OllamaEmbedding",
    "OpenAIEmbedding",
    "LLMProvider",
    "OllamaProvider",
    "OpenAIProvider",
    "ChromaVectorClient",
    "MemoryVectorClient",
    # Config
    "MemoryConfig",
    "load_config",
    "resolve_config",
    # Errors
    "PieceMemoryError",
    "NotInitializedError",
    "BackendUnavailableError",
    "PieceValidationError",
]
