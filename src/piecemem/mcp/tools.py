"""
The piecemem MCP tool server.
"""

from __future__ import annotations

from typing import Any, Optional

from piecemem import __version__
from piecemem.exceptions import PieceMemoryError
from piecemem.mcp.server import MCPServer
from piecemem.mcp.stdio import StdioServerTransport
from piecemem.memory import PieceMemory
from piecemem.utils.config import MemoryConfig

_TAGS = {
    "type": "array",
    "items": {"type": "string"},
}


def _schema(properties: dict[str, Any], required: list[str]) -> dict[str, Any]:
    return {"type": "object", "properties": properties, "required": required}


ADD_PIECE_SCHEMA = _schema(
    {
        "content": {"type": "string", "description": "Piece content"},
        "tags": {**_TAGS, "description": "Optional tags for filtering and retrieval"},
    },
    ["content"],
)
UPDATE_PIECE_SCHEMA = _schema(
    {
        "id": {"type": "string", "description": "Piece ID"},
        "content": {"type": "string", "description": "New content (optional)"},
        "tags": {**_TAGS, "description": "New tags (optional)"},
    },
    ["id"],
)


def _query_schema(query_description: str, top_k_description: str) -> dict[str, Any]:
    return _schema(
        {
            "query": {"type": "string", "description": query_description},
            "tags": {**_TAGS, "description": "Optional tag filter"},
            "topK": {"type": "integer", "minimum": 1, "description": top_k_description},
        },
        ["query"],
    )


class MemoryMcpServer(MCPServer):
    """
    MCP server exposing the piece store and RAG pipeline as six tools.

    Every tool awaits store initialization first, so the first calls after
    start-up share one connection attempt and a failed attempt is retried by
    the next call.
    """

    def __init__(
        self,
        memory: Optional[PieceMemory] = None,
        config: MemoryConfig | dict[str, Any] | None = None,
    ):
        super().__init__(name="memory", version=__version__)
        self.memory = memory or PieceMemory(config)
        self._register_tools()

    async def start(self, transport: Optional[StdioServerTransport] = None) -> None:
        """Serve over the given transport (defaults to stdio)."""
        await self.serve(transport or StdioServerTransport())

    async def close(self) -> None:
        await self.memory.close()

    def format_error(self, error: Exception) -> Any:
        if isinstance(error, PieceMemoryError):
            return {"error": error.message, "code": error.code}
        return {"error": str(error), "code": "internal"}

    def _register_tools(self) -> None:
        memory = self.memory

        @self.tool(
            name="add_piece",
            description="Add a tagged text piece to the memory store.",
            input_schema=ADD_PIECE_SCHEMA,
        )
        async def add_piece(content: str, tags: Optional[list[str]] = None) -> dict:
            await memory.init()
            piece = await memory.add_piece(content, tags if tags is not None else [])
            return piece.model_dump()

        @self.tool(
            name="get_piece",
            description="Get a piece by ID.",
        )
        async def get_piece(id: str) -> dict:
            await memory.init()
            piece = await memory.get_piece(id)
            return {"found": piece is not None, "piece": piece.model_dump() if piece else None}

        @self.tool(
            name="update_piece",
            description="Update a piece's content and/or tags.",
            input_schema=UPDATE_PIECE_SCHEMA,
        )
        async def update_piece(
            id: str,
            content: Optional[str] = None,
            tags: Optional[list[str]] = None,
        ) -> dict:
            await memory.init()
            piece = await memory.update_piece(id, content, tags)
            return {"found": piece is not None, "piece": piece.model_dump() if piece else None}

        @self.tool(
            name="delete_piece",
            description="Delete a piece by ID.",
        )
        async def delete_piece(id: str) -> dict:
            await memory.init()
            await memory.delete_piece(id)
            return {"deleted": True, "id": id}

        @self.tool(
            name="query_pieces",
            description="Run semantic search over pieces.",
            input_schema=_query_schema("Semantic query text", "Maximum number of results (default: 10)"),
        )
        async def query_pieces(
            query: str,
            tags: Optional[list[str]] = None,
            topK: Optional[int] = None,
        ) -> list:
            await memory.init()
            results = await memory.query_pieces(query, tags=tags, top_k=topK)
            return [result.model_dump() for result in results]

        @self.tool(
            name="rag_query",
            description="Run full RAG: retrieve relevant pieces and generate an answer.",
            input_schema=_query_schema("User question", "Maximum number of retrieved sources"),
        )
        async def rag_query(
            query: str,
            tags: Optional[list[str]] = None,
            topK: Optional[int] = None,
        ) -> dict:
            await memory.init()
            result = await memory.rag_query(query, tags=tags, top_k=topK)
            return result.model_dump()
