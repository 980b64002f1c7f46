"""
HTTP API for the piece store and RAG pipeline.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, StrictStr

from piecemem import __version__
from piecemem.exceptions import NotInitializedError, PieceMemoryError, PieceValidationError
from piecemem.memory import PieceMemory
from piecemem.types import Piece, QueryResult, RagResult
from piecemem.utils.config import MemoryConfig
from piecemem.utils.logging import get_logger

logger = get_logger(__name__)


class AddPieceRequest(BaseModel):
    content: StrictStr = Field(min_length=1)
    tags: list[StrictStr] = Field(default_factory=list)


class UpdatePieceRequest(BaseModel):
    content: Optional[StrictStr] = None
    tags: Optional[list[StrictStr]] = None


class QueryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: StrictStr = Field(min_length=1)
    tags: Optional[list[StrictStr]] = None
    top_k: Optional[int] = Field(default=None, alias="topK", ge=1)


class ServiceUnavailable(Exception):
    """The vector index could not be reached."""

    def __init__(self, details: str):
        self.details = details
        super().__init__(details)


def create_app(
    config: MemoryConfig | dict[str, Any] | None = None,
    memory: Optional[PieceMemory] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        config: Service configuration (ignored when ``memory`` is given)
        memory: Pre-built service, mainly for tests

    Returns:
        FastAPI app with the piece, query and RAG routes
    """
    memory = memory or PieceMemory(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await memory.close()

    app = FastAPI(
        title="piecemem",
        description="Tagged text memory with semantic search and RAG",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.memory = memory

    async def ready_memory() -> PieceMemory:
        """Initialize the store on first use; concurrent requests share the attempt."""
        try:
            await memory.init()
        except Exception as e:
            raise ServiceUnavailable(str(e)) from e
        return memory

    @app.exception_handler(ServiceUnavailable)
    async def unavailable_handler(request: Request, exc: ServiceUnavailable):
        logger.warning(f"Vector index unavailable: {exc.details}")
        return JSONResponse(
            status_code=503,
            content={"error": "Failed to connect to ChromaDB", "details": exc.details},
        )

    @app.exception_handler(NotInitializedError)
    async def not_initialized_handler(request: Request, exc: NotInitializedError):
        return JSONResponse(status_code=503, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request", "details": jsonable_errors(exc)},
        )

    @app.exception_handler(PieceValidationError)
    async def piece_validation_handler(request: Request, exc: PieceValidationError):
        return JSONResponse(status_code=400, content={"error": exc.message})

    @app.exception_handler(PieceMemoryError)
    async def memory_error_handler(request: Request, exc: PieceMemoryError):
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=500, content={"error": exc.message})

    @app.exception_handler(Exception)
    async def unhandled_handler(request: Request, exc: Exception):
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=500, content={"error": str(exc)})

    @app.get("/health")
    async def health(mem: PieceMemory = Depends(ready_memory)):
        return {"status": "ok", "pieces": await mem.count()}

    @app.post("/pieces", status_code=201, response_model=Piece)
    async def add_piece(body: AddPieceRequest, mem: PieceMemory = Depends(ready_memory)):
        return await mem.add_piece(body.content, body.tags)

    @app.get("/pieces/{id}", response_model=Piece)
    async def get_piece(id: str, mem: PieceMemory = Depends(ready_memory)):
        piece = await mem.get_piece(id)
        if piece is None:
            return JSONResponse(status_code=404, content={"error": "Piece not found"})
        return piece

    @app.put("/pieces/{id}", response_model=Piece)
    async def update_piece(id: str, body: UpdatePieceRequest, mem: PieceMemory = Depends(ready_memory)):
        piece = await mem.update_piece(id, body.content, body.tags)
        if piece is None:
            return JSONResponse(status_code=404, content={"error": "Piece not found"})
        return piece

    @app.delete("/pieces/{id}", status_code=204)
    async def delete_piece(id: str, mem: PieceMemory = Depends(ready_memory)):
        await mem.delete_piece(id)
        return Response(status_code=204)

    @app.post("/query", response_model=list[QueryResult])
    async def query_pieces(body: QueryRequest, mem: PieceMemory = Depends(ready_memory)):
        return await mem.query_pieces(body.query, tags=body.tags, top_k=body.top_k)

    @app.post("/rag", response_model=RagResult)
    async def rag_query(body: QueryRequest, mem: PieceMemory = Depends(ready_memory)):
        return await mem.rag_query(body.query, tags=body.tags, top_k=body.top_k)

    return app


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    """Field errors without the raw input, which may not be JSON serializable."""
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", "")}
        for error in exc.errors()
    ]
