"""
Errors raised by the piece store and RAG pipeline.
"""


class PieceMemoryError(Exception):
    """Base exception for piecemem errors."""

    def __init__(self, message: str, code: str | None = None):
        self.message = message
        self.code = code
        super().__init__(self.message)


class NotInitializedError(PieceMemoryError):
    """Raised when a data operation runs before init() succeeded."""

    def __init__(self, message: str = "PieceStore not initialized. Call init() first."):
        super().__init__(message, code="not_initialized")


class BackendUnavailableError(PieceMemoryError):
    """Raised when the vector index cannot be reached during init()."""

    def __init__(self, message: str = "Vector index unavailable"):
        super().__init__(message, code="unavailable")


class PieceValidationError(PieceMemoryError):
    """Raised when input is rejected before any backend call."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"Invalid {field}: {message}", code="invalid_input")
