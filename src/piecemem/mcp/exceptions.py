"""
MCP-specific exceptions.
"""

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


class MCPError(Exception):
    """Base exception for MCP-related errors."""

    def __init__(self, message: str, code: int | None = None):
        self.message = message
        self.code = code
        super().__init__(self.message)


class MCPProtocolError(MCPError):
    """Raised when a JSON-RPC request cannot be served."""

    def __init__(self, message: str, code: int = INVALID_REQUEST):
        super().__init__(message, code=code)
