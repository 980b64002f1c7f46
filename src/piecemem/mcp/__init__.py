"""
MCP (Model Context Protocol) server module.
"""

from piecemem.mcp.exceptions import MCPError, MCPProtocolError
from piecemem.mcp.server import MCPServer
from piecemem.mcp.stdio import StdioServerTransport
from piecemem.mcp.tools import MemoryMcpServer

__all__ = [
    "MCPServer",
    "MemoryMcpServer",
    "StdioServerTransport",
    "MCPError",
    "MCPProtocolError",
]
