"""
MCP Server base class for creating MCP tool servers.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import typing
from types import UnionType
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict

from piecemem.mcp.exceptions import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    MCPError,
    MCPProtocolError,
)
from piecemem.mcp.types import PROTOCOL_VERSION, ServerInfo, ToolDefinition, ToolResult
from piecemem.utils.logging import get_logger

logger = get_logger(__name__)


class MCPServer:
    """
    Base class for MCP servers exposing tools.

    Use the decorator to define tools:

    @server.tool()
    async def my_tool(arg: str) -> dict:
        '''Tool description'''
        return {"result": arg}

    Tool exceptions become tool results with ``isError`` set; protocol
    problems (unknown method or tool) become JSON-RPC errors.
    """

    def __init__(
        self,
        name: str = "piecemem",
        version: str = "0.1.0"
    ):
        self.info = ServerInfo(name=name, version=version)
        self._tools: dict[str, ToolHandler] = {}

    @property
    def name(self) -> str:
        return self.info.name

    @property
    def version(self) -> str:
        return self.info.version

    def tool(
        self,
        name: str | None = None,
        description: str | None = None,
        input_schema: dict[str, Any] | None = None,
    ) -> Callable:
        """Decorator to register a tool."""
        def decorator(func: Callable) -> Callable:
            tool_name = name or func.__name__
            tool_desc = description or inspect.getdoc(func) or ""

            handler = ToolHandler(
                definition=ToolDefinition(
                    name=tool_name,
                    description=tool_desc,
                    input_schema=input_schema or self._build_schema_from_func(func),
                ),
                handler=func,
            )

            self._tools[tool_name] = handler
            logger.debug(f"Registered tool: {tool_name}")

            return func

        return decorator

    @property
    def tools(self) -> list[ToolDefinition]:
        return [handler.definition for handler in self._tools.values()]

    def _build_schema_from_func(self, func: Callable) -> dict[str, Any]:
        """Build JSON schema from function signature."""
        sig = inspect.signature(func)
        hints = typing.get_type_hints(func)
        properties = {}
        required = []

        for param_name, param in sig.parameters.items():
            properties[param_name] = _schema_for(hints.get(param_name))

            if param.default == inspect.Parameter.empty:
                required.append(param_name)

        return {
            "type": "object",
            "properties": properties,
            "required": required
        }

    async def handle_request(
        self,
        method: str,
        params: dict[str, Any]
    ) -> dict[str, Any]:
        """Handle an incoming request."""
        if method == "initialize":
            return await self._handle_initialize(params)
        elif method == "ping":
            return {}
        elif method == "tools/list":
            return await self._handle_tools_list()
        elif method == "tools/call":
            return await self._handle_tools_call(params)
        else:
            raise MCPProtocolError(f"Unknown method: {method}", code=METHOD_NOT_FOUND)

    async def handle_message(self, message: Any) -> dict[str, Any] | None:
        """
        Handle one JSON-RPC message.

        Returns the response, or None for notifications.
        """
        if not isinstance(message, dict) or not isinstance(message.get("method"), str):
            msg_id = message.get("id") if isinstance(message, dict) else None
            return _error_response(msg_id, INVALID_REQUEST, "Invalid request")

        method = message["method"]
        if "id" not in message:
            logger.debug(f"Notification: {method}")
            return None

        msg_id = message["id"]
        try:
            result = await self.handle_request(method, message.get("params") or {})
        except MCPError as e:
            return _error_response(msg_id, e.code or INTERNAL_ERROR, e.message)
        except Exception as e:
            logger.exception(f"Request {method} failed")
            return _error_response(msg_id, INTERNAL_ERROR, str(e))

        return {"jsonrpc": "2.0", "id": msg_id, "result": result}

    async def serve(self, transport: "ServerTransport") -> None:
        """Answer requests from a transport until it is exhausted."""
        logger.info(f"MCP server {self.name} {self.version} serving")
        async for message in transport.receive():
            response = await self.handle_message(message)
            if response is not None:
                await transport.send(response)
        logger.info("MCP transport closed")

    async def _handle_initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        """Handle initialize request."""
        return {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {
                "tools": {},
            },
            "serverInfo": {
                "name": self.name,
                "version": self.version
            }
        }

    async def _handle_tools_list(self) -> dict[str, Any]:
        """Handle tools/list request."""
        return {"tools": [t.model_dump(by_alias=True) for t in self.tools]}

    async def _handle_tools_call(self, params: dict[str, Any]) -> dict[str, Any]:
        """Handle tools/call request."""
        name = params.get("name")
        arguments = params.get("arguments") or {}

        if name not in self._tools:
            raise MCPProtocolError(f"Unknown tool: {name}", code=INVALID_PARAMS)

        handler = self._tools[name]
        try:
            result = handler.handler(**arguments)
            if asyncio.iscoroutine(result):
                result = await result
        except Exception as e:
            logger.warning(f"Tool {name} failed: {e}")
            return ToolResult(content=[_text(self.format_error(e))], is_error=True).to_wire()

        return ToolResult(content=[_text(result)]).to_wire()

    def format_error(self, error: Exception) -> Any:
        """Payload reported for a failed tool call."""
        return {"error": str(error)}


class ServerTransport(typing.Protocol):
    """What MCPServer.serve() needs from a transport."""

    def receive(self) -> typing.AsyncIterator[Any]: ...

    async def send(self, message: dict[str, Any]) -> None: ...


class ToolHandler(BaseModel):
    """Handler for a tool."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    definition: ToolDefinition
    handler: Callable


def _text(payload: Any) -> dict[str, Any]:
    """Format a tool payload as MCP text content."""
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json")
    if isinstance(payload, str):
        text = payload
    else:
        text = json.dumps(payload, indent=2)
    return {"type": "text", "text": text}


def _error_response(msg_id: Any, code: int, message: str) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": msg_id, "error": {"code": code, "message": message}}


def _schema_for(annotation: Any) -> dict[str, Any]:
    """JSON schema for a parameter annotation; unknown types map to string."""
    origin = typing.get_origin(annotation)
    args = [a for a in typing.get_args(annotation) if a is not type(None)]

    if origin in (typing.Union, UnionType) and len(args) == 1:
        return _schema_for(args[0])
    if annotation is int:
        return {"type": "integer"}
    if annotation is float:
        return {"type": "number"}
    if annotation is bool:
        return {"type": "boolean"}
    if annotation is dict or origin is dict:
        return {"type": "object"}
    if annotation is list or origin is list:
        item = _schema_for(args[0]) if args else {"type": "string"}
        return {"type": "array", "items": item}
    return {"type": "string"}
