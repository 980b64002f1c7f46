"""
MCP Type definitions.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

PROTOCOL_VERSION = "2024-11-05"


class ToolDefinition(BaseModel):
    """Definition of an MCP tool, as listed by ``tools/list``."""
    model_config = ConfigDict(populate_by_name=True)

    name: str
    description: str = ""
    input_schema: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []},
        alias="inputSchema",
    )


class ToolResult(BaseModel):
    """Result of calling a tool."""
    model_config = ConfigDict(populate_by_name=True)

    content: list[dict[str, Any]] = Field(default_factory=list)
    is_error: bool = Field(default=False, alias="isError")

    def to_wire(self) -> dict[str, Any]:
        data: dict[str, Any] = {"content": self.content}
        if self.is_error:
            data["isError"] = True
        return data


class ServerInfo(BaseModel):
    """Information about an MCP server."""
    name: str
    version: str
    protocol_version: str = PROTOCOL_VERSION
