"""
Stdio transport for serving MCP.

Messages are newline-delimited JSON-RPC objects: requests arrive on stdin,
responses leave on stdout. Logging stays on stderr.
"""

import asyncio
import json
import sys
from typing import Any, AsyncIterator, TextIO

from piecemem.mcp.exceptions import PARSE_ERROR
from piecemem.utils.logging import get_logger

logger = get_logger(__name__)


class StdioServerTransport:
    """
    Server side of the MCP stdio transport.
    """

    def __init__(self, stdin: TextIO | None = None, stdout: TextIO | None = None):
        self.stdin = stdin or sys.stdin
        self.stdout = stdout or sys.stdout
        self._write_lock = asyncio.Lock()

    async def _readline(self) -> str:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.stdin.readline)

    async def receive(self) -> AsyncIterator[Any]:
        """Yield parsed messages until stdin closes."""
        while True:
            line = await self._readline()
            if not line:
                break

            line = line.strip()
            if not line:
                continue

            try:
                message = json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning(f"Failed to parse message: {e}")
                await self.send({
                    "jsonrpc": "2.0",
                    "id": None,
                    "error": {"code": PARSE_ERROR, "message": f"Parse error: {e}"},
                })
                continue

            logger.debug(f"Received: {message}")
            yield message

    async def send(self, message: dict[str, Any]) -> None:
        """Write one message as a single line."""
        data = json.dumps(message) + "\n"
        async with self._write_lock:
            self.stdout.write(data)
            self.stdout.flush()
        logger.debug(f"Sent: {message}")
