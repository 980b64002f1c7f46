"""Command line entry points: HTTP server and MCP stdio server."""

from __future__ import annotations

import asyncio
from typing import Optional

import click

from piecemem import __version__
from piecemem.utils.config import MemoryConfig, load_config
from piecemem.utils.logging import get_logger, set_log_level

logger = get_logger(__name__)


def _load(config_path: Optional[str], log_level: Optional[str]) -> MemoryConfig:
    config = load_config(config_path) if config_path else MemoryConfig.from_env()
    set_log_level(log_level or config.log_level)
    return config


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(version=__version__, prog_name="piecemem")
def main() -> None:
    """piecemem - tagged text memory with semantic search and RAG."""


@main.command("serve")
@click.option("--host", default="127.0.0.1", show_default=True, help="Bind address")
@click.option("--port", default=3000, show_default=True, type=int, help="Bind port")
@click.option("--config", "config_path", default=None, help="Path to YAML or JSON config")
@click.option("--log-level", default=None, help="Log level (overrides config)")
def serve(host: str, port: int, config_path: Optional[str], log_level: Optional[str]) -> None:
    """Run the HTTP API."""
    import uvicorn

    from piecemem.server import create_app

    config = _load(config_path, log_level)
    logger.info(f"Serving HTTP API on {host}:{port} (chroma: {config.chroma_url})")
    uvicorn.run(create_app(config), host=host, port=port, log_level=config.log_level.lower())


@main.command("mcp")
@click.option("--config", "config_path", default=None, help="Path to YAML or JSON config")
@click.option("--log-level", default=None, help="Log level (overrides config)")
def mcp(config_path: Optional[str], log_level: Optional[str]) -> None:
    """Run the MCP tool server over stdio."""
    run_mcp(_load(config_path, log_level))


def run_mcp(config: MemoryConfig) -> None:
    from piecemem.mcp import MemoryMcpServer

    async def _run() -> None:
        server = MemoryMcpServer(config=config)
        try:
            await server.start()
        finally:
            await server.close()

    try:
        asyncio.run(_run())
    except Exception as e:
        logger.error(f"Failed to start MCP server: {e}")
        raise SystemExit(1) from e


def mcp_main() -> None:
    """Console script ``piecemem-mcp``: the MCP server with environment config."""
    run_mcp(_load(None, None))


if __name__ == "__main__":
    main()
