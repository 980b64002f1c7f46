"""
Logging utilities.

Everything logs to stderr: stdout belongs to the MCP stdio transport.
"""

import logging
import sys

ROOT_LOGGER = "piecemem"


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with the given name.

    Handlers are attached once, to the ``piecemem`` root logger; module
    loggers propagate to it.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured logger
    """
    root = logging.getLogger(ROOT_LOGGER)

    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))
        root.addHandler(handler)
        root.setLevel(logging.INFO)

    return logging.getLogger(name)


def set_log_level(level: int | str) -> None:
    """
    Set the package log level.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            raise ValueError(f"Unknown log level: {level}")
        level = resolved

    get_logger(ROOT_LOGGER).setLevel(level)
