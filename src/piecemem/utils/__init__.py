"""
Utility helpers.
"""

from piecemem.utils.config import MemoryConfig, load_config, resolve_config
from piecemem.utils.logging import get_logger, set_log_level

__all__ = [
    "MemoryConfig",
    "load_config",
    "resolve_config",
    "get_logger",
    "set_log_level",
]
