"""
Configuration utilities.
"""

import json
import os
from pathlib import Path
from typing import Any, Literal

import yaml

from pydantic import BaseModel, ConfigDict

ENV_PREFIX = "PIECEMEM_"


class Config(BaseModel):
    """Base configuration class."""

    model_config = ConfigDict(extra="forbid")

    @classmethod
    def from_yaml(cls, path: Path) -> "Config":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    @classmethod
    def from_file(cls, path: str | Path) -> "Config":
        """Load configuration from file (YAML or JSON)."""
        path = Path(path)

        if path.suffix in (".yaml", ".yml"):
            return cls.from_yaml(path)
        elif path.suffix == ".json":
            with open(path) as f:
                data = json.load(f)
            return cls(**data)
        else:
            raise ValueError(f"Unsupported config file format: {path.suffix}")


class MemoryConfig(Config):
    """Configuration for the piece store, RAG pipeline and transports.

    Every field has a default so the service is constructible with no
    configuration at all.
    """
    chroma_url: str = "http://localhost:8000"
    ollama_url: str = "http://localhost:11434"
    embedding_model: str = "nomic-embed-text-v2-moe"
    generation_model: str = "llama3.2"
    collection_name: str = "pieces"

    # Backend selection
    provider: Literal["ollama", "openai"] = "ollama"
    api_key: str | None = None
    base_url: str | None = None
    vector_backend: Literal["chroma", "memory"] = "chroma"
    request_timeout: float = 120.0

    log_level: str = "INFO"

    @classmethod
    def from_env(cls, base: "MemoryConfig | None" = None) -> "MemoryConfig":
        """
        Overlay ``PIECEMEM_*`` environment variables on a base config.

        ``PIECEMEM_CHROMA_URL`` sets ``chroma_url`` and so on.
        """
        data = (base or cls()).model_dump()
        for name in cls.model_fields:
            value = os.environ.get(f"{ENV_PREFIX}{name.upper()}")
            if value is not None:
                data[name] = value
        return cls(**data)


def load_config(path: str | Path = "piecemem.yaml") -> MemoryConfig:
    """
    Load configuration from file, then apply environment overrides.

    Args:
        path: Path to config file; a missing file means defaults

    Returns:
        MemoryConfig instance
    """
    path = Path(path)

    if path.exists():
        config = MemoryConfig.from_file(path)
    else:
        config = MemoryConfig()

    return MemoryConfig.from_env(config)


def resolve_config(config: MemoryConfig | dict[str, Any] | None = None, **overrides: Any) -> MemoryConfig:
    """
    Merge a partial configuration with the defaults.

    Args:
        config: A MemoryConfig, a dict of fields, or None for defaults
        **overrides: Field values that win over ``config``

    Returns:
        Fully populated MemoryConfig
    """
    if config is None:
        data: dict[str, Any] = {}
    elif isinstance(config, MemoryConfig):
        data = config.model_dump(exclude_unset=True)
    else:
        data = dict(config)
    data.update({k: v for k, v in overrides.items() if v is not None})
    return MemoryConfig(**data)
