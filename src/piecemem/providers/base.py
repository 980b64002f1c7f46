"""
Base LLM Provider interface.
"""

from abc import ABC, abstractmethod
from typing import Literal

from pydantic import BaseModel


class ChatMessage(BaseModel):
    """A single chat message sent to a provider."""
    role: Literal["system", "user", "assistant"]
    content: str


class LLMResponse(BaseModel):
    """Response from an LLM."""
    content: str
    model: str = ""
    finish_reason: str = "stop"
    usage: dict[str, int] = {}


class LLMProvider(ABC):
    """
    Abstract base class for text generation backends.
    """

    @abstractmethod
    async def chat(
        self,
        messages: list[ChatMessage],
        *,
        model: str,
    ) -> LLMResponse:
        """
        Get a chat completion.

        Args:
            messages: Ordered conversation messages
            model: Model identifier

        Returns:
            LLMResponse with the completion text
        """
        pass

    async def close(self) -> None:
        """Release backend resources. Override if needed."""


def build_provider(
    provider: str,
    base_url: str | None = None,
    api_key: str | None = None,
    timeout: float = 120.0,
) -> LLMProvider:
    """
    Factory: create a generation provider.

    Args:
        provider: "ollama" or "openai"
        base_url: Backend endpoint
        api_key: API key for OpenAI-compatible backends
        timeout: Request timeout in seconds

    Raises:
        ValueError: Unknown provider
    """
    if provider == "ollama":
        from piecemem.providers.ollama import OllamaProvider
        return OllamaProvider(base_url=base_url or "http://localhost:11434", timeout=timeout)
    elif provider == "openai":
        from piecemem.providers.openai import OpenAIProvider
        return OpenAIProvider(api_key=api_key, base_url=base_url, timeout=timeout)
    else:
        raise ValueError(f"Unknown generation provider: {provider!r}")
