"""
Text generation providers.
"""

from piecemem.providers.base import ChatMessage, LLMProvider, LLMResponse, build_provider
from piecemem.providers.ollama import OllamaProvider
from piecemem.providers.openai import OpenAIProvider

__all__ = [
    "ChatMessage",
    "LLMProvider",
    "LLMResponse",
    "OllamaProvider",
    "OpenAIProvider",
    "build_provider",
]
