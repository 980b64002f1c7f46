"""
Ollama LLM Provider.
"""

import httpx

from piecemem.providers.base import ChatMessage, LLMProvider, LLMResponse
from piecemem.utils.logging import get_logger

logger = get_logger(__name__)


class OllamaProvider(LLMProvider):
    """
    LLM Provider for a local Ollama server (``POST /api/chat``).
    """

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        timeout: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)
        return self._client

    async def chat(
        self,
        messages: list[ChatMessage],
        *,
        model: str,
    ) -> LLMResponse:
        """Get a non-streaming chat completion from Ollama."""
        response = await self._get_client().post(
            "/api/chat",
            json={
                "model": model,
                "messages": [m.model_dump() for m in messages],
                "stream": False,
            },
        )
        response.raise_for_status()
        data = response.json()

        usage = {
            "prompt_tokens": data.get("prompt_eval_count", 0),
            "completion_tokens": data.get("eval_count", 0),
        }
        logger.debug(f"Ollama {model} completion: {usage}")

        return LLMResponse(
            content=data["message"]["content"],
            model=data.get("model", model),
            finish_reason=data.get("done_reason") or "stop",
            usage=usage,
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
