"""
OpenAI LLM Provider.
"""

from piecemem.providers.base import ChatMessage, LLMProvider, LLMResponse


class OpenAIProvider(LLMProvider):
    """
    LLM Provider for the OpenAI API or any OpenAI-compatible endpoint.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = 120.0,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self._client = None

    def _get_client(self):
        """Get or create OpenAI client."""
        if self._client is None:
            from openai import AsyncOpenAI

            self._client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=self.timeout,
            )
        return self._client

    async def chat(
        self,
        messages: list[ChatMessage],
        *,
        model: str,
    ) -> LLMResponse:
        """Get a completion from OpenAI."""
        client = self._get_client()

        response = await client.chat.completions.create(
            model=model,
            messages=[m.model_dump() for m in messages],
        )

        choice = response.choices[0]
        return LLMResponse(
            content=choice.message.content or "",
            model=response.model,
            finish_reason=choice.finish_reason or "stop",
            usage={
                "prompt_tokens": response.usage.prompt_tokens if response.usage else 0,
                "completion_tokens": response.usage.completion_tokens if response.usage else 0,
                "total_tokens": response.usage.total_tokens if response.usage else 0,
            },
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
