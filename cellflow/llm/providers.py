"""OpenAI-compatible LLM adapters.

Both supported providers expose the OpenAI chat completions API:
- DeepSeek at https://api.deepseek.com (deepseek-chat, deepseek-reasoner)
- Kimi/Moonshot at https://api.moonshot.cn/v1 (moonshot-v1-8k/32k/128k)
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import AsyncIterator

import httpx

from cellflow.config import Settings, get_settings
from cellflow.llm.base import LLMAdapter, LLMError
from cellflow.schemas import LLMMessage, LLMResponse


logger = logging.getLogger(__name__)


class OpenAICompatibleAdapter(LLMAdapter):
    """Adapter for any provider speaking the OpenAI chat completions API."""

    def __init__(
        self,
        provider: str,
        api_key: str,
        base_url: str,
        default_model: str,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not api_key:
            raise ValueError(f"{provider} API key not configured")

        self._provider = provider
        self.api_key = api_key
        self.base_url = base_url
        self.default_model = default_model
        self.timeout = timeout

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    @property
    def provider_name(self) -> str:
        return self._provider

    async def chat_completion(
        self,
        messages: list[LLMMessage],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 4096,
    ) -> LLMResponse:
        """Send chat completion request to the provider."""
        model = model or self.default_model

        payload = self._build_request(
            messages=messages,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
        )

        start_time = time.perf_counter()

        try:
            response = await self._client.post("/chat/completions", json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise LLMError(
                f"{self._provider} returned {e.response.status_code}",
                provider=self._provider,
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise LLMError(f"{self._provider} request failed: {e}", provider=self._provider) from e

        latency_ms = int((time.perf_counter() - start_time) * 1000)
        logger.debug(f"{self._provider}/{model} completed in {latency_ms}ms")

        choice = (data.get("choices") or [{}])[0]
        message = choice.get("message", {})
        content = message.get("content")

        if not content:
            raise LLMError(f"{self._provider} returned an empty completion", provider=self._provider)

        return LLMResponse(
            content=content,
            model=data.get("model", model),
            usage=data.get("usage") or {},
            finish_reason=choice.get("finish_reason"),
        )

    async def stream_completion(
        self,
        messages: list[LLMMessage],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 4096,
    ) -> AsyncIterator[str]:
        """Stream text deltas from the provider's SSE response."""
        model = model or self.default_model
        payload = self._build_request(
            messages=messages,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            stream=True,
        )

        try:
            async with self._client.stream("POST", "/chat/completions", json=payload) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    data = line[len("data:"):].strip()
                    if data == "[DONE]":
                        break
                    chunk = json.loads(data)
                    delta = (chunk.get("choices") or [{}])[0].get("delta", {})
                    if delta.get("content"):
                        yield delta["content"]
        except httpx.HTTPStatusError as e:
            raise LLMError(
                f"{self._provider} returned {e.response.status_code}",
                provider=self._provider,
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise LLMError(f"{self._provider} stream failed: {e}", provider=self._provider) from e

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()


class DeepSeekAdapter(OpenAICompatibleAdapter):
    """DeepSeek API adapter."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        settings: Settings | None = None,
    ):
        settings = settings or get_settings()
        super().__init__(
            provider="deepseek",
            api_key=api_key or settings.deepseek_api_key,
            base_url=base_url or settings.deepseek_base_url,
            default_model=settings.deepseek_model_chat,
            timeout=settings.llm_timeout_seconds,
            transport=transport,
        )


class KimiAdapter(OpenAICompatibleAdapter):
    """Kimi/Moonshot API adapter."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        settings: Settings | None = None,
    ):
        settings = settings or get_settings()
        super().__init__(
            provider="kimi",
            api_key=api_key or settings.kimi_api_key,
            base_url=base_url or settings.kimi_base_url,
            default_model=settings.kimi_model,
            timeout=settings.llm_timeout_seconds,
            transport=transport,
        )
