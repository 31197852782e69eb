"""LLM Router for model selection and fallback logic.

Strategy:
- Each AI task (coding, translation) maps to a configured model key
- Model keys have the form "provider@model"
- On failure: fallback to the alternate provider once
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator

from cellflow.config import Settings, get_settings
from cellflow.llm.base import LLMAdapter, LLMError
from cellflow.llm.providers import DeepSeekAdapter, KimiAdapter, OpenAICompatibleAdapter
from cellflow.schemas import LLMMessage, TaskType


logger = logging.getLogger(__name__)


PROVIDER_ADAPTERS: dict[str, type[OpenAICompatibleAdapter]] = {
    "deepseek": DeepSeekAdapter,
    "kimi": KimiAdapter,
}


class ModelRouter:
    """Routes generation requests to the provider configured for a task."""

    # Task-to-setting mapping (which configured model serves each task)
    TASK_MODEL_MAP: dict[str, str] = {
        TaskType.CODING.value: "ai_coding_model",
        TaskType.TRANSLATION.value: "ai_translation_model",
    }

    def __init__(self, settings: Settings | None = None):
        settings = settings or get_settings()
        self.fallback_provider = settings.fallback_provider

        # Initialize adapters lazily
        self._adapters: dict[str, LLMAdapter] = {}
        self._settings = settings

    def register_adapter(self, adapter: LLMAdapter) -> None:
        """Install a pre-built adapter under its provider name."""
        self._adapters[adapter.provider_name] = adapter

    def _get_adapter(self, provider: str) -> LLMAdapter:
        """Get or create an adapter for a provider.

        Raises:
            LLMError: If the provider is unknown or not configured
        """
        if provider not in self._adapters:
            adapter_class = PROVIDER_ADAPTERS.get(provider)
            if adapter_class is None:
                raise LLMError(f"Unknown provider: {provider}", provider=provider)
            try:
                self._adapters[provider] = adapter_class(settings=self._settings)
            except ValueError as e:
                raise LLMError(str(e), provider=provider) from e
        return self._adapters[provider]

    @staticmethod
    def parse_model_key(model_key: str) -> tuple[str, str]:
        """Split a "provider@model" key into its parts."""
        provider, sep, model = model_key.partition("@")
        if not sep or not provider or not model:
            raise ValueError(f"Invalid model key: {model_key!r}")
        return provider, model

    def get_model_for_task(self, task: str) -> tuple[str, str]:
        """Get provider and model name for a task.

        Returns:
            Tuple of (provider, model_name)

        Raises:
            LLMError: If the configured model key is malformed
        """
        setting_name = self.TASK_MODEL_MAP.get(task, self.TASK_MODEL_MAP[TaskType.CODING.value])
        try:
            return self.parse_model_key(getattr(self._settings, setting_name))
        except ValueError as e:
            raise LLMError(str(e)) from e

    def _fallback_model(self) -> tuple[str, str]:
        if self.fallback_provider == "deepseek":
            return ("deepseek", self._settings.deepseek_model_chat)
        return ("kimi", self._settings.kimi_model)

    async def generate_text(
        self,
        prompt: str,
        task: str = TaskType.CODING.value,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        allow_fallback: bool = True,
    ) -> str:
        """Generate text for a fully substituted prompt.

        Args:
            prompt: Prompt text sent as a single user message
            task: AI task category used to pick the model
            temperature: Sampling temperature
            max_tokens: Max response tokens
            allow_fallback: Whether to try the fallback provider on failure

        Returns:
            The generated text

        Raises:
            LLMError: If the primary (and fallback, when tried) provider fails
        """
        provider, model = self.get_model_for_task(task)
        messages = [LLMMessage(role="user", content=prompt)]

        logger.debug(f"Routing {task} to {provider}/{model}")

        try:
            adapter = self._get_adapter(provider)
            response = await adapter.chat_completion(
                messages=messages,
                model=model,
                temperature=temperature,
                max_tokens=max_tokens,
            )
            return response.content or ""
        except LLMError as e:
            fallback_provider, fallback_model = self._fallback_model()
            if not allow_fallback or fallback_provider == provider:
                raise
            logger.warning(f"Provider {provider} failed ({e}), falling back to {fallback_provider}/{fallback_model}")

        adapter = self._get_adapter(fallback_provider)
        response = await adapter.chat_completion(
            messages=messages,
            model=fallback_model,
            temperature=temperature,
            max_tokens=max_tokens,
        )
        return response.content or ""

    async def stream_text(
        self,
        prompt: str,
        task: str = TaskType.CODING.value,
    ) -> AsyncIterator[str]:
        """Stream generated text deltas for a prompt."""
        provider, model = self.get_model_for_task(task)
        adapter = self._get_adapter(provider)
        messages = [LLMMessage(role="user", content=prompt)]

        logger.info(f"Streaming {task} from {provider}/{model}")

        async for delta in adapter.stream_completion(messages=messages, model=model):
            yield delta

    async def close(self) -> None:
        """Close all adapters."""
        for adapter in self._adapters.values():
            await adapter.close()


# Singleton instance
_router: ModelRouter | None = None


def get_router() -> ModelRouter:
    """Get the global model router instance."""
    global _router
    if _router is None:
        _router = ModelRouter()
    return _router
