"""LLM provider adapters and routing."""

from cellflow.llm.base import LLMAdapter, LLMError
from cellflow.llm.router import ModelRouter, get_router

__all__ = ["LLMAdapter", "LLMError", "ModelRouter", "get_router"]
