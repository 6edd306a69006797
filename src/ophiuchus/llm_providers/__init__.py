"""Implementations of :class:`~ophiuchus.llm.LLMClient` for third-party APIs."""

from __future__ import annotations

from . import anthropic, gemini, openai
from .anthropic import AnthropicMessagesClient
from .gemini import GeminiClient
from .openai import OpenAIChatClient
from ..llm_provider_registry import LLMProviderRegistry


def register_builtin_providers(registry: LLMProviderRegistry) -> None:
    """Register the bundled provider adapters with ``registry``."""

    registry.register(
        "gemini",
        lambda **options: GeminiClient(**options),
        error_rules=gemini.register_error_rules,
    )
    registry.register(
        "openai",
        lambda **options: OpenAIChatClient(**options),
        error_rules=openai.register_error_rules,
    )
    registry.register(
        "anthropic",
        lambda **options: AnthropicMessagesClient(**options),
        error_rules=anthropic.register_error_rules,
    )


def default_registry() -> LLMProviderRegistry:
    registry = LLMProviderRegistry()
    register_builtin_providers(registry)
    return registry


__all__ = [
    "AnthropicMessagesClient",
    "GeminiClient",
    "OpenAIChatClient",
    "default_registry",
    "register_builtin_providers",
]
