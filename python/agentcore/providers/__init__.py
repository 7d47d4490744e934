"""LLM provider adapters."""

from agentcore.providers.anthropic import AnthropicProvider
from agentcore.providers.base import (
    ChatMessage,
    ExecutionOptions,
    ProviderAdapter,
    ProviderResponse,
    StreamChunk,
)
from agentcore.providers.openai import OpenAIProvider
from agentcore.providers.registry import ProviderRegistry

__all__ = [
    "AnthropicProvider",
    "ChatMessage",
    "ExecutionOptions",
    "OpenAIProvider",
    "ProviderAdapter",
    "ProviderRegistry",
    "ProviderResponse",
    "StreamChunk",
]
