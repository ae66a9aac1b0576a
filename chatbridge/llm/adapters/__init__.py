"""Provider adapters: one translator per streaming wire protocol."""

from chatbridge.llm.adapters.anthropic import AnthropicAdapter
from chatbridge.llm.adapters.base import AdapterContext, ChunkResult, ProviderAdapter
from chatbridge.llm.adapters.google import GoogleAdapter
from chatbridge.llm.adapters.openai_compat import OpenAICompatAdapter

__all__ = [
    "AdapterContext",
    "AnthropicAdapter",
    "ChunkResult",
    "GoogleAdapter",
    "OpenAICompatAdapter",
    "ProviderAdapter",
]
