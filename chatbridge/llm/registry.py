"""
Adapter registry -- picks the provider adapter for a connection.

Adapters are tried in priority order; the first whose ``can_handle``
predicate accepts the connection settings wins.  The OpenAI-compatible
adapter sits last and accepts anything the others decline, so selection
never fails for a well-formed configuration.
"""

from __future__ import annotations

import logging

from chatbridge.llm.adapters.anthropic import AnthropicAdapter
from chatbridge.llm.adapters.base import ProviderAdapter
from chatbridge.llm.adapters.google import GoogleAdapter
from chatbridge.llm.adapters.openai_compat import OpenAICompatAdapter
from chatbridge.llm.types import ConnectionSettings

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Ordered collection of ``ProviderAdapter`` instances."""

    def __init__(self, adapters: list[ProviderAdapter] | None = None) -> None:
        if adapters is None:
            adapters = [AnthropicAdapter(), GoogleAdapter(), OpenAICompatAdapter()]
        self._adapters: list[ProviderAdapter] = list(adapters)
        self._fallback: ProviderAdapter = next(
            (a for a in self._adapters if isinstance(a, OpenAICompatAdapter)),
            OpenAICompatAdapter(),
        )

    def register_adapter(self, adapter: ProviderAdapter) -> None:
        """Add *adapter* ahead of every existing one."""
        self._adapters.insert(0, adapter)

    @property
    def adapters(self) -> list[ProviderAdapter]:
        return list(self._adapters)

    @property
    def adapter_names(self) -> list[str]:
        return [a.name for a in self._adapters]

    def select(self, settings: ConnectionSettings) -> ProviderAdapter:
        """Return the first adapter accepting *settings*."""
        for adapter in self._adapters:
            if adapter.can_handle(settings):
                logger.debug("Selected %s adapter for %s", adapter.name, settings.api_url)
                return adapter
        logger.debug("No adapter matched %s; using OpenAI-compatible", settings.api_url)
        return self._fallback
