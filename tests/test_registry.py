"""Tests for adapter selection."""

from __future__ import annotations

from chatbridge.llm.adapters.base import AdapterContext, ChunkResult, ProviderAdapter
from chatbridge.llm.registry import AdapterRegistry
from chatbridge.llm.types import ConnectionSettings
from tests.mock_adapters import ANTHROPIC_URL, GOOGLE_URL, OPENAI_URL


class LocalAdapter(ProviderAdapter):
    @property
    def name(self) -> str:
        return "local"

    def can_handle(self, settings):
        return "localhost" in settings.api_url

    def endpoint_url(self, settings):
        return f"{settings.base_url}/generate"

    def build_request(self, request, settings=None):
        return {"prompt": [m.text for m in request.messages]}

    def process_chunk(self, raw, response, context: AdapterContext) -> ChunkResult:
        response.add_content(raw.decode() if isinstance(raw, bytes) else raw)
        return ChunkResult(events=[], context=context)


def _select(registry, url):
    return registry.select(ConnectionSettings(api_url=url)).name


class TestDefaultOrder:
    def test_priority(self):
        assert AdapterRegistry().adapter_names == ["anthropic", "google", "openai"]

    def test_selects_by_url(self):
        r = AdapterRegistry()
        assert _select(r, ANTHROPIC_URL) == "anthropic"
        assert _select(r, GOOGLE_URL) == "google"
        assert _select(r, OPENAI_URL) == "openai"

    def test_unknown_url_falls_back_to_openai(self):
        assert _select(AdapterRegistry(), "http://10.0.0.5:8080/v1") == "openai"

    def test_selection_is_case_insensitive(self):
        assert _select(AdapterRegistry(), "https://API.ANTHROPIC.COM/v1") == "anthropic"


class TestRegisterAdapter:
    def test_registered_adapter_takes_priority(self):
        r = AdapterRegistry()
        r.register_adapter(LocalAdapter())
        assert r.adapter_names[0] == "local"
        assert _select(r, "http://localhost:11434") == "local"
        # Other URLs are unaffected.
        assert _select(r, ANTHROPIC_URL) == "anthropic"

    def test_custom_list_still_has_fallback(self):
        r = AdapterRegistry([LocalAdapter()])
        assert _select(r, "https://example.com/v1") == "openai"

    def test_adapters_property_is_a_copy(self):
        r = AdapterRegistry()
        r.adapters.clear()
        assert len(r.adapters) == 3
