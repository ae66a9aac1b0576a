"""
Cross-provider parity: equivalent streams must normalise to the same
accumulator shape regardless of wire format.
"""

from __future__ import annotations

import json

import pytest

from chatbridge.llm.adapters.anthropic import AnthropicAdapter
from chatbridge.llm.adapters.google import GoogleAdapter
from chatbridge.llm.adapters.openai_compat import OpenAICompatAdapter
from chatbridge.llm.types import ROLE_USER, Message, ToolDeclaration, UnifiedRequest
from tests.mock_adapters import (
    anthropic_text,
    anthropic_tool_use,
    google_call_obj,
    google_objects,
    google_text_obj,
    openai_text,
    openai_tool_call,
    sse,
)

TEXT_STREAMS = {
    "openai": (OpenAICompatAdapter, openai_text("The answer ", "is 42.")),
    "anthropic": (AnthropicAdapter, anthropic_text("The answer ", "is 42.")),
    "google": (
        GoogleAdapter,
        [google_objects(google_text_obj("The answer "), google_text_obj("is 42.", finish="STOP"))],
    ),
}

TOOL_STREAMS = {
    "openai": (OpenAICompatAdapter, openai_tool_call("c1", "search", ['{"q": ', '"cats"}'])),
    "anthropic": (AnthropicAdapter, anthropic_tool_use("c1", "search", ['{"q": ', '"cats"}'])),
    "google": (GoogleAdapter, [google_objects(google_call_obj(("search", {"q": "cats"})))]),
}


def _run(adapter_cls, chunks):
    adapter = adapter_cls()
    response = adapter.create_response()
    context = adapter.create_context("model")
    forwarded = []
    for chunk in chunks:
        before = len(response.content)
        adapter.process_chunk(chunk, response, context)
        forwarded.append(response.content[before:])
    adapter.finish(response, context)
    response.mark_complete()
    return response, forwarded


@pytest.mark.parametrize("provider", sorted(TEXT_STREAMS))
def test_text_streams_normalise_identically(provider):
    adapter_cls, chunks = TEXT_STREAMS[provider]
    response, forwarded = _run(adapter_cls, chunks)

    assert response.content == "The answer is 42."
    assert "".join(forwarded) == response.content
    assert response.tool_calls == []
    assert response.is_complete
    assert set(response.usage.to_dict()) == {"prompt_tokens", "completion_tokens", "total_tokens"}


@pytest.mark.parametrize("provider", sorted(TOOL_STREAMS))
def test_tool_streams_normalise_identically(provider):
    adapter_cls, chunks = TOOL_STREAMS[provider]
    response, _ = _run(adapter_cls, chunks)

    assert len(response.tool_calls) == 1
    tc = response.tool_calls[0]
    assert tc.name == "search"
    assert json.loads(tc.arguments) == {"q": "cats"}
    assert tc.parse_error is None
    assert tc.id


@pytest.mark.parametrize(
    "adapter_cls", [OpenAICompatAdapter, AnthropicAdapter, GoogleAdapter]
)
def test_every_adapter_builds_a_body_for_the_same_request(adapter_cls):
    req = UnifiedRequest(
        model="model",
        messages=[Message(role=ROLE_USER, content="hello")],
        tools=[ToolDeclaration(name="search", description="find things")],
    )
    body = adapter_cls().build_request(req)
    assert json.loads(json.dumps(body)) == body
    assert "hello" in json.dumps(body)
    assert "search" in json.dumps(body)


@pytest.mark.parametrize(
    "adapter_cls", [OpenAICompatAdapter, AnthropicAdapter, GoogleAdapter]
)
def test_garbage_never_raises(adapter_cls):
    adapter = adapter_cls()
    response = adapter.create_response()
    context = adapter.create_context("m")
    for chunk in [b"\xff\xfe", b"data: {{{\n\n", b"]]]", b"data: [1,2]\n\n", b""]:
        adapter.process_chunk(chunk, response, context)
    adapter.finish(response, context)
    assert response.tool_calls == []


WRONG_SHAPES = {
    "openai": (
        OpenAICompatAdapter,
        [
            sse({"choices": [{"delta": "x"}]}),
            sse({"choices": [{"delta": {"tool_calls": ["x", {"function": "f", "index": [1]}]}}]}),
            sse({"choices": {"0": {}}, "usage": {"prompt_tokens": "many"}}),
        ],
    ),
    "anthropic": (
        AnthropicAdapter,
        [
            sse({"type": "message_start", "message": "x"}),
            sse({"type": "content_block_start", "content_block": ["text"]}),
            sse({"type": "content_block_delta", "delta": {"type": "text_delta", "text": 5}}),
            sse({"type": "content_block_delta", "delta": "x"}),
        ],
    ),
    "google": (
        GoogleAdapter,
        [google_objects(
            {"candidates": {"0": {}}},
            {"candidates": [{"content": "x"}]},
            {"candidates": [{"content": {"parts": [{"text": 5, "functionCall": {"name": 3}}]}}]},
        )],
    ),
}


@pytest.mark.parametrize("provider", sorted(WRONG_SHAPES))
def test_wrong_json_shapes_are_skipped(provider):
    adapter_cls, chunks = WRONG_SHAPES[provider]
    adapter = adapter_cls()
    response = adapter.create_response()
    context = adapter.create_context("m")
    for chunk in chunks:
        adapter.process_chunk(chunk, response, context)
    adapter.finish(response, context)

    assert response.content == ""
    assert all(isinstance(tc.name, str) for tc in response.tool_calls)
