"""Tests for chatbridge.llm.response.ResponseAccumulator."""

from __future__ import annotations

import json

from chatbridge.llm.response import ResponseAccumulator
from chatbridge.llm.types import ToolCall, Usage


class TestContent:
    def test_content_only_grows(self):
        r = ResponseAccumulator("openai")
        r.add_content("a")
        r.add_content("")
        r.add_content("b")
        assert r.content == "ab"

    def test_raw_response_is_kept(self):
        r = ResponseAccumulator()
        r.append_raw("data: x\n")
        r.append_raw("data: y\n")
        assert r.raw_response == "data: x\ndata: y\n"


class TestToolCallIds:
    def test_fallback_ids_are_unique(self):
        r = ResponseAccumulator("google")
        for _ in range(5):
            r.add_tool_call(ToolCall(id="", name="f"))
        ids = [tc.id for tc in r.tool_calls]
        assert ids == ["google_1", "google_2", "google_3", "google_4", "google_5"]

    def test_colliding_explicit_id_is_replaced(self):
        r = ResponseAccumulator("openai")
        r.add_tool_call(ToolCall(id="openai_1", name="a"))
        second = r.add_tool_call(ToolCall(id="", name="b"))
        assert second.id != "openai_1"
        assert len({tc.id for tc in r.tool_calls}) == 2

    def test_lookup_helpers(self):
        r = ResponseAccumulator()
        assert r.latest_tool_call() is None
        a = r.add_tool_call(ToolCall(id="a", name="x"))
        b = r.add_tool_call(ToolCall(id="b", name="y"))
        assert r.has_tool_calls()
        assert r.latest_tool_call() is b
        assert r.find_tool_call("a") is a
        assert r.find_tool_call("zzz") is None


class TestMarkComplete:
    def test_empty_arguments_become_empty_object(self):
        r = ResponseAccumulator()
        r.add_tool_call(ToolCall(id="a", name="f", arguments=""))
        r.mark_complete()
        assert r.tool_calls[0].arguments == "{}"
        assert r.is_complete

    def test_invalid_arguments_are_recorded(self):
        r = ResponseAccumulator()
        r.add_tool_call(ToolCall(id="a", name="search", arguments='{"q": "ca'))
        r.mark_complete()
        tc = r.tool_calls[0]
        assert tc.arguments == "{}"
        assert tc.raw_arguments == '{"q": "ca'
        assert tc.parse_error.startswith("Invalid JSON arguments for search")

    def test_valid_arguments_untouched(self):
        r = ResponseAccumulator()
        r.add_tool_call(ToolCall(id="a", name="f", arguments='{"n": 1}'))
        r.mark_complete()
        assert json.loads(r.tool_calls[0].arguments) == {"n": 1}
        assert r.tool_calls[0].parse_error is None

    def test_idempotent(self):
        r = ResponseAccumulator()
        r.add_tool_call(ToolCall(id="a", name="f", arguments="bad"))
        r.mark_complete()
        r.tool_calls[0].arguments = "still bad"
        r.mark_complete()
        # The second call is a no-op.
        assert r.tool_calls[0].arguments == "still bad"

    def test_every_call_parses_after_completion(self):
        r = ResponseAccumulator()
        for args in ["", "{}", "[", '{"a": [1, 2]}', "nul"]:
            r.add_tool_call(ToolCall(id="", name="f", arguments=args))
        r.mark_complete()
        for tc in r.tool_calls:
            json.loads(tc.arguments)


class TestSerialisation:
    def test_to_dict(self):
        r = ResponseAccumulator("anthropic")
        r.add_content("hi")
        r.set_usage(Usage.from_counts(2, 3))
        r.add_tool_call(ToolCall(id="t", name="f", arguments="{}"))
        d = r.to_dict()
        assert d["provider"] == "anthropic"
        assert d["usage"] == {"prompt_tokens": 2, "completion_tokens": 3, "total_tokens": 5}
        assert d["tool_calls"] == [{"id": "t", "name": "f", "arguments": "{}"}]
        assert d["is_complete"] is False

    def test_usage_from_counts_treats_none_as_zero(self):
        assert Usage.from_counts(None, None, None).to_dict() == {
            "prompt_tokens": 0,
            "completion_tokens": 0,
            "total_tokens": 0,
        }
        assert Usage.from_counts(1, 2, 10).total_tokens == 10
