"""Tests for diagnostic logs and conductor debug aggregation."""

from __future__ import annotations

import asyncio

from chatbridge.orchestrator.conductor_debug import ApiCallRecord, ConductorDebugData
from chatbridge.session.bus import ToolEventBus
from chatbridge.session.debug import STEP_REQUEST, STEP_RESPONSE, DebugStore
from chatbridge.session.events import tool_call_detected_event


class TestDebugLog:
    def test_steps_are_numbered(self):
        store = DebugStore()
        log = store.open("r1", {"adapter": "openai"})
        log.add_step(STEP_REQUEST, {"url": "u"})
        log.add_step(STEP_RESPONSE, {"finish_reason": "stop"})
        log.complete()

        data = store.get("r1")
        assert [s["step"] for s in data["sequence"]] == [1, 2]
        assert [s["type"] for s in data["sequence"]] == ["request", "response"]
        assert data["metadata"] == {"adapter": "openai"}

    def test_incomplete_log_is_not_published(self):
        store = DebugStore()
        store.open("r1").add_step(STEP_REQUEST)
        assert store.get("r1") is None
        assert store.get("missing") is None

    def test_reopen_returns_same_log_and_merges_metadata(self):
        store = DebugStore()
        a = store.open("r", {"x": 1})
        b = store.open("r", {"y": 2})
        assert a is b
        assert a.metadata == {"x": 1, "y": 2}

    async def test_wait_for_completion(self):
        store = DebugStore()
        log = store.open("r")

        async def finish():
            await asyncio.sleep(0.01)
            log.complete()

        task = asyncio.create_task(finish())
        data = await store.wait_for("r", timeout=1.0)
        await task
        assert data is not None

    async def test_wait_for_times_out(self):
        store = DebugStore()
        store.open("r")
        assert await store.wait_for("r", timeout=0.01) is None

    def test_release(self):
        store = DebugStore()
        store.open("r").complete()
        store.release("r")
        assert len(store) == 0
        assert store.request_ids() == []


class TestConductorDebugData:
    async def test_sequences_are_merged_with_continuous_numbering(self):
        store = DebugStore()
        for rid in ("a", "b"):
            log = store.open(rid)
            log.add_step(STEP_REQUEST)
            log.add_step(STEP_RESPONSE)
            log.complete()

        agg = ConductorDebugData()
        agg.track_injection("phase_1_thinking", "think", 1)
        agg.add_call(ApiCallRecord("a", 1, "</think>", ["</think>"], "t"))
        agg.add_call(ApiCallRecord("b", 2, "natural_end", ["natural_end"], "r"))

        data = await agg.build(store, attempts=1, delay=0.01)

        assert [s["step"] for s in data["sequence"]] == [1, 2, 3, 4]
        assert data["sequence"][0]["data"]["conductorPhase"] == 1
        assert data["sequence"][0]["data"]["stoppedOn"] == "</think>"
        assert data["sequence"][3]["data"]["stopConditions"] == ["natural_end"]
        assert data["metadata"]["total_api_calls"] == 2
        assert data["metadata"]["total_steps"] == 4
        assert data["metadata"]["endpoint"] == "conductor"
        assert data["injections"][0]["phaseKey"] == "phase_1_thinking"

    async def test_missing_sequence_gets_placeholder(self):
        agg = ConductorDebugData()
        agg.add_call(ApiCallRecord("gone", 3, "natural_end", [], "abc"))
        data = await agg.build(DebugStore(), attempts=2, delay=0.001)

        step = data["sequence"][0]
        assert step["type"] == "conductor_api_call"
        assert step["data"]["backendDebugUnavailable"] is True
        assert step["data"]["rawResponseLength"] == 3
        assert step["data"]["requestId"] == "gone"

    async def test_release_drops_per_request_state(self):
        store = DebugStore()
        bus = ToolEventBus()
        store.open("a").complete()
        bus.publish("a", tool_call_detected_event("x", "f"))

        agg = ConductorDebugData()
        agg.add_call(ApiCallRecord("a", 1, "natural_end", []))
        agg.release(store, bus)

        assert store.request_ids() == []
        assert not bus.has_request("a")
