"""
Conductor -- a bounded phase machine over surgical streams.

One user turn runs through fixed phases, each issuing one or more
orchestrator calls with an injected directive and stop conditions:

  Phase 1  initial thinking (stop at the end marker), then a response
           to the user (natural end)
  Phase 2  tool / no-tool decision (natural end, tools not executed)
  Phase 3  reflection (stop at the end marker); tool calls are executed
           but do not trigger an automatic continuation
  Phase 4  next-action decision (stop at the end marker, tools not executed)

Transitions: 1 -> 2 -> 3; 3 -> 4 when phase 3 detected a tool call,
otherwise the turn ends; 4 -> 3.  At most ``max_phases`` phases run per
turn; reaching the ceiling ends the turn with a notice.

Tool-call detection comes from the event bus, not from the text.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable

from chatbridge.llm.types import ROLE_ASSISTANT, ROLE_SYSTEM, Message, ToolDeclaration
from chatbridge.orchestrator.conductor_debug import ApiCallRecord, ConductorDebugData
from chatbridge.orchestrator.core import (
    STATUS_CANCELLED,
    ChatOrchestrator,
    ChatStoreLike,
    RunOptions,
    RunOutcome,
)
from chatbridge.orchestrator.sink import CollectingSink, NullSink, OutputSink
from chatbridge.orchestrator.stop import END_THINK, MarkerStop, NaturalEnd, StopCondition
from chatbridge.prompts.conductor import phase_prompts
from chatbridge.session.events import EVENT_TOOL_CALL_DETECTED, ToolEvent

logger = logging.getLogger(__name__)

RESULT_RESPONSE = "conductor_response"
RESULT_ABORTED = "conductor_aborted"

STOP_MARKER = "marker"
STOP_NATURAL = "natural_end"


@dataclass(frozen=True)
class PhasePlan:
    """Static description of one phase."""

    number: int
    streams: tuple[tuple[str, str], ...]  # (prompt key, stop kind)
    allow_tool_execution: bool = False


PHASES: dict[int, PhasePlan] = {
    1: PhasePlan(1, (("phase_1_thinking", STOP_MARKER), ("phase_1_response", STOP_NATURAL))),
    2: PhasePlan(2, (("phase_2_decision", STOP_NATURAL),)),
    3: PhasePlan(3, (("phase_3_reflection", STOP_MARKER),), allow_tool_execution=True),
    4: PhasePlan(4, (("phase_4_decision", STOP_MARKER),)),
}


def next_phase(phase: int, tool_call_detected: bool) -> int | None:
    """The fixed transition table; ``None`` is terminal."""
    if phase == 1:
        return 2
    if phase == 2:
        return 3
    if phase == 3:
        return 4 if tool_call_detected else None
    if phase == 4:
        return 3
    return None


def ceiling_notice(max_phases: int) -> str:
    return (
        f"\n\n[Conductor] **Note**: Conversation ended after {max_phases} "
        "phases to prevent infinite loops."
    )


@dataclass
class ConductorSettings:
    max_phases: int = 10
    end_marker: str = END_THINK
    prompts: dict[str, str] = field(default_factory=dict)
    debug_fetch_attempts: int = 5
    debug_fetch_delay: float = 0.1


@dataclass
class ConductorResult:
    type: str = RESULT_RESPONSE
    content: str = ""
    partial: bool = False
    phases_executed: int = 0
    phase_history: list[int] = field(default_factory=list)
    ceiling_reached: bool = False
    error: str | None = None
    messages: list[Message] = field(default_factory=list)
    debug: dict[str, Any] = field(default_factory=dict)


class _PhaseSink:
    """Forwards text to the caller's sink but holds back per-call completion."""

    def __init__(self, outer: OutputSink, collector: CollectingSink) -> None:
        self.outer = outer
        self.collector = collector

    def write(self, text: str) -> None:
        self.collector.write(text)
        self.outer.write(text)

    def complete(self) -> None:
        pass


class Conductor:
    """
    Runs one user turn through the phase machine.

    The conversation passed to ``run`` is copied; directives, assistant
    text and tool results produced by the turn are returned in
    ``ConductorResult.messages`` and, when a store and conversation id
    are available, persisted as they are produced.
    """

    def __init__(
        self,
        orchestrator: ChatOrchestrator,
        settings: ConductorSettings | None = None,
        store: ChatStoreLike | None = None,
        on_phase: Callable[[int, int], None] | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.settings = settings or ConductorSettings()
        self.store = store
        self.on_phase = on_phase
        self.prompts = phase_prompts(self.settings.prompts)
        self._cancel = asyncio.Event()
        self._running = False

    @property
    def bus(self):
        return self.orchestrator.bus

    @property
    def running(self) -> bool:
        return self._running

    def cancel(self) -> None:
        """Ask the running turn to stop at the next chunk boundary."""
        self._cancel.set()

    # ------------------------------------------------------------------
    # Turn
    # ------------------------------------------------------------------

    async def run(
        self,
        conversation: list[Message],
        tools: list[ToolDeclaration] | None = None,
        conversation_id: str | None = None,
        sink: OutputSink | None = None,
    ) -> ConductorResult:
        self._cancel.clear()
        self._running = True
        outer = sink or NullSink()
        collector = CollectingSink()
        turn = _Turn(
            messages=list(conversation),
            tools=list(tools or []),
            conversation_id=conversation_id,
            sink=_PhaseSink(outer, collector),
            debug=ConductorDebugData(),
        )
        result = ConductorResult()

        try:
            try:
                await self._phase_loop(turn, result)
            except asyncio.CancelledError:
                await self._save_partial(turn, collector)
                raise
            except Exception as exc:
                logger.exception("Conductor failed in phase %s", turn.phase)
                fragment = f"\n[ERROR] Conductor failed: {exc}"
                turn.sink.write(fragment)
                result.error = str(exc)

            if self._cancel.is_set() or turn.cancelled:
                result.type = RESULT_ABORTED
                result.partial = True
                await self._save_partial(turn, collector)

            if turn.error and result.error is None:
                result.error = turn.error
            result.content = collector.text
            result.messages = turn.produced
            result.debug = await turn.debug.build(
                self.orchestrator.debug,
                attempts=self.settings.debug_fetch_attempts,
                delay=self.settings.debug_fetch_delay,
            )
        finally:
            turn.debug.release(self.orchestrator.debug, self.bus)
            self._running = False
        outer.complete()
        return result

    async def _phase_loop(self, turn: _Turn, result: ConductorResult) -> None:
        phase: int | None = 1
        while phase is not None:
            if result.phases_executed >= self.settings.max_phases:
                logger.info("Conductor hit the %d-phase ceiling", self.settings.max_phases)
                notice = ceiling_notice(self.settings.max_phases)
                turn.sink.write(notice)
                await self._append(turn, Message(role=ROLE_ASSISTANT, content=notice.strip()))
                result.ceiling_reached = True
                return

            result.phases_executed += 1
            result.phase_history.append(phase)
            turn.phase = phase
            logger.info(
                "Conductor phase %d (%d/%d)",
                phase,
                result.phases_executed,
                self.settings.max_phases,
            )
            if self.on_phase is not None:
                self.on_phase(phase, self.settings.max_phases)

            detected = await self._execute_phase(PHASES[phase], turn)
            if turn.cancelled or turn.failed:
                return
            phase = next_phase(phase, detected)

    async def _execute_phase(self, plan: PhasePlan, turn: _Turn) -> bool:
        """Run every stream of *plan*; return whether a tool call was detected."""
        detected = False
        for prompt_key, stop_kind in plan.streams:
            conditions: list[StopCondition] = (
                [MarkerStop(self.settings.end_marker)]
                if stop_kind == STOP_MARKER
                else [NaturalEnd()]
            )
            outcome = await self.surgical_stream(
                turn,
                prompt_key,
                conditions,
                allow_tool_execution=plan.allow_tool_execution,
            )
            detected = detected or outcome.tool_call_detected
            if turn.cancelled or turn.failed:
                break
        return detected

    # ------------------------------------------------------------------
    # Surgical stream
    # ------------------------------------------------------------------

    async def surgical_stream(
        self,
        turn: _Turn,
        prompt_key: str,
        conditions: list[StopCondition],
        *,
        allow_tool_execution: bool = False,
    ) -> RunOutcome:
        directive = self.prompts.get(prompt_key, "")
        if directive:
            await self._append(turn, Message(role=ROLE_SYSTEM, content=directive))
        turn.debug.track_injection(prompt_key, directive, turn.phase)

        request_id = uuid.uuid4().hex
        assistant_id = uuid.uuid4().hex
        turn.current_assistant_id = assistant_id
        turn.stream_text = ""
        detected = {"value": False}

        def on_event(event: ToolEvent) -> None:
            if event.type == EVENT_TOOL_CALL_DETECTED:
                detected["value"] = True

        turn.debug.begin_call(request_id)
        self.bus.add_listener(request_id, on_event)
        options = RunOptions(
            request_id=request_id,
            allow_tool_execution=allow_tool_execution,
            allow_recursion=False,
            stop_conditions=conditions,
            cancel_event=self._cancel,
            conductor_phase=turn.phase,
            persist=False,
            assistant_message_id=assistant_id,
        )
        logger.info(
            "Surgical stream for phase %s watching %s",
            turn.phase,
            [c.name for c in conditions],
        )

        stream_sink = _StreamTracker(turn)
        try:
            outcome = await self.orchestrator.run(
                turn.messages, turn.tools, options, stream_sink
            )
        finally:
            self.bus.unsubscribe(request_id, on_event)

        outcome.tool_call_detected = outcome.tool_call_detected or detected["value"]
        turn.debug.add_call(
            ApiCallRecord(
                request_id=request_id,
                conductor_phase=turn.phase,
                stopped_on=outcome.stopped_on or "natural_end",
                stop_conditions=[c.name for c in conditions],
                content=outcome.content,
            )
        )

        for message in outcome.messages:
            await self._append(turn, message)
        turn.current_assistant_id = None

        if outcome.status == STATUS_CANCELLED:
            turn.cancelled = True
        elif not outcome.ok:
            turn.failed = True
            turn.error = outcome.error
        return outcome

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def _append(self, turn: _Turn, message: Message) -> None:
        turn.messages.append(message)
        turn.produced.append(message)
        if self.store is not None and turn.conversation_id:
            await self.store.save(turn.conversation_id, message)

    async def _save_partial(self, turn: _Turn, collector: CollectingSink) -> None:
        """Persist text of a stream that was interrupted before it returned."""
        if turn.current_assistant_id is None or not turn.stream_text:
            return
        message = Message(
            role=ROLE_ASSISTANT,
            content=turn.stream_text,
            message_id=turn.current_assistant_id,
        )
        turn.current_assistant_id = None
        turn.produced.append(message)
        if self.store is not None and turn.conversation_id:
            try:
                await self.store.save(turn.conversation_id, message)
            except Exception as exc:
                logger.warning("Could not persist partial conductor output: %s", exc)


@dataclass
class _Turn:
    messages: list[Message]
    tools: list[ToolDeclaration]
    conversation_id: str | None
    sink: _PhaseSink
    debug: ConductorDebugData
    produced: list[Message] = field(default_factory=list)
    phase: int = 1
    cancelled: bool = False
    failed: bool = False
    error: str | None = None
    current_assistant_id: str | None = None
    stream_text: str = ""


class _StreamTracker:
    """Per-stream sink: tracks the stream's own text for partial saves."""

    def __init__(self, turn: _Turn) -> None:
        self.turn = turn

    def write(self, text: str) -> None:
        self.turn.stream_text += text
        self.turn.sink.write(text)

    def complete(self) -> None:
        pass
