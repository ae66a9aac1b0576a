"""
Orchestrator core -- one streaming chat call, with tool execution.

For a single ``run`` the orchestrator:
1. Picks the adapter for the configured connection and builds the request
2. Opens a streaming POST and feeds every chunk to the adapter
3. Forwards only newly appended text to the output sink, checking stop
   conditions before anything is forwarded
4. Publishes adapter tool events on the event bus
5. When the response ends with tool calls (and execution is allowed),
   executes them in order, appends the assistant + tool messages and
   continues with the next response (unless recursion is blocked)
6. Records every step in the request's debug log, persists the final
   assistant message and signals the sink that it is complete

Transport failures and non-2xx statuses end the call with an inline error
fragment; nothing is retried here.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Protocol

import httpx

from chatbridge.llm.adapters.base import ProviderAdapter
from chatbridge.llm.registry import AdapterRegistry
from chatbridge.llm.response import ResponseAccumulator
from chatbridge.llm.types import (
    ROLE_ASSISTANT,
    ROLE_TOOL,
    ConnectionSettings,
    Message,
    ToolCall,
    ToolDeclaration,
    UnifiedRequest,
    Usage,
)
from chatbridge.orchestrator.sink import NullSink, OutputSink
from chatbridge.orchestrator.stop import StopCondition, first_cut
from chatbridge.session.bus import ToolEventBus
from chatbridge.session.debug import (
    STEP_ERROR,
    STEP_REQUEST,
    STEP_RESPONSE,
    STEP_TOOL_EXECUTION,
    STEP_TOOL_RESULT,
    DebugLog,
    DebugStore,
)
from chatbridge.session.events import (
    EVENT_TOOL_CALL_DETECTED,
    tool_execution_complete_event,
    tool_execution_start_event,
)
from chatbridge.types import ErrorCode

logger = logging.getLogger(__name__)

STATUS_DONE = "done"
STATUS_HTTP_ERROR = "http_error"
STATUS_ERROR = "error"
STATUS_CANCELLED = "cancelled"

FINISH_STOP = "stop"
FINISH_TOOL_CALLS = "tool_calls"
FINISH_TOOL_CALLS_BLOCKED = "tool_calls_blocked"
FINISH_CANCELLED = "cancelled"

DEFAULT_TOOL_RESULT = "Tool executed successfully"

# How the HTTP read of one response ended.
_ENDED_FINISHED = "finished"
_ENDED_STOPPED = "stopped"
_ENDED_CANCELLED = "cancelled"
_ENDED_HTTP_ERROR = "http_error"


class RunState(enum.Enum):
    SENDING = "sending"
    STREAMING = "streaming"
    TOOL_EXECUTING = "tool_executing"
    DONE = "done"
    ERRORED = "errored"


class ToolExecutor(Protocol):
    async def execute(self, name: str, arguments: dict[str, Any]) -> Any: ...


class ChatStoreLike(Protocol):
    async def save(
        self, chat_id: str, message: Message, debug: dict[str, Any] | None = None
    ) -> None: ...


@dataclass
class RunOptions:
    """Per-call switches.  The conductor sets these per phase."""

    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    allow_tool_execution: bool = True
    allow_recursion: bool = True
    stop_conditions: list[StopCondition] = field(default_factory=list)
    cancel_event: asyncio.Event | None = None
    conductor_phase: int | None = None
    persist: bool = True
    conversation_id: str | None = None
    assistant_message_id: str | None = None

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()


@dataclass
class RunOutcome:
    """
    What one ``run`` produced.

    *content* is exactly the text forwarded to the sink (including any
    inline error fragment).  *messages* are the messages this run appended
    to the conversation, in order; the caller's list is never modified.
    """

    request_id: str
    status: str = STATUS_DONE
    state: RunState = RunState.SENDING
    content: str = ""
    stopped_on: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_detected: bool = False
    tool_results: list[dict[str, Any]] = field(default_factory=list)
    http_status: int | None = None
    error: str | None = None
    error_body: str | None = None
    response_count: int = 0
    usage: Usage = field(default_factory=Usage)
    messages: list[Message] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return self.status == STATUS_CANCELLED

    @property
    def ok(self) -> bool:
        return self.status in (STATUS_DONE, STATUS_CANCELLED)


@dataclass
class _StreamResult:
    response: ResponseAccumulator
    kept: str = ""
    stopped_on: str | None = None


class ChatOrchestrator:
    """
    Drives streaming calls through the provider adapters.

    Parameters
    ----------
    adapters : AdapterRegistry
        Adapter selection.
    tools : ToolExecutor
        Executes tool calls; ``execute`` is expected to return an error
        payload rather than raise.
    bus : ToolEventBus
        Receives tool lifecycle events, keyed by request id.
    debug : DebugStore
        Receives the per-request diagnostic sequence.
    settings : ConnectionSettings
        Connection the adapters are selected and configured from.
    store : ChatStore, optional
        Persistence collaborator for final assistant and tool messages.
    client : httpx.AsyncClient, optional
        Shared client; a short-lived one is created per call otherwise.
    timeout : float
        HTTP timeout in seconds when no client is injected.
    max_tool_rounds : int
        Tool-call rounds allowed in one run before it is ended.
    """

    def __init__(
        self,
        adapters: AdapterRegistry,
        tools: ToolExecutor,
        bus: ToolEventBus,
        debug: DebugStore,
        settings: ConnectionSettings,
        store: ChatStoreLike | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 120.0,
        max_tool_rounds: int = 20,
    ) -> None:
        self.adapters = adapters
        self.tools = tools
        self.bus = bus
        self.debug = debug
        self.settings = settings
        self.store = store
        self.client = client
        self.timeout = timeout
        self.max_tool_rounds = max_tool_rounds

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(
        self,
        conversation: list[Message],
        tools: list[ToolDeclaration] | None = None,
        options: RunOptions | None = None,
        sink: OutputSink | None = None,
    ) -> RunOutcome:
        options = options or RunOptions()
        sink = sink or NullSink()
        tools = list(tools or [])
        adapter = self.adapters.select(self.settings)
        outcome = RunOutcome(request_id=options.request_id)

        log = self.debug.open(
            options.request_id,
            metadata={
                "endpoint": adapter.endpoint_url(self.settings),
                "adapter": adapter.name,
                "model": self.settings.model,
                "tools": [t.name for t in tools],
                "conductorPhase": options.conductor_phase,
            },
        )

        try:
            await self._loop(adapter, list(conversation), tools, options, sink, outcome, log)
        finally:
            log.metadata["status"] = outcome.status
            log.metadata["response_count"] = outcome.response_count
            log.metadata["usage"] = outcome.usage.to_dict()
            log.complete()

        if options.persist:
            await self._persist(outcome, options, log)
        sink.complete()
        return outcome

    # ------------------------------------------------------------------
    # Response loop
    # ------------------------------------------------------------------

    async def _loop(
        self,
        adapter: ProviderAdapter,
        messages: list[Message],
        tools: list[ToolDeclaration],
        options: RunOptions,
        sink: OutputSink,
        outcome: RunOutcome,
        log: DebugLog,
    ) -> None:
        rounds = 0
        while True:
            outcome.response_count += 1
            result = await self._stream_once(
                adapter, messages, tools, options, sink, outcome, log
            )
            response = result.response
            _add_usage(outcome, response.usage)

            if outcome.status != STATUS_DONE:
                if result.kept or outcome.status == STATUS_CANCELLED:
                    self._append_assistant(result.kept, None, options, outcome, messages)
                self._set_state(outcome, RunState.ERRORED if not outcome.ok else RunState.DONE)
                return

            calls = list(response.tool_calls)
            outcome.tool_calls.extend(calls)

            if not calls:
                self._log_response(log, result, FINISH_STOP, options, outcome)
                self._append_assistant(result.kept, None, options, outcome, messages)
                self._set_state(outcome, RunState.DONE)
                return

            if not options.allow_tool_execution:
                self._log_response(log, result, FINISH_TOOL_CALLS_BLOCKED, options, outcome)
                self._append_assistant(result.kept, None, options, outcome, messages)
                self._set_state(outcome, RunState.DONE)
                return

            self._log_response(log, result, FINISH_TOOL_CALLS, options, outcome)
            self._append_assistant(result.kept, calls, options, outcome, messages)
            await self._execute_tools(calls, options, outcome, messages, log)
            rounds += 1

            if not options.allow_recursion:
                self._set_state(outcome, RunState.DONE)
                return
            if options.cancelled:
                outcome.status = STATUS_CANCELLED
                self._set_state(outcome, RunState.DONE)
                return
            if rounds >= self.max_tool_rounds:
                notice = (
                    f"\n\nReached maximum of {self.max_tool_rounds} tool call rounds. "
                    "Please provide more specific guidance."
                )
                sink.write(notice)
                outcome.content += notice
                self._append_assistant(notice.strip(), None, options, outcome, messages)
                self._set_state(outcome, RunState.DONE)
                return

    async def _stream_once(
        self,
        adapter: ProviderAdapter,
        messages: list[Message],
        tools: list[ToolDeclaration],
        options: RunOptions,
        sink: OutputSink,
        outcome: RunOutcome,
        log: DebugLog,
    ) -> _StreamResult:
        request = UnifiedRequest(
            model=self.settings.model,
            messages=messages,
            tools=tools,
            stream=True,
            max_tokens=self.settings.max_tokens,
        )
        body = adapter.build_request(request, self.settings)
        url = adapter.endpoint_url(self.settings)
        headers = adapter.headers(self.settings)

        response = adapter.create_response()
        context = adapter.create_context(self.settings.model)
        result = _StreamResult(response=response)

        text_stops = [c for c in options.stop_conditions if not c.on_tool_call]
        stop_on_tool = any(c.on_tool_call for c in options.stop_conditions)
        forwarded = 0
        tool_seen = False

        def forward(upto: int) -> None:
            nonlocal forwarded
            if upto > forwarded:
                piece = response.content[forwarded:upto]
                forwarded = upto
                result.kept += piece
                outcome.content += piece
                sink.write(piece)

        log.add_step(
            STEP_REQUEST,
            {
                "url": url,
                "adapter": adapter.name,
                "body": body,
                "responseNumber": outcome.response_count,
                "conductorPhase": options.conductor_phase,
                "stopConditions": [c.name for c in options.stop_conditions],
            },
        )
        logger.info(
            "REQUEST %s: adapter=%s model=%s messages=%d tools=%d response=%d",
            options.request_id,
            adapter.name,
            self.settings.model,
            len(messages),
            len(tools),
            outcome.response_count,
        )

        self._set_state(outcome, RunState.SENDING)
        if options.cancelled:
            outcome.status = STATUS_CANCELLED
            result.stopped_on = FINISH_CANCELLED
            return result

        async def consume() -> str:
            nonlocal tool_seen
            async with self._client_session() as client:
                async with client.stream("POST", url, json=body, headers=headers) as http:
                    outcome.http_status = http.status_code
                    if not http.is_success:
                        raw = await http.aread()
                        error_body = raw.decode("utf-8", errors="replace")
                        self._fail_http(http, error_body, sink, outcome, result, log)
                        return _ENDED_HTTP_ERROR

                    self._set_state(outcome, RunState.STREAMING)
                    async for raw in http.aiter_bytes():
                        if options.cancelled:
                            return _ENDED_CANCELLED

                        response.append_raw(raw.decode("utf-8", errors="replace"))
                        chunk = adapter.process_chunk(raw, response, context)
                        for event in chunk.events:
                            self.bus.publish(options.request_id, event)
                            if event.type == EVENT_TOOL_CALL_DETECTED:
                                tool_seen = True
                                outcome.tool_call_detected = True

                        if result.stopped_on is not None:
                            # Stopped on a tool call: keep reading so its
                            # arguments complete, forward nothing more.
                            continue

                        cut = first_cut(text_stops, response.content)
                        if cut is not None:
                            forward(cut[0])
                            result.stopped_on = cut[1].name
                            outcome.stopped_on = cut[1].name
                            return _ENDED_STOPPED

                        forward(len(response.content))
                        if stop_on_tool and tool_seen:
                            result.stopped_on = "tool_call"
                            outcome.stopped_on = "tool_call"
            return _ENDED_FINISHED

        try:
            ended = await _unless_cancelled(consume(), options.cancel_event)
        except httpx.HTTPError as exc:
            self._fail_transport(exc, sink, outcome, result, log)
            return result
        except Exception as exc:
            logger.exception("Stream %s failed", options.request_id)
            self._fail_internal(exc, sink, outcome, result, log)
            return result

        if ended == _ENDED_HTTP_ERROR:
            return result
        if ended is None or ended == _ENDED_CANCELLED:
            result.stopped_on = FINISH_CANCELLED
            outcome.status = STATUS_CANCELLED
        elif ended == _ENDED_FINISHED:
            chunk = adapter.finish(response, context)
            for event in chunk.events:
                self.bus.publish(options.request_id, event)
                if event.type == EVENT_TOOL_CALL_DETECTED:
                    outcome.tool_call_detected = True
            if result.stopped_on is None:
                forward(len(response.content))

        response.mark_complete()
        if response.error:
            fragment = f"\n[ERROR] {response.error}"
            sink.write(fragment)
            result.kept += fragment
            outcome.content += fragment
            outcome.status = STATUS_ERROR
            outcome.error = response.error
            log.add_step(STEP_ERROR, {"error": response.error, "source": "provider"})
        if outcome.status == STATUS_CANCELLED:
            self._log_response(log, result, FINISH_CANCELLED, options, outcome)
        return result

    # ------------------------------------------------------------------
    # Tool execution
    # ------------------------------------------------------------------

    async def _execute_tools(
        self,
        calls: list[ToolCall],
        options: RunOptions,
        outcome: RunOutcome,
        messages: list[Message],
        log: DebugLog,
    ) -> None:
        self._set_state(outcome, RunState.TOOL_EXECUTING)
        for tc in calls:
            arguments = {} if tc.parse_error else tc.parsed_arguments()
            self.bus.publish(
                options.request_id, tool_execution_start_event(tc.id, tc.name, arguments)
            )
            log.add_step(
                STEP_TOOL_EXECUTION,
                {
                    "tool_call_id": tc.id,
                    "name": tc.name,
                    "arguments": arguments,
                    "status": "starting",
                },
            )

            start = time.monotonic()
            if tc.parse_error:
                result: Any = {
                    "error": tc.parse_error,
                    "error_code": ErrorCode.ARGUMENT_PARSE_ERROR,
                }
            else:
                try:
                    result = await self.tools.execute(tc.name, arguments)
                except Exception as exc:
                    logger.warning("Tool %s failed: %s", tc.name, exc)
                    result = {"error": f"Error executing {tc.name}: {exc}"}
            elapsed_ms = int((time.monotonic() - start) * 1000)

            error = result.get("error") if isinstance(result, dict) else None
            self.bus.publish(
                options.request_id,
                tool_execution_complete_event(
                    tc.id,
                    tc.name,
                    result=None if error else result,
                    error=error,
                    execution_time_ms=elapsed_ms,
                ),
            )
            log.add_step(
                STEP_TOOL_RESULT,
                {
                    "tool_call_id": tc.id,
                    "name": tc.name,
                    "status": "error" if error else "success",
                    "execution_time_ms": elapsed_ms,
                    "result": result,
                },
            )
            outcome.tool_results.append({"id": tc.id, "name": tc.name, "result": result})

            tool_message = Message(
                role=ROLE_TOOL,
                content=_tool_content(result),
                tool_call_id=tc.id,
                tool_name=tc.name,
            )
            messages.append(tool_message)
            outcome.messages.append(tool_message)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @contextlib.asynccontextmanager
    async def _client_session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self.client is not None:
            yield self.client
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            yield client

    def _append_assistant(
        self,
        content: str,
        tool_calls: list[ToolCall] | None,
        options: RunOptions,
        outcome: RunOutcome,
        messages: list[Message],
    ) -> None:
        if not content and not tool_calls:
            return
        first = not any(m.role == ROLE_ASSISTANT for m in outcome.messages)
        message = Message(
            role=ROLE_ASSISTANT,
            content=content,
            tool_calls=list(tool_calls) if tool_calls else None,
        )
        if first and options.assistant_message_id:
            message.message_id = options.assistant_message_id
        messages.append(message)
        outcome.messages.append(message)

    def _log_response(
        self,
        log: DebugLog,
        result: _StreamResult,
        finish_reason: str,
        options: RunOptions,
        outcome: RunOutcome,
    ) -> None:
        response = result.response
        if result.stopped_on and result.stopped_on != FINISH_CANCELLED:
            finish_reason = f"stopped:{result.stopped_on}" if finish_reason == FINISH_STOP else finish_reason
        log.add_step(
            STEP_RESPONSE,
            {
                "finish_reason": finish_reason,
                "has_tool_calls": response.has_tool_calls(),
                "tool_calls": [tc.to_dict() for tc in response.tool_calls],
                "content": result.kept,
                "usage": response.usage.to_dict(),
                "raw_http_response": response.raw_response,
                "http_status": outcome.http_status,
                "responseNumber": outcome.response_count,
                "conductorPhase": options.conductor_phase,
                "stopped_on": result.stopped_on,
                "provider_debug": dict(response.debug),
            },
        )
        logger.info(
            "RESPONSE %s: finish=%s chars=%d tool_calls=%d",
            options.request_id,
            finish_reason,
            len(result.kept),
            len(response.tool_calls),
        )

    def _fail_http(
        self,
        http: httpx.Response,
        error_body: str,
        sink: OutputSink,
        outcome: RunOutcome,
        result: _StreamResult,
        log: DebugLog,
    ) -> None:
        fragment = f"\n[ERROR] API error: {http.status_code} {http.reason_phrase}"
        logger.warning("HTTP %s from %s", http.status_code, http.request.url)
        sink.write(fragment)
        result.kept += fragment
        outcome.content += fragment
        outcome.status = STATUS_HTTP_ERROR
        outcome.error_body = error_body
        outcome.error = f"API error: {http.status_code} {http.reason_phrase}"
        log.add_step(
            STEP_ERROR,
            {"http_status": http.status_code, "body": error_body, "error": outcome.error},
        )

    def _fail_transport(
        self,
        exc: httpx.HTTPError,
        sink: OutputSink,
        outcome: RunOutcome,
        result: _StreamResult,
        log: DebugLog,
    ) -> None:
        message = str(exc) or type(exc).__name__
        fragment = f"\n[ERROR] Connection error: {message}"
        logger.warning("Connection error on %s: %s", outcome.request_id, message)
        sink.write(fragment)
        result.kept += fragment
        outcome.content += fragment
        outcome.status = STATUS_ERROR
        outcome.error = f"Connection error: {message}"
        log.add_step(STEP_ERROR, {"error": outcome.error, "source": "transport"})

    def _fail_internal(
        self,
        exc: Exception,
        sink: OutputSink,
        outcome: RunOutcome,
        result: _StreamResult,
        log: DebugLog,
    ) -> None:
        message = str(exc) or type(exc).__name__
        fragment = f"\n[ERROR] Internal error: {message}"
        sink.write(fragment)
        result.kept += fragment
        outcome.content += fragment
        outcome.status = STATUS_ERROR
        outcome.error = f"Internal error: {message}"
        log.add_step(
            STEP_ERROR,
            {"error": outcome.error, "source": "internal", "exception": type(exc).__name__},
        )

    async def _persist(self, outcome: RunOutcome, options: RunOptions, log: DebugLog) -> None:
        if self.store is None or not options.conversation_id:
            return
        final = outcome.messages[-1] if outcome.messages else None
        for message in outcome.messages:
            debug = log.to_dict() if message is final and message.role == ROLE_ASSISTANT else None
            await self.store.save(options.conversation_id, message, debug)

    @staticmethod
    def _set_state(outcome: RunOutcome, state: RunState) -> None:
        if outcome.state is not state:
            logger.debug("Run %s: %s -> %s", outcome.request_id, outcome.state.value, state.value)
            outcome.state = state


async def _unless_cancelled(
    coro: Awaitable[str], cancel_event: asyncio.Event | None
) -> str | None:
    """
    Await *coro*, or return ``None`` as soon as *cancel_event* is set.

    The read runs as its own task so a stalled stream cannot hold off the
    cancel: the task is cancelled, which unwinds its ``async with`` blocks
    and closes the HTTP response.
    """
    if cancel_event is None:
        return await coro

    work = asyncio.ensure_future(coro)
    waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if not work.done():
            work.cancel()
            await asyncio.wait({work})
    if work.cancelled():
        return None
    return work.result()


def _add_usage(outcome: RunOutcome, usage: Usage) -> None:
    total = outcome.usage
    outcome.usage = Usage(
        prompt_tokens=total.prompt_tokens + usage.prompt_tokens,
        completion_tokens=total.completion_tokens + usage.completion_tokens,
        total_tokens=total.total_tokens + usage.total_tokens,
    )


def _tool_content(result: Any) -> str:
    """Text delivered to the model as the tool's response."""
    if isinstance(result, dict):
        if result.get("error"):
            return json.dumps({"error": result["error"]})
        content = result.get("content")
        if content:
            return content if isinstance(content, str) else json.dumps(content, default=str)
        payload = {k: v for k, v in result.items() if k not in ("success", "duration_ms")}
        return json.dumps(payload, default=str) if payload else DEFAULT_TOOL_RESULT
    if result is None or result == "":
        return DEFAULT_TOOL_RESULT
    if isinstance(result, str):
        return result
    return json.dumps(result, default=str)
