"""
Anthropic Messages API adapter.

Streaming format: line-delimited SSE.  Each ``data:`` payload has a
``type`` (``message_start``, ``content_block_start``,
``content_block_delta``, ``content_block_stop``, ``message_delta``,
``message_stop``, ``error``).  Completion is signalled by ``message_stop``
rather than a sentinel line.

Tool calls arrive as a ``tool_use`` content block whose input is streamed
as ``input_json_delta`` fragments until the block stops.  Extended-thinking
blocks are surfaced inline as ``<thinking>...</thinking>``.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from chatbridge.llm.adapters.base import (
    AdapterContext,
    ChunkResult,
    ProviderAdapter,
    as_dict,
    as_str,
    decode_chunk,
    parse_json_or_none,
    parse_payload,
    split_sse_payloads,
)
from chatbridge.llm.response import ResponseAccumulator
from chatbridge.llm.types import (
    ROLE_ASSISTANT,
    ROLE_SYSTEM,
    ROLE_TOOL,
    ConnectionSettings,
    ImagePart,
    Message,
    TextPart,
    UnifiedRequest,
    Usage,
)
from chatbridge.session.events import ToolEvent

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"

THINKING_MODELS = (
    "claude-3-7-sonnet",
    "claude-3.7-sonnet",
    "claude-sonnet-4",
    "claude-4-sonnet",
    "claude-opus-4",
    "claude-4-opus",
)

_MIN_THINKING_BUDGET = 1024
_MAX_THINKING_BUDGET = 32000


def supports_thinking(model: str) -> bool:
    model = model.lower()
    return any(m in model for m in THINKING_MODELS)


class AnthropicAdapter(ProviderAdapter):
    """Adapter for ``api.anthropic.com``."""

    @property
    def name(self) -> str:
        return "anthropic"

    def can_handle(self, settings: ConnectionSettings) -> bool:
        return "anthropic.com" in settings.api_url.lower()

    def endpoint_url(self, settings: ConnectionSettings) -> str:
        return f"{settings.base_url}/messages"

    def headers(self, settings: ConnectionSettings) -> dict[str, str]:
        headers = super().headers(settings)
        if settings.api_key:
            headers["x-api-key"] = settings.api_key
        headers["anthropic-version"] = ANTHROPIC_VERSION
        return headers

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def build_request(
        self,
        request: UnifiedRequest,
        settings: ConnectionSettings | None = None,
    ) -> dict[str, Any]:
        system_parts: list[str] = []
        messages: list[dict[str, Any]] = []

        for msg in request.messages:
            if msg.role == ROLE_SYSTEM:
                if msg.text:
                    system_parts.append(msg.text)
                continue

            if msg.role == ROLE_TOOL:
                messages.append({
                    "role": "user",
                    "content": [
                        {
                            "type": "tool_result",
                            "tool_use_id": msg.tool_call_id or "",
                            "content": msg.text,
                        }
                    ],
                })
                continue

            if msg.role == ROLE_ASSISTANT and msg.tool_calls:
                blocks: list[dict[str, Any]] = []
                if msg.text:
                    blocks.append({"type": "text", "text": msg.text})
                for tc in msg.tool_calls:
                    tool_input = parse_json_or_none(tc.arguments or "{}")
                    blocks.append({
                        "type": "tool_use",
                        "id": tc.id,
                        "name": tc.name,
                        "input": tool_input if isinstance(tool_input, dict) else {},
                    })
                messages.append({"role": ROLE_ASSISTANT, "content": blocks})
                continue

            messages.append({"role": msg.role, "content": self._convert_content(msg)})

        body: dict[str, Any] = {
            "model": request.model,
            "max_tokens": request.max_tokens,
            "messages": messages,
            "stream": request.stream,
        }
        if system_parts:
            body["system"] = "\n\n".join(system_parts)
        if request.tools:
            body["tools"] = [
                {
                    "name": t.name,
                    "description": t.description,
                    "input_schema": t.parameters or {"type": "object"},
                }
                for t in request.tools
            ]

        thinking = settings.thinking if settings is not None else None
        if thinking is not None and thinking.anthropic_enabled and supports_thinking(request.model):
            budget = max(
                _MIN_THINKING_BUDGET, min(_MAX_THINKING_BUDGET, thinking.anthropic_budget)
            )
            body["thinking"] = {"type": "enabled", "budget_tokens": budget}
            # max_tokens must exceed the thinking budget.
            if body["max_tokens"] <= budget:
                body["max_tokens"] = budget + request.max_tokens

        return body

    @staticmethod
    def _convert_content(msg: Message) -> Any:
        if isinstance(msg.content, str):
            return msg.content
        blocks: list[dict[str, Any]] = []
        for part in msg.content:
            if isinstance(part, TextPart):
                blocks.append({"type": "text", "text": part.text})
            elif isinstance(part, ImagePart):
                blocks.append({
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": part.media_type,
                        "data": part.data,
                    },
                })
        return blocks

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    def process_chunk(
        self,
        raw: bytes | str,
        response: ResponseAccumulator,
        context: AdapterContext,
    ) -> ChunkResult:
        events: list[ToolEvent] = []
        text = decode_chunk(raw, context)

        for payload in split_sse_payloads(text, context):
            data = parse_payload(payload)
            if data is None:
                logger.debug("Skipping malformed SSE payload: %s", payload[:200])
                continue
            events.extend(self._apply(data, response, context))

        return ChunkResult(events=events, context=context)

    def _apply(
        self,
        data: dict,
        response: ResponseAccumulator,
        context: AdapterContext,
    ) -> list[ToolEvent]:
        events: list[ToolEvent] = []
        event_type = data.get("type")

        if event_type == "message_start":
            usage = as_dict(data.get("message")).get("usage")
            if isinstance(usage, dict):
                self._merge_usage(response, usage)

        elif event_type == "content_block_start":
            block = as_dict(data.get("content_block"))
            block_type = as_str(block.get("type"))
            context.content_block = block_type
            if block_type == "thinking":
                context.thinking = ""
                response.add_content("<thinking>")
            elif block_type == "tool_use":
                tool_input = block.get("input")
                events.extend(
                    context.assembler.feed(
                        response,
                        call_id=as_str(block.get("id")),
                        name=as_str(block.get("name")) or "",
                        args_delta=json.dumps(tool_input) if tool_input else "",
                    )
                )
            elif block_type == "text" and as_str(block.get("text")):
                response.add_content(block["text"])

        elif event_type == "content_block_delta":
            delta = as_dict(data.get("delta"))
            delta_type = delta.get("type")
            if delta_type == "text_delta":
                response.add_content(as_str(delta.get("text")) or "")
            elif delta_type == "thinking_delta":
                thought = as_str(delta.get("thinking")) or ""
                context.thinking += thought
                response.add_content(thought)
            elif delta_type == "input_json_delta":
                context.assembler.append_to_current(as_str(delta.get("partial_json")) or "")

        elif event_type == "content_block_stop":
            if context.content_block == "thinking":
                response.add_content("</thinking>")
                if context.thinking:
                    response.debug["thinking_content"] = context.thinking
            elif context.content_block == "tool_use":
                context.assembler.close_current()
            context.content_block = None

        elif event_type == "message_delta":
            usage = data.get("usage")
            if isinstance(usage, dict):
                self._merge_usage(response, usage)

        elif event_type == "message_stop":
            response.mark_complete()

        elif event_type == "error":
            error = data.get("error")
            message = as_str(as_dict(error).get("message")) or as_str(error)
            response.error = message or json.dumps(error)
            logger.warning("Anthropic stream error: %s", response.error)

        return events

    @staticmethod
    def _merge_usage(response: ResponseAccumulator, usage: dict) -> None:
        prompt = usage.get("input_tokens")
        completion = usage.get("output_tokens")
        current = response.usage
        response.set_usage(
            Usage.from_counts(
                prompt if prompt is not None else current.prompt_tokens,
                completion if completion is not None else current.completion_tokens,
            )
        )
