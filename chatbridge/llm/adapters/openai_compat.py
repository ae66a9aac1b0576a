"""
OpenAI-compatible chat-completion adapter.

Works with any endpoint that speaks the OpenAI ``/chat/completions`` wire
protocol -- OpenAI itself, OpenRouter, vLLM, LM Studio, Ollama's OpenAI
shim, etc.  It is the registry's fallback: any base URL that no other
adapter claims is treated as OpenAI-compatible.

Streaming format: line-delimited SSE, ``data: {json}`` per event, with the
sentinel ``data: [DONE]`` marking completion.
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
    parse_payload,
    split_sse_payloads,
)
from chatbridge.llm.response import ResponseAccumulator
from chatbridge.llm.types import (
    ConnectionSettings,
    ImagePart,
    Message,
    TextPart,
    ToolDeclaration,
    UnifiedRequest,
    Usage,
)
from chatbridge.session.events import ToolEvent

logger = logging.getLogger(__name__)

OPENROUTER_REFERER = "https://chatbridge.local"
OPENROUTER_TITLE = "chatbridge"


class OpenAICompatAdapter(ProviderAdapter):
    """Adapter for any OpenAI-API-compatible endpoint."""

    @property
    def name(self) -> str:
        return "openai"

    def can_handle(self, settings: ConnectionSettings) -> bool:
        url = settings.api_url.lower()
        return "google" not in url and "anthropic.com" not in url

    def endpoint_url(self, settings: ConnectionSettings) -> str:
        return f"{settings.base_url}/chat/completions"

    def headers(self, settings: ConnectionSettings) -> dict[str, str]:
        headers = super().headers(settings)
        headers["Accept"] = "text/event-stream"
        if settings.api_key:
            headers["Authorization"] = f"Bearer {settings.api_key}"
        if "openrouter.ai" in settings.api_url.lower():
            headers["HTTP-Referer"] = OPENROUTER_REFERER
            headers["X-Title"] = OPENROUTER_TITLE
        return headers

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def build_request(
        self,
        request: UnifiedRequest,
        settings: ConnectionSettings | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": request.model,
            "messages": [self._convert_message(m) for m in request.messages],
            "stream": request.stream,
        }
        if request.tools:
            body["tools"] = [self._convert_tool(t) for t in request.tools]
        return body

    @staticmethod
    def _convert_message(msg: Message) -> dict[str, Any]:
        if isinstance(msg.content, str):
            content: Any = msg.content
        else:
            content = []
            for part in msg.content:
                if isinstance(part, TextPart):
                    content.append({"type": "text", "text": part.text})
                elif isinstance(part, ImagePart):
                    content.append(
                        {"type": "image_url", "image_url": {"url": part.data_url}}
                    )

        m: dict[str, Any] = {"role": msg.role, "content": content}
        if msg.tool_calls:
            m["tool_calls"] = [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {"name": tc.name, "arguments": tc.arguments or "{}"},
                }
                for tc in msg.tool_calls
            ]
        if msg.tool_call_id:
            m["tool_call_id"] = msg.tool_call_id
        return m

    @staticmethod
    def _convert_tool(tool: ToolDeclaration) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.parameters,
            },
        }

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
            if payload == "[DONE]":
                response.mark_complete()
                continue

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

        usage = data.get("usage")
        if isinstance(usage, dict):
            response.set_usage(
                Usage.from_counts(
                    usage.get("prompt_tokens"),
                    usage.get("completion_tokens"),
                    usage.get("total_tokens"),
                )
            )

        choices = data.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            return events
        delta = as_dict(choices[0].get("delta"))

        content = delta.get("content")
        if isinstance(content, str) and content:
            response.add_content(content)

        tool_calls = delta.get("tool_calls")
        for raw_tc in tool_calls if isinstance(tool_calls, list) else []:
            if not isinstance(raw_tc, dict):
                continue
            func = as_dict(raw_tc.get("function"))
            args = func.get("arguments")
            if not isinstance(args, str):
                args = json.dumps(args) if args else ""
            index = raw_tc.get("index")
            events.extend(
                context.assembler.feed(
                    response,
                    index=index if isinstance(index, int) else None,
                    call_id=as_str(raw_tc.get("id")),
                    name=as_str(func.get("name")) or "",
                    args_delta=args,
                )
            )

        return events
