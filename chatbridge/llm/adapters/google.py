"""
Google Gemini adapter.

Streaming format: ``streamGenerateContent`` returns a JSON array of
``GenerateContentResponse`` objects written incrementally.  Wire chunks are
not line- or event-aligned, so the adapter concatenates them into a buffer
and decodes every complete object it can find after each chunk (array
brackets and separating commas are skipped).  Incomplete trailing data
stays buffered.

The buffer is bounded: once the undecodable remainder exceeds
``MAX_BUFFER_CHARS`` it is dropped with a warning.  A single response
object larger than that limit is therefore lost.
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
    ToolCall,
    UnifiedRequest,
    Usage,
)
from chatbridge.session.events import ToolEvent, tool_call_detected_event

logger = logging.getLogger(__name__)

MAX_BUFFER_CHARS = 10_000

# JSON-Schema keys the Gemini function-declaration schema rejects.
UNSUPPORTED_SCHEMA_KEYS = frozenset({"additionalProperties", "default"})

_MAX_THINKING_BUDGET = 24576
_AUTO_THINKING_BUDGET = -1

_FRAMING = "[],\r\n\t "

_decoder = json.JSONDecoder()


def supports_thinking(model: str) -> bool:
    return "2.5" in model.lower()


def clean_schema(schema: Any) -> Any:
    """Recursively strip keys Gemini does not accept from a JSON schema."""
    if isinstance(schema, dict):
        return {
            k: clean_schema(v)
            for k, v in schema.items()
            if k not in UNSUPPORTED_SCHEMA_KEYS
        }
    if isinstance(schema, list):
        return [clean_schema(item) for item in schema]
    return schema


class GoogleAdapter(ProviderAdapter):
    """Adapter for the Gemini ``generativelanguage.googleapis.com`` API."""

    @property
    def name(self) -> str:
        return "google"

    def can_handle(self, settings: ConnectionSettings) -> bool:
        return "google" in settings.api_url.lower()

    def endpoint_url(self, settings: ConnectionSettings) -> str:
        model = settings.model
        if model.startswith("models/"):
            model = model[len("models/"):]
        return f"{settings.base_url}/models/{model}:streamGenerateContent"

    def headers(self, settings: ConnectionSettings) -> dict[str, str]:
        headers = super().headers(settings)
        if settings.api_key:
            headers["x-goog-api-key"] = settings.api_key
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
        contents: list[dict[str, Any]] = []

        for msg in request.messages:
            if msg.role == ROLE_SYSTEM:
                if msg.text:
                    system_parts.append(msg.text)
                continue

            if msg.role == ROLE_TOOL:
                contents.append({
                    "role": "user",
                    "parts": [{
                        "functionResponse": {
                            "name": msg.tool_name or "unknown_tool",
                            "response": self._tool_response(msg.text),
                        }
                    }],
                })
                continue

            parts = self._convert_parts(msg)
            if msg.role == ROLE_ASSISTANT and msg.tool_calls:
                for tc in msg.tool_calls:
                    args = parse_json_or_none(tc.arguments or "{}")
                    parts.append({
                        "functionCall": {
                            "name": tc.name,
                            "args": args if isinstance(args, dict) else {},
                        }
                    })
            if not parts:
                continue
            contents.append({
                "role": "model" if msg.role == ROLE_ASSISTANT else "user",
                "parts": parts,
            })

        body: dict[str, Any] = {"contents": _merge_same_role(contents)}

        if system_parts:
            body["systemInstruction"] = {"parts": [{"text": "\n\n".join(system_parts)}]}

        if request.tools:
            body["tools"] = [{
                "functionDeclarations": [
                    {
                        "name": t.name,
                        "description": t.description,
                        "parameters": clean_schema(t.parameters),
                    }
                    for t in request.tools
                ]
            }]

        thinking_config = self._thinking_config(request.model, settings)
        if thinking_config:
            body["generationConfig"] = {"thinkingConfig": thinking_config}

        return body

    @staticmethod
    def _tool_response(content: str) -> dict[str, Any]:
        value = parse_json_or_none(content)
        if value is None:
            return {"result": content}
        if not isinstance(value, dict):
            return {"result": value}
        return value

    @staticmethod
    def _convert_parts(msg: Message) -> list[dict[str, Any]]:
        parts: list[dict[str, Any]] = []
        for part in msg.parts:
            if isinstance(part, TextPart):
                if part.text:
                    parts.append({"text": part.text})
            elif isinstance(part, ImagePart):
                parts.append({"inlineData": {"mimeType": part.media_type, "data": part.data}})
        return parts

    @staticmethod
    def _thinking_config(
        model: str, settings: ConnectionSettings | None
    ) -> dict[str, Any] | None:
        if settings is None or not supports_thinking(model):
            return None
        thinking = settings.thinking
        if not thinking.google_enabled or thinking.google_budget == 0:
            return None
        config: dict[str, Any] = {"includeThoughts": True}
        if thinking.google_budget != _AUTO_THINKING_BUDGET:
            config["thinkingBudget"] = max(0, min(_MAX_THINKING_BUDGET, thinking.google_budget))
        return config

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
        context.buffer += decode_chunk(raw, context)

        for obj in self._drain(context):
            items = obj if isinstance(obj, list) else [obj]
            for item in items:
                if isinstance(item, dict):
                    events.extend(self._apply(item, response))

        if len(context.buffer) > MAX_BUFFER_CHARS:
            logger.warning(
                "Discarding %d buffered chars of undecodable Gemini stream",
                len(context.buffer),
            )
            context.buffer = ""

        return ChunkResult(events=events, context=context)

    @staticmethod
    def _drain(context: AdapterContext) -> list[Any]:
        """Decode every complete JSON value at the front of the buffer."""
        decoded: list[Any] = []
        buf = context.buffer
        pos = 0
        while True:
            while pos < len(buf) and buf[pos] in _FRAMING:
                pos += 1
            if pos >= len(buf):
                break
            try:
                value, end = _decoder.raw_decode(buf, pos)
            except json.JSONDecodeError:
                break
            decoded.append(value)
            pos = end
        context.buffer = buf[pos:]
        return decoded

    def _apply(self, obj: dict, response: ResponseAccumulator) -> list[ToolEvent]:
        events: list[ToolEvent] = []

        candidates = obj.get("candidates")
        candidate = (
            candidates[0]
            if isinstance(candidates, list) and candidates and isinstance(candidates[0], dict)
            else None
        )
        if candidate is not None:
            parts = as_dict(candidate.get("content")).get("parts")
            for part in parts if isinstance(parts, list) else []:
                if not isinstance(part, dict):
                    continue
                text = as_str(part.get("text"))
                if text:
                    if part.get("thought"):
                        self._add_thought(text, response)
                    else:
                        response.add_content(text)

                call = part.get("functionCall")
                if isinstance(call, dict):
                    tc = response.add_tool_call(
                        ToolCall(
                            id=as_str(call.get("id")) or "",
                            name=as_str(call.get("name")) or "",
                            arguments=json.dumps(call.get("args") or {}),
                        )
                    )
                    events.append(tool_call_detected_event(tc.id, tc.name))

            if candidate.get("finishReason") == "STOP":
                response.mark_complete()

        usage = obj.get("usageMetadata")
        if isinstance(usage, dict):
            response.set_usage(
                Usage.from_counts(
                    usage.get("promptTokenCount"),
                    usage.get("candidatesTokenCount"),
                    usage.get("totalTokenCount"),
                )
            )

        return events

    @staticmethod
    def _add_thought(text: str, response: ResponseAccumulator) -> None:
        """Render a thought part; its first line is a bold summary title."""
        lines = text.split("\n")
        summary = lines[0].replace("**", "").strip()
        details = "\n".join(lines[2:]).strip()
        if summary and details:
            response.add_content(f'<thinking title="{summary}">{details}</thinking>')
            response.debug["thinking_summary"] = summary
            response.debug["thinking_content"] = details
        else:
            response.add_content(f"<thinking>{text}</thinking>")
            response.debug["thinking_content"] = text


def _merge_same_role(contents: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Gemini requires alternating roles; fold consecutive same-role turns."""
    merged: list[dict[str, Any]] = []
    for item in contents:
        if merged and merged[-1]["role"] == item["role"]:
            merged[-1]["parts"].extend(item["parts"])
        else:
            merged.append({"role": item["role"], "parts": list(item["parts"])})
    return merged
