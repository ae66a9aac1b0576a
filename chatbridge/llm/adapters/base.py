"""Abstract base class and shared framing helpers for provider adapters."""

from __future__ import annotations

import codecs
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from chatbridge.llm.response import ResponseAccumulator
from chatbridge.llm.tool_call_assembler import ToolCallAssembler
from chatbridge.llm.types import ConnectionSettings, UnifiedRequest
from chatbridge.session.events import ToolEvent


def _utf8_decoder() -> codecs.IncrementalDecoder:
    return codecs.getincrementaldecoder("utf-8")(errors="replace")


@dataclass
class AdapterContext:
    """
    Scratch state threaded through successive ``process_chunk`` calls.

    Owned by exactly one streaming session and discarded when it ends.
    """

    model: str = ""
    buffer: str = ""
    decoder: codecs.IncrementalDecoder = field(default_factory=_utf8_decoder)
    assembler: ToolCallAssembler = field(default_factory=ToolCallAssembler)
    content_block: str | None = None
    thinking: str = ""


@dataclass
class ChunkResult:
    """What ``process_chunk`` hands back: new tool events plus the context."""

    events: list[ToolEvent]
    context: AdapterContext


class ProviderAdapter(ABC):
    """
    Translator between the unified request/response model and one
    provider's wire format.

    Implementations must:
      - decide from connection settings alone whether they apply
        (``can_handle``);
      - build the wire request body, endpoint URL and headers;
      - incrementally parse streamed bytes into a ``ResponseAccumulator``
        without ever raising on malformed fragments.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Short provider tag (e.g. ``"openai"``)."""
        ...

    @abstractmethod
    def can_handle(self, settings: ConnectionSettings) -> bool:
        """Pure predicate over the configured base URL."""
        ...

    @abstractmethod
    def endpoint_url(self, settings: ConnectionSettings) -> str:
        ...

    def headers(self, settings: ConnectionSettings) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    @abstractmethod
    def build_request(
        self,
        request: UnifiedRequest,
        settings: ConnectionSettings | None = None,
    ) -> dict[str, Any]:
        """Convert *request* to the provider's JSON body."""
        ...

    @abstractmethod
    def process_chunk(
        self,
        raw: bytes | str,
        response: ResponseAccumulator,
        context: AdapterContext,
    ) -> ChunkResult:
        """Parse one wire chunk into *response*; return any tool events."""
        ...

    def create_context(self, model: str = "") -> AdapterContext:
        return AdapterContext(model=model)

    def create_response(self) -> ResponseAccumulator:
        return ResponseAccumulator(provider=self.name)

    def finish(
        self,
        response: ResponseAccumulator,
        context: AdapterContext,
    ) -> ChunkResult:
        """Flush anything still buffered once the byte stream has ended."""
        return self.process_chunk(b"\n", response, context)


# ---------------------------------------------------------------------------
# Framing helpers
# ---------------------------------------------------------------------------


def decode_chunk(raw: bytes | str, context: AdapterContext) -> str:
    """Decode *raw* incrementally so split multi-byte characters survive."""
    if isinstance(raw, str):
        return raw
    return context.decoder.decode(raw)


def _is_json(text: str) -> bool:
    try:
        json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return False
    return True


def split_sse_payloads(text: str, context: AdapterContext) -> list[str]:
    """
    Split line-delimited Server-Sent Events into ``data:`` payloads.

    Complete lines are consumed; a trailing partial line stays in
    ``context.buffer`` unless it already holds a complete payload (servers
    do not always terminate the final event with a newline).  Lines that
    are not ``data:`` lines (``event:``, comments, blanks) are dropped.
    """
    context.buffer += text
    lines = context.buffer.split("\n")
    context.buffer = lines.pop()

    payloads: list[str] = []
    for line in lines:
        line = line.rstrip("\r")
        if line.startswith("data:"):
            payloads.append(line[len("data:"):].strip())

    tail = context.buffer.rstrip("\r")
    if tail.startswith("data:"):
        data = tail[len("data:"):].strip()
        if data == "[DONE]" or _is_json(data):
            payloads.append(data)
            context.buffer = ""
    return payloads


def parse_payload(payload: str) -> dict | None:
    """JSON-decode one SSE payload; ``None`` for anything malformed."""
    try:
        data = json.loads(payload)
    except (json.JSONDecodeError, ValueError):
        return None
    return data if isinstance(data, dict) else None


def parse_json_or_none(text: str) -> Any:
    try:
        return json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None


def as_dict(value: Any) -> dict:
    """*value* when it is a JSON object, else an empty dict."""
    return value if isinstance(value, dict) else {}


def as_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None
