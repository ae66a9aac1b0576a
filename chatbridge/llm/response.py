"""
The unified response accumulator.

Every adapter writes into a ``ResponseAccumulator`` while a stream is being
consumed.  It is the single provider-agnostic view of one streaming
response:

  - ``content`` only ever grows during a session;
  - ``tool_calls`` only ever grows;
  - ``is_complete`` flips from ``False`` to ``True`` exactly once, and at
    that moment every tool call's ``arguments`` is reconciled to valid JSON.
"""

from __future__ import annotations

import itertools
import json
import logging
from typing import Any

from chatbridge.llm.types import ToolCall, Usage

logger = logging.getLogger(__name__)


class ResponseAccumulator:
    """Mutable accumulation target for one streaming response."""

    def __init__(self, provider: str = "") -> None:
        self.provider = provider
        self.content = ""
        self.tool_calls: list[ToolCall] = []
        self.is_complete = False
        self.usage = Usage()
        self.raw_response = ""
        self.error: str | None = None
        self.debug: dict[str, Any] = {}
        self._id_counter = itertools.count(1)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add_content(self, text: str) -> None:
        if text:
            self.content += text

    def add_tool_call(self, tool_call: ToolCall) -> ToolCall:
        """
        Append *tool_call*, assigning a fallback id when the wire format
        omitted one.  Returns the stored call so adapters can keep writing
        argument fragments into it.
        """
        if not tool_call.id:
            tool_call.id = self._fallback_id()
        while any(tc.id == tool_call.id for tc in self.tool_calls):
            tool_call.id = self._fallback_id()
        self.tool_calls.append(tool_call)
        return tool_call

    def set_usage(self, usage: Usage) -> None:
        self.usage = usage

    def append_raw(self, text: str) -> None:
        self.raw_response += text

    def mark_complete(self) -> None:
        """Mark the response finished and reconcile tool-call arguments."""
        if self.is_complete:
            return
        for tc in self.tool_calls:
            _reconcile_arguments(tc)
        self.is_complete = True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    def latest_tool_call(self) -> ToolCall | None:
        return self.tool_calls[-1] if self.tool_calls else None

    def find_tool_call(self, tool_call_id: str) -> ToolCall | None:
        for tc in self.tool_calls:
            if tc.id == tool_call_id:
                return tc
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "content": self.content,
            "tool_calls": [tc.to_dict() for tc in self.tool_calls],
            "is_complete": self.is_complete,
            "usage": self.usage.to_dict(),
            "debug": dict(self.debug),
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _fallback_id(self) -> str:
        return f"{self.provider or 'call'}_{next(self._id_counter)}"


def _reconcile_arguments(tc: ToolCall) -> None:
    raw = tc.arguments.strip()
    if not raw:
        tc.arguments = "{}"
        return
    try:
        json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning(
            "Tool call %s (%s) has malformed arguments: %s", tc.id, tc.name, exc
        )
        tc.raw_arguments = tc.arguments
        tc.parse_error = f"Invalid JSON arguments for {tc.name}: {exc}"
        tc.arguments = "{}"
