"""
Tool lifecycle event model.

Every tool call in a streaming request produces up to three events, in
order: ``tool_call_detected`` (the adapter saw the call on the wire),
``tool_execution_start`` and ``tool_execution_complete``.  Events are
immutable once created and serialise to plain dicts for SSE-style
delivery.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


# ---------------------------------------------------------------------------
# Event type constants
# ---------------------------------------------------------------------------

EVENT_TOOL_CALL_DETECTED = "tool_call_detected"
EVENT_TOOL_EXECUTION_START = "tool_execution_start"
EVENT_TOOL_EXECUTION_COMPLETE = "tool_execution_complete"

EVENT_ORDER = (
    EVENT_TOOL_CALL_DETECTED,
    EVENT_TOOL_EXECUTION_START,
    EVENT_TOOL_EXECUTION_COMPLETE,
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Base event
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ToolEvent:
    """
    A single tool lifecycle event.

    Attributes
    ----------
    type:
        One of the ``EVENT_*`` constants.
    data:
        Event-specific payload.  Always carries ``id`` (the tool call id)
        and ``name`` (the tool name).
    timestamp:
        ISO-8601 UTC timestamp of event creation.
    """

    type: str
    data: dict[str, Any]
    timestamp: str = field(default_factory=_now)

    @property
    def tool_call_id(self) -> str | None:
        return self.data.get("id")

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "data": dict(self.data), "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolEvent:
        return cls(
            type=data["type"],
            data=dict(data.get("data", {})),
            timestamp=data.get("timestamp") or _now(),
        )


# ---------------------------------------------------------------------------
# Factory helpers
# ---------------------------------------------------------------------------


def tool_call_detected_event(tool_call_id: str, name: str, index: int | None = None) -> ToolEvent:
    """Create a ``tool_call_detected`` event."""
    data: dict[str, Any] = {"id": tool_call_id, "name": name}
    if index is not None:
        data["index"] = index
    return ToolEvent(type=EVENT_TOOL_CALL_DETECTED, data=data)


def tool_execution_start_event(
    tool_call_id: str,
    name: str,
    arguments: dict[str, Any],
) -> ToolEvent:
    """Create a ``tool_execution_start`` event."""
    return ToolEvent(
        type=EVENT_TOOL_EXECUTION_START,
        data={"id": tool_call_id, "name": name, "arguments": arguments},
    )


def tool_execution_complete_event(
    tool_call_id: str,
    name: str,
    *,
    result: Any = None,
    error: str | None = None,
    execution_time_ms: int = 0,
) -> ToolEvent:
    """Create a ``tool_execution_complete`` event (status ``success`` or ``error``)."""
    data: dict[str, Any] = {
        "id": tool_call_id,
        "name": name,
        "status": "error" if error else "success",
        "execution_time_ms": execution_time_ms,
    }
    if error:
        data["error"] = error
    else:
        data["result"] = result
    return ToolEvent(type=EVENT_TOOL_EXECUTION_COMPLETE, data=data)
