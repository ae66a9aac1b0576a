"""Session plumbing: tool events, the event bus, debug logs and chat persistence."""

from chatbridge.session.events import (
    EVENT_TOOL_CALL_DETECTED,
    EVENT_TOOL_EXECUTION_COMPLETE,
    EVENT_TOOL_EXECUTION_START,
    ToolEvent,
    tool_call_detected_event,
    tool_execution_complete_event,
    tool_execution_start_event,
)
from chatbridge.session.bus import Subscription, ToolEventBus
from chatbridge.session.debug import DebugLog, DebugStore
from chatbridge.session.store import ChatStore

__all__ = [
    "ChatStore",
    "DebugLog",
    "DebugStore",
    "Subscription",
    "ToolEvent",
    "ToolEventBus",
    # Event type constants
    "EVENT_TOOL_CALL_DETECTED",
    "EVENT_TOOL_EXECUTION_COMPLETE",
    "EVENT_TOOL_EXECUTION_START",
    # Factory functions
    "tool_call_detected_event",
    "tool_execution_complete_event",
    "tool_execution_start_event",
]
