"""
Diagnostic sequences, keyed by request id.

Every orchestrator call records what it sent and received as an
append-only ``DebugLog``: the request payload, the HTTP status and raw
body, each tool execution and its result, and any transport error.  The
log is auxiliary data; nothing in the conversation flow depends on it.

A log is only *published* once its call has finished (``complete()``), so
readers never observe a half-written sequence.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)

STEP_REQUEST = "request"
STEP_RESPONSE = "response"
STEP_TOOL_EXECUTION = "tool_execution"
STEP_TOOL_RESULT = "tool_result"
STEP_ERROR = "error"


class DebugLog:
    """Append-only diagnostic sequence for one request id."""

    def __init__(self, request_id: str, metadata: dict[str, Any] | None = None) -> None:
        self.request_id = request_id
        self.metadata: dict[str, Any] = dict(metadata or {})
        self.sequence: list[dict[str, Any]] = []
        self.created_at = datetime.now(timezone.utc).isoformat()
        self._complete = asyncio.Event()

    def add_step(self, step_type: str, data: dict[str, Any] | None = None) -> dict[str, Any]:
        step = {
            "step": len(self.sequence) + 1,
            "type": step_type,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "data": dict(data or {}),
        }
        self.sequence.append(step)
        return step

    @property
    def is_complete(self) -> bool:
        return self._complete.is_set()

    def complete(self) -> None:
        self._complete.set()

    async def wait(self, timeout: float | None = None) -> bool:
        """Wait until the log is complete.  Returns ``False`` on timeout."""
        try:
            await asyncio.wait_for(self._complete.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "created_at": self.created_at,
            "metadata": dict(self.metadata),
            "sequence": [dict(s) for s in self.sequence],
        }


class DebugStore:
    """
    Holds ``DebugLog`` objects until their reader releases them.

    Opening an id that is already held returns the existing log, so every
    response round of one orchestrator call lands in a single sequence.
    """

    def __init__(self) -> None:
        self._logs: dict[str, DebugLog] = {}

    def open(self, request_id: str, metadata: dict[str, Any] | None = None) -> DebugLog:
        """Return the log for *request_id*, creating it if needed."""
        log = self._logs.get(request_id)
        if log is None:
            log = DebugLog(request_id, metadata)
            self._logs[request_id] = log
        elif metadata:
            log.metadata.update(metadata)
        return log

    def get(self, request_id: str) -> dict[str, Any] | None:
        """Return the finished sequence for *request_id*, or ``None`` if not ready."""
        log = self._logs.get(request_id)
        if log is None or not log.is_complete:
            return None
        return log.to_dict()

    async def wait_for(self, request_id: str, timeout: float | None = None) -> dict[str, Any] | None:
        log = self._logs.get(request_id)
        if log is None:
            return None
        if not await log.wait(timeout):
            return None
        return log.to_dict()

    def release(self, request_id: str) -> None:
        self._logs.pop(request_id, None)

    def request_ids(self) -> list[str]:
        return list(self._logs)

    def __len__(self) -> int:
        return len(self._logs)
