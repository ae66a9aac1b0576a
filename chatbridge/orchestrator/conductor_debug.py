"""
Debug aggregation for conductor turns.

Each surgical stream is its own orchestrator call with its own request id
and diagnostic sequence.  At the end of a turn the conductor reads every
sequence (retrying briefly if one is not complete yet), concatenates them
in call order with continuous step numbering, and releases the per-request
state held by the debug store and the event bus.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from chatbridge.session.bus import ToolEventBus
from chatbridge.session.debug import DebugStore

logger = logging.getLogger(__name__)

FALLBACK_STEP_TYPE = "conductor_api_call"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ApiCallRecord:
    request_id: str
    conductor_phase: int
    stopped_on: str
    stop_conditions: list[str]
    content: str = ""
    timestamp: str = field(default_factory=_now)


class ConductorDebugData:
    """Collects per-call records during a turn and merges their sequences."""

    def __init__(self) -> None:
        self.calls: list[ApiCallRecord] = []
        self.injections: list[dict[str, Any]] = []
        # Every request id started this turn, including ones that never finished.
        self.request_ids: list[str] = []

    def track_injection(self, phase_key: str, prompt: str, conductor_phase: int) -> None:
        logger.debug("Context injection: %s", phase_key)
        self.injections.append(
            {
                "phaseKey": phase_key,
                "prompt": prompt,
                "conductorPhase": conductor_phase,
                "timestamp": _now(),
            }
        )

    def begin_call(self, request_id: str) -> None:
        if request_id not in self.request_ids:
            self.request_ids.append(request_id)

    def add_call(self, record: ApiCallRecord) -> None:
        self.begin_call(record.request_id)
        self.calls.append(record)

    async def build(
        self,
        debug: DebugStore,
        *,
        attempts: int = 5,
        delay: float = 0.1,
    ) -> dict[str, Any]:
        """Return the merged ``{sequence, metadata, injections}`` blob."""
        sequence: list[dict[str, Any]] = []
        counter = 1

        for call in self.calls:
            data = await self._fetch(debug, call.request_id, attempts, delay)
            extra = {
                "conductorPhase": call.conductor_phase,
                "stoppedOn": call.stopped_on,
                "stopConditions": list(call.stop_conditions),
            }
            if data and data.get("sequence"):
                for step in data["sequence"]:
                    merged = dict(step)
                    merged["step"] = counter
                    merged["data"] = {**step.get("data", {}), **extra}
                    sequence.append(merged)
                    counter += 1
            else:
                logger.warning(
                    "No debug data for request %s; adding placeholder", call.request_id
                )
                sequence.append(
                    {
                        "step": counter,
                        "type": FALLBACK_STEP_TYPE,
                        "timestamp": call.timestamp,
                        "data": {
                            "message": f"Conductor phase {call.conductor_phase} API call (no debug data)",
                            "requestId": call.request_id,
                            "rawResponseLength": len(call.content),
                            "backendDebugUnavailable": True,
                            **extra,
                        },
                    }
                )
                counter += 1

        return {
            "sequence": sequence,
            "injections": list(self.injections),
            "metadata": {
                "endpoint": "conductor",
                "timestamp": _now(),
                "total_api_calls": len(self.calls),
                "total_steps": len(sequence),
            },
        }

    def release(self, debug: DebugStore, bus: ToolEventBus) -> None:
        """Drop every per-request entry this turn created."""
        for request_id in self.request_ids:
            debug.release(request_id)
            bus.release(request_id)

    @staticmethod
    async def _fetch(
        debug: DebugStore, request_id: str, attempts: int, delay: float
    ) -> dict[str, Any] | None:
        for attempt in range(max(1, attempts)):
            data = await debug.wait_for(request_id, timeout=delay)
            if data is not None:
                return data
            if request_id not in debug.request_ids():
                await asyncio.sleep(delay)
            logger.debug(
                "Debug data for %s not ready (attempt %d/%d)", request_id, attempt + 1, attempts
            )
        return None
