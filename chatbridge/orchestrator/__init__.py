"""Orchestration: single streaming calls and the phase-based conductor."""

from chatbridge.orchestrator.conductor import (
    Conductor,
    ConductorResult,
    ConductorSettings,
    next_phase,
)
from chatbridge.orchestrator.core import (
    ChatOrchestrator,
    RunOptions,
    RunOutcome,
    RunState,
)
from chatbridge.orchestrator.sink import CallbackSink, CollectingSink, NullSink, OutputSink
from chatbridge.orchestrator.stop import MarkerStop, NaturalEnd, StopCondition, ToolCallStop

__all__ = [
    "CallbackSink",
    "ChatOrchestrator",
    "CollectingSink",
    "Conductor",
    "ConductorResult",
    "ConductorSettings",
    "MarkerStop",
    "NaturalEnd",
    "NullSink",
    "OutputSink",
    "RunOptions",
    "RunOutcome",
    "RunState",
    "StopCondition",
    "ToolCallStop",
    "next_phase",
]
