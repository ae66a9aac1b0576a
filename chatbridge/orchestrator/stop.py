"""
Stop conditions for surgical streams.

A stop condition is checked against the *cumulative* streamed text after
every chunk and before anything from that chunk is forwarded.  When a
textual condition fires it returns the cut point: everything up to it is
kept, the rest of the stream is discarded and the HTTP connection is
closed.  ``ToolCallStop`` is out-of-band: it fires on a
``tool_call_detected`` event rather than on text.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class StopCondition(ABC):
    """Predicate over streamed text that can end a streaming call early."""

    #: True for conditions triggered by a tool call rather than by text.
    on_tool_call = False

    @property
    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    def check(self, text: str) -> int | None:
        """Return the cut index into *text* when the condition holds, else ``None``."""
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class MarkerStop(StopCondition):
    """Stop right after the first occurrence of *marker*; the marker is kept."""

    def __init__(self, marker: str) -> None:
        if not marker:
            raise ValueError("marker must be non-empty")
        self.marker = marker

    @property
    def name(self) -> str:
        return self.marker

    def check(self, text: str) -> int | None:
        idx = text.find(self.marker)
        if idx < 0:
            return None
        return idx + len(self.marker)


class NaturalEnd(StopCondition):
    """Let the stream finish on its own."""

    @property
    def name(self) -> str:
        return "natural_end"

    def check(self, text: str) -> int | None:
        return None


class ToolCallStop(StopCondition):
    """Stop forwarding text once the model starts a tool call."""

    on_tool_call = True

    @property
    def name(self) -> str:
        return "tool_call"

    def check(self, text: str) -> int | None:
        return None


END_THINK = "</think>"


def first_cut(conditions: list[StopCondition], text: str) -> tuple[int, StopCondition] | None:
    """Earliest cut any textual condition produces for *text*."""
    best: tuple[int, StopCondition] | None = None
    for cond in conditions:
        cut = cond.check(text)
        if cut is not None and (best is None or cut < best[0]):
            best = (cut, cond)
    return best
