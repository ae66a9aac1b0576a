"""
Output sinks.

A sink receives only newly appended text, in order, for one streaming
call, plus a separate ``complete()`` signal.
"""

from __future__ import annotations

from typing import Callable, Protocol


class OutputSink(Protocol):
    def write(self, text: str) -> None: ...

    def complete(self) -> None: ...


class CollectingSink:
    """Keeps every increment; used by the conductor and in tests."""

    def __init__(self) -> None:
        self.parts: list[str] = []
        self.completed = 0

    def write(self, text: str) -> None:
        self.parts.append(text)

    def complete(self) -> None:
        self.completed += 1

    @property
    def text(self) -> str:
        return "".join(self.parts)


class CallbackSink:
    """Adapts plain callables to the sink interface."""

    def __init__(
        self,
        on_text: Callable[[str], None],
        on_complete: Callable[[], None] | None = None,
    ) -> None:
        self._on_text = on_text
        self._on_complete = on_complete

    def write(self, text: str) -> None:
        self._on_text(text)

    def complete(self) -> None:
        if self._on_complete is not None:
            self._on_complete()


class NullSink:
    def write(self, text: str) -> None:
        pass

    def complete(self) -> None:
        pass
