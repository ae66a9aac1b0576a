"""
Assembles streaming tool-call fragments into ``ToolCall`` objects.

Design goals:
  - A fragment carrying an id that has not been seen starts a new call.
  - Fragments without an id continue the call last seen at the same
    ``index`` (OpenAI-style); an unseen index starts a new call.  Fragments
    with neither continue the most recent call.
  - Argument text is appended to the *same* ``ToolCall`` object that lives
    in the accumulator, so the accumulator always reflects the current
    partial arguments.
  - A ``tool_call_detected`` event is returned exactly once per call, at
    first sight.
"""

from __future__ import annotations

from chatbridge.llm.response import ResponseAccumulator
from chatbridge.llm.types import ToolCall
from chatbridge.session.events import ToolEvent, tool_call_detected_event


class ToolCallAssembler:
    """Routes raw tool-call fragments onto the accumulator's ``ToolCall`` objects."""

    def __init__(self) -> None:
        self._by_id: dict[str, ToolCall] = {}
        self._by_index: dict[int, ToolCall] = {}
        self.current: ToolCall | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def feed(
        self,
        response: ResponseAccumulator,
        *,
        index: int | None = None,
        call_id: str | None = None,
        name: str = "",
        args_delta: str = "",
    ) -> list[ToolEvent]:
        """
        Feed one fragment.

        Returns a one-element list with the ``tool_call_detected`` event when
        the fragment started a new call, otherwise an empty list.
        """
        call = self._lookup(index, call_id)
        events: list[ToolEvent] = []

        if call is None:
            call = response.add_tool_call(
                ToolCall(id=call_id or "", name=name, arguments=args_delta)
            )
            if call_id:
                self._by_id[call_id] = call
            if index is not None:
                self._by_index[index] = call
            events.append(tool_call_detected_event(call.id, call.name, index))
        else:
            if name and not call.name:
                call.name = name
            if args_delta:
                call.arguments += args_delta

        self.current = call
        return events

    def append_to_current(self, args_delta: str) -> bool:
        """Append argument text to the call most recently started or fed."""
        if self.current is None or not args_delta:
            return False
        self.current.arguments += args_delta
        return True

    def close_current(self) -> None:
        """Stop routing id-less fragments to the current call."""
        self.current = None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lookup(self, index: int | None, call_id: str | None) -> ToolCall | None:
        if call_id:
            return self._by_id.get(call_id)
        if index is not None:
            return self._by_index.get(index)
        return self.current
