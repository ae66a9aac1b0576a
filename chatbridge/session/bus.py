"""
Per-request tool event bus.

Each request id owns an append-only event log and a set of live
subscribers.  ``publish`` appends to the log and then pushes to every
subscriber; ``subscribe`` replays the log before going live, so an observer
that attaches late (or before the producer has started) never misses an
event.  Either side may create the entry for a request id.

Events are deduplicated on ``(type, tool call id)`` so that each lifecycle
stage is delivered at most once per tool call.

The bus is an ordinary object owned by the application root and injected
into the orchestrator and conductor; there is no module-level instance.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable

from chatbridge.session.events import ToolEvent

logger = logging.getLogger(__name__)

Listener = Callable[[ToolEvent], None]


class Subscription:
    """
    A queue-backed subscriber handle.

    Iterate with ``async for`` or call ``get()``; ``close()`` detaches it
    from the bus.  The queue is unbounded, so publishing never blocks.
    """

    def __init__(self, bus: ToolEventBus, request_id: str) -> None:
        self._bus = bus
        self.request_id = request_id
        self._queue: asyncio.Queue[ToolEvent] = asyncio.Queue()
        self.closed = False

    def deliver(self, event: ToolEvent) -> None:
        if self.closed:
            raise RuntimeError("subscription closed")
        self._queue.put_nowait(event)

    async def get(self) -> ToolEvent:
        return await self._queue.get()

    def get_nowait(self) -> ToolEvent | None:
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def drain(self) -> list[ToolEvent]:
        """Return every event currently queued without waiting."""
        events: list[ToolEvent] = []
        while (event := self.get_nowait()) is not None:
            events.append(event)
        return events

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._bus.unsubscribe(self.request_id, self)

    def __aiter__(self) -> AsyncIterator[ToolEvent]:
        return self

    async def __anext__(self) -> ToolEvent:
        if self.closed and self._queue.empty():
            raise StopAsyncIteration
        return await self._queue.get()


@dataclass
class _Channel:
    log: list[ToolEvent] = field(default_factory=list)
    seen: set[tuple[str, str]] = field(default_factory=set)
    subscribers: list[Subscription | Listener] = field(default_factory=list)


class ToolEventBus:
    """Publish/subscribe channel for tool lifecycle events, keyed by request id."""

    def __init__(self) -> None:
        self._channels: dict[str, _Channel] = {}

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def publish(self, request_id: str, event: ToolEvent) -> bool:
        """
        Append *event* to the request's log and deliver it.

        Returns ``False`` (and delivers nothing) when an event of the same
        type was already published for the same tool call.
        """
        channel = self._channel(request_id)
        key = (event.type, event.tool_call_id or "")
        if key in channel.seen:
            logger.debug("Dropping duplicate %s for %s", event.type, key[1])
            return False
        channel.seen.add(key)
        channel.log.append(event)

        for subscriber in list(channel.subscribers):
            try:
                _deliver(subscriber, event)
            except Exception as exc:
                logger.warning(
                    "Removing failed subscriber on request %s: %s", request_id, exc
                )
                self._remove(channel, subscriber)
        return True

    # ------------------------------------------------------------------
    # Subscribing
    # ------------------------------------------------------------------

    def subscribe(self, request_id: str) -> Subscription:
        """Return a queue subscription pre-loaded with the request's history."""
        channel = self._channel(request_id)
        sub = Subscription(self, request_id)
        for event in channel.log:
            sub.deliver(event)
        channel.subscribers.append(sub)
        return sub

    def add_listener(self, request_id: str, listener: Listener) -> Listener:
        """
        Register a synchronous callback.  The log is replayed into it before
        it starts receiving live events.  Returns *listener* for symmetry
        with ``unsubscribe``.
        """
        channel = self._channel(request_id)
        for event in list(channel.log):
            listener(event)
        channel.subscribers.append(listener)
        return listener

    def unsubscribe(self, request_id: str, subscriber: Subscription | Listener) -> None:
        channel = self._channels.get(request_id)
        if channel is not None:
            self._remove(channel, subscriber)

    # ------------------------------------------------------------------
    # Inspection / lifecycle
    # ------------------------------------------------------------------

    def events(self, request_id: str) -> list[ToolEvent]:
        channel = self._channels.get(request_id)
        return list(channel.log) if channel else []

    def subscriber_count(self, request_id: str) -> int:
        channel = self._channels.get(request_id)
        return len(channel.subscribers) if channel else 0

    def has_request(self, request_id: str) -> bool:
        return request_id in self._channels

    def request_ids(self) -> list[str]:
        return list(self._channels)

    def release(self, request_id: str) -> None:
        """Forget everything held for *request_id*; open subscriptions are closed."""
        channel = self._channels.pop(request_id, None)
        if channel is None:
            return
        for subscriber in channel.subscribers:
            if isinstance(subscriber, Subscription):
                subscriber.closed = True

    def _channel(self, request_id: str) -> _Channel:
        channel = self._channels.get(request_id)
        if channel is None:
            channel = _Channel()
            self._channels[request_id] = channel
        return channel

    @staticmethod
    def _remove(channel: _Channel, subscriber: Subscription | Listener) -> None:
        try:
            channel.subscribers.remove(subscriber)
        except ValueError:
            pass


def _deliver(subscriber: Subscription | Listener, event: ToolEvent) -> None:
    if isinstance(subscriber, Subscription):
        subscriber.deliver(event)
    else:
        subscriber(event)
