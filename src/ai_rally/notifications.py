"""In-process asyncio event channel for rally progress.

Adapters and the orchestrator publish ``RallyEvent`` objects; any number of
observers subscribe and receive them in publish order. Publishing never blocks
and never raises: a subscriber that falls behind loses events instead of
stalling the adapter call that produced them.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

from ai_rally.models import RallyEvent

logger = logging.getLogger("ai_rally")

_CLOSED = object()


class Subscription:
    """Async iterator over events published after ``subscribe()``."""

    def __init__(self, channel: EventChannel, maxsize: int) -> None:
        self._channel = channel
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def _offer(self, item: object) -> None:
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            self.dropped += 1

    def _close(self) -> None:
        # The close marker must get through even when the queue is full.
        while True:
            try:
                self._queue.put_nowait(_CLOSED)
                return
            except asyncio.QueueFull:
                self._queue.get_nowait()
                self.dropped += 1

    def __aiter__(self) -> AsyncIterator[RallyEvent]:
        return self

    async def __anext__(self) -> RallyEvent:
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item  # type: ignore[return-value]

    def unsubscribe(self) -> None:
        self._channel._subscribers.discard(self)
        self._close()


@dataclass(eq=False)
class EventChannel:
    """Multi-producer/multi-consumer fan-out of rally events.

    Usage:
        channel = EventChannel()
        subscription = channel.subscribe()

        # Producer (adapter or orchestrator):
        channel.publish(AgentThinking(text="Starting..."))

        # Consumer (e.g. terminal renderer):
        async for event in subscription:
            ...
    """

    maxsize: int = 256
    history_size: int = 1024
    _history: deque[RallyEvent] = field(init=False)
    _subscribers: set[Subscription] = field(default_factory=set)
    _version: int = 0
    _closed: bool = False
    _changed: asyncio.Event = field(default_factory=asyncio.Event)

    def __post_init__(self) -> None:
        self._history = deque(maxlen=self.history_size)

    @property
    def history(self) -> list[RallyEvent]:
        """The most recent ``history_size`` events, oldest first."""
        return list(self._history)

    @property
    def version(self) -> int:
        """Number of events published so far."""
        return self._version

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def dropped(self) -> int:
        """Events dropped across all current subscribers."""
        return sum(subscription.dropped for subscription in self._subscribers)

    def subscribe(self) -> Subscription:
        subscription = Subscription(self, self.maxsize)
        if self._closed:
            subscription._close()
        else:
            self._subscribers.add(subscription)
        return subscription

    def publish(self, event: RallyEvent) -> None:
        """Deliver an event to every subscriber without waiting."""
        if self._closed:
            logger.debug("event channel closed; dropping %s", event.kind)
            return
        self._history.append(event)
        self._version += 1
        for subscription in list(self._subscribers):
            subscription._offer(event)
        self._changed.set()

    async def wait_for_change(
        self,
        timeout: float = 25.0,
        since_version: int | None = None,
    ) -> bool:
        """Wait until something is published after ``since_version``.

        Returns True if signaled within timeout, False on timeout. Without
        since_version, waits for the next publish from the current point-in-time.
        """
        baseline = self._version if since_version is None else since_version
        deadline = time.monotonic() + timeout

        while True:
            if self._version != baseline:
                return True

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False

            self._changed.clear()
            try:
                await asyncio.wait_for(self._changed.wait(), timeout=remaining)
            except TimeoutError:
                return False

    def close(self) -> None:
        """Stop accepting events and end every subscription."""
        if self._closed:
            return
        self._closed = True
        for subscription in list(self._subscribers):
            subscription._close()
        self._subscribers.clear()
        self._changed.set()
