"""Fan-out publish/subscribe channel with bounded replay.

The broadcaster owns the subscriber set and the replay buffer; other
components only reach them through ``publish*`` and ``subscribe``.

Every subscriber gets its own bounded queue. Publishing never waits: a
subscriber whose queue is full is disconnected instead of stalling the
publisher or the other subscribers.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any, Optional

from faktory.models.config import REPLAY_CAPACITY
from faktory.models.decision import Decision
from faktory.models.event import AgentEvent, EventKind, MessageType, WireMessage

logger = logging.getLogger(__name__)

_LOG_PREFIX = {
    EventKind.THINKING: "💭",
    EventKind.ANALYSIS: "📊",
    EventKind.DECISION: "🎯",
    EventKind.EXECUTION: "⚡",
    EventKind.ERROR: "❌",
}


class Subscription:
    """
    Handle for one subscriber.

    Iterate it (``async for message in subscription``) to receive the replay
    buffer followed by live messages. Iteration ends once the subscription
    is closed, either by the subscriber or because it fell behind.
    """

    def __init__(self, broadcaster: EventBroadcaster, maxsize: int) -> None:
        self._broadcaster = broadcaster
        self._queue: asyncio.Queue[Optional[WireMessage]] = asyncio.Queue(maxsize=maxsize)
        self.closed = False
        self.dropped = False

    def _offer(self, message: WireMessage) -> bool:
        """Queue a message without waiting. Returns False if the queue is full."""
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            return False
        return True

    def _close(self, dropped: bool = False) -> None:
        if self.closed:
            return
        self.closed = True
        self.dropped = dropped
        # A dropped subscriber loses its backlog; the end marker must always fit
        while (dropped or self._queue.full()) and not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(None)

    @property
    def pending(self) -> int:
        """Messages queued but not yet consumed."""
        return self._queue.qsize()

    def get_nowait(self) -> Optional[WireMessage]:
        """Return the next queued message, or None if nothing is queued or closed."""
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    async def get(self) -> Optional[WireMessage]:
        """Wait for the next message. Returns None once the subscription is closed."""
        if self.closed and self._queue.empty():
            return None
        return await self._queue.get()

    def close(self) -> None:
        """Unsubscribe."""
        self._broadcaster.unsubscribe(self)

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> WireMessage:
        message = await self.get()
        if message is None:
            raise StopAsyncIteration
        return message


class EventBroadcaster:
    """
    Publish/subscribe channel for agent events.

    Keeps the last ``capacity`` published messages and replays them,
    oldest first, to each new subscriber before live delivery.
    """

    def __init__(self, capacity: int = REPLAY_CAPACITY, subscriber_queue_size: int = 256) -> None:
        """
        Initialize broadcaster.

        Args:
            capacity: Replay buffer size
            subscriber_queue_size: Live messages a subscriber may lag behind
                before it is disconnected
        """
        self._replay: deque[WireMessage] = deque(maxlen=capacity)
        self._subscribers: set[Subscription] = set()
        self.subscriber_queue_size = subscriber_queue_size
        self.published_count = 0
        self.dropped_count = 0

    @property
    def capacity(self) -> int:
        return self._replay.maxlen or 0

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def replay_buffer(self) -> list[WireMessage]:
        """Copy of the replay buffer, oldest first."""
        return list(self._replay)

    def subscribe(self) -> Subscription:
        """Register a subscriber pre-loaded with the replay buffer."""
        subscription = Subscription(self, maxsize=self.capacity + self.subscriber_queue_size)
        for message in self._replay:
            subscription._offer(message)
        self._subscribers.add(subscription)
        logger.debug(f"Subscriber added ({len(self._subscribers)} connected)")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Remove a subscriber. Safe to call more than once."""
        self._subscribers.discard(subscription)
        subscription._close()

    def publish(self, message: WireMessage) -> None:
        """Deliver a message to every subscriber and record it for replay."""
        self._replay.append(message)
        self.published_count += 1

        # Snapshot so subscribers can join or leave while we deliver
        for subscription in tuple(self._subscribers):
            if not subscription._offer(message):
                logger.warning("Subscriber fell behind, disconnecting")
                self._subscribers.discard(subscription)
                subscription._close(dropped=True)
                self.dropped_count += 1

    def publish_event(self, event: AgentEvent) -> None:
        """Log and publish an agent event under its wire tag."""
        prefix = _LOG_PREFIX[event.kind]
        log = logger.error if event.kind == EventKind.ERROR else logger.info
        log(f"{prefix} [{event.position_id}] {event.message}")
        self.publish(WireMessage(type=event.kind.wire_type, payload=event.model_dump(mode="json")))

    def publish_decision(self, decision: Decision) -> None:
        self.publish(WireMessage(type=MessageType.DECISION, payload=decision.model_dump(mode="json")))

    def status_message(self, status: str, **extra: Any) -> WireMessage:
        """Build a status message (not recorded for replay)."""
        payload = {
            "status": status,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **extra,
        }
        return WireMessage(type=MessageType.STATUS, payload=payload)

    def close_all(self) -> None:
        """Disconnect every subscriber."""
        for subscription in tuple(self._subscribers):
            self.unsubscribe(subscription)
