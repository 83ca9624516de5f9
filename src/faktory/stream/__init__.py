"""Real-time event streaming to observers."""

from faktory.stream.broadcaster import EventBroadcaster, Subscription
from faktory.stream.server import EventStreamServer

__all__ = [
    "EventBroadcaster",
    "Subscription",
    "EventStreamServer",
]
