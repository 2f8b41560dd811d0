"""WebSocket consumers."""

from .base import BaseConsumer
from .feed_consumer import FeedConsumer
from .ride_consumer import RideConsumer

__all__ = [
    "BaseConsumer",
    "FeedConsumer",
    "RideConsumer",
]
