"""WebSocket URL routing for the realtime app."""

from django.urls import re_path

from .consumers.feed_consumer import FeedConsumer
from .consumers.ride_consumer import RideConsumer

websocket_urlpatterns = [
    # Categorized feed for the connected user (drivers and passengers)
    # URL: ws://localhost:8000/ws/feed/
    re_path(
        r"ws/feed/$",
        FeedConsumer.as_asgi(),
        name="feed-ws"
    ),

    # Ride tracking WebSocket endpoint (shared by both roles)
    # URL: ws://localhost:8000/ws/ride/
    re_path(
        r"ws/ride/$",
        RideConsumer.as_asgi(),
        name="ride-ws"
    ),
]
