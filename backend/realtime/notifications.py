"""
Notification helpers for sending user-facing messages over WebSockets.

Messages go to the user's personal group `user_<id>`; push delivery to
offline devices is handled outside this service.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer

logger = logging.getLogger(__name__)


def notify(
    user_id: Optional[int],
    message: str,
    event: str = "ride_update",
    ride_id: Optional[int] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> bool:
    """
    Send a notification to one user through: user_<user_id>

    Args:
        user_id: Target user's ID
        message: Human-readable text
        event: Short machine-readable event name (offer_rejected, ride_cancelled, ...)
        ride_id: Ride the notification is about
        extra: Additional payload data

    Returns:
        True if handed to the channel layer, False otherwise
    """
    if not user_id:
        return False

    channel_layer = get_channel_layer()
    if channel_layer is None:
        return False

    payload = {
        "type": "notification",
        "event": event,
        "message": message,
        "ride_id": ride_id,
        **(extra or {}),
    }

    logger.debug("WS -> user_%s: %s", user_id, payload)
    async_to_sync(channel_layer.group_send)(f"user_{user_id}", payload)
    return True
