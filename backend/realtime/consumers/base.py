"""Base WebSocket consumer with shared functionality for all consumers."""

import logging
from collections import OrderedDict
from typing import Dict, Any, Set

from channels.generic.websocket import AsyncJsonWebsocketConsumer

from rides.models import TERMINAL_STATUSES
from services.ride_management.exceptions import RideCoordinationError

logger = logging.getLogger(__name__)

MAX_TRACKED_RIDES = 500


class BaseConsumer(AsyncJsonWebsocketConsumer):
    """
    Base consumer with shared connection management and helper methods.

    Subclasses should override:
        - on_connect(): set up state and send the first snapshot
        - handle_message(msg_type, data): handle incoming messages
    """

    async def connect(self):
        self.user = self.scope["user"]

        if self.user.is_anonymous:
            await self.close()
            return

        # Basic attributes available to all consumers
        self.user_id = getattr(self.user, "id", None)
        self.role = getattr(self.user, "role", None)

        # Track joined groups for cleanup
        self.joined_groups: Set[str] = set()

        self.reset_versions()

        # Personal group: change events and notifications for this user
        self.user_group = f"user_{self.user_id}"
        await self._join_group(self.user_group)

        await self.accept()
        await self.on_connect()

    async def on_connect(self):
        """Override in subclass for custom connect logic."""
        await self.send_json({
            "type": "connection_established",
            "user_id": self.user_id,
            "role": self.role,
        })

    async def disconnect(self, close_code):
        """Leave all joined groups on disconnect."""
        try:
            for group in list(getattr(self, "joined_groups", ())):
                await self._leave_group(group)
            await self.on_disconnect(close_code)
        except Exception:
            logger.exception("Error during disconnect for user %s", getattr(self, 'user_id', 'unknown'))

    async def on_disconnect(self, close_code):
        """Override in subclass for custom disconnect logic."""
        pass

    async def receive_json(self, data: Dict[str, Any]):
        """Route incoming messages to appropriate handlers."""
        msg_type = data.get("type")
        if not msg_type:
            await self.send_error("Message type is required")
            return

        try:
            await self.handle_message(msg_type, data)
        except RideCoordinationError as exc:
            await self.send_error(exc.user_message, code=exc.error_code, retryable=exc.retryable)
        except Exception:
            logger.exception("Error handling message type %s", msg_type)
            await self.send_error(f"Error processing {msg_type}")

    async def handle_message(self, msg_type: str, data: Dict[str, Any]):
        """Override in subclass to handle specific message types."""
        await self.send_error(f"Unknown message type: {msg_type}")

    # ---------------------- Group Management Helpers ----------------------

    async def _join_group(self, group_name: str):
        """Join a channel group and track it."""
        await self.channel_layer.group_add(group_name, self.channel_name)
        self.joined_groups.add(group_name)

    async def _leave_group(self, group_name: str):
        """Leave a channel group and untrack it."""
        await self.channel_layer.group_discard(group_name, self.channel_name)
        self.joined_groups.discard(group_name)

    # ---------------------- Ordering ----------------------

    def reset_versions(self):
        # Highest version seen per "entity:id"; older or repeated events are dropped
        self.seen_versions: Dict[str, int] = {}
        # Keys recorded per ride, least recently updated ride first
        self.keys_by_ride: "OrderedDict[Any, Set[str]]" = OrderedDict()

    def is_new_version(self, event: Dict[str, Any]) -> bool:
        """
        Record and accept the event only if it is newer than anything seen for its entity.

        A ride reaching a terminal status forgets its entries, and at most
        MAX_TRACKED_RIDES rides are remembered per socket.
        """
        key = f"{event.get('entity')}:{event.get('entity_id')}"
        version = int(event.get("version") or 0)
        seen = self.seen_versions.get(key, 0)
        if version <= seen:
            logger.debug("User %s dropped %s v%s (seen v%s)", self.user_id, key, version, seen)
            return False

        ride_id = event.get("ride_id")
        if event.get("entity") == "ride" and event.get("status") in TERMINAL_STATUSES:
            self._forget_ride(ride_id)
            return True

        self.seen_versions[key] = version
        self.keys_by_ride.setdefault(ride_id, set()).add(key)
        self.keys_by_ride.move_to_end(ride_id)
        if len(self.keys_by_ride) > MAX_TRACKED_RIDES:
            self._forget_ride(next(iter(self.keys_by_ride)))
        return True

    def _forget_ride(self, ride_id):
        for key in self.keys_by_ride.pop(ride_id, ()):
            self.seen_versions.pop(key, None)

    # ---------------------- Response Helpers ----------------------

    async def send_error(self, message: str, **kwargs):
        """Send an error message to the client."""
        await self.send_json({
            "type": "error",
            "message": message,
            **kwargs,
        })

    async def send_success(self, event_type: str, **kwargs):
        """Send a success response to the client."""
        await self.send_json({
            "type": event_type,
            **kwargs,
        })

    # ---------------------- Common Event Handlers ----------------------
    # These handle group_send events from server-side code

    async def notification(self, event):
        """User-facing notification (offer rejected, ride cancelled, ...)."""
        await self.send_json({
            "type": "notification",
            "event": event.get("event"),
            "message": event.get("message", ""),
            "ride_id": event.get("ride_id"),
            "offer_id": event.get("offer_id"),
        })
