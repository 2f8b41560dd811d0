"""Ride tracking WebSocket consumer for real-time ride updates."""

import logging
from typing import Dict, Any

from channels.db import database_sync_to_async

from .base import BaseConsumer

logger = logging.getLogger(__name__)


class RideConsumer(BaseConsumer):
    """
    WebSocket consumer for ride tracking.

    Used by both drivers and passengers to:
        - Follow one or more rides (fresh `ride_state` after every change)
        - Move a ride along its lifecycle (`transition`)
        - Share the driver's live location during a ride
    """

    async def on_connect(self):
        """Set up ride tracking connection."""
        self.tracked_rides: Dict[int, str] = {}

        await self.send_json({
            "type": "connection_established",
            "user_id": self.user_id,
            "role": self.role,
            "message": "Ride tracking connection established",
        })

    async def handle_message(self, msg_type: str, data: Dict[str, Any]):
        """Handle ride tracking messages."""

        if msg_type == "start_tracking":
            await self._handle_start_tracking(data)
        elif msg_type == "stop_tracking":
            await self._handle_stop_tracking(data)
        elif msg_type == "transition":
            await self._handle_transition(data)
        elif msg_type == "tracking_update":
            await self._handle_tracking_update(data)
        else:
            await self.send_error(f"Unknown message type: {msg_type}")

    # ---------------------- Message Handlers ----------------------

    async def _handle_start_tracking(self, data: Dict[str, Any]):
        """
        Join a ride tracking group.
        Participants join ride_<ride_id> to share status and location updates.
        """
        ride_id = data.get("ride_id")

        if ride_id is None:
            await self.send_error("start_tracking requires ride_id")
            return

        # Raises NotRideParticipantError / RideNotFoundError for outsiders
        state = await self._load_ride_state(int(ride_id))

        ride_group = f"ride_{ride_id}"
        await self._join_group(ride_group)
        self.tracked_rides[int(ride_id)] = ride_group

        await self.send_success("tracking_started", ride_id=int(ride_id))
        await self.send_json({"type": "ride_state", "ride": state})

    async def _handle_stop_tracking(self, data: Dict[str, Any]):
        """Leave a ride tracking group."""
        ride_id = data.get("ride_id")

        if ride_id is None:
            return

        ride_group = self.tracked_rides.pop(int(ride_id), None)
        if ride_group:
            await self._leave_group(ride_group)

        await self.send_success("tracking_stopped", ride_id=int(ride_id))

    async def _handle_transition(self, data: Dict[str, Any]):
        """Move a ride from `expected_status` to `new_status`."""
        ride_id = data.get("ride_id")
        expected = data.get("expected_status")
        new = data.get("new_status")

        if ride_id is None or not expected or not new:
            await self.send_error("transition requires ride_id, expected_status and new_status")
            return

        ride = await self._transition(int(ride_id), expected, new, data.get("reason", ""))
        await self.send_success("transition_applied", ride_id=ride.id, status=ride.status, version=ride.version)

    async def _handle_tracking_update(self, data: Dict[str, Any]):
        """
        Driver sends location update during an active ride.
        Broadcasts to everyone in the ride group.
        """
        if self.role != "driver":
            await self.send_error("Only drivers can send tracking updates")
            return

        ride_id = data.get("ride_id")
        lat = data.get("latitude")
        lon = data.get("longitude")

        if ride_id is None or lat is None or lon is None:
            await self.send_error("tracking_update requires ride_id, latitude, and longitude")
            return

        ride_group = self.tracked_rides.get(int(ride_id))
        if ride_group is None:
            await self.send_error("Start tracking this ride first")
            return

        await self._update_location(lat, lon)

        await self.channel_layer.group_send(ride_group, {
            "type": "driver_track_location",
            "ride_id": int(ride_id),
            "user_id": self.user_id,
            "latitude": float(lat),
            "longitude": float(lon),
        })

    # ---------------------- Event Handlers (from group_send) ----------------------

    async def ride_or_offer_changed(self, event):
        """Push fresh ride state for tracked rides; stale and repeated events are dropped."""
        ride_id = event.get("ride_id")
        if ride_id not in self.tracked_rides:
            return
        if not self.is_new_version(event):
            return
        try:
            state = await self._load_ride_state(ride_id)
        except Exception:
            logger.exception("Could not reload ride %s for user %s", ride_id, self.user_id)
            return
        await self.send_json({"type": "ride_state", "ride": state})

    async def driver_track_location(self, event):
        """Forward driver location during ride tracking."""
        await self.send_json({
            "type": "driver_track_location",
            "ride_id": event.get("ride_id"),
            "user_id": event.get("user_id"),
            "latitude": event.get("latitude"),
            "longitude": event.get("longitude"),
        })

    # ---------------------- Database Helpers ----------------------

    @database_sync_to_async
    def _load_ride_state(self, ride_id: int) -> Dict[str, Any]:
        from rides.serializers import RideSerializer
        from services.ride_management import get_ride_for_user
        return RideSerializer(get_ride_for_user(ride_id, self.user)).data

    @database_sync_to_async
    def _transition(self, ride_id: int, expected: str, new: str, reason: str):
        from services.ride_management import transition
        return transition(ride_id, expected, new, self.user, reason=reason)

    @database_sync_to_async
    def _update_location(self, lat, lon):
        from drivers.services import update_presence
        return update_presence(self.user, latitude=lat, longitude=lon)
