"""Feed WebSocket consumer: live ride feeds for drivers and passengers."""

import logging
from typing import Dict, Any

from channels.db import database_sync_to_async

from .base import BaseConsumer

logger = logging.getLogger(__name__)


class FeedConsumer(BaseConsumer):
    """
    WebSocket consumer for the categorized ride feed.

    Sends a full `feed_snapshot` on connect and again after every relevant
    ride/offer change. Snapshots are recomputed from the database, never
    patched, so a missed or repeated event cannot leave the client wrong.

    Handles:
        - refresh: resend the snapshot
        - presence_update (drivers): availability and location
    """

    async def on_connect(self):
        await self.send_json({
            "type": "connection_established",
            "user_id": self.user_id,
            "role": self.role,
            "message": "Feed connected",
        })
        await self.send_feed(reason="connect")

    async def handle_message(self, msg_type: str, data: Dict[str, Any]):
        if msg_type == "refresh":
            await self.send_feed(reason="refresh")
        elif msg_type == "presence_update":
            await self._handle_presence_update(data)
        else:
            await self.send_error(f"Unknown message type: {msg_type}")

    # ---------------------- Message Handlers ----------------------

    async def _handle_presence_update(self, data: Dict[str, Any]):
        if self.role != "driver":
            await self.send_error("Only drivers can send presence updates")
            return

        lat = data.get("latitude")
        lon = data.get("longitude")
        if (lat is None) != (lon is None):
            await self.send_error("presence_update needs both latitude and longitude")
            return

        presence = await self._update_presence(
            expected_version=data.get("version"),
            is_online=data.get("is_online"),
            latitude=lat,
            longitude=lon,
        )
        await self.send_success(
            "presence_updated",
            version=presence.version,
            is_online=presence.is_online,
        )

    # ---------------------- Group Event Handlers ----------------------

    async def ride_or_offer_changed(self, event):
        if not self.is_new_version(event):
            return
        await self.send_feed(reason=f"{event.get('entity')}_changed", ride_id=event.get("ride_id"))

    async def presence_changed(self, event):
        await self.send_feed(reason="presence_changed")

    # ---------------------- Helpers ----------------------

    async def send_feed(self, **meta):
        feed = await self._load_feed()
        await self.send_json({"type": "feed_snapshot", "feed": feed, **meta})

    @database_sync_to_async
    def _load_feed(self):
        from rides.serializers import serialize_feed
        from services.feed import feed_for_user
        return serialize_feed(feed_for_user(self.user))

    @database_sync_to_async
    def _update_presence(self, expected_version=None, is_online=None, latitude=None, longitude=None):
        from drivers.services import update_presence
        return update_presence(
            self.user,
            expected_version,
            is_online=is_online,
            latitude=latitude,
            longitude=longitude,
        )
