import logging
from typing import Optional

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from drivers.models import DriverPresence
from services.ride_management.exceptions import NotRideParticipantError, StaleStateError

logger = logging.getLogger(__name__)


def get_presence(driver) -> DriverPresence:
    """Driver's presence row, created offline on first use."""
    if getattr(driver, "role", None) != "driver":
        raise NotRideParticipantError("Only drivers have a presence record")
    presence, _ = DriverPresence.objects.get_or_create(user=driver)
    return presence


def _announce_presence(presence: DriverPresence) -> None:
    """Tell the driver's own sockets to recompute the feed (radius depends on location)."""
    channel_layer = get_channel_layer()
    if channel_layer is None:
        return
    try:
        async_to_sync(channel_layer.group_send)(f"user_{presence.user_id}", {
            "type": "presence_changed",
            "version": presence.version,
            "is_online": presence.is_online,
        })
    except Exception:
        logger.exception("Failed to announce presence v%s for driver %s", presence.version, presence.user_id)


# DRIVER PRESENCE UPDATE
def update_presence(
    driver,
    expected_version: Optional[int] = None,
    *,
    is_online: Optional[bool] = None,
    latitude=None,
    longitude=None,
    vehicle_number: Optional[str] = None,
) -> DriverPresence:
    """
    Update availability and/or location with a conditional write on `version`.

    Used by the HTTP presence endpoint and the feed WebSocket.

    Args:
        driver: User model instance (driver)
        expected_version: Version the client last saw; the current row's when None
        is_online: New availability flag
        latitude: New latitude (together with longitude)
        longitude: New longitude (together with latitude)
        vehicle_number: New vehicle number

    Raises:
        StaleStateError: Another update won the race for this version
    """
    with transaction.atomic():
        presence = get_presence(driver)
        expected = presence.version if expected_version is None else expected_version

        updates = {"version": F("version") + 1}
        if is_online is not None:
            updates["is_online"] = bool(is_online)
        if latitude is not None and longitude is not None:
            updates["current_latitude"] = latitude
            updates["current_longitude"] = longitude
            updates["last_location_update"] = timezone.now()
        if vehicle_number is not None:
            updates["vehicle_number"] = vehicle_number

        rows = DriverPresence.objects.filter(pk=presence.pk, version=expected).update(**updates)
        if not rows:
            raise StaleStateError(
                f"Presence for driver {driver.id} changed since version {expected}",
                expected_version=expected,
            )

        presence.refresh_from_db()
        transaction.on_commit(lambda: _announce_presence(presence), robust=True)

    logger.debug("Driver %s presence v%s online=%s", driver.id, presence.version, presence.is_online)
    return presence
