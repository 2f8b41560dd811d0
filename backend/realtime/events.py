"""
Change events for rides and offers.

Every committed write to a ride or offer produces one ChangeEvent. Events are
dispatched from `transaction.on_commit`, so a rolled back write never leaks
an event and events for one entity leave in commit order. Each event carries
the entity's `version`; receivers drop anything older than what they have
already seen, and recompute the viewer's feed from fresh data instead of
patching it, so duplicates are harmless.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, Optional, Tuple

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.db import transaction
from django.utils import timezone

from rides.models import Ride, RideOffer, RideStatus
from .signals import ride_or_offer_changed

logger = logging.getLogger(__name__)

MESSAGE_TYPE = "ride_or_offer_changed"


@dataclass(frozen=True)
class ChangeEvent:
    entity: str                       # "ride" or "offer"
    entity_id: int
    ride_id: int
    version: int
    status: str
    changed_fields: Tuple[str, ...] = ()
    audience: FrozenSet[int] = frozenset()
    occurred_at: str = field(default_factory=lambda: timezone.now().isoformat())

    @property
    def key(self) -> str:
        return f"{self.entity}:{self.entity_id}"

    def as_message(self) -> Dict[str, Any]:
        """Channel layer payload; routed to the consumer's ride_or_offer_changed handler."""
        return {
            "type": MESSAGE_TYPE,
            "entity": self.entity,
            "entity_id": self.entity_id,
            "ride_id": self.ride_id,
            "version": self.version,
            "status": self.status,
            "changed_fields": list(self.changed_fields),
            "occurred_at": self.occurred_at,
        }


# ---------------------- Audience ----------------------

def ride_audience(ride: Ride, previous_status: Optional[str] = None) -> FrozenSet[int]:
    """
    Users whose feed can change when this ride changes.

    Passenger, assigned (or just released) driver, every driver who bid on
    it, and while the ride is or just stopped being open for bids, the online
    drivers near it (for instant rides, also those with no known location).
    """
    ids = {ride.passenger_id, ride.driver_id, ride.previous_driver_id}
    ids.update(RideOffer.objects.filter(ride_id=ride.id).values_list("driver_id", flat=True))

    if RideStatus.PENDING in (ride.status, previous_status):
        from services.matching import find_nearby_drivers
        ids.update(presence.user_id for presence, _ in find_nearby_drivers(ride))

    ids.discard(None)
    return frozenset(ids)


def offer_audience(offer: RideOffer) -> FrozenSet[int]:
    return frozenset({offer.driver_id, offer.ride.passenger_id})


# ---------------------- Publish ----------------------

def publish_ride_change(
    ride: Ride,
    changed_fields: Iterable[str] = (),
    previous_status: Optional[str] = None,
) -> ChangeEvent:
    """
    Queue a change event for `ride`, sent once the current transaction commits.

    Args:
        ride: Ride as written (version and status already reflect the write)
        changed_fields: Names of fields touched by the write
        previous_status: Status before the write, when it changed
    """
    event = ChangeEvent(
        entity="ride",
        entity_id=ride.id,
        ride_id=ride.id,
        version=ride.version,
        status=str(ride.status),
        changed_fields=tuple(changed_fields),
        audience=ride_audience(ride, previous_status),
    )
    transaction.on_commit(lambda: dispatch(event), robust=True)
    return event


def publish_offer_change(offer: RideOffer, changed_fields: Iterable[str] = ()) -> ChangeEvent:
    """Queue a change event for `offer`, sent once the current transaction commits."""
    event = ChangeEvent(
        entity="offer",
        entity_id=offer.id,
        ride_id=offer.ride_id,
        version=offer.version,
        status=str(offer.status),
        changed_fields=tuple(changed_fields),
        audience=offer_audience(offer),
    )
    transaction.on_commit(lambda: dispatch(event), robust=True)
    return event


def dispatch(event: ChangeEvent) -> None:
    """
    Deliver a committed change to in-process subscribers and WebSocket groups.

    Delivery problems are logged; the write they describe is already committed.
    """
    for receiver, result in ride_or_offer_changed.send_robust(sender=ChangeEvent, event=event):
        if isinstance(result, Exception):
            logger.error("Subscriber %r failed for %s v%s: %s", receiver, event.key, event.version, result)

    channel_layer = get_channel_layer()
    if channel_layer is None:
        return

    message = event.as_message()
    groups = [f"user_{user_id}" for user_id in sorted(event.audience)]
    groups.append(f"ride_{event.ride_id}")
    for group in groups:
        try:
            async_to_sync(channel_layer.group_send)(group, message)
        except Exception:
            logger.exception("Failed to send %s v%s to %s", event.key, event.version, group)
