"""Load the rides and offers a viewer's feed is built from."""

import logging
from typing import Dict, List, Optional

from django.db.models import Q

from drivers.models import DriverPresence
from rides.models import Ride, RideOffer
from services.matching import open_rides_near
from .categorizer import DRIVER, PASSENGER, FeedBucket, FeedEntry, Viewer, build_feed

logger = logging.getLogger(__name__)


def viewer_for(user) -> Viewer:
    """Viewer for a user; drivers carry their last known location."""
    if getattr(user, "role", None) != DRIVER:
        return Viewer(user_id=user.id, role=PASSENGER)

    presence: Optional[DriverPresence] = DriverPresence.objects.filter(user_id=user.id).first()
    if presence is None or not presence.has_location:
        return Viewer(user_id=user.id, role=DRIVER)
    return Viewer(
        user_id=user.id,
        role=DRIVER,
        latitude=float(presence.current_latitude),
        longitude=float(presence.current_longitude),
    )


def feed_for_user(user, viewer: Optional[Viewer] = None) -> Dict[FeedBucket, List[FeedEntry]]:
    """
    Fresh feed for one user, straight from the database.

    Args:
        user: User model instance
        viewer: Precomputed Viewer (built from `user` when omitted)
    """
    viewer = viewer or viewer_for(user)

    if viewer.is_driver:
        open_ids = open_rides_near(viewer.latitude, viewer.longitude).values("id")
        rides = Ride.objects.filter(
            Q(id__in=open_ids) | Q(driver_id=user.id) | Q(offers__driver_id=user.id)
        ).distinct()
        offers = RideOffer.objects.filter(driver_id=user.id, ride__in=rides)
    else:
        rides = Ride.objects.filter(passenger_id=user.id)
        offers = RideOffer.objects.filter(ride__passenger_id=user.id)

    rides = list(rides.select_related("series"))
    feed = build_feed(rides, offers.only("id", "ride_id", "driver_id", "status"), viewer)
    logger.debug(
        "Feed for user %s: %s",
        user.id, {bucket.value: len(entries) for bucket, entries in feed.items()},
    )
    return feed
