"""
Proximity lookups between drivers and rides.

Instant rides are matched within the ride's `match_radius` of its pickup;
scheduled and recurring rides are open to every driver regardless of distance.
"""

import logging
from typing import List, Optional, Tuple

from django.db.models import Max, Q

from common.utils import bounding_box, calculate_distance, filter_within_radius
from drivers.models import DriverPresence
from rides.models import Ride, RideStatus, RideTiming

logger = logging.getLogger(__name__)


def _presence_coords(presence: DriverPresence):
    return presence.current_latitude, presence.current_longitude


def _longitude_q(field: str, min_lon: float, max_lon: float) -> Q:
    """Longitude filter for a bounding box; min_lon > max_lon means it crosses the antimeridian."""
    if min_lon <= max_lon:
        return Q(**{f"{field}__range": (min_lon, max_lon)})
    return Q(**{f"{field}__gte": min_lon}) | Q(**{f"{field}__lte": max_lon})


def find_nearby_drivers(ride: Ride, radius_m: Optional[int] = None) -> List[Tuple[DriverPresence, Optional[float]]]:
    """
    Online drivers who should see this ride while it is open for bids.

    Drivers without a known location are included for every ride, the same
    way their feed lists every open ride.

    Args:
        ride: Ride to match
        radius_m: Override for the ride's own match radius

    Returns:
        (presence, distance_m) pairs, nearest first. Distance is None for
        drivers without a known location.
    """
    online = DriverPresence.objects.select_related("user").filter(is_online=True)

    if ride.timing != RideTiming.INSTANT:
        pairs = []
        for presence in online:
            dist = None
            if presence.has_location:
                dist = calculate_distance(
                    ride.pickup_latitude, ride.pickup_longitude,
                    presence.current_latitude, presence.current_longitude,
                )
            pairs.append((presence, dist))
        pairs.sort(key=lambda pair: (pair[1] is None, pair[1] or 0))
        return pairs

    radius = radius_m or ride.match_radius
    min_lat, max_lat, min_lon, max_lon = bounding_box(ride.pickup_latitude, ride.pickup_longitude, radius)
    candidates = online.filter(
        _longitude_q("current_longitude", min_lon, max_lon),
        current_latitude__range=(min_lat, max_lat),
    )
    matches = filter_within_radius(
        candidates, ride.pickup_latitude, ride.pickup_longitude, radius, _presence_coords
    )
    unlocated = online.filter(Q(current_latitude__isnull=True) | Q(current_longitude__isnull=True))
    matches.extend((presence, None) for presence in unlocated)
    logger.debug("Ride %s: %d driver(s) within %sm or unlocated", ride.id, len(matches), radius)
    return matches


def open_rides_near(latitude=None, longitude=None):
    """
    Queryset of PENDING rides a driver at (latitude, longitude) could bid on.

    This is a coarse database pre-filter; the feed categorizer applies the
    exact per-ride radius. Without a location every pending ride is returned.
    """
    pending = Ride.objects.filter(status=RideStatus.PENDING)
    if latitude is None or longitude is None:
        return pending

    widest = pending.filter(timing=RideTiming.INSTANT).aggregate(r=Max("match_radius"))["r"]
    if not widest:
        return pending

    min_lat, max_lat, min_lon, max_lon = bounding_box(latitude, longitude, widest)
    return pending.filter(
        ~Q(timing=RideTiming.INSTANT)
        | Q(
            _longitude_q("pickup_longitude", min_lon, max_lon),
            pickup_latitude__range=(min_lat, max_lat),
        )
    )
