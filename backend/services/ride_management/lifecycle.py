"""
Ride creation and lookups.

Rides are created PENDING with no driver. Recurring bookings create one ride
per occurrence linked to a RideSeries; bulk bookings share a `batch_id`.
Both are grouped back together in feeds.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from django.conf import settings
from django.db import transaction

from realtime import events
from rides.models import (
    EXECUTION_STATUSES,
    Ride,
    RideSeries,
    RideStatus,
    RideTiming,
    ServiceKind,
)
from .exceptions import InvalidRideRequestError, NotRideParticipantError, RideNotFoundError
from .state_machine import advance_ride

logger = logging.getLogger(__name__)


# ===================== Passenger Operations =====================

@transaction.atomic
def create_ride_request(
    passenger,
    pickup_latitude,
    pickup_longitude,
    pickup_address: str = "",
    dropoff_latitude=None,
    dropoff_longitude=None,
    dropoff_address: str = "",
    service_kind: str = ServiceKind.TAXI,
    timing: str = RideTiming.INSTANT,
    scheduled_for: Optional[datetime] = None,
    estimated_price=None,
    number_of_passengers: int = 1,
    match_radius: Optional[int] = None,
    series: Optional[RideSeries] = None,
    batch_id: Optional[uuid.UUID] = None,
) -> Ride:
    """
    Create a PENDING ride and surface it to nearby drivers.

    Args:
        passenger: User model instance (passenger)
        pickup_latitude: Pickup location latitude
        pickup_longitude: Pickup location longitude
        pickup_address: Human-readable pickup address
        dropoff_latitude: Dropoff latitude, if known
        dropoff_longitude: Dropoff longitude, if known
        dropoff_address: Human-readable dropoff address
        service_kind: taxi, courier, errands or school_run
        timing: instant, scheduled_single or scheduled_recurring
        scheduled_for: Pickup time (required unless instant)
        estimated_price: Passenger's expected fare
        number_of_passengers: Number of passengers
        match_radius: Driver search radius in meters (instant rides)
        series: RideSeries for recurring occurrences
        batch_id: Shared id for bulk bookings

    Returns:
        The created Ride

    Raises:
        InvalidRideRequestError: Timing and schedule do not agree
    """
    if timing != RideTiming.INSTANT and scheduled_for is None:
        raise InvalidRideRequestError("Scheduled rides need a pickup time")
    if timing == RideTiming.SCHEDULED_RECURRING and series is None:
        raise InvalidRideRequestError("Recurring rides must belong to a series")

    ride = Ride.objects.create(
        passenger=passenger,
        pickup_latitude=pickup_latitude,
        pickup_longitude=pickup_longitude,
        pickup_address=pickup_address or "",
        dropoff_latitude=dropoff_latitude,
        dropoff_longitude=dropoff_longitude,
        dropoff_address=dropoff_address or "",
        service_kind=service_kind,
        timing=timing,
        scheduled_for=scheduled_for,
        estimated_price=estimated_price,
        number_of_passengers=number_of_passengers,
        match_radius=match_radius or getattr(settings, "RIDE_MATCH_RADIUS_METERS", 5000),
        series=series,
        batch_id=batch_id,
        status=RideStatus.PENDING,
    )

    events.publish_ride_change(ride, changed_fields=["status"])
    logger.info("Passenger %s created %s %s ride %s", passenger.id, timing, service_kind, ride.id)
    return ride


@transaction.atomic
def create_recurring_series(
    passenger,
    occurrences: Sequence[datetime],
    recurrence_pattern: str = "weekly",
    label: str = "",
    **ride_fields: Any,
) -> Tuple[RideSeries, List[Ride]]:
    """
    Book one ride per occurrence, all linked to a new RideSeries.

    Args:
        passenger: User model instance (passenger)
        occurrences: Pickup times, one ride each
        recurrence_pattern: daily, weekdays, weekends, weekly or custom
        label: Display name for the series
        **ride_fields: Passed to create_ride_request for every occurrence
    """
    if not occurrences:
        raise InvalidRideRequestError("A recurring booking needs at least one occurrence")

    series = RideSeries.objects.create(
        passenger=passenger,
        label=label,
        recurrence_pattern=recurrence_pattern,
    )
    rides = [
        create_ride_request(
            passenger,
            timing=RideTiming.SCHEDULED_RECURRING,
            scheduled_for=when,
            series=series,
            **ride_fields,
        )
        for when in sorted(occurrences)
    ]
    logger.info("Passenger %s created series %s with %d ride(s)", passenger.id, series.id, len(rides))
    return series, rides


@transaction.atomic
def create_bulk_rides(passenger, ride_specs: Sequence[Dict[str, Any]]) -> Tuple[uuid.UUID, List[Ride]]:
    """
    Book several rides at once (e.g. a courier round). They share a batch_id.

    Each entry is a dict of create_ride_request keyword arguments.
    """
    if not ride_specs:
        raise InvalidRideRequestError("A bulk booking needs at least one ride")

    batch_id = uuid.uuid4()
    rides = [create_ride_request(passenger, batch_id=batch_id, **fields) for fields in ride_specs]
    return batch_id, rides


def cancel_ride(ride_id: int, actor, reason: str = "") -> Ride:
    """Cancel from whatever non-terminal status the ride is in now."""
    return advance_ride(ride_id, RideStatus.CANCELLED, actor, reason=reason)


# ===================== Lookups =====================

def get_ride_for_user(ride_id: int, user) -> Ride:
    """
    Fetch a ride the user takes part in: passenger, assigned driver or bidder.

    Open rides are also visible to any driver, so they can inspect before bidding.
    """
    try:
        ride = Ride.objects.select_related("passenger", "driver", "series").get(pk=ride_id)
    except Ride.DoesNotExist:
        raise RideNotFoundError(f"Ride {ride_id} not found")

    if user.id in (ride.passenger_id, ride.driver_id, ride.previous_driver_id):
        return ride
    if getattr(user, "role", None) == "driver":
        if ride.status == RideStatus.PENDING or ride.offers.filter(driver_id=user.id).exists():
            return ride
    raise NotRideParticipantError(f"User {user.id} is not part of ride {ride_id}")


def get_current_driver_ride(driver) -> Optional[Ride]:
    """Driver's ride in progress, instant first, then any activated scheduled ride."""
    instant = (
        Ride.objects.filter(driver=driver, timing=RideTiming.INSTANT, status__in=EXECUTION_STATUSES)
        .order_by("accepted_at")
        .first()
    )
    if instant is not None:
        return instant
    return (
        Ride.objects.filter(driver=driver, status__in=EXECUTION_STATUSES)
        .exclude(status=RideStatus.ACCEPTED)
        .order_by("status_changed_at")
        .first()
    )
