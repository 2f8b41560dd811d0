"""
Ride state machine.

All ride status changes go through `transition()`. It validates the change
against LEGAL_SUCCESSORS, checks who is asking, then writes with a single
conditional UPDATE on the expected current status. If someone else moved
the ride first the UPDATE touches no rows and StaleStateError is raised; the
caller re-reads and decides again (see `advance_ride`).

Side effects of a transition (offer settlement, guard slot, timestamps,
change events) happen inside the same transaction as the status write.
"""

import logging
from typing import Optional, Tuple

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from realtime import events
from rides.models import (
    EXECUTION_STATUSES,
    TERMINAL_STATUSES,
    Ride,
    RideStatus,
    RideTiming,
    normalize_ride_status,
)
from . import guard
from .exceptions import (
    DriverBusyError,
    InvalidTransitionError,
    NotRideParticipantError,
    RideNotFoundError,
    StaleStateError,
)

logger = logging.getLogger(__name__)

User = get_user_model()

# Forward path; CANCELLED is reachable from any non-terminal status.
LEGAL_SUCCESSORS = {
    RideStatus.PENDING: RideStatus.ACCEPTED,
    RideStatus.ACCEPTED: RideStatus.DRIVER_EN_ROUTE,
    RideStatus.DRIVER_EN_ROUTE: RideStatus.DRIVER_ARRIVED,
    RideStatus.DRIVER_ARRIVED: RideStatus.IN_PROGRESS,
    RideStatus.IN_PROGRESS: RideStatus.COMPLETED,
}

# Steps only the assigned driver can take
DRIVER_STEPS = (
    RideStatus.DRIVER_EN_ROUTE,
    RideStatus.DRIVER_ARRIVED,
    RideStatus.IN_PROGRESS,
    RideStatus.COMPLETED,
)

STATUS_TIMESTAMPS = {
    RideStatus.ACCEPTED: "accepted_at",
    RideStatus.DRIVER_ARRIVED: "arrived_at",
    RideStatus.IN_PROGRESS: "started_at",
    RideStatus.COMPLETED: "completed_at",
    RideStatus.CANCELLED: "cancelled_at",
}


def is_legal_transition(current, new) -> bool:
    current = normalize_ride_status(current)
    new = normalize_ride_status(new)
    if current in TERMINAL_STATUSES:
        return False
    if new == RideStatus.CANCELLED:
        return True
    return LEGAL_SUCCESSORS.get(current) == new


def _parse_pair(expected, new) -> Tuple[RideStatus, RideStatus]:
    try:
        return normalize_ride_status(expected), normalize_ride_status(new)
    except ValueError as exc:
        raise InvalidTransitionError(str(exc), expected=expected, new=new) from exc


def _check_actor(ride: Ride, new_status: RideStatus, actor, offer) -> None:
    actor_id = getattr(actor, "id", None)

    if new_status == RideStatus.ACCEPTED:
        if actor_id != ride.passenger_id:
            raise NotRideParticipantError("Only the passenger can accept an offer")
        if offer is None:
            raise InvalidTransitionError("Accepting a ride requires the offer being accepted")
        if offer.ride_id != ride.id:
            raise InvalidTransitionError(f"Offer {offer.id} belongs to another ride")
        return

    if new_status in DRIVER_STEPS:
        if ride.driver_id is None or actor_id != ride.driver_id:
            raise NotRideParticipantError("Only the assigned driver can update trip progress")
        return

    # CANCELLED
    if actor_id in (ride.passenger_id, ride.driver_id) or getattr(actor, "is_staff", False):
        return
    raise NotRideParticipantError("Only the passenger or the assigned driver can cancel this ride")


def transition(
    ride_id: int,
    expected_current_status,
    new_status,
    actor,
    *,
    offer=None,
    reason: str = "",
) -> Ride:
    """
    Move a ride from `expected_current_status` to `new_status`.

    Args:
        ride_id: ID of the ride
        expected_current_status: Status the caller last observed
        new_status: Target status
        actor: User performing the change
        offer: RideOffer being accepted (ACCEPTED only)
        reason: Cancellation reason (CANCELLED only)

    Returns:
        The ride as written

    Raises:
        InvalidTransitionError: The pair is not a legal transition
        NotRideParticipantError: The actor may not make this change
        StaleStateError: The ride was not in `expected_current_status`
        DriverBusyError: Accepting/activating would give the driver a second active instant ride
        OfferConflictError: The offer stopped being PENDING (ACCEPTED only)
    """
    expected, new = _parse_pair(expected_current_status, new_status)
    if not is_legal_transition(expected, new):
        raise InvalidTransitionError(
            f"Illegal ride transition {expected.value} -> {new.value}",
            expected=expected.value,
            new=new.value,
        )

    with transaction.atomic():
        try:
            ride = Ride.objects.get(pk=ride_id)
        except Ride.DoesNotExist:
            raise RideNotFoundError(f"Ride {ride_id} not found")

        if ride.status != expected:
            raise StaleStateError(
                f"Ride {ride_id} is {ride.status}, not {expected.value}",
                ride_id=ride_id,
                expected=expected.value,
                actual=ride.status,
            )

        _check_actor(ride, new, actor, offer)

        now = timezone.now()
        updates = {
            "status": new,
            "status_changed_at": now,
            "version": F("version") + 1,
        }
        conditions = {"pk": ride_id, "status": expected}

        stamp = STATUS_TIMESTAMPS.get(new)
        if stamp:
            updates[stamp] = now

        if new == RideStatus.ACCEPTED:
            conditions["driver__isnull"] = True
            updates["driver_id"] = offer.driver_id
            updates["agreed_price"] = offer.price
            if ride.timing == RideTiming.INSTANT:
                guard.ensure_free(offer.driver_id, ride)
        elif new in DRIVER_STEPS:
            conditions["driver_id"] = actor.id
            if new == RideStatus.DRIVER_EN_ROUTE and ride.timing != RideTiming.INSTANT:
                # Activation of a scheduled ride
                guard.ensure_free(actor.id, ride)
        elif new == RideStatus.CANCELLED:
            updates["driver"] = None
            updates["previous_driver_id"] = ride.driver_id
            updates["cancelled_by_id"] = actor.id
            updates["cancellation_reason"] = reason or ""

        try:
            with transaction.atomic():
                rows = Ride.objects.filter(**conditions).update(**updates)
        except IntegrityError as exc:
            # Lost the race for the driver's instant slot
            raise DriverBusyError(
                f"Driver already holds an active instant ride (ride {ride_id})",
                ride_id=ride_id,
            ) from exc

        if rows == 0:
            raise StaleStateError(
                f"Ride {ride_id} is no longer {expected.value}",
                ride_id=ride_id,
                expected=expected.value,
            )

        ride.refresh_from_db()
        _apply_side_effects(ride, expected, new, actor, offer)

        events.publish_ride_change(ride, changed_fields=list(updates), previous_status=expected)

    logger.info(
        "Ride %s: %s -> %s by user %s (v%s)",
        ride.id, expected.value, new.value, getattr(actor, "id", None), ride.version,
    )
    return ride


def _apply_side_effects(ride: Ride, expected: RideStatus, new: RideStatus, actor, offer) -> None:
    from services.offers import ledger

    if new == RideStatus.ACCEPTED:
        guard.acquire(ride.driver_id, ride)
        ledger.settle_accepted_offer(ride, offer)

    elif new == RideStatus.COMPLETED:
        guard.release(ride.driver_id, ride)
        User.objects.filter(pk__in=[ride.passenger_id, ride.driver_id]).update(
            completed_rides=F("completed_rides") + 1
        )

    elif new == RideStatus.CANCELLED:
        guard.release(ride.previous_driver_id, ride)
        ledger.expire_open_offers(ride)
        if expected in EXECUTION_STATUSES:
            _notify_cancellation(ride, actor)


def _notify_cancellation(ride: Ride, actor) -> None:
    from realtime.notifications import notify

    if actor.id == ride.passenger_id:
        targets = [(ride.previous_driver_id, "The passenger cancelled this ride.")]
    elif actor.id == ride.previous_driver_id:
        targets = [(ride.passenger_id, "Your driver cancelled this ride.")]
    else:
        targets = [
            (ride.passenger_id, "This ride was cancelled."),
            (ride.previous_driver_id, "This ride was cancelled."),
        ]

    for user_id, message in targets:
        transaction.on_commit(
            lambda user_id=user_id, message=message: notify(
                user_id, message, event="ride_cancelled", ride_id=ride.id
            ),
            robust=True,
        )


def advance_ride(
    ride_id: int,
    new_status,
    actor,
    *,
    reason: str = "",
    attempts: Optional[int] = None,
) -> Ride:
    """
    Re-read the ride and attempt `new_status`, retrying on StaleStateError.

    Only useful for transitions whose legality does not depend on what the
    caller saw (typically cancellation). Illegal transitions are never retried.

    Args:
        ride_id: ID of the ride
        new_status: Target status
        actor: User performing the change
        reason: Cancellation reason
        attempts: Maximum attempts (RIDE_STALE_RETRY_ATTEMPTS by default)
    """
    attempts = attempts or getattr(settings, "RIDE_STALE_RETRY_ATTEMPTS", 3)

    for attempt in range(1, attempts + 1):
        current = Ride.objects.filter(pk=ride_id).values_list("status", flat=True).first()
        if current is None:
            raise RideNotFoundError(f"Ride {ride_id} not found")
        try:
            return transition(ride_id, current, new_status, actor, reason=reason)
        except StaleStateError:
            if attempt == attempts:
                raise
            logger.info("Ride %s changed under us (attempt %d/%d), re-reading", ride_id, attempt, attempts)
