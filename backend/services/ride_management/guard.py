"""
Active-ride guard.

A driver may hold at most one INSTANT ride in an execution status
(accepted, en route, arrived, in progress). Scheduled and recurring rides do
not occupy the slot, but starting one (activation) requires the slot to be free.

The ride table is the source of truth. `DriverPresence.active_ride` is an
index derived from it, written inside the same transaction as the ride
change and rebuildable at any time with `rebuild_index()`. Concurrent
acquisitions are settled by the `one_active_instant_ride_per_driver` unique
constraint, so there is no separate lock.
"""

import logging
from typing import Dict, Iterable, Optional

from django.db import transaction

from drivers.models import DriverPresence
from rides.models import EXECUTION_STATUSES, Ride, RideTiming
from .exceptions import DriverBusyError

logger = logging.getLogger(__name__)


def holding_ride(driver_id: int, exclude_ride_id: Optional[int] = None) -> Optional[Ride]:
    """Return the instant ride currently occupying the driver's slot, if any."""
    qs = Ride.objects.filter(
        driver_id=driver_id,
        timing=RideTiming.INSTANT,
        status__in=EXECUTION_STATUSES,
    )
    if exclude_ride_id is not None:
        qs = qs.exclude(pk=exclude_ride_id)
    return qs.order_by("accepted_at", "id").first()


def is_busy(driver_id: int, exclude_ride_id: Optional[int] = None) -> bool:
    return holding_ride(driver_id, exclude_ride_id=exclude_ride_id) is not None


def ensure_free(driver_id: int, ride: Optional[Ride] = None) -> None:
    """
    Raise DriverBusyError if the driver holds an active instant ride.

    Args:
        driver_id: Driver's user id
        ride: Ride being considered; ignored when it is the held ride itself
    """
    current = holding_ride(driver_id, exclude_ride_id=getattr(ride, "id", None))
    if current is not None:
        raise DriverBusyError(
            f"Driver {driver_id} is busy with ride {current.id}",
            driver_id=driver_id,
            active_ride_id=current.id,
        )


def acquire(driver_id: int, ride: Ride) -> bool:
    """
    Claim the driver's slot for an instant ride.

    Must run inside the transaction that assigns the driver to the ride.
    Scheduled and recurring rides never take the slot.

    Returns:
        True if the slot was taken, False for non-instant rides
    """
    if ride.timing != RideTiming.INSTANT:
        return False

    ensure_free(driver_id, ride)
    DriverPresence.objects.filter(user_id=driver_id).update(active_ride=ride)
    logger.info("Driver %s holds instant ride %s", driver_id, ride.id)
    return True


def release(driver_id: Optional[int], ride: Ride) -> bool:
    """
    Clear the index for this ride, if it points at it.

    Returns:
        True if an index row was cleared
    """
    if driver_id is None:
        return False
    cleared = DriverPresence.objects.filter(user_id=driver_id, active_ride_id=ride.id).update(active_ride=None)
    if cleared:
        logger.info("Driver %s released ride %s", driver_id, ride.id)
    return bool(cleared)


@transaction.atomic
def rebuild_index(driver_ids: Optional[Iterable[int]] = None) -> Dict[str, int]:
    """
    Reconcile `DriverPresence.active_ride` with the ride table.

    Args:
        driver_ids: Limit the scan to these drivers (all drivers when None)

    Returns:
        {"checked": n, "set": n, "cleared": n}
    """
    if driver_ids is not None:
        driver_ids = list(driver_ids)

    presences = DriverPresence.objects.select_for_update()
    if driver_ids is not None:
        presences = presences.filter(user_id__in=driver_ids)

    active = Ride.objects.filter(timing=RideTiming.INSTANT, status__in=EXECUTION_STATUSES)
    if driver_ids is not None:
        active = active.filter(driver_id__in=driver_ids)
    held = {}
    for ride_id, driver_id in active.order_by("accepted_at", "id").values_list("id", "driver_id"):
        held.setdefault(driver_id, ride_id)

    stats = {"checked": 0, "set": 0, "cleared": 0}
    for presence in presences:
        stats["checked"] += 1
        expected = held.get(presence.user_id)
        if presence.active_ride_id == expected:
            continue
        DriverPresence.objects.filter(pk=presence.pk).update(active_ride_id=expected)
        if expected is None:
            stats["cleared"] += 1
        else:
            stats["set"] += 1
        logger.warning(
            "Active ride index for driver %s was %s, rebuilt to %s",
            presence.user_id, presence.active_ride_id, expected,
        )
    return stats
