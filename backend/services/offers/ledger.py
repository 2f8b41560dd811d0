"""
Offer (bid) ledger.

Drivers bid on PENDING rides; the passenger accepts exactly one bid. Every
status change here is a conditional UPDATE on the offer's (or ride's)
expected status, so concurrent submit/accept/withdraw calls serialize at
the database and the loser gets a typed error instead of a silent overwrite.
"""

import logging
from datetime import timedelta
from typing import List, Optional

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from realtime import events
from rides.models import OfferStatus, Ride, RideOffer, RideStatus, RideTiming
from services.ride_management import guard
from services.ride_management.exceptions import (
    DuplicateOfferError,
    NotRideParticipantError,
    OfferConflictError,
    OfferNotFoundError,
    RideNotFoundError,
    RideNotOpenError,
    StaleStateError,
)

logger = logging.getLogger(__name__)


def _get_offer(offer_id: int) -> RideOffer:
    try:
        return RideOffer.objects.select_related("ride").get(pk=offer_id)
    except RideOffer.DoesNotExist:
        raise OfferNotFoundError(f"Offer {offer_id} not found")


def _schedule_rejection_notices(offer_ids: List[int]) -> None:
    from rides.tasks import notify_offer_rejected_task

    for offer_id in offer_ids:
        try:
            notify_offer_rejected_task.delay(offer_id)
        except Exception:
            # Left unclaimed; resend_missed_rejection_notices picks it up
            logger.exception("Could not queue rejection notice for offer %s", offer_id)


# ===================== Driver Operations =====================

def submit_offer(ride_id: int, driver, price, message: str = "") -> RideOffer:
    """
    Place a bid on a PENDING ride.

    The ride row is touched with a conditional write on PENDING first, which
    orders this submission against a concurrent acceptance: either the offer
    lands before the ride leaves PENDING (and gets rejected with the rest), or
    the submission fails with RideNotOpenError.

    Args:
        ride_id: ID of the ride
        driver: User model instance (driver)
        price: Quoted fare
        message: Optional note to the passenger

    Returns:
        The new PENDING RideOffer

    Raises:
        RideNotFoundError: No such ride
        RideNotOpenError: Ride is not PENDING
        DriverBusyError: Instant ride and the driver holds an active instant ride
        DuplicateOfferError: Driver already has a PENDING offer on this ride
    """
    if getattr(driver, "role", None) != "driver":
        raise NotRideParticipantError("Only drivers can make offers")

    with transaction.atomic():
        now = timezone.now()
        touched = Ride.objects.filter(pk=ride_id, status=RideStatus.PENDING).update(last_offer_at=now)
        if not touched:
            if not Ride.objects.filter(pk=ride_id).exists():
                raise RideNotFoundError(f"Ride {ride_id} not found")
            raise RideNotOpenError(f"Ride {ride_id} is not open for offers", ride_id=ride_id)

        ride = Ride.objects.get(pk=ride_id)
        if ride.passenger_id == driver.id:
            raise NotRideParticipantError("You cannot bid on your own ride")

        if ride.timing == RideTiming.INSTANT:
            guard.ensure_free(driver.id, ride)

        if RideOffer.objects.filter(ride=ride, driver=driver, status=OfferStatus.PENDING).exists():
            raise DuplicateOfferError(
                f"Driver {driver.id} already has a pending offer on ride {ride_id}",
                ride_id=ride_id,
            )

        try:
            with transaction.atomic():
                offer = RideOffer.objects.create(
                    ride=ride,
                    driver=driver,
                    price=price,
                    message=message or "",
                    status=OfferStatus.PENDING,
                )
        except IntegrityError as exc:
            raise DuplicateOfferError(
                f"Driver {driver.id} already has a pending offer on ride {ride_id}",
                ride_id=ride_id,
            ) from exc

        events.publish_offer_change(offer, changed_fields=["status", "price"])

    logger.info("Driver %s offered %s on ride %s (offer %s)", driver.id, price, ride_id, offer.id)
    return offer


def withdraw_offer(offer_id: int, driver) -> RideOffer:
    """
    Withdraw a PENDING offer. Withdrawing an already withdrawn offer is a no-op.

    Raises:
        OfferNotFoundError: No such offer
        NotRideParticipantError: Offer belongs to another driver
        OfferConflictError: Offer was already accepted, rejected or expired
    """
    with transaction.atomic():
        offer = _get_offer(offer_id)
        if offer.driver_id != driver.id:
            raise NotRideParticipantError("You can only withdraw your own offers")

        if offer.status == OfferStatus.WITHDRAWN:
            return offer

        rows = RideOffer.objects.filter(pk=offer_id, status=OfferStatus.PENDING).update(
            status=OfferStatus.WITHDRAWN,
            responded_at=timezone.now(),
            version=F("version") + 1,
        )
        offer.refresh_from_db()
        if not rows:
            if offer.status == OfferStatus.WITHDRAWN:
                return offer
            raise OfferConflictError(f"Offer {offer_id} is already {offer.status}", offer_id=offer_id)

        events.publish_offer_change(offer, changed_fields=["status", "responded_at"])

    logger.info("Driver %s withdrew offer %s on ride %s", driver.id, offer.id, offer.ride_id)
    return offer


# ===================== Passenger Operations =====================

def accept_offer(offer_id: int, passenger) -> Ride:
    """
    Accept one offer: all or nothing.

    In one transaction the ride moves PENDING -> ACCEPTED with the offer's
    driver and price, the offer becomes ACCEPTED and every other PENDING offer
    on the ride becomes REJECTED. Rejected drivers are notified once the
    transaction commits.

    Args:
        offer_id: ID of the offer to accept
        passenger: User model instance (ride owner)

    Returns:
        The accepted Ride

    Raises:
        OfferNotFoundError: No such offer
        NotRideParticipantError: Caller does not own the ride
        OfferConflictError: Ride already left PENDING or the offer is not PENDING
        DriverBusyError: Instant ride and the driver is busy with another instant ride
    """
    from services.ride_management.state_machine import transition

    offer = _get_offer(offer_id)
    if offer.ride.passenger_id != passenger.id:
        raise NotRideParticipantError("Only the ride's passenger can accept offers")

    if offer.status != OfferStatus.PENDING:
        raise OfferConflictError(f"Offer {offer_id} is {offer.status}", offer_id=offer_id)

    try:
        ride = transition(offer.ride_id, RideStatus.PENDING, RideStatus.ACCEPTED, passenger, offer=offer)
    except StaleStateError as exc:
        raise OfferConflictError(
            f"Ride {offer.ride_id} is no longer pending",
            ride_id=offer.ride_id,
            offer_id=offer_id,
        ) from exc

    logger.info("Passenger %s accepted offer %s; ride %s assigned to driver %s",
                passenger.id, offer_id, ride.id, ride.driver_id)
    return ride


def list_offers_for_ride(ride_id: int, passenger, include_closed: bool = False):
    """Offers on a ride, for its passenger. Only PENDING ones unless include_closed."""
    try:
        ride = Ride.objects.get(pk=ride_id)
    except Ride.DoesNotExist:
        raise RideNotFoundError(f"Ride {ride_id} not found")
    if ride.passenger_id != passenger.id:
        raise NotRideParticipantError("Only the ride's passenger can see its offers")

    offers = ride.offers.select_related("driver", "driver__driver_presence")
    if not include_closed:
        offers = offers.filter(status=OfferStatus.PENDING)
    return offers.order_by("price", "submitted_at")


# ===================== Settlement (called by the state machine) =====================

def settle_accepted_offer(ride: Ride, offer: RideOffer) -> List[int]:
    """
    Mark `offer` ACCEPTED and every other PENDING offer on the ride REJECTED.

    Must run inside the transaction that moved the ride to ACCEPTED.

    Returns:
        IDs of the rejected offers
    """
    now = timezone.now()
    rows = RideOffer.objects.filter(pk=offer.pk, ride_id=ride.id, status=OfferStatus.PENDING).update(
        status=OfferStatus.ACCEPTED,
        responded_at=now,
        version=F("version") + 1,
    )
    if not rows:
        raise OfferConflictError(f"Offer {offer.pk} is no longer pending", offer_id=offer.pk)

    rejected_ids = list(
        RideOffer.objects.filter(ride_id=ride.id, status=OfferStatus.PENDING).values_list("pk", flat=True)
    )
    if rejected_ids:
        RideOffer.objects.filter(pk__in=rejected_ids, status=OfferStatus.PENDING).update(
            status=OfferStatus.REJECTED,
            responded_at=now,
            version=F("version") + 1,
        )

    for changed in RideOffer.objects.filter(pk__in=[offer.pk, *rejected_ids]).select_related("ride"):
        events.publish_offer_change(changed, changed_fields=["status", "responded_at"])

    if rejected_ids:
        transaction.on_commit(lambda: _schedule_rejection_notices(rejected_ids), robust=True)
    return rejected_ids


def expire_open_offers(ride: Ride) -> List[int]:
    """
    Expire every PENDING offer on a ride that is no longer open (cancellation).

    Returns:
        IDs of the expired offers
    """
    from realtime.notifications import notify

    pending = list(
        RideOffer.objects.filter(ride_id=ride.id, status=OfferStatus.PENDING).values_list("pk", "driver_id")
    )
    if not pending:
        return []

    offer_ids = [pk for pk, _ in pending]
    RideOffer.objects.filter(pk__in=offer_ids, status=OfferStatus.PENDING).update(
        status=OfferStatus.EXPIRED,
        responded_at=timezone.now(),
        version=F("version") + 1,
    )
    for changed in RideOffer.objects.filter(pk__in=offer_ids).select_related("ride"):
        events.publish_offer_change(changed, changed_fields=["status", "responded_at"])

    def _notify_holders():
        for offer_id, driver_id in pending:
            notify(driver_id, "This ride was cancelled.", event="ride_cancelled",
                   ride_id=ride.id, extra={"offer_id": offer_id})

    transaction.on_commit(_notify_holders, robust=True)
    return offer_ids


# ===================== Maintenance =====================

def expire_stale_offers(max_age_seconds: Optional[int] = None) -> int:
    """
    Expire PENDING offers older than `max_age_seconds` (RIDE_OFFER_TTL_SECONDS by default).

    Returns:
        Number of offers expired
    """
    from realtime.notifications import notify

    max_age = max_age_seconds if max_age_seconds is not None else getattr(settings, "RIDE_OFFER_TTL_SECONDS", 900)
    cutoff = timezone.now() - timedelta(seconds=max_age)

    stale_ids = list(
        RideOffer.objects.filter(status=OfferStatus.PENDING, submitted_at__lt=cutoff).values_list("pk", flat=True)
    )

    expired = 0
    for offer_id in stale_ids:
        with transaction.atomic():
            rows = RideOffer.objects.filter(pk=offer_id, status=OfferStatus.PENDING).update(
                status=OfferStatus.EXPIRED,
                responded_at=timezone.now(),
                version=F("version") + 1,
            )
            if not rows:
                continue
            offer = RideOffer.objects.select_related("ride").get(pk=offer_id)
            events.publish_offer_change(offer, changed_fields=["status", "responded_at"])
            transaction.on_commit(
                lambda offer=offer: notify(
                    offer.driver_id, "Your offer expired.", event="offer_expired",
                    ride_id=offer.ride_id, extra={"offer_id": offer.id},
                ),
                robust=True,
            )
            expired += 1

    if expired:
        logger.info("Expired %d stale offer(s) older than %ss", expired, max_age)
    return expired


def resend_missed_rejection_notices(min_age_seconds: Optional[int] = None) -> int:
    """
    Re-queue rejection notices that never went out.

    Covers a broker outage at commit time and notices whose retries ran out.
    Offers younger than `min_age_seconds` (RIDE_REJECTION_NOTICE_GRACE_SECONDS
    by default) are left to their first attempt. The task's claim on
    `rejection_notified_at` still keeps each notice to one delivery.

    Returns:
        Number of notices queued
    """
    min_age = (
        min_age_seconds if min_age_seconds is not None
        else getattr(settings, "RIDE_REJECTION_NOTICE_GRACE_SECONDS", 60)
    )
    cutoff = timezone.now() - timedelta(seconds=min_age)

    offer_ids = list(
        RideOffer.objects.filter(
            status=OfferStatus.REJECTED,
            rejection_notified_at__isnull=True,
            responded_at__lte=cutoff,
        ).values_list("pk", flat=True)
    )
    if offer_ids:
        logger.warning("Re-queueing %d missed rejection notice(s)", len(offer_ids))
        _schedule_rejection_notices(offer_ids)
    return len(offer_ids)
