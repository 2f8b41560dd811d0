"""Celery tasks for ride-related background processing."""

import logging

from celery import shared_task
from django.utils import timezone

logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=5, default_retry_delay=5, retry_backoff=True)
def notify_offer_rejected_task(self, offer_id: int):
    """
    Tell a driver their offer lost. Runs at most once per offer.

    The offer row is claimed by stamping `rejection_notified_at` with a
    conditional write; a failed send gives the claim back and retries.
    """
    from realtime.notifications import notify
    from rides.models import OfferStatus, RideOffer

    claimed = RideOffer.objects.filter(
        pk=offer_id,
        status=OfferStatus.REJECTED,
        rejection_notified_at__isnull=True,
    ).update(rejection_notified_at=timezone.now())
    if not claimed:
        logger.info("Rejection notice for offer %s already sent or not needed", offer_id)
        return False

    offer = RideOffer.objects.get(pk=offer_id)
    try:
        notify(
            offer.driver_id,
            "The passenger chose another offer.",
            event="offer_rejected",
            ride_id=offer.ride_id,
            extra={"offer_id": offer.id},
        )
    except Exception as exc:
        RideOffer.objects.filter(pk=offer_id).update(rejection_notified_at=None)
        logger.warning("Rejection notice for offer %s failed, retrying: %s", offer_id, exc)
        raise self.retry(exc=exc)

    return True


@shared_task
def expire_stale_offers_task(max_age_seconds=None):
    """Periodic: expire pending offers older than RIDE_OFFER_TTL_SECONDS."""
    from services.offers import expire_stale_offers

    return expire_stale_offers(max_age_seconds)


@shared_task
def resend_missed_rejection_notices_task(min_age_seconds=None):
    """Periodic: re-queue rejection notices that were never delivered."""
    from services.offers import resend_missed_rejection_notices

    return resend_missed_rejection_notices(min_age_seconds)


@shared_task
def rebuild_active_ride_index_task():
    """Periodic: reconcile DriverPresence.active_ride with the ride table."""
    from services.ride_management.guard import rebuild_index

    stats = rebuild_index()
    if stats["set"] or stats["cleared"]:
        logger.warning("Active ride index drift repaired: %s", stats)
    return stats
