"""
In-process subscriptions to ride/offer changes.

    unsubscribe = on_ride_or_offer_changed(user.id, handle_event)
    ...
    unsubscribe()

The callback receives each committed ChangeEvent whose audience includes the
viewer. Callbacks run after commit in the writer's thread, and should only
schedule a feed refresh rather than do heavy work.
"""

import logging
import uuid
from typing import Callable

from .events import ChangeEvent
from .signals import ride_or_offer_changed

logger = logging.getLogger(__name__)


def on_ride_or_offer_changed(viewer_id: int, callback: Callable[[ChangeEvent], None]) -> Callable[[], None]:
    """
    Call `callback(event)` for every change relevant to `viewer_id`.

    Returns:
        A function that ends the subscription; calling it again is harmless
    """
    dispatch_uid = f"viewer-{viewer_id}-{uuid.uuid4()}"

    def _receiver(sender, event: ChangeEvent, **kwargs):
        if viewer_id in event.audience:
            callback(event)

    ride_or_offer_changed.connect(_receiver, sender=ChangeEvent, weak=False, dispatch_uid=dispatch_uid)
    logger.debug("Subscribed %s", dispatch_uid)

    def unsubscribe() -> None:
        ride_or_offer_changed.disconnect(sender=ChangeEvent, dispatch_uid=dispatch_uid)

    return unsubscribe
