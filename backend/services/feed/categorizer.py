"""
Feed categorization.

Pure functions: given a ride, the offers on it and who is looking, decide
which feed bucket the ride belongs in. Nothing here touches the database,
so the same inputs always give the same answer and feeds can be recomputed
from scratch on every change.

Rides and offers are read by attribute only (status, driver_id, timing, ...),
so model instances and plain test doubles both work.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from common.utils import is_within_radius

# Statuses as plain strings so doubles need not import the models
PENDING = "pending"
ACTIVE_STATUSES = frozenset({"accepted", "driver_en_route", "driver_arrived", "in_progress"})
COMPLETED = "completed"
OFFER_PENDING = "pending"
INSTANT = "instant"

DRIVER = "driver"
PASSENGER = "passenger"


class FeedBucket(str, enum.Enum):
    AVAILABLE = "available"
    BID_PENDING = "bid_pending"
    ACTIVE = "active"
    COMPLETED = "completed"


BUCKET_ORDER = (FeedBucket.AVAILABLE, FeedBucket.BID_PENDING, FeedBucket.ACTIVE, FeedBucket.COMPLETED)


@dataclass(frozen=True)
class Viewer:
    """Who is looking at the feed, and (drivers) where they are."""
    user_id: int
    role: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def is_driver(self) -> bool:
        return self.role == DRIVER

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass(frozen=True)
class FeedEntry:
    """One line in a feed: a single ride, or a series/batch shown as a group."""
    bucket: FeedBucket
    rides: Tuple[Any, ...]
    group_key: Optional[str] = None

    @property
    def is_group(self) -> bool:
        return len(self.rides) > 1

    @property
    def ride(self):
        return self.rides[0]

    @property
    def total_price(self) -> Decimal:
        total = Decimal("0")
        for ride in self.rides:
            price = _ride_price(ride)
            if price is not None:
                total += Decimal(str(price))
        return total


def _status(value) -> str:
    return getattr(value, "value", value)


def _ride_price(ride):
    agreed = getattr(ride, "agreed_price", None)
    return agreed if agreed is not None else getattr(ride, "estimated_price", None)


def _within_match_radius(ride, viewer: Viewer) -> bool:
    if _status(ride.timing) != INSTANT:
        return True
    # Drivers with no known location see every open instant ride
    if not viewer.has_location:
        return True
    return is_within_radius(
        viewer.latitude, viewer.longitude,
        ride.pickup_latitude, ride.pickup_longitude,
        ride.match_radius,
    )


# ---------------------- Categorize ----------------------

def categorize(ride, offers: Iterable, viewer: Viewer) -> Optional[FeedBucket]:
    """
    Bucket for `ride` in `viewer`'s feed, or None if it does not appear.

    Args:
        ride: Ride (or any object with the same attributes)
        offers: Offers on this ride; offers for other rides are ignored
        viewer: The user looking at the feed

    Returns:
        FeedBucket or None
    """
    status = _status(ride.status)
    ride_offers = [o for o in offers if o.ride_id == ride.id]

    if viewer.is_driver:
        if ride.driver_id == viewer.user_id:
            if status in ACTIVE_STATUSES:
                return FeedBucket.ACTIVE
            if status == COMPLETED:
                return FeedBucket.COMPLETED
            return None

        if status != PENDING or ride.passenger_id == viewer.user_id:
            return None

        holds_pending = any(
            o.driver_id == viewer.user_id and _status(o.status) == OFFER_PENDING
            for o in ride_offers
        )
        if holds_pending:
            return FeedBucket.BID_PENDING
        if _within_match_radius(ride, viewer):
            return FeedBucket.AVAILABLE
        return None

    if ride.passenger_id != viewer.user_id:
        return None
    if status == PENDING:
        if any(_status(o.status) == OFFER_PENDING for o in ride_offers):
            return FeedBucket.BID_PENDING
        return FeedBucket.AVAILABLE
    if status in ACTIVE_STATUSES:
        return FeedBucket.ACTIVE
    if status == COMPLETED:
        return FeedBucket.COMPLETED
    return None


# ---------------------- Grouping & ordering ----------------------

def group_key(ride) -> Optional[str]:
    """Series id wins over batch id; None for standalone rides."""
    series_id = getattr(ride, "series_id", None)
    if series_id is not None:
        return f"series:{series_id}"
    batch_id = getattr(ride, "batch_id", None)
    if batch_id is not None:
        return f"batch:{batch_id}"
    return None


def group_entries(bucket: FeedBucket, rides: Sequence) -> List[FeedEntry]:
    """
    Fold rides sharing a series or batch into one entry.

    Groups of one collapse to a plain single entry. Order follows the first
    appearance of each group in `rides`.
    """
    groups: Dict[str, List] = {}
    order: List[Tuple[Optional[str], Any]] = []
    for ride in rides:
        key = group_key(ride)
        if key is None:
            order.append((None, ride))
            continue
        if key not in groups:
            groups[key] = []
            order.append((key, None))
        groups[key].append(ride)

    entries = []
    for key, ride in order:
        if key is None:
            entries.append(FeedEntry(bucket=bucket, rides=(ride,)))
        elif len(groups[key]) == 1:
            entries.append(FeedEntry(bucket=bucket, rides=(groups[key][0],)))
        else:
            entries.append(FeedEntry(bucket=bucket, rides=tuple(groups[key]), group_key=key))
    return entries


def sort_timestamp(ride, bucket: FeedBucket) -> Optional[datetime]:
    """Timestamp a bucket is ordered by (newest first)."""
    if bucket == FeedBucket.COMPLETED:
        candidates = ("completed_at", "requested_at")
    elif bucket == FeedBucket.ACTIVE:
        candidates = ("status_changed_at", "accepted_at", "requested_at")
    elif bucket == FeedBucket.BID_PENDING:
        candidates = ("last_offer_at", "requested_at")
    else:
        candidates = ("scheduled_for", "requested_at")
    for name in candidates:
        value = getattr(ride, name, None)
        if value is not None:
            return value
    return None


def _sort_rides(rides: List, bucket: FeedBucket) -> List:
    def key(ride):
        ts = sort_timestamp(ride, bucket)
        return (ts is not None, ts.timestamp() if ts else 0.0, ride.id)
    return sorted(rides, key=key, reverse=True)


def build_feed(rides: Iterable, offers: Iterable, viewer: Viewer) -> Dict[FeedBucket, List[FeedEntry]]:
    """
    Categorize, order and group every ride for one viewer.

    Returns:
        Every FeedBucket mapped to its entries (possibly empty)
    """
    offers = list(offers)
    by_ride: Dict[Any, List] = {}
    for offer in offers:
        by_ride.setdefault(offer.ride_id, []).append(offer)

    bucketed: Dict[FeedBucket, List] = {bucket: [] for bucket in BUCKET_ORDER}
    for ride in rides:
        bucket = categorize(ride, by_ride.get(ride.id, ()), viewer)
        if bucket is not None:
            bucketed[bucket].append(ride)

    return {
        bucket: group_entries(bucket, _sort_rides(members, bucket))
        for bucket, members in bucketed.items()
    }
