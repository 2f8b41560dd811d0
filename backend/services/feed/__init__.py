"""
Feed service.

This module handles:
    - Pure ride -> bucket categorization per viewer
    - Grouping of recurring series and bulk bookings
    - Loading a viewer's feed from the database
"""

from .categorizer import (
    BUCKET_ORDER,
    FeedBucket,
    FeedEntry,
    Viewer,
    build_feed,
    categorize,
    group_entries,
)
from .queries import feed_for_user, viewer_for

__all__ = [
    "BUCKET_ORDER",
    "FeedBucket",
    "FeedEntry",
    "Viewer",
    "build_feed",
    "categorize",
    "group_entries",
    "feed_for_user",
    "viewer_for",
]
