"""
Driver/ride proximity matching.

This module handles:
    - Finding online drivers near a ride's pickup
    - Pre-filtering open rides near a driver
"""

from .nearby import find_nearby_drivers, open_rides_near

__all__ = [
    "find_nearby_drivers",
    "open_rides_near",
]
