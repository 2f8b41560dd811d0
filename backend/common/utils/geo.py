"""
Geographic utility functions.

This module provides core geospatial calculations used throughout the application.
"""

from math import radians, degrees, cos, sin, asin, sqrt
from typing import Callable, Iterable, List, Optional, Tuple, TypeVar

EARTH_RADIUS_M = 6371000

T = TypeVar("T")


def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate distance between two points in meters using Haversine formula.

    Args:
        lat1: Latitude of first point
        lon1: Longitude of first point
        lat2: Latitude of second point
        lon2: Longitude of second point

    Returns:
        Distance in meters
    """
    lat1, lon1, lat2, lon2 = map(radians, [float(lat1), float(lon1), float(lat2), float(lon2)])
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    c = 2 * asin(sqrt(a))
    return c * EARTH_RADIUS_M


def is_within_radius(lat1, lon1, lat2, lon2, radius_m: float) -> bool:
    """True if the two points are at most `radius_m` metres apart."""
    return calculate_distance(lat1, lon1, lat2, lon2) <= radius_m


def wrap_longitude(lon: float) -> float:
    """Normalise a longitude into [-180, 180)."""
    return (float(lon) + 180.0) % 360.0 - 180.0


def bounding_box(lat: float, lon: float, radius_m: float) -> Tuple[float, float, float, float]:
    """
    Return (min_lat, max_lat, min_lon, max_lon) enclosing a circle.

    Used as a cheap database pre-filter before the exact Haversine check.
    Longitudes are wrapped, so a box crossing the antimeridian comes back
    with min_lon > max_lon. A circle reaching a pole spans every
    longitude.
    """
    lat = float(lat)
    lon = float(lon)
    dlat = degrees(radius_m / EARTH_RADIUS_M)
    min_lat, max_lat = lat - dlat, lat + dlat
    if min_lat <= -90.0 or max_lat >= 90.0:
        return max(min_lat, -90.0), min(max_lat, 90.0), -180.0, 180.0

    # Longitude degrees shrink towards the poles
    dlon = degrees(radius_m / (EARTH_RADIUS_M * cos(radians(lat))))
    if dlon >= 180.0:
        return min_lat, max_lat, -180.0, 180.0
    return min_lat, max_lat, wrap_longitude(lon - dlon), wrap_longitude(lon + dlon)


def filter_within_radius(
    items: Iterable[T],
    lat: float,
    lon: float,
    radius_m: float,
    coords: Callable[[T], Tuple[Optional[float], Optional[float]]],
) -> List[Tuple[T, float]]:
    """
    Keep items whose coordinates lie within `radius_m` of (lat, lon).

    Items without coordinates are skipped.

    Returns:
        (item, distance_m) pairs, nearest first
    """
    matches = []
    for item in items:
        item_lat, item_lon = coords(item)
        if item_lat is None or item_lon is None:
            continue
        dist = calculate_distance(lat, lon, item_lat, item_lon)
        if dist <= radius_m:
            matches.append((item, dist))
    matches.sort(key=lambda pair: pair[1])
    return matches
