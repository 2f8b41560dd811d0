"""Common utility functions."""

from .geo import bounding_box, calculate_distance, filter_within_radius, is_within_radius, wrap_longitude

__all__ = [
    "bounding_box",
    "calculate_distance",
    "filter_within_radius",
    "is_within_radius",
    "wrap_longitude",
]
