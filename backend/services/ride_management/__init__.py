"""
Ride management service - ride lifecycle and the active-ride guard.

This module handles:
    - Creating rides (single, recurring series, bulk)
    - Status transitions with compare-and-swap writes
    - The one-active-instant-ride-per-driver guard
"""

from .lifecycle import (
    cancel_ride,
    create_bulk_rides,
    create_recurring_series,
    create_ride_request,
    get_current_driver_ride,
    get_ride_for_user,
)
from .state_machine import (
    LEGAL_SUCCESSORS,
    advance_ride,
    is_legal_transition,
    transition,
)

from .exceptions import (
    RideCoordinationError,
    RideNotFoundError,
    OfferNotFoundError,
    NotRideParticipantError,
    InvalidTransitionError,
    InvalidRideRequestError,
    StaleStateError,
    OfferConflictError,
    DuplicateOfferError,
    DriverBusyError,
    RideNotOpenError,
)

__all__ = [
    # Lifecycle operations
    "create_ride_request",
    "create_recurring_series",
    "create_bulk_rides",
    "cancel_ride",
    "get_ride_for_user",
    "get_current_driver_ride",
    # State machine
    "LEGAL_SUCCESSORS",
    "transition",
    "advance_ride",
    "is_legal_transition",
    # Exceptions
    "RideCoordinationError",
    "RideNotFoundError",
    "OfferNotFoundError",
    "NotRideParticipantError",
    "InvalidTransitionError",
    "InvalidRideRequestError",
    "StaleStateError",
    "OfferConflictError",
    "DuplicateOfferError",
    "DriverBusyError",
    "RideNotOpenError",
]
