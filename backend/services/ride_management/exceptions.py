"""
Custom exceptions for ride coordination.

Every error carries a stable `error_code`, the message shown to the user,
the HTTP status the API answers with, and whether re-reading and trying
again can succeed.
"""


class RideCoordinationError(Exception):
    """Base class for ride, offer and guard errors."""
    error_code = "ride_error"
    user_message = "Something went wrong with this ride."
    http_status = 400
    retryable = False

    def __init__(self, message: str = "", **context):
        super().__init__(message or self.user_message)
        self.context = context


class RideNotFoundError(RideCoordinationError):
    """Raised when a ride cannot be found."""
    error_code = "ride_not_found"
    user_message = "Ride not found."
    http_status = 404


class OfferNotFoundError(RideCoordinationError):
    """Raised when a ride offer cannot be found."""
    error_code = "offer_not_found"
    user_message = "Offer not found."
    http_status = 404


class NotRideParticipantError(RideCoordinationError):
    """Raised when the actor is not allowed to act on this ride or offer."""
    error_code = "not_ride_participant"
    user_message = "You are not allowed to perform this action on this ride."
    http_status = 403


class InvalidTransitionError(RideCoordinationError):
    """The requested status change is not in the legal successor table."""
    error_code = "invalid_transition"
    user_message = "This ride cannot move to that status."
    http_status = 400


class StaleStateError(RideCoordinationError):
    """The ride was not in the expected status when the write ran."""
    error_code = "stale_state"
    user_message = "This ride was updated by someone else. Refresh and try again."
    http_status = 409
    retryable = True


class OfferConflictError(RideCoordinationError):
    """The ride already left PENDING, or the offer is no longer pending."""
    error_code = "offer_conflict"
    user_message = "This ride is no longer available."
    http_status = 409


class DuplicateOfferError(RideCoordinationError):
    """The driver already holds a pending offer on this ride."""
    error_code = "duplicate_offer"
    user_message = "You already have a pending offer on this ride."
    http_status = 409


class DriverBusyError(RideCoordinationError):
    """The driver already holds an active instant ride."""
    error_code = "driver_busy"
    user_message = "Finish your current trip first."
    http_status = 409


class RideNotOpenError(RideCoordinationError):
    """Offers can only be made on PENDING rides."""
    error_code = "ride_not_open"
    user_message = "This ride is unavailable."
    http_status = 409


class InvalidRideRequestError(RideCoordinationError):
    """The ride request is missing or has inconsistent details."""
    error_code = "invalid_ride_request"
    user_message = "Please check the ride details and try again."
    http_status = 400
