"""DRF exception handler that turns ride coordination errors into JSON responses."""

import logging

from rest_framework.response import Response
from rest_framework.views import exception_handler

from services.ride_management.exceptions import RideCoordinationError

logger = logging.getLogger(__name__)


def ride_exception_handler(exc, context):
    if isinstance(exc, RideCoordinationError):
        view = context.get("view")
        logger.info("%s in %s: %s", exc.error_code, type(view).__name__ if view else "?", exc)
        return Response(
            {
                "error": exc.error_code,
                "message": exc.user_message,
                "detail": str(exc),
                "retryable": exc.retryable,
            },
            status=exc.http_status,
        )
    return exception_handler(exc, context)
