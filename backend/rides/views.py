"""Ride endpoints shared by passengers and drivers."""

import logging

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from services.feed import feed_for_user
from services.ride_management import get_ride_for_user, transition
from .serializers import RideSerializer, RideTransitionSerializer, serialize_feed

logger = logging.getLogger(__name__)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def ride_detail(request, ride_id):
    """Current state of a ride the caller takes part in."""
    ride = get_ride_for_user(ride_id, request.user)
    return Response(RideSerializer(ride).data)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def transition_ride(request, ride_id):
    """
    Move a ride along its lifecycle.

    Body: {"expected_status": "...", "new_status": "...", "reason": "..."}

    Accepting an offer goes through /api/passenger/offers/<id>/accept/ instead.
    A 409 `stale_state` answer means the ride changed; re-read and decide again.
    """
    serializer = RideTransitionSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    ride = transition(
        ride_id,
        data["expected_status"],
        data["new_status"],
        request.user,
        reason=data.get("reason", ""),
    )
    return Response({
        "message": f"Ride is now {ride.get_status_display().lower()}",
        "ride": RideSerializer(ride).data,
    }, status=status.HTTP_200_OK)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def ride_feed(request):
    """Categorized feed for the caller (same payload as the feed WebSocket snapshot)."""
    feed = feed_for_user(request.user)
    return Response({"feed": serialize_feed(feed, context={"request": request})})
