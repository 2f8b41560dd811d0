from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated

from drivers import services
from drivers.permissions import IsDriver
from drivers.serializers import (
    DriverPresenceSerializer,
    DriverPresenceUpdateSerializer,
    OfferSubmitSerializer,
)
from rides.serializers import RideOfferSerializer, RideSerializer
from services.offers import submit_offer, withdraw_offer
from services.ride_management import get_current_driver_ride


#    NOTE: the feed WebSocket accepts the same update as `presence_update`; HTTP stays as fallback.
class DriverPresenceView(APIView):
    permission_classes = [IsAuthenticated, IsDriver]

    def get(self, request):
        presence = services.get_presence(request.user)
        return Response(DriverPresenceSerializer(presence).data)

    def put(self, request):
        serializer = DriverPresenceUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        presence = services.update_presence(
            request.user,
            data.get("version"),
            is_online=data.get("is_online"),
            latitude=data.get("latitude"),
            longitude=data.get("longitude"),
            vehicle_number=data.get("vehicle_number"),
        )
        return Response(DriverPresenceSerializer(presence).data)


class DriverSubmitOfferView(APIView):
    """POST: bid on a pending ride."""
    permission_classes = [IsAuthenticated, IsDriver]

    def post(self, request, ride_id: int):
        serializer = OfferSubmitSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        offer = submit_offer(
            ride_id,
            request.user,
            serializer.validated_data["price"],
            serializer.validated_data["message"],
        )
        return Response({
            "message": "Offer sent to the passenger",
            "offer": RideOfferSerializer(offer).data,
        }, status=201)


class DriverWithdrawOfferView(APIView):
    """POST: withdraw a pending bid (repeating the call is harmless)."""
    permission_classes = [IsAuthenticated, IsDriver]

    def post(self, request, offer_id: int):
        offer = withdraw_offer(offer_id, request.user)
        return Response({
            "message": "Offer withdrawn",
            "offer": RideOfferSerializer(offer).data,
        })


class DriverCurrentRideView(APIView):
    permission_classes = [IsAuthenticated, IsDriver]

    def get(self, request):
        ride = get_current_driver_ride(request.user)
        if ride is None:
            return Response({"has_active_ride": False, "message": "No active ride"})
        return Response({"has_active_ride": True, "ride": RideSerializer(ride).data})
