# passengers/views/rides.py

from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated

from ..permissions import IsPassenger
from ..serializers import RideCancelSerializer, RideRequestCreateSerializer
from rides.models import RideTiming
from rides.serializers import RideOfferSerializer, RideSerializer
from services.offers import accept_offer, list_offers_for_ride
from services.ride_management import cancel_ride, create_recurring_series, create_ride_request


class PassengerCreateRideRequestView(APIView):
    """
    POST: Passenger creates a ride request (instant, scheduled or recurring).
    """
    permission_classes = [IsAuthenticated, IsPassenger]

    def post(self, request):
        serializer = RideRequestCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)

        occurrences = data.pop("occurrences", None)
        pattern = data.pop("recurrence_pattern", "weekly")
        label = data.pop("series_label", "")

        if data["timing"] == RideTiming.SCHEDULED_RECURRING:
            data.pop("timing")
            data.pop("scheduled_for", None)
            series, rides = create_recurring_series(
                request.user,
                occurrences,
                recurrence_pattern=pattern,
                label=label,
                **data,
            )
            return Response({
                "message": f"Booked {len(rides)} recurring ride(s)",
                "series_id": series.id,
                "rides": RideSerializer(rides, many=True).data,
            }, status=201)

        ride = create_ride_request(request.user, **data)
        return Response({
            "message": "Ride requested. Drivers nearby can now make offers.",
            "ride": RideSerializer(ride).data,
        }, status=201)


class PassengerRideOffersView(APIView):
    """
    GET: Offers on one of the passenger's rides (pending only unless ?all=1).
    """
    permission_classes = [IsAuthenticated, IsPassenger]

    def get(self, request, ride_id: int):
        include_closed = request.query_params.get("all") in ("1", "true")
        offers = list_offers_for_ride(ride_id, request.user, include_closed=include_closed)
        return Response({
            "ride_id": ride_id,
            "offers": RideOfferSerializer(offers, many=True).data,
        })


class PassengerAcceptOfferView(APIView):
    """
    POST: Passenger accepts one offer; the others are rejected.
    """
    permission_classes = [IsAuthenticated, IsPassenger]

    def post(self, request, offer_id: int):
        ride = accept_offer(offer_id, request.user)
        return Response({
            "message": "Offer accepted. Your driver has been notified.",
            "ride": RideSerializer(ride).data,
        })


class PassengerCancelRideView(APIView):
    """
    POST: Passenger cancels a ride from whatever status it is in now.
    """
    permission_classes = [IsAuthenticated, IsPassenger]

    def post(self, request, ride_id: int):
        serializer = RideCancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        ride = cancel_ride(ride_id, request.user, reason=serializer.validated_data["reason"])
        return Response({
            "message": "Ride cancelled",
            "ride": RideSerializer(ride).data,
        })
