# passengers/urls.py

from django.urls import path

from .views.rides import (
    PassengerAcceptOfferView,
    PassengerCancelRideView,
    PassengerCreateRideRequestView,
    PassengerRideOffersView,
)

app_name = "passengers"

urlpatterns = [
    path("rides/", PassengerCreateRideRequestView.as_view(), name="create-ride"),
    path("rides/<int:ride_id>/offers/", PassengerRideOffersView.as_view(), name="ride-offers"),
    path("rides/<int:ride_id>/cancel/", PassengerCancelRideView.as_view(), name="cancel-ride"),
    path("offers/<int:offer_id>/accept/", PassengerAcceptOfferView.as_view(), name="accept-offer"),
]
