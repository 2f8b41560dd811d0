from django.urls import path
from .views import (
    DriverCurrentRideView,
    DriverPresenceView,
    DriverSubmitOfferView,
    DriverWithdrawOfferView,
)

urlpatterns = [
    path("presence/", DriverPresenceView.as_view(), name="driver-presence"),
    path("current-ride/", DriverCurrentRideView.as_view(), name="driver-current-ride"),
    path("rides/<int:ride_id>/offers/", DriverSubmitOfferView.as_view(), name="driver-submit-offer"),
    path("offers/<int:offer_id>/withdraw/", DriverWithdrawOfferView.as_view(), name="driver-withdraw-offer"),
]
