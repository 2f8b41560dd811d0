from datetime import timedelta
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.utils import timezone

from drivers.models import DriverPresence
from rides.models import RideTiming
from services.offers import submit_offer
from services.ride_management import create_ride_request

User = get_user_model()

# Connaught Place, New Delhi
PICKUP = (Decimal("28.613900"), Decimal("77.209000"))


class RideFixturesMixin:
    """Users, drivers and rides for service tests."""

    def make_passenger(self, username="passenger"):
        return User.objects.create_user(
            username=username,
            password="pass1234",
            role="passenger",
            phone_number="9000000000",
        )

    def make_driver(self, username="driver", latitude=PICKUP[0], longitude=PICKUP[1], online=True):
        user = User.objects.create_user(
            username=username,
            password="driver1234",
            role="driver",
            phone_number="9000000001",
        )
        DriverPresence.objects.create(
            user=user,
            vehicle_number=f"DL-{username[:12]}",
            is_online=online,
            current_latitude=latitude,
            current_longitude=longitude,
        )
        return user

    def make_ride(self, passenger, **kwargs):
        fields = {
            "pickup_latitude": PICKUP[0],
            "pickup_longitude": PICKUP[1],
            "pickup_address": "Connaught Place",
            "dropoff_address": "India Gate",
            "estimated_price": Decimal("150.00"),
        }
        fields.update(kwargs)
        return create_ride_request(passenger, **fields)

    def make_scheduled_ride(self, passenger, **kwargs):
        kwargs.setdefault("timing", RideTiming.SCHEDULED_SINGLE)
        kwargs.setdefault("scheduled_for", timezone.now() + timedelta(days=1))
        return self.make_ride(passenger, **kwargs)

    def bid(self, ride, driver, price="140.00"):
        return submit_offer(ride.id, driver, Decimal(price))
