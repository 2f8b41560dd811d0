from decimal import Decimal

from django.test import TestCase
from rest_framework.test import APIClient

from drivers.models import DriverPresence
from drivers.services import update_presence
from services.offers import accept_offer
from services.ride_management import StaleStateError
from services.tests.helpers import RideFixturesMixin


class DriverPresenceServiceTests(RideFixturesMixin, TestCase):
    def setUp(self):
        self.driver = self.make_driver("driver_one", online=False)

    def test_update_bumps_version(self):
        presence = update_presence(
            self.driver, 1, is_online=True, latitude=Decimal("28.700000"), longitude=Decimal("77.100000")
        )

        self.assertEqual(presence.version, 2)
        self.assertTrue(presence.is_online)
        self.assertEqual(presence.current_latitude, Decimal("28.700000"))
        self.assertIsNotNone(presence.last_location_update)

    def test_stale_version_is_refused(self):
        update_presence(self.driver, 1, is_online=True)

        with self.assertRaises(StaleStateError):
            update_presence(self.driver, 1, is_online=False)

        self.assertTrue(DriverPresence.objects.get(user=self.driver).is_online)

    def test_location_needs_both_coordinates(self):
        presence = update_presence(self.driver, latitude=Decimal("10.000000"))
        self.assertEqual(presence.current_latitude, Decimal("28.613900"))


class DriverPresenceApiTests(RideFixturesMixin, TestCase):
    def setUp(self):
        self.client = APIClient()
        self.driver = self.make_driver("driver_one", online=False)
        self.passenger = self.make_passenger()

    def test_get_and_put_presence(self):
        self.client.force_authenticate(self.driver)

        response = self.client.get("/api/driver/presence/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["version"], 1)
        self.assertFalse(response.data["is_online"])

        response = self.client.put(
            "/api/driver/presence/",
            {"version": 1, "is_online": True, "latitude": "28.620000", "longitude": "77.210000"},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["version"], 2)
        self.assertTrue(response.data["is_online"])

    def test_stale_put_is_a_conflict(self):
        self.client.force_authenticate(self.driver)
        self.client.put("/api/driver/presence/", {"version": 1, "is_online": True}, format="json")

        response = self.client.put("/api/driver/presence/", {"version": 1, "is_online": False}, format="json")

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data["error"], "stale_state")
        self.assertTrue(response.data["retryable"])

    def test_half_a_location_is_rejected(self):
        self.client.force_authenticate(self.driver)
        response = self.client.put("/api/driver/presence/", {"latitude": "28.620000"}, format="json")
        self.assertEqual(response.status_code, 400)

    def test_passengers_are_forbidden(self):
        self.client.force_authenticate(self.passenger)
        self.assertEqual(self.client.get("/api/driver/presence/").status_code, 403)
        self.assertEqual(self.client.get("/api/driver/current-ride/").status_code, 403)

    def test_anonymous_is_rejected(self):
        self.assertEqual(self.client.get("/api/driver/presence/").status_code, 401)


class DriverOfferApiTests(RideFixturesMixin, TestCase):
    def setUp(self):
        self.client = APIClient()
        self.passenger = self.make_passenger()
        self.driver = self.make_driver("driver_one")
        self.ride = self.make_ride(self.passenger)
        self.client.force_authenticate(self.driver)

    def test_submit_then_duplicate(self):
        url = f"/api/driver/rides/{self.ride.id}/offers/"

        response = self.client.post(url, {"price": "130.00", "message": "Nearby"}, format="json")
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["offer"]["status"], "pending")

        response = self.client.post(url, {"price": "120.00"}, format="json")
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data["error"], "duplicate_offer")

    def test_withdraw_is_repeatable(self):
        offer = self.bid(self.ride, self.driver)
        url = f"/api/driver/offers/{offer.id}/withdraw/"

        first = self.client.post(url)
        second = self.client.post(url)

        self.assertEqual(first.status_code, 200)
        self.assertEqual(second.status_code, 200)
        self.assertEqual(second.data["offer"]["status"], "withdrawn")

    def test_current_ride(self):
        response = self.client.get("/api/driver/current-ride/")
        self.assertFalse(response.data["has_active_ride"])

        accept_offer(self.bid(self.ride, self.driver).id, self.passenger)

        response = self.client.get("/api/driver/current-ride/")
        self.assertTrue(response.data["has_active_ride"])
        self.assertEqual(response.data["ride"]["id"], self.ride.id)
