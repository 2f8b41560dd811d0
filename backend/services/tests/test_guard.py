from unittest.mock import patch

from django.core.management import call_command
from django.test import TestCase

from drivers.models import DriverPresence
from rides.models import OfferStatus, RideStatus
from services.offers import accept_offer
from services.ride_management import DriverBusyError, transition
from services.ride_management import guard
from .helpers import RideFixturesMixin


class ActiveRideGuardTests(RideFixturesMixin, TestCase):
    def setUp(self):
        self.p1 = self.make_passenger("passenger_one")
        self.p2 = self.make_passenger("passenger_two")
        self.driver = self.make_driver("driver_one")
        self.r1 = self.make_ride(self.p1)
        self.r2 = self.make_ride(self.p2)

    def test_free_driver(self):
        self.assertIsNone(guard.holding_ride(self.driver.id))
        self.assertFalse(guard.is_busy(self.driver.id))
        guard.ensure_free(self.driver.id, self.r1)

    def test_second_instant_acceptance_is_refused(self):
        # D1 bid on both rides, then won R1
        o1 = self.bid(self.r1, self.driver)
        o2 = self.bid(self.r2, self.driver)
        accept_offer(o1.id, self.p1)
        self.assertEqual(guard.holding_ride(self.driver.id).id, self.r1.id)

        with self.assertRaises(DriverBusyError):
            accept_offer(o2.id, self.p2)

        self.r2.refresh_from_db()
        o2.refresh_from_db()
        self.assertEqual(self.r2.status, RideStatus.PENDING)
        self.assertIsNone(self.r2.driver_id)
        self.assertEqual(o2.status, OfferStatus.PENDING)

    def test_database_constraint_backs_up_the_check(self):
        o1 = self.bid(self.r1, self.driver)
        o2 = self.bid(self.r2, self.driver)
        accept_offer(o1.id, self.p1)

        # Simulate losing the race: the pre-check saw a free driver
        with patch.object(guard, "ensure_free"):
            with self.assertRaises(DriverBusyError):
                accept_offer(o2.id, self.p2)

        self.r2.refresh_from_db()
        self.assertEqual(self.r2.status, RideStatus.PENDING)

    def test_slot_is_released_on_completion(self):
        accept_offer(self.bid(self.r1, self.driver).id, self.p1)
        for expected, new in (
            (RideStatus.ACCEPTED, RideStatus.DRIVER_EN_ROUTE),
            (RideStatus.DRIVER_EN_ROUTE, RideStatus.DRIVER_ARRIVED),
            (RideStatus.DRIVER_ARRIVED, RideStatus.IN_PROGRESS),
            (RideStatus.IN_PROGRESS, RideStatus.COMPLETED),
        ):
            transition(self.r1.id, expected, new, self.driver)

        self.assertFalse(guard.is_busy(self.driver.id))
        ride = accept_offer(self.bid(self.r2, self.driver).id, self.p2)
        self.assertEqual(ride.driver, self.driver)

    def test_release_only_clears_matching_ride(self):
        accept_offer(self.bid(self.r1, self.driver).id, self.p1)
        self.assertFalse(guard.release(self.driver.id, self.r2))
        self.assertEqual(DriverPresence.objects.get(user=self.driver).active_ride_id, self.r1.id)
        self.assertFalse(guard.release(None, self.r1))

    def test_rebuild_repairs_drifted_index(self):
        accept_offer(self.bid(self.r1, self.driver).id, self.p1)
        idle = self.make_driver("driver_two")
        DriverPresence.objects.filter(user=self.driver).update(active_ride=None)
        DriverPresence.objects.filter(user=idle).update(active_ride=self.r2)

        stats = guard.rebuild_index()

        self.assertEqual(stats, {"checked": 2, "set": 1, "cleared": 1})
        self.assertEqual(DriverPresence.objects.get(user=self.driver).active_ride_id, self.r1.id)
        self.assertIsNone(DriverPresence.objects.get(user=idle).active_ride_id)

    def test_rebuild_accepts_a_generator_of_driver_ids(self):
        accept_offer(self.bid(self.r1, self.driver).id, self.p1)
        DriverPresence.objects.filter(user=self.driver).update(active_ride=None)

        stats = guard.rebuild_index(driver_id for driver_id in [self.driver.id])

        self.assertEqual(stats, {"checked": 1, "set": 1, "cleared": 0})
        self.assertEqual(DriverPresence.objects.get(user=self.driver).active_ride_id, self.r1.id)

    def test_rebuild_command(self):
        accept_offer(self.bid(self.r1, self.driver).id, self.p1)
        DriverPresence.objects.filter(user=self.driver).update(active_ride=None)

        call_command("rebuild_active_ride_index", "--driver", str(self.driver.id))

        self.assertEqual(DriverPresence.objects.get(user=self.driver).active_ride_id, self.r1.id)
