from decimal import Decimal
from unittest.mock import patch

from django.test import TestCase

from drivers.models import DriverPresence
from rides.models import OfferStatus, Ride, RideStatus
from services.offers import accept_offer
from services.ride_management import (
    DriverBusyError,
    InvalidTransitionError,
    NotRideParticipantError,
    StaleStateError,
    advance_ride,
    is_legal_transition,
    transition,
)
from .helpers import RideFixturesMixin


class LegalTransitionTableTests(TestCase):
    def test_forward_path_and_cancellation(self):
        forward = [
            (RideStatus.PENDING, RideStatus.ACCEPTED),
            (RideStatus.ACCEPTED, RideStatus.DRIVER_EN_ROUTE),
            (RideStatus.DRIVER_EN_ROUTE, RideStatus.DRIVER_ARRIVED),
            (RideStatus.DRIVER_ARRIVED, RideStatus.IN_PROGRESS),
            (RideStatus.IN_PROGRESS, RideStatus.COMPLETED),
        ]
        for current in RideStatus:
            for new in RideStatus:
                expected = (current, new) in forward or (
                    new == RideStatus.CANCELLED
                    and current not in (RideStatus.COMPLETED, RideStatus.CANCELLED)
                )
                with self.subTest(current=current, new=new):
                    self.assertEqual(is_legal_transition(current, new), expected)

    def test_legacy_names_are_understood(self):
        self.assertTrue(is_legal_transition("offer_accepted", "driver_on_way"))
        self.assertTrue(is_legal_transition("trip_started", "trip_completed"))


class RideTransitionTests(RideFixturesMixin, TestCase):
    def setUp(self):
        self.passenger = self.make_passenger()
        self.driver = self.make_driver("driver_one")
        self.other_driver = self.make_driver("driver_two")
        self.ride = self.make_ride(self.passenger)
        self.offer = self.bid(self.ride, self.driver, "120.00")

    def _accept(self):
        return accept_offer(self.offer.id, self.passenger)

    def test_illegal_transition_is_rejected_without_writing(self):
        with self.assertRaises(InvalidTransitionError):
            transition(self.ride.id, RideStatus.PENDING, RideStatus.IN_PROGRESS, self.passenger)

        self.ride.refresh_from_db()
        self.assertEqual(self.ride.status, RideStatus.PENDING)
        self.assertEqual(self.ride.version, 1)

    def test_unknown_status_is_an_invalid_transition(self):
        with self.assertRaises(InvalidTransitionError):
            transition(self.ride.id, "pending", "teleported", self.passenger)

    def test_accept_requires_an_offer(self):
        with self.assertRaises(InvalidTransitionError):
            transition(self.ride.id, RideStatus.PENDING, RideStatus.ACCEPTED, self.passenger)

    def test_full_lifecycle_stamps_each_step(self):
        ride = self._accept()
        self.assertEqual(ride.status, RideStatus.ACCEPTED)
        self.assertEqual(ride.driver, self.driver)
        self.assertEqual(ride.agreed_price, Decimal("120.00"))
        self.assertIsNotNone(ride.accepted_at)
        self.assertEqual(DriverPresence.objects.get(user=self.driver).active_ride_id, ride.id)

        ride = transition(ride.id, RideStatus.ACCEPTED, RideStatus.DRIVER_EN_ROUTE, self.driver)
        ride = transition(ride.id, RideStatus.DRIVER_EN_ROUTE, RideStatus.DRIVER_ARRIVED, self.driver)
        self.assertIsNotNone(ride.arrived_at)
        ride = transition(ride.id, RideStatus.DRIVER_ARRIVED, RideStatus.IN_PROGRESS, self.driver)
        self.assertIsNotNone(ride.started_at)
        ride = transition(ride.id, RideStatus.IN_PROGRESS, RideStatus.COMPLETED, self.driver)

        self.assertEqual(ride.status, RideStatus.COMPLETED)
        self.assertIsNotNone(ride.completed_at)
        self.assertEqual(ride.version, 6)
        self.assertIsNone(DriverPresence.objects.get(user=self.driver).active_ride_id)

        self.driver.refresh_from_db()
        self.passenger.refresh_from_db()
        self.assertEqual(self.driver.completed_rides, 1)
        self.assertEqual(self.passenger.completed_rides, 1)

    def test_terminal_ride_accepts_no_transition(self):
        self._accept()
        advance_ride(self.ride.id, RideStatus.CANCELLED, self.passenger)

        with self.assertRaises(InvalidTransitionError):
            transition(self.ride.id, RideStatus.CANCELLED, RideStatus.CANCELLED, self.passenger)
        with self.assertRaises(InvalidTransitionError):
            transition(self.ride.id, RideStatus.CANCELLED, RideStatus.DRIVER_EN_ROUTE, self.driver)

    def test_only_assigned_driver_can_progress(self):
        self._accept()
        with self.assertRaises(NotRideParticipantError):
            transition(self.ride.id, RideStatus.ACCEPTED, RideStatus.DRIVER_EN_ROUTE, self.other_driver)
        with self.assertRaises(NotRideParticipantError):
            transition(self.ride.id, RideStatus.ACCEPTED, RideStatus.DRIVER_EN_ROUTE, self.passenger)

    def test_outsider_cannot_cancel(self):
        outsider = self.make_passenger("someone_else")
        with self.assertRaises(NotRideParticipantError):
            transition(self.ride.id, RideStatus.PENDING, RideStatus.CANCELLED, outsider)

    def test_driver_step_after_passenger_cancel_is_stale(self):
        # Passenger cancels while the driver's app still shows ACCEPTED
        self._accept()
        transition(self.ride.id, RideStatus.ACCEPTED, RideStatus.CANCELLED, self.passenger, reason="Plans changed")

        with self.assertRaises(StaleStateError):
            transition(self.ride.id, RideStatus.ACCEPTED, RideStatus.DRIVER_EN_ROUTE, self.driver)

        self.ride.refresh_from_db()
        self.assertEqual(self.ride.status, RideStatus.CANCELLED)
        self.assertIsNone(self.ride.driver_id)
        self.assertEqual(self.ride.previous_driver_id, self.driver.id)
        self.assertEqual(self.ride.cancelled_by_id, self.passenger.id)
        self.assertEqual(self.ride.cancellation_reason, "Plans changed")

    def test_cancel_pending_ride_expires_open_offers(self):
        second = self.bid(self.ride, self.other_driver, "130.00")

        transition(self.ride.id, RideStatus.PENDING, RideStatus.CANCELLED, self.passenger)

        self.offer.refresh_from_db()
        second.refresh_from_db()
        self.assertEqual(self.offer.status, OfferStatus.EXPIRED)
        self.assertEqual(second.status, OfferStatus.EXPIRED)

    def test_cancel_during_trip_releases_guard_and_notifies_driver(self):
        self._accept()
        transition(self.ride.id, RideStatus.ACCEPTED, RideStatus.DRIVER_EN_ROUTE, self.driver)

        with patch("realtime.notifications.notify") as mock_notify:
            with self.captureOnCommitCallbacks(execute=True):
                transition(self.ride.id, RideStatus.DRIVER_EN_ROUTE, RideStatus.CANCELLED, self.passenger)

        self.assertIsNone(DriverPresence.objects.get(user=self.driver).active_ride_id)
        cancel_calls = [c for c in mock_notify.call_args_list if c.kwargs.get("event") == "ride_cancelled"]
        self.assertEqual(len(cancel_calls), 1)
        self.assertEqual(cancel_calls[0].args[0], self.driver.id)

    def test_cancel_survives_a_failing_notification(self):
        self._accept()

        with patch("realtime.notifications.notify", side_effect=ConnectionError("channel layer down")):
            with self.captureOnCommitCallbacks(execute=True):
                ride = transition(self.ride.id, RideStatus.ACCEPTED, RideStatus.CANCELLED, self.passenger)

        self.assertEqual(ride.status, RideStatus.CANCELLED)
        self.assertEqual(Ride.objects.get(pk=self.ride.pk).status, RideStatus.CANCELLED)

    def test_legacy_status_names_drive_real_transitions(self):
        self._accept()
        ride = transition(self.ride.id, "offer_accepted", "driver_on_way", self.driver)
        self.assertEqual(ride.status, RideStatus.DRIVER_EN_ROUTE)


class ScheduledActivationTests(RideFixturesMixin, TestCase):
    def setUp(self):
        self.passenger = self.make_passenger()
        self.other_passenger = self.make_passenger("passenger_two")
        self.driver = self.make_driver("driver_one")

        instant = self.make_ride(self.passenger)
        accept_offer(self.bid(instant, self.driver).id, self.passenger)
        self.instant = Ride.objects.get(pk=instant.pk)

        self.scheduled = self.make_scheduled_ride(self.other_passenger)

    def test_busy_driver_can_win_scheduled_ride_but_not_start_it(self):
        offer = self.bid(self.scheduled, self.driver, "300.00")
        ride = accept_offer(offer.id, self.other_passenger)
        self.assertEqual(ride.status, RideStatus.ACCEPTED)
        self.assertEqual(ride.driver, self.driver)

        with self.assertRaises(DriverBusyError):
            transition(ride.id, RideStatus.ACCEPTED, RideStatus.DRIVER_EN_ROUTE, self.driver)

        ride.refresh_from_db()
        self.assertEqual(ride.status, RideStatus.ACCEPTED)

    def test_activation_allowed_once_instant_ride_is_done(self):
        offer = self.bid(self.scheduled, self.driver, "300.00")
        accept_offer(offer.id, self.other_passenger)

        advance_ride(self.instant.id, RideStatus.CANCELLED, self.driver)

        ride = transition(self.scheduled.id, RideStatus.ACCEPTED, RideStatus.DRIVER_EN_ROUTE, self.driver)
        self.assertEqual(ride.status, RideStatus.DRIVER_EN_ROUTE)
        # Scheduled rides never occupy the instant slot
        self.assertIsNone(DriverPresence.objects.get(user=self.driver).active_ride_id)


class AdvanceRideTests(RideFixturesMixin, TestCase):
    def setUp(self):
        self.passenger = self.make_passenger()
        self.ride = self.make_ride(self.passenger)

    def test_retries_after_stale_state(self):
        real_transition = transition
        calls = []

        def flaky(*args, **kwargs):
            calls.append(args)
            if len(calls) == 1:
                raise StaleStateError("moved")
            return real_transition(*args, **kwargs)

        with patch("services.ride_management.state_machine.transition", side_effect=flaky):
            ride = advance_ride(self.ride.id, RideStatus.CANCELLED, self.passenger)

        self.assertEqual(len(calls), 2)
        self.assertEqual(ride.status, RideStatus.CANCELLED)

    def test_gives_up_after_configured_attempts(self):
        with patch(
            "services.ride_management.state_machine.transition",
            side_effect=StaleStateError("moved"),
        ) as mock_transition:
            with self.assertRaises(StaleStateError):
                advance_ride(self.ride.id, RideStatus.CANCELLED, self.passenger, attempts=2)

        self.assertEqual(mock_transition.call_count, 2)
