from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

from django.test import TestCase
from django.utils import timezone

from rides.models import OfferStatus, Ride, RideOffer, RideStatus
from rides.tasks import notify_offer_rejected_task, resend_missed_rejection_notices_task
from services.offers import (
    accept_offer,
    expire_stale_offers,
    list_offers_for_ride,
    submit_offer,
    withdraw_offer,
)
from services.ride_management import (
    DriverBusyError,
    DuplicateOfferError,
    NotRideParticipantError,
    OfferConflictError,
    RideNotFoundError,
    RideNotOpenError,
    transition,
)
from .helpers import RideFixturesMixin


class OfferAcceptanceTests(RideFixturesMixin, TestCase):
    def setUp(self):
        self.passenger = self.make_passenger()
        self.d1 = self.make_driver("driver_one")
        self.d2 = self.make_driver("driver_two")
        self.d3 = self.make_driver("driver_three")
        self.ride = self.make_ride(self.passenger)
        self.o1 = self.bid(self.ride, self.d1, "110.00")
        self.o2 = self.bid(self.ride, self.d2, "100.00")
        self.o3 = self.bid(self.ride, self.d3, "120.00")

    def test_accept_assigns_driver_and_rejects_the_rest(self):
        with patch("realtime.notifications.notify") as mock_notify:
            with self.captureOnCommitCallbacks(execute=True):
                ride = accept_offer(self.o2.id, self.passenger)

        self.assertEqual(ride.status, RideStatus.ACCEPTED)
        self.assertEqual(ride.driver, self.d2)
        self.assertEqual(ride.agreed_price, Decimal("100.00"))

        for offer in (self.o1, self.o2, self.o3):
            offer.refresh_from_db()
        self.assertEqual(self.o2.status, OfferStatus.ACCEPTED)
        self.assertEqual(self.o1.status, OfferStatus.REJECTED)
        self.assertEqual(self.o3.status, OfferStatus.REJECTED)
        self.assertIsNotNone(self.o1.rejection_notified_at)

        rejected = sorted(
            c.args[0] for c in mock_notify.call_args_list if c.kwargs.get("event") == "offer_rejected"
        )
        self.assertEqual(rejected, sorted([self.d1.id, self.d3.id]))

    def test_rejection_notice_is_sent_once(self):
        with patch("realtime.notifications.notify") as mock_notify:
            with self.captureOnCommitCallbacks(execute=True):
                accept_offer(self.o2.id, self.passenger)
            self.assertFalse(notify_offer_rejected_task(self.o1.id))
            self.assertFalse(notify_offer_rejected_task(self.o2.id))

        self.assertEqual(mock_notify.call_count, 2)

    def test_broker_outage_after_commit_does_not_fail_acceptance(self):
        with patch("rides.tasks.notify_offer_rejected_task.delay", side_effect=ConnectionError("broker down")):
            with self.captureOnCommitCallbacks(execute=True):
                ride = accept_offer(self.o2.id, self.passenger)

        self.assertEqual(ride.status, RideStatus.ACCEPTED)
        self.o1.refresh_from_db()
        self.assertEqual(self.o1.status, OfferStatus.REJECTED)
        self.assertIsNone(self.o1.rejection_notified_at)

    def test_failing_commit_hook_does_not_reach_the_caller(self):
        with patch("services.offers.ledger._schedule_rejection_notices", side_effect=RuntimeError("boom")):
            with self.captureOnCommitCallbacks(execute=True):
                accept_offer(self.o2.id, self.passenger)

        self.assertEqual(Ride.objects.get(pk=self.ride.pk).status, RideStatus.ACCEPTED)

    def test_missed_rejection_notices_are_resent_once(self):
        with patch("rides.tasks.notify_offer_rejected_task.delay", side_effect=ConnectionError("broker down")):
            with self.captureOnCommitCallbacks(execute=True):
                accept_offer(self.o2.id, self.passenger)

        with patch("realtime.notifications.notify") as mock_notify:
            # Too recent for the default grace period
            self.assertEqual(resend_missed_rejection_notices_task(), 0)
            self.assertEqual(resend_missed_rejection_notices_task(min_age_seconds=0), 2)
            self.assertEqual(resend_missed_rejection_notices_task(min_age_seconds=0), 0)

        self.assertEqual(sorted(c.args[0] for c in mock_notify.call_args_list), sorted([self.d1.id, self.d3.id]))
        for offer in (self.o1, self.o3):
            offer.refresh_from_db()
            self.assertIsNotNone(offer.rejection_notified_at)

    def test_second_acceptance_conflicts_and_changes_nothing(self):
        accept_offer(self.o1.id, self.passenger)

        with self.assertRaises(OfferConflictError):
            accept_offer(self.o2.id, self.passenger)

        self.ride.refresh_from_db()
        self.o2.refresh_from_db()
        self.assertEqual(self.ride.driver, self.d1)
        self.assertEqual(self.ride.status, RideStatus.ACCEPTED)
        self.assertEqual(self.o2.status, OfferStatus.REJECTED)
        self.assertEqual(RideOffer.objects.filter(ride=self.ride, status=OfferStatus.ACCEPTED).count(), 1)

    def test_accept_after_ride_left_pending_underneath(self):
        # Another writer moved the ride without touching its offers
        Ride.objects.filter(pk=self.ride.pk).update(status=RideStatus.CANCELLED)

        with self.assertRaises(OfferConflictError):
            accept_offer(self.o1.id, self.passenger)

        self.o1.refresh_from_db()
        self.assertEqual(self.o1.status, OfferStatus.PENDING)
        self.assertEqual(RideOffer.objects.filter(ride=self.ride, status=OfferStatus.PENDING).count(), 3)

    def test_only_the_owner_can_accept(self):
        stranger = self.make_passenger("stranger")
        with self.assertRaises(NotRideParticipantError):
            accept_offer(self.o1.id, stranger)

    def test_withdrawn_offer_cannot_be_accepted(self):
        withdraw_offer(self.o1.id, self.d1)
        with self.assertRaises(OfferConflictError):
            accept_offer(self.o1.id, self.passenger)

    def test_list_offers_shows_pending_cheapest_first(self):
        withdraw_offer(self.o3.id, self.d3)
        offers = list(list_offers_for_ride(self.ride.id, self.passenger))
        self.assertEqual([o.id for o in offers], [self.o2.id, self.o1.id])

        everything = list_offers_for_ride(self.ride.id, self.passenger, include_closed=True)
        self.assertEqual(everything.count(), 3)


class OfferSubmissionTests(RideFixturesMixin, TestCase):
    def setUp(self):
        self.passenger = self.make_passenger()
        self.driver = self.make_driver("driver_one")
        self.ride = self.make_ride(self.passenger)

    def test_submit_creates_pending_offer(self):
        offer = submit_offer(self.ride.id, self.driver, Decimal("99.50"), "5 min away")
        self.assertEqual(offer.status, OfferStatus.PENDING)
        self.assertEqual(offer.price, Decimal("99.50"))
        self.ride.refresh_from_db()
        self.assertIsNotNone(self.ride.last_offer_at)

    def test_duplicate_pending_offer_is_refused(self):
        self.bid(self.ride, self.driver)
        with self.assertRaises(DuplicateOfferError):
            self.bid(self.ride, self.driver, "90.00")
        self.assertEqual(RideOffer.objects.filter(ride=self.ride).count(), 1)

    def test_driver_can_bid_again_after_withdrawing(self):
        first = self.bid(self.ride, self.driver)
        withdraw_offer(first.id, self.driver)
        second = self.bid(self.ride, self.driver, "95.00")
        self.assertNotEqual(first.id, second.id)
        self.assertEqual(second.status, OfferStatus.PENDING)

    def test_submit_on_closed_ride(self):
        transition(self.ride.id, RideStatus.PENDING, RideStatus.CANCELLED, self.passenger)
        with self.assertRaises(RideNotOpenError):
            self.bid(self.ride, self.driver)

    def test_submit_on_missing_ride(self):
        with self.assertRaises(RideNotFoundError):
            submit_offer(999999, self.driver, Decimal("10.00"))

    def test_passengers_cannot_bid(self):
        with self.assertRaises(NotRideParticipantError):
            submit_offer(self.ride.id, self.make_passenger("p2"), Decimal("10.00"))

    def test_busy_driver_cannot_bid_on_instant_ride(self):
        other = self.make_passenger("passenger_two")
        current = self.make_ride(other)
        accept_offer(self.bid(current, self.driver).id, other)

        with self.assertRaises(DriverBusyError):
            self.bid(self.ride, self.driver)

        scheduled = self.make_scheduled_ride(self.passenger)
        self.assertEqual(self.bid(scheduled, self.driver).status, OfferStatus.PENDING)


class OfferWithdrawalTests(RideFixturesMixin, TestCase):
    def setUp(self):
        self.passenger = self.make_passenger()
        self.driver = self.make_driver("driver_one")
        self.ride = self.make_ride(self.passenger)
        self.offer = self.bid(self.ride, self.driver)

    def test_withdraw_twice_is_a_no_op(self):
        first = withdraw_offer(self.offer.id, self.driver)
        second = withdraw_offer(self.offer.id, self.driver)

        self.assertEqual(first.status, OfferStatus.WITHDRAWN)
        self.assertEqual(second.status, OfferStatus.WITHDRAWN)
        self.assertEqual(second.version, first.version)

    def test_cannot_withdraw_accepted_offer(self):
        accept_offer(self.offer.id, self.passenger)
        with self.assertRaises(OfferConflictError):
            withdraw_offer(self.offer.id, self.driver)

    def test_cannot_withdraw_someone_elses_offer(self):
        other = self.make_driver("driver_two")
        with self.assertRaises(NotRideParticipantError):
            withdraw_offer(self.offer.id, other)


class StaleOfferExpiryTests(RideFixturesMixin, TestCase):
    def setUp(self):
        self.passenger = self.make_passenger()
        self.driver = self.make_driver("driver_one")
        self.fresh_driver = self.make_driver("driver_two")
        self.ride = self.make_ride(self.passenger)
        self.old = self.bid(self.ride, self.driver)
        self.fresh = self.bid(self.ride, self.fresh_driver)
        RideOffer.objects.filter(pk=self.old.pk).update(submitted_at=timezone.now() - timedelta(hours=1))

    def test_only_old_pending_offers_expire(self):
        with patch("realtime.notifications.notify") as mock_notify:
            with self.captureOnCommitCallbacks(execute=True):
                expired = expire_stale_offers(max_age_seconds=600)

        self.assertEqual(expired, 1)
        self.old.refresh_from_db()
        self.fresh.refresh_from_db()
        self.assertEqual(self.old.status, OfferStatus.EXPIRED)
        self.assertEqual(self.fresh.status, OfferStatus.PENDING)
        mock_notify.assert_called_once()
        self.assertEqual(mock_notify.call_args.args[0], self.driver.id)
