from datetime import datetime, timedelta, timezone as dt_timezone
from decimal import Decimal
from types import SimpleNamespace

from django.test import SimpleTestCase, TestCase

from rides.models import RideStatus
from services.feed import (
    BUCKET_ORDER,
    FeedBucket,
    Viewer,
    build_feed,
    categorize,
    feed_for_user,
    group_entries,
)
from services.offers import accept_offer, withdraw_offer
from .helpers import RideFixturesMixin

BASE_TIME = datetime(2026, 3, 1, 8, 0, tzinfo=dt_timezone.utc)

DRIVER_ID = 10
OTHER_DRIVER_ID = 11
PASSENGER_ID = 20


def make_ride(ride_id=1, **overrides):
    fields = dict(
        id=ride_id,
        status="pending",
        timing="instant",
        passenger_id=PASSENGER_ID,
        driver_id=None,
        pickup_latitude=28.6139,
        pickup_longitude=77.2090,
        match_radius=5000,
        series_id=None,
        batch_id=None,
        estimated_price=Decimal("100.00"),
        agreed_price=None,
        requested_at=BASE_TIME + timedelta(minutes=ride_id),
        scheduled_for=None,
        last_offer_at=None,
        status_changed_at=None,
        accepted_at=None,
        completed_at=None,
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


def make_offer(ride_id=1, driver_id=DRIVER_ID, status="pending"):
    return SimpleNamespace(ride_id=ride_id, driver_id=driver_id, status=status)


NEARBY_DRIVER = Viewer(user_id=DRIVER_ID, role="driver", latitude=28.6200, longitude=77.2100)
FAR_DRIVER = Viewer(user_id=DRIVER_ID, role="driver", latitude=19.0760, longitude=72.8777)
UNLOCATED_DRIVER = Viewer(user_id=DRIVER_ID, role="driver")
PASSENGER = Viewer(user_id=PASSENGER_ID, role="passenger")


class DriverCategorizeTests(SimpleTestCase):
    def test_open_ride_within_radius_is_available(self):
        self.assertEqual(categorize(make_ride(), [], NEARBY_DRIVER), FeedBucket.AVAILABLE)

    def test_open_instant_ride_out_of_radius_is_hidden(self):
        self.assertIsNone(categorize(make_ride(), [], FAR_DRIVER))

    def test_scheduled_ride_is_available_at_any_distance(self):
        ride = make_ride(timing="scheduled_single", scheduled_for=BASE_TIME + timedelta(days=1))
        self.assertEqual(categorize(ride, [], FAR_DRIVER), FeedBucket.AVAILABLE)

    def test_unknown_location_sees_open_rides(self):
        self.assertEqual(categorize(make_ride(), [], UNLOCATED_DRIVER), FeedBucket.AVAILABLE)

    def test_own_pending_offer_means_bid_pending(self):
        offers = [make_offer(), make_offer(driver_id=OTHER_DRIVER_ID)]
        self.assertEqual(categorize(make_ride(), offers, FAR_DRIVER), FeedBucket.BID_PENDING)

    def test_withdrawn_offer_makes_ride_available_again(self):
        offers = [make_offer(status="withdrawn")]
        self.assertEqual(categorize(make_ride(), offers, NEARBY_DRIVER), FeedBucket.AVAILABLE)

    def test_offers_for_other_rides_are_ignored(self):
        offers = [make_offer(ride_id=2)]
        self.assertEqual(categorize(make_ride(), offers, NEARBY_DRIVER), FeedBucket.AVAILABLE)

    def test_assigned_ride_progress(self):
        for status in ("accepted", "driver_en_route", "driver_arrived", "in_progress"):
            with self.subTest(status=status):
                ride = make_ride(status=status, driver_id=DRIVER_ID)
                self.assertEqual(categorize(ride, [], FAR_DRIVER), FeedBucket.ACTIVE)

        done = make_ride(status="completed", driver_id=DRIVER_ID)
        self.assertEqual(categorize(done, [], FAR_DRIVER), FeedBucket.COMPLETED)

    def test_rides_assigned_elsewhere_or_cancelled_are_hidden(self):
        taken = make_ride(status="accepted", driver_id=OTHER_DRIVER_ID)
        lost = make_ride(status="accepted", driver_id=OTHER_DRIVER_ID)
        cancelled = make_ride(status="cancelled")
        self.assertIsNone(categorize(taken, [], NEARBY_DRIVER))
        self.assertIsNone(categorize(lost, [make_offer(status="rejected")], NEARBY_DRIVER))
        self.assertIsNone(categorize(cancelled, [make_offer(status="expired")], NEARBY_DRIVER))

    def test_enum_statuses_work_like_strings(self):
        ride = make_ride(status=RideStatus.IN_PROGRESS, driver_id=DRIVER_ID)
        self.assertEqual(categorize(ride, [], NEARBY_DRIVER), FeedBucket.ACTIVE)


class PassengerCategorizeTests(SimpleTestCase):
    def test_open_ride_without_bids_is_available(self):
        self.assertEqual(categorize(make_ride(), [], PASSENGER), FeedBucket.AVAILABLE)

    def test_open_ride_with_pending_bid_awaits_decision(self):
        self.assertEqual(categorize(make_ride(), [make_offer()], PASSENGER), FeedBucket.BID_PENDING)

    def test_only_closed_bids_leaves_ride_available(self):
        offers = [make_offer(status="withdrawn"), make_offer(driver_id=OTHER_DRIVER_ID, status="expired")]
        self.assertEqual(categorize(make_ride(), offers, PASSENGER), FeedBucket.AVAILABLE)

    def test_active_completed_and_cancelled(self):
        self.assertEqual(
            categorize(make_ride(status="driver_arrived", driver_id=DRIVER_ID), [], PASSENGER),
            FeedBucket.ACTIVE,
        )
        self.assertEqual(
            categorize(make_ride(status="completed", driver_id=DRIVER_ID), [], PASSENGER),
            FeedBucket.COMPLETED,
        )
        self.assertIsNone(categorize(make_ride(status="cancelled"), [], PASSENGER))

    def test_other_passengers_rides_are_hidden(self):
        self.assertIsNone(categorize(make_ride(passenger_id=99), [], PASSENGER))


class CategorizePurityTests(SimpleTestCase):
    def test_same_inputs_same_answer_and_inputs_untouched(self):
        ride = make_ride()
        offers = [make_offer(), make_offer(driver_id=OTHER_DRIVER_ID)]
        snapshot = (vars(ride).copy(), [vars(o).copy() for o in offers])

        results = {categorize(ride, offers, NEARBY_DRIVER) for _ in range(5)}

        self.assertEqual(results, {FeedBucket.BID_PENDING})
        self.assertEqual((vars(ride), [vars(o) for o in offers]), snapshot)


class GroupingTests(SimpleTestCase):
    def test_series_members_fold_into_one_entry(self):
        rides = [make_ride(i, series_id=7, estimated_price=Decimal("50.00")) for i in (1, 2, 3)]
        rides.append(make_ride(4))

        entries = group_entries(FeedBucket.AVAILABLE, rides)

        self.assertEqual(len(entries), 2)
        group = entries[0]
        self.assertTrue(group.is_group)
        self.assertEqual(group.group_key, "series:7")
        self.assertEqual(len(group.rides), 3)
        self.assertEqual(group.total_price, Decimal("150.00"))
        self.assertFalse(entries[1].is_group)

    def test_group_of_one_collapses(self):
        entries = group_entries(FeedBucket.AVAILABLE, [make_ride(1, batch_id="b-1")])
        self.assertEqual(len(entries), 1)
        self.assertFalse(entries[0].is_group)
        self.assertIsNone(entries[0].group_key)

    def test_series_wins_over_batch(self):
        rides = [
            make_ride(1, series_id=3, batch_id="b-1"),
            make_ride(2, series_id=3, batch_id="b-2"),
        ]
        entries = group_entries(FeedBucket.ACTIVE, rides)
        self.assertEqual([e.group_key for e in entries], ["series:3"])

    def test_agreed_price_counts_over_estimate(self):
        rides = [
            make_ride(1, batch_id="b", agreed_price=Decimal("80.00")),
            make_ride(2, batch_id="b", estimated_price=None),
        ]
        self.assertEqual(group_entries(FeedBucket.ACTIVE, rides)[0].total_price, Decimal("80.00"))


class BuildFeedTests(SimpleTestCase):
    def test_every_bucket_present_and_newest_first(self):
        rides = [make_ride(1), make_ride(2), make_ride(3, status="cancelled")]

        feed = build_feed(rides, [], PASSENGER)

        self.assertEqual(list(feed), list(BUCKET_ORDER))
        self.assertEqual([e.ride.id for e in feed[FeedBucket.AVAILABLE]], [2, 1])
        self.assertEqual(feed[FeedBucket.COMPLETED], [])

    def test_ties_are_broken_by_id(self):
        rides = [make_ride(1, requested_at=BASE_TIME), make_ride(2, requested_at=BASE_TIME)]
        feed = build_feed(rides, [], PASSENGER)
        self.assertEqual([e.ride.id for e in feed[FeedBucket.AVAILABLE]], [2, 1])


class FeedForUserTests(RideFixturesMixin, TestCase):
    def setUp(self):
        self.passenger = self.make_passenger()
        self.driver = self.make_driver("driver_one")
        self.far_driver = self.make_driver("driver_far", latitude="19.076000", longitude="72.877700")
        self.ride = self.make_ride(self.passenger)

    def _ride_ids(self, feed, bucket):
        return [ride.id for entry in feed[bucket] for ride in entry.rides]

    def test_driver_feed_follows_bid_lifecycle(self):
        self.assertEqual(self._ride_ids(feed_for_user(self.driver), FeedBucket.AVAILABLE), [self.ride.id])
        self.assertEqual(self._ride_ids(feed_for_user(self.far_driver), FeedBucket.AVAILABLE), [])

        offer = self.bid(self.ride, self.driver)
        self.assertEqual(self._ride_ids(feed_for_user(self.driver), FeedBucket.BID_PENDING), [self.ride.id])
        self.assertEqual(self._ride_ids(feed_for_user(self.passenger), FeedBucket.BID_PENDING), [self.ride.id])

        withdraw_offer(offer.id, self.driver)
        self.assertEqual(self._ride_ids(feed_for_user(self.driver), FeedBucket.AVAILABLE), [self.ride.id])

        offer = self.bid(self.ride, self.driver)
        accept_offer(offer.id, self.passenger)
        self.assertEqual(self._ride_ids(feed_for_user(self.driver), FeedBucket.ACTIVE), [self.ride.id])
        self.assertEqual(self._ride_ids(feed_for_user(self.passenger), FeedBucket.ACTIVE), [self.ride.id])

    def test_losing_driver_no_longer_sees_the_ride(self):
        rival = self.make_driver("driver_two")
        self.bid(self.ride, rival)
        accept_offer(self.bid(self.ride, self.driver).id, self.passenger)

        feed = feed_for_user(rival)
        self.assertTrue(all(entries == [] for entries in feed.values()))
