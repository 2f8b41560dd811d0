import asyncio
from unittest.mock import AsyncMock, patch

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.db import transaction
from django.test import SimpleTestCase, TestCase

from realtime.consumers.feed_consumer import FeedConsumer
from realtime.events import ChangeEvent, dispatch
from realtime.notifications import notify
from realtime.signals import ride_or_offer_changed
from realtime.subscriptions import on_ride_or_offer_changed
from rides.models import RideStatus
from services.feed import FeedBucket, feed_for_user
from services.offers import accept_offer
from services.ride_management import transition
from services.tests.helpers import RideFixturesMixin


def receive(layer, channel, timeout=1):
    async def _receive():
        return await asyncio.wait_for(layer.receive(channel), timeout)
    return async_to_sync(_receive)()


class ChannelLayerMixin:
    def setUp(self):
        super().setUp()
        self.layer = get_channel_layer()
        self.addCleanup(async_to_sync(self.layer.flush))

    def listen(self, *groups):
        channel = async_to_sync(self.layer.new_channel)()
        for group in groups:
            async_to_sync(self.layer.group_add)(group, channel)
        return channel


class ChangeEventPublishTests(RideFixturesMixin, TestCase):
    def setUp(self):
        self.passenger = self.make_passenger()
        self.driver = self.make_driver("driver_one")
        self.far_driver = self.make_driver("driver_far", latitude="19.076000", longitude="72.877700")
        self.events = []
        self.unsubscribe = on_ride_or_offer_changed(self.passenger.id, self.events.append)
        self.addCleanup(self.unsubscribe)

    def test_events_are_sent_after_commit_with_versions(self):
        with self.captureOnCommitCallbacks(execute=True):
            ride = self.make_ride(self.passenger)
            self.assertEqual(self.events, [])

        self.assertEqual(len(self.events), 1)
        event = self.events[0]
        self.assertEqual(event.key, f"ride:{ride.id}")
        self.assertEqual(event.version, 1)
        self.assertEqual(event.status, RideStatus.PENDING)
        self.assertIn(self.driver.id, event.audience)
        self.assertNotIn(self.far_driver.id, event.audience)

    def test_rolled_back_write_sends_nothing(self):
        with self.captureOnCommitCallbacks(execute=True):
            with self.assertRaises(RuntimeError):
                with transaction.atomic():
                    self.make_ride(self.passenger)
                    raise RuntimeError("abort")

        self.assertEqual(self.events, [])

    def test_versions_increase_for_one_ride(self):
        ride = self.make_ride(self.passenger)
        offer = self.bid(ride, self.driver)
        with self.captureOnCommitCallbacks(execute=True):
            accept_offer(offer.id, self.passenger)
            transition(ride.id, RideStatus.ACCEPTED, RideStatus.DRIVER_EN_ROUTE, self.driver)

        ride_versions = [e.version for e in self.events if e.entity == "ride"]
        self.assertEqual(ride_versions, sorted(ride_versions))
        self.assertEqual(ride_versions[-1], 3)
        self.assertIn(f"offer:{offer.id}", {e.key for e in self.events})


class SubscriptionTests(RideFixturesMixin, TestCase):
    def setUp(self):
        self.passenger = self.make_passenger()
        self.stranger = self.make_passenger("stranger")

    def test_only_the_audience_is_called(self):
        mine, theirs = [], []
        self.addCleanup(on_ride_or_offer_changed(self.passenger.id, mine.append))
        self.addCleanup(on_ride_or_offer_changed(self.stranger.id, theirs.append))

        with self.captureOnCommitCallbacks(execute=True):
            self.make_ride(self.passenger)

        self.assertEqual(len(mine), 1)
        self.assertEqual(theirs, [])

    def test_driver_without_location_hears_about_new_instant_rides(self):
        driver = self.make_driver("driver_nowhere", latitude=None, longitude=None)
        seen = []
        self.addCleanup(on_ride_or_offer_changed(driver.id, seen.append))

        with self.captureOnCommitCallbacks(execute=True):
            ride = self.make_ride(self.passenger)

        self.assertEqual([event.key for event in seen], [f"ride:{ride.id}"])
        available = feed_for_user(driver)[FeedBucket.AVAILABLE]
        self.assertEqual([entry.rides[0].id for entry in available], [ride.id])

    def test_unsubscribe_stops_delivery_and_is_idempotent(self):
        seen = []
        unsubscribe = on_ride_or_offer_changed(self.passenger.id, seen.append)
        unsubscribe()
        unsubscribe()

        with self.captureOnCommitCallbacks(execute=True):
            self.make_ride(self.passenger)

        self.assertEqual(seen, [])

    def test_failing_subscriber_does_not_break_delivery(self):
        def broken(event):
            raise ValueError("boom")

        seen = []
        self.addCleanup(on_ride_or_offer_changed(self.passenger.id, broken))
        self.addCleanup(on_ride_or_offer_changed(self.passenger.id, seen.append))

        with self.captureOnCommitCallbacks(execute=True):
            self.make_ride(self.passenger)

        self.assertEqual(len(seen), 1)


class ChannelDeliveryTests(ChannelLayerMixin, RideFixturesMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.passenger = self.make_passenger()

    def test_change_reaches_user_group(self):
        channel = self.listen(f"user_{self.passenger.id}")

        with self.captureOnCommitCallbacks(execute=True):
            ride = self.make_ride(self.passenger)

        message = receive(self.layer, channel)
        self.assertEqual(message["type"], "ride_or_offer_changed")
        self.assertEqual(message["entity"], "ride")
        self.assertEqual(message["entity_id"], ride.id)
        self.assertEqual(message["version"], 1)

    def test_dispatch_also_targets_the_ride_group(self):
        channel = self.listen("ride_42")
        dispatch(ChangeEvent(entity="offer", entity_id=7, ride_id=42, version=2, status="withdrawn"))

        message = receive(self.layer, channel)
        self.assertEqual(message["entity_id"], 7)
        self.assertEqual(message["status"], "withdrawn")

    def test_notify(self):
        channel = self.listen(f"user_{self.passenger.id}")

        self.assertTrue(notify(self.passenger.id, "Driver is on the way", event="ride_update", ride_id=5))
        self.assertFalse(notify(None, "nobody"))

        message = receive(self.layer, channel)
        self.assertEqual(message["type"], "notification")
        self.assertEqual(message["message"], "Driver is on the way")
        self.assertEqual(message["ride_id"], 5)


class ConsumerOrderingTests(SimpleTestCase):
    def setUp(self):
        self.consumer = FeedConsumer()
        self.consumer.user_id = 1
        self.consumer.reset_versions()

    def _event(self, version, entity_id=9, entity="ride", ride_id=9, status="pending"):
        return {"type": "ride_or_offer_changed", "entity": entity, "entity_id": entity_id,
                "ride_id": ride_id, "version": version, "status": status}

    def test_older_and_repeated_versions_are_dropped(self):
        self.assertTrue(self.consumer.is_new_version(self._event(2)))
        self.assertFalse(self.consumer.is_new_version(self._event(2)))
        self.assertFalse(self.consumer.is_new_version(self._event(1)))
        self.assertTrue(self.consumer.is_new_version(self._event(3)))
        # Offers and rides are versioned independently
        self.assertTrue(self.consumer.is_new_version(self._event(1, entity="offer")))

    def test_stale_event_does_not_refresh_feed(self):
        self.consumer.send_feed = AsyncMock()

        async_to_sync(self.consumer.ride_or_offer_changed)(self._event(4))
        async_to_sync(self.consumer.ride_or_offer_changed)(self._event(3))

        self.consumer.send_feed.assert_awaited_once()
        self.assertEqual(self.consumer.send_feed.await_args.kwargs["ride_id"], 9)

    def test_finished_ride_is_forgotten(self):
        self.consumer.is_new_version(self._event(1))
        self.consumer.is_new_version(self._event(1, entity="offer", entity_id=30))
        self.consumer.is_new_version(self._event(1, entity_id=10, ride_id=10))

        self.assertTrue(self.consumer.is_new_version(self._event(5, status="completed")))

        self.assertEqual(self.consumer.seen_versions, {"ride:10": 1})
        self.assertEqual(list(self.consumer.keys_by_ride), [10])

    def test_remembered_rides_are_capped(self):
        with patch("realtime.consumers.base.MAX_TRACKED_RIDES", 2):
            for ride_id in (1, 2, 3):
                self.consumer.is_new_version(self._event(1, entity_id=ride_id, ride_id=ride_id))
            # Ride 2 was updated again, so ride 3 is now the oldest
            self.consumer.is_new_version(self._event(2, entity_id=2, ride_id=2))
            self.consumer.is_new_version(self._event(1, entity_id=4, ride_id=4))

        self.assertEqual(set(self.consumer.seen_versions), {"ride:2", "ride:4"})


class SignalWiringTests(SimpleTestCase):
    def test_dispatch_sends_signal_without_channel_layer(self):
        received = []

        def receiver(sender, event, **kwargs):
            received.append(event)

        ride_or_offer_changed.connect(receiver, sender=ChangeEvent, weak=False, dispatch_uid="wiring-test")
        self.addCleanup(ride_or_offer_changed.disconnect, sender=ChangeEvent, dispatch_uid="wiring-test")

        event = ChangeEvent(entity="ride", entity_id=1, ride_id=1, version=1, status="pending")
        with patch("realtime.events.get_channel_layer", return_value=None):
            dispatch(event)

        self.assertEqual(received, [event])
