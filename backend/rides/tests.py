from datetime import timedelta
from unittest.mock import patch

from django.core.management import call_command
from django.test import SimpleTestCase, TestCase
from django.utils import timezone
from rest_framework.test import APIClient

from services.tests.helpers import RideFixturesMixin
from .models import OfferStatus, Ride, RideOffer, RideStatus, RideTiming, normalize_ride_status


class RideStatusAliasTests(SimpleTestCase):
	def test_legacy_names_map_to_current_statuses(self):
		self.assertEqual(normalize_ride_status('offer_accepted'), RideStatus.ACCEPTED)
		self.assertEqual(normalize_ride_status('driver_on_way'), RideStatus.DRIVER_EN_ROUTE)
		self.assertEqual(normalize_ride_status('trip_started'), RideStatus.IN_PROGRESS)
		self.assertEqual(normalize_ride_status('trip_completed'), RideStatus.COMPLETED)
		self.assertEqual(normalize_ride_status('in_progress'), RideStatus.IN_PROGRESS)

	def test_unknown_status(self):
		with self.assertRaises(ValueError):
			normalize_ride_status('teleported')


class RideOfferFlowTests(RideFixturesMixin, TestCase):
	def setUp(self):
		self.passenger_client = APIClient()
		self.driver_client = APIClient()
		self.rival_client = APIClient()

		self.passenger = self.make_passenger()
		self.driver_one = self.make_driver('driver_one')
		self.driver_two = self.make_driver('driver_two')

		self.passenger_client.force_authenticate(self.passenger)
		self.driver_client.force_authenticate(self.driver_one)
		self.rival_client.force_authenticate(self.driver_two)

	def _request_ride(self, **extra):
		body = {
			'pickup_latitude': '28.613900',
			'pickup_longitude': '77.209000',
			'pickup_address': 'Connaught Place',
			'dropoff_address': 'India Gate',
			'estimated_price': '150.00',
		}
		body.update(extra)
		return self.passenger_client.post('/api/passenger/rides/', body, format='json')

	def _bid(self, client, ride_id, price):
		return client.post(f'/api/driver/rides/{ride_id}/offers/', {'price': price}, format='json')

	def test_request_bid_accept_and_drive(self):
		response = self._request_ride()
		self.assertEqual(response.status_code, 201)
		ride_id = response.data['ride']['id']
		self.assertEqual(response.data['ride']['status'], 'pending')

		first = self._bid(self.driver_client, ride_id, '140.00')
		second = self._bid(self.rival_client, ride_id, '135.00')
		self.assertEqual(first.status_code, 201)
		self.assertEqual(second.status_code, 201)

		offers = self.passenger_client.get(f'/api/passenger/rides/{ride_id}/offers/')
		self.assertEqual([o['price'] for o in offers.data['offers']], ['135.00', '140.00'])

		with patch('realtime.notifications.notify'):
			with self.captureOnCommitCallbacks(execute=True):
				accepted = self.passenger_client.post(f"/api/passenger/offers/{first.data['offer']['id']}/accept/")
		self.assertEqual(accepted.status_code, 200)
		self.assertEqual(accepted.data['ride']['status'], 'accepted')
		self.assertEqual(accepted.data['ride']['driver']['id'], self.driver_one.id)
		self.assertEqual(accepted.data['ride']['agreed_price'], '140.00')
		self.assertEqual(RideOffer.objects.get(pk=second.data['offer']['id']).status, OfferStatus.REJECTED)

		response = self.driver_client.post(
			f'/api/rides/{ride_id}/transition/',
			{'expected_status': 'accepted', 'new_status': 'driver_en_route'},
			format='json',
		)
		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['ride']['status'], 'driver_en_route')
		self.assertEqual(response.data['ride']['version'], 3)

	def test_second_acceptance_is_a_conflict(self):
		ride_id = self._request_ride().data['ride']['id']
		first = self._bid(self.driver_client, ride_id, '140.00').data['offer']['id']
		second = self._bid(self.rival_client, ride_id, '130.00').data['offer']['id']

		self.passenger_client.post(f'/api/passenger/offers/{first}/accept/')
		response = self.passenger_client.post(f'/api/passenger/offers/{second}/accept/')

		self.assertEqual(response.status_code, 409)
		self.assertEqual(response.data['error'], 'offer_conflict')
		self.assertEqual(Ride.objects.get(pk=ride_id).driver_id, self.driver_one.id)

	def test_stale_transition_answers_409(self):
		ride_id = self._request_ride().data['ride']['id']
		offer_id = self._bid(self.driver_client, ride_id, '140.00').data['offer']['id']
		self.passenger_client.post(f'/api/passenger/offers/{offer_id}/accept/')
		self.passenger_client.post(f'/api/passenger/rides/{ride_id}/cancel/', {'reason': 'Found another way'})

		response = self.driver_client.post(
			f'/api/rides/{ride_id}/transition/',
			{'expected_status': 'accepted', 'new_status': 'driver_en_route'},
			format='json',
		)

		self.assertEqual(response.status_code, 409)
		self.assertEqual(response.data['error'], 'stale_state')
		self.assertTrue(response.data['retryable'])

	def test_illegal_and_unknown_transitions_answer_400(self):
		ride_id = self._request_ride().data['ride']['id']
		url = f'/api/rides/{ride_id}/transition/'

		illegal = self.passenger_client.post(
			url, {'expected_status': 'pending', 'new_status': 'completed'}, format='json'
		)
		unknown = self.passenger_client.post(
			url, {'expected_status': 'pending', 'new_status': 'teleported'}, format='json'
		)

		self.assertEqual(illegal.status_code, 400)
		self.assertEqual(illegal.data['error'], 'invalid_transition')
		self.assertEqual(unknown.status_code, 400)
		self.assertIn('new_status', unknown.data)

	def test_legacy_names_on_the_transition_endpoint(self):
		ride_id = self._request_ride().data['ride']['id']
		offer_id = self._bid(self.driver_client, ride_id, '140.00').data['offer']['id']
		self.passenger_client.post(f'/api/passenger/offers/{offer_id}/accept/')

		response = self.driver_client.post(
			f'/api/rides/{ride_id}/transition/',
			{'expected_status': 'offer_accepted', 'new_status': 'driver_on_way'},
			format='json',
		)
		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['ride']['status'], 'driver_en_route')

	def test_only_passengers_request_rides(self):
		response = self.driver_client.post('/api/passenger/rides/', {
			'pickup_latitude': '28.613900',
			'pickup_longitude': '77.209000',
		}, format='json')
		self.assertEqual(response.status_code, 403)

	def test_ride_detail_visibility(self):
		ride_id = self._request_ride().data['ride']['id']
		stranger = APIClient()
		stranger.force_authenticate(self.make_passenger('stranger'))

		self.assertEqual(self.passenger_client.get(f'/api/rides/{ride_id}/').status_code, 200)
		self.assertEqual(self.driver_client.get(f'/api/rides/{ride_id}/').status_code, 200)
		response = stranger.get(f'/api/rides/{ride_id}/')
		self.assertEqual(response.status_code, 403)
		self.assertEqual(response.data['error'], 'not_ride_participant')
		self.assertEqual(self.passenger_client.get('/api/rides/999999/').status_code, 404)


class ScheduledBookingApiTests(RideFixturesMixin, TestCase):
	def setUp(self):
		self.client = APIClient()
		self.passenger = self.make_passenger()
		self.client.force_authenticate(self.passenger)
		self.base = {
			'pickup_latitude': '28.613900',
			'pickup_longitude': '77.209000',
			'service_kind': 'school_run',
			'estimated_price': '200.00',
		}

	def test_recurring_booking_creates_a_series(self):
		start = timezone.now() + timedelta(days=1)
		occurrences = [(start + timedelta(days=7 * i)).isoformat() for i in range(3)]

		response = self.client.post('/api/passenger/rides/', {
			**self.base,
			'timing': 'scheduled_recurring',
			'occurrences': occurrences,
			'series_label': 'Morning school run',
		}, format='json')

		self.assertEqual(response.status_code, 201)
		self.assertEqual(len(response.data['rides']), 3)
		rides = Ride.objects.filter(series_id=response.data['series_id'])
		self.assertEqual(rides.count(), 3)
		self.assertTrue(all(r.timing == RideTiming.SCHEDULED_RECURRING for r in rides))

		feed = self.client.get('/api/rides/feed/').data['feed']
		self.assertEqual(len(feed['available']), 1)
		self.assertEqual(feed['available'][0]['kind'], 'group')
		self.assertEqual(feed['available'][0]['ride_count'], 3)
		self.assertEqual(feed['available'][0]['total_price'], '600.00')

	def test_scheduled_ride_needs_a_time(self):
		response = self.client.post('/api/passenger/rides/', {**self.base, 'timing': 'scheduled_single'}, format='json')
		self.assertEqual(response.status_code, 400)
		self.assertIn('scheduled_for', response.data)

	def test_instant_ride_cannot_carry_a_time(self):
		response = self.client.post('/api/passenger/rides/', {
			**self.base,
			'scheduled_for': (timezone.now() + timedelta(hours=2)).isoformat(),
		}, format='json')
		self.assertEqual(response.status_code, 400)


class RideFeedApiTests(RideFixturesMixin, TestCase):
	def setUp(self):
		self.client = APIClient()
		self.passenger = self.make_passenger()
		self.driver = self.make_driver('driver_one')
		self.ride = self.make_ride(self.passenger)

	def test_feed_has_every_bucket(self):
		self.client.force_authenticate(self.driver)
		response = self.client.get('/api/rides/feed/')

		self.assertEqual(response.status_code, 200)
		feed = response.data['feed']
		self.assertEqual(set(feed), {'available', 'bid_pending', 'active', 'completed'})
		self.assertEqual([e['rides'][0]['id'] for e in feed['available']], [self.ride.id])
		self.assertEqual(feed['available'][0]['kind'], 'single')

	def test_feed_moves_ride_to_bid_pending(self):
		self.bid(self.ride, self.driver)
		self.client.force_authenticate(self.passenger)

		feed = self.client.get('/api/rides/feed/').data['feed']
		self.assertEqual(feed['available'], [])
		self.assertEqual(feed['bid_pending'][0]['rides'][0]['id'], self.ride.id)


class OfferTimeoutCommandTests(RideFixturesMixin, TestCase):
	def setUp(self):
		self.passenger = self.make_passenger()
		self.driver = self.make_driver('driver_one')
		self.ride = self.make_ride(self.passenger)
		self.offer = self.bid(self.ride, self.driver)

	def test_command_expires_old_offers(self):
		RideOffer.objects.filter(pk=self.offer.pk).update(submitted_at=timezone.now() - timedelta(minutes=30))

		call_command('process_offer_timeouts', '--timeout', '600')

		self.offer.refresh_from_db()
		self.assertEqual(self.offer.status, OfferStatus.EXPIRED)
		self.assertEqual(Ride.objects.get(pk=self.ride.pk).status, RideStatus.PENDING)

	def test_command_leaves_fresh_offers(self):
		call_command('process_offer_timeouts', '--timeout', '600')

		self.offer.refresh_from_db()
		self.assertEqual(self.offer.status, OfferStatus.PENDING)
