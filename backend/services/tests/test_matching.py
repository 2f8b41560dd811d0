from decimal import Decimal

from django.test import SimpleTestCase, TestCase

from common.utils import bounding_box, wrap_longitude
from services.matching import find_nearby_drivers, open_rides_near
from .helpers import RideFixturesMixin

# Either side of the antimeridian, about 2.2 km apart
EAST_OF_DATELINE = (Decimal("0.000000"), Decimal("179.990000"))
WEST_OF_DATELINE = (Decimal("0.000000"), Decimal("-179.990000"))


class BoundingBoxTests(SimpleTestCase):
    def test_box_contains_the_circle(self):
        min_lat, max_lat, min_lon, max_lon = bounding_box(28.6139, 77.209, 5000)

        self.assertLess(min_lat, 28.6139)
        self.assertGreater(max_lat, 28.6139)
        self.assertLess(min_lon, max_lon)

    def test_box_across_the_antimeridian_wraps(self):
        _, _, min_lon, max_lon = bounding_box(0, 179.99, 5000)

        self.assertGreater(min_lon, max_lon)
        self.assertLess(min_lon, 179.99)
        self.assertLess(max_lon, -179.9)

    def test_box_touching_a_pole_spans_every_longitude(self):
        min_lat, max_lat, min_lon, max_lon = bounding_box(89.99, 10.0, 5000)

        self.assertEqual(max_lat, 90.0)
        self.assertLess(min_lat, 89.99)
        self.assertEqual((min_lon, max_lon), (-180.0, 180.0))

    def test_wrap_longitude(self):
        self.assertEqual(wrap_longitude(190.0), -170.0)
        self.assertEqual(wrap_longitude(-190.0), 170.0)
        self.assertEqual(wrap_longitude(45.0), 45.0)


class NearbyDriverTests(RideFixturesMixin, TestCase):
    def setUp(self):
        self.passenger = self.make_passenger()

    def test_drivers_across_the_antimeridian_are_found(self):
        ride = self.make_ride(
            self.passenger, pickup_latitude=EAST_OF_DATELINE[0], pickup_longitude=EAST_OF_DATELINE[1]
        )
        across = self.make_driver("driver_across", latitude=WEST_OF_DATELINE[0], longitude=WEST_OF_DATELINE[1])
        far = self.make_driver("driver_far", latitude=Decimal("0.000000"), longitude=Decimal("170.000000"))

        found = [presence.user_id for presence, _ in find_nearby_drivers(ride)]

        self.assertIn(across.id, found)
        self.assertNotIn(far.id, found)

    def test_open_rides_across_the_antimeridian_are_found(self):
        ride = self.make_ride(
            self.passenger, pickup_latitude=EAST_OF_DATELINE[0], pickup_longitude=EAST_OF_DATELINE[1]
        )
        elsewhere = self.make_ride(self.make_passenger("elsewhere"))

        nearby = set(open_rides_near(*WEST_OF_DATELINE).values_list("id", flat=True))

        self.assertIn(ride.id, nearby)
        self.assertNotIn(elsewhere.id, nearby)

    def test_unlocated_online_drivers_are_included_for_instant_rides(self):
        ride = self.make_ride(self.passenger)
        near = self.make_driver("driver_near")
        nowhere = self.make_driver("driver_nowhere", latitude=None, longitude=None)
        offline = self.make_driver("driver_offline", latitude=None, longitude=None, online=False)

        pairs = find_nearby_drivers(ride)

        self.assertEqual([presence.user_id for presence, _ in pairs], [near.id, nowhere.id])
        self.assertIsNone(pairs[-1][1])
        self.assertNotIn(offline.id, [presence.user_id for presence, _ in pairs])
