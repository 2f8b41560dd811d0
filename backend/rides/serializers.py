from rest_framework import serializers

from .models import Ride, RideOffer, normalize_ride_status

from passengers.serializers import PassengerBasicSerializer
from drivers.serializers import DriverBasicSerializer


class RideSerializer(serializers.ModelSerializer):
    """Serializer for rides"""
    passenger = PassengerBasicSerializer(read_only=True)
    driver = DriverBasicSerializer(read_only=True)
    price = serializers.DecimalField(max_digits=10, decimal_places=2, read_only=True, allow_null=True)

    class Meta:
        model = Ride
        fields = ['id', 'passenger', 'driver', 'service_kind', 'timing', 'status', 'version',
                  'pickup_latitude', 'pickup_longitude', 'pickup_address',
                  'dropoff_latitude', 'dropoff_longitude', 'dropoff_address',
                  'number_of_passengers', 'estimated_price', 'agreed_price', 'price',
                  'scheduled_for', 'match_radius', 'series', 'batch_id',
                  'requested_at', 'accepted_at', 'arrived_at', 'started_at',
                  'completed_at', 'cancelled_at', 'cancellation_reason']
        read_only_fields = fields


class RideOfferSerializer(serializers.ModelSerializer):
    """Serializer for offers (bids)"""
    driver = DriverBasicSerializer(read_only=True)

    class Meta:
        model = RideOffer
        fields = ['id', 'ride', 'driver', 'price', 'message', 'status', 'version',
                  'submitted_at', 'responded_at']
        read_only_fields = fields


class RideTransitionSerializer(serializers.Serializer):
    """Body of POST /api/rides/<id>/transition/; legacy status names are accepted."""
    expected_status = serializers.CharField()
    new_status = serializers.CharField()
    reason = serializers.CharField(required=False, allow_blank=True, default="")

    def _status(self, value):
        try:
            return normalize_ride_status(value)
        except ValueError:
            raise serializers.ValidationError(f"Unknown ride status '{value}'.")

    def validate_expected_status(self, value):
        return self._status(value)

    def validate_new_status(self, value):
        return self._status(value)


class FeedEntrySerializer(serializers.Serializer):
    """A feed line: one ride, or a recurring series / bulk booking shown together."""

    def to_representation(self, entry):
        return {
            "kind": "group" if entry.is_group else "single",
            "bucket": entry.bucket.value,
            "group_key": entry.group_key,
            "ride_count": len(entry.rides),
            "total_price": str(entry.total_price),
            "rides": RideSerializer(entry.rides, many=True, context=self.context).data,
        }


def serialize_feed(feed, context=None):
    """{bucket: [entry, ...]} -> JSON-ready dict keyed by bucket name."""
    return {
        bucket.value: FeedEntrySerializer(entries, many=True, context=context or {}).data
        for bucket, entries in feed.items()
    }
