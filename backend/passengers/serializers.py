from rest_framework import serializers
from django.contrib.auth import get_user_model

from rides.models import RideSeries, RideTiming, ServiceKind

User = get_user_model()


class PassengerBasicSerializer(serializers.ModelSerializer):
    """
    Basic passenger representation used inside ride responses.
    """
    class Meta:
        model = User
        fields = ['id', 'username', 'phone_number']


class RideRequestCreateSerializer(serializers.Serializer):
    """
    Validates a passenger's ride request.

    Expected body:
    {
        "pickup_latitude": <decimal>, "pickup_longitude": <decimal>,
        "pickup_address": "...", "dropoff_address": "...",
        "service_kind": "taxi", "timing": "instant",
        "scheduled_for": <datetime, scheduled rides>,
        "occurrences": [<datetime>, ...] (recurring rides),
        "estimated_price": <decimal>
    }
    """

    pickup_latitude = serializers.DecimalField(max_digits=9, decimal_places=6, min_value=-90, max_value=90)
    pickup_longitude = serializers.DecimalField(max_digits=9, decimal_places=6, min_value=-180, max_value=180)
    pickup_address = serializers.CharField(required=False, allow_blank=True, default="")

    dropoff_latitude = serializers.DecimalField(
        max_digits=9, decimal_places=6, min_value=-90, max_value=90, required=False, allow_null=True
    )
    dropoff_longitude = serializers.DecimalField(
        max_digits=9, decimal_places=6, min_value=-180, max_value=180, required=False, allow_null=True
    )
    dropoff_address = serializers.CharField(required=False, allow_blank=True, default="")

    service_kind = serializers.ChoiceField(choices=ServiceKind.choices, default=ServiceKind.TAXI)
    timing = serializers.ChoiceField(choices=RideTiming.choices, default=RideTiming.INSTANT)
    scheduled_for = serializers.DateTimeField(required=False, allow_null=True)
    occurrences = serializers.ListField(child=serializers.DateTimeField(), required=False, allow_empty=False)
    recurrence_pattern = serializers.ChoiceField(
        choices=RideSeries.PATTERN_CHOICES, required=False, default='weekly'
    )
    series_label = serializers.CharField(required=False, allow_blank=True, default="")

    estimated_price = serializers.DecimalField(
        max_digits=10, decimal_places=2, min_value=0, required=False, allow_null=True
    )
    number_of_passengers = serializers.IntegerField(min_value=1, max_value=8, default=1)
    match_radius = serializers.IntegerField(min_value=100, max_value=50000, required=False)

    def validate(self, attrs):
        timing = attrs.get("timing")
        if timing == RideTiming.SCHEDULED_RECURRING:
            if not attrs.get("occurrences"):
                raise serializers.ValidationError({"occurrences": "Recurring rides need at least one occurrence."})
        elif timing == RideTiming.SCHEDULED_SINGLE:
            if not attrs.get("scheduled_for"):
                raise serializers.ValidationError({"scheduled_for": "Scheduled rides need a pickup time."})
        elif attrs.get("scheduled_for") or attrs.get("occurrences"):
            raise serializers.ValidationError({"timing": "Instant rides cannot be scheduled."})
        return attrs


class RideCancelSerializer(serializers.Serializer):
    """Serializer for ride cancellation"""
    reason = serializers.CharField(required=False, allow_blank=True, default="")
