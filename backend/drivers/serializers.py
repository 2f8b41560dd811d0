from rest_framework import serializers
from django.contrib.auth import get_user_model

from drivers.models import DriverPresence

User = get_user_model()


class DriverBasicSerializer(serializers.ModelSerializer):
    """Driver representation used inside ride and offer responses."""
    vehicle_number = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = ['id', 'username', 'phone_number', 'vehicle_number']

    def get_vehicle_number(self, obj):
        presence = getattr(obj, "driver_presence", None)
        return presence.vehicle_number if presence else None


class DriverPresenceSerializer(serializers.ModelSerializer):
    class Meta:
        model = DriverPresence
        fields = [
            'is_online', 'vehicle_number', 'current_latitude', 'current_longitude',
            'last_location_update', 'active_ride', 'version',
        ]
        read_only_fields = fields


class DriverPresenceUpdateSerializer(serializers.Serializer):
    """
    Body of PUT /api/driver/presence/.

    `version` is the presence version the client last saw; the update is
    refused if the row has moved on since.
    """
    version = serializers.IntegerField(required=False, min_value=1)
    is_online = serializers.BooleanField(required=False)
    vehicle_number = serializers.CharField(required=False, allow_blank=True, max_length=20)
    latitude = serializers.DecimalField(max_digits=9, decimal_places=6, min_value=-90, max_value=90, required=False)
    longitude = serializers.DecimalField(max_digits=9, decimal_places=6, min_value=-180, max_value=180, required=False)

    def validate(self, attrs):
        if ("latitude" in attrs) != ("longitude" in attrs):
            raise serializers.ValidationError("latitude and longitude must be sent together.")
        return attrs


class OfferSubmitSerializer(serializers.Serializer):
    price = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0)
    message = serializers.CharField(required=False, allow_blank=True, default="", max_length=500)
