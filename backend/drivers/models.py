from django.db import models
from django.utils import timezone
from django.conf import settings

User = settings.AUTH_USER_MODEL


class DriverPresence(models.Model):
    """
    Driver availability and last known location.

    Written with conditional updates on `version` (see drivers.services).
    `active_ride` is a derived index kept by the active-ride guard; the ride
    table stays authoritative and the index can be rebuilt from it.
    """

    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='driver_presence')

    vehicle_number = models.CharField(max_length=20, blank=True, default='')

    is_online = models.BooleanField(default=False)
    current_latitude = models.DecimalField(max_digits=10, decimal_places=6, null=True, blank=True)
    current_longitude = models.DecimalField(max_digits=10, decimal_places=6, null=True, blank=True)
    last_location_update = models.DateTimeField(default=timezone.now)

    active_ride = models.ForeignKey(
        'rides.Ride',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )

    version = models.PositiveIntegerField(default=1)

    class Meta:
        db_table = 'driver_presence'

    @property
    def has_location(self) -> bool:
        return self.current_latitude is not None and self.current_longitude is not None

    def __str__(self):
        state = "online" if self.is_online else "offline"
        return f"{self.user} - {state}"
