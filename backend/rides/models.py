from django.db import models
from django.db.models import Q
from django.conf import settings


class RideStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    ACCEPTED = 'accepted', 'Accepted'
    DRIVER_EN_ROUTE = 'driver_en_route', 'Driver en route'
    DRIVER_ARRIVED = 'driver_arrived', 'Driver arrived'
    IN_PROGRESS = 'in_progress', 'In progress'
    COMPLETED = 'completed', 'Completed'
    CANCELLED = 'cancelled', 'Cancelled'


class OfferStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    ACCEPTED = 'accepted', 'Accepted'
    REJECTED = 'rejected', 'Rejected'
    WITHDRAWN = 'withdrawn', 'Withdrawn'
    EXPIRED = 'expired', 'Expired'


class RideTiming(models.TextChoices):
    INSTANT = 'instant', 'Instant'
    SCHEDULED_SINGLE = 'scheduled_single', 'Scheduled (single)'
    SCHEDULED_RECURRING = 'scheduled_recurring', 'Scheduled (recurring)'


class ServiceKind(models.TextChoices):
    TAXI = 'taxi', 'Taxi'
    COURIER = 'courier', 'Courier'
    ERRANDS = 'errands', 'Errands'
    SCHOOL_RUN = 'school_run', 'School run'


# Driver is working the ride (guard slot held for instant rides)
EXECUTION_STATUSES = (
    RideStatus.ACCEPTED,
    RideStatus.DRIVER_EN_ROUTE,
    RideStatus.DRIVER_ARRIVED,
    RideStatus.IN_PROGRESS,
)

# A driver is recorded on the ride in exactly these statuses
ASSIGNED_STATUSES = EXECUTION_STATUSES + (RideStatus.COMPLETED,)

TERMINAL_STATUSES = (RideStatus.COMPLETED, RideStatus.CANCELLED)

LEGACY_STATUS_ALIASES = {
    'offer_accepted': RideStatus.ACCEPTED,
    'driver_on_way': RideStatus.DRIVER_EN_ROUTE,
    'driver_on_the_way': RideStatus.DRIVER_EN_ROUTE,
    'trip_started': RideStatus.IN_PROGRESS,
    'trip_completed': RideStatus.COMPLETED,
    'cancelled_user': RideStatus.CANCELLED,
    'cancelled_driver': RideStatus.CANCELLED,
}


def normalize_ride_status(value) -> RideStatus:
    """
    Map a status string (canonical or legacy synonym) to a RideStatus.

    Raises ValueError for anything else.
    """
    if isinstance(value, RideStatus):
        return value
    key = str(value).strip().lower()
    if key in LEGACY_STATUS_ALIASES:
        return LEGACY_STATUS_ALIASES[key]
    return RideStatus(key)


class RideSeries(models.Model):
    """A recurring booking; each occurrence is its own Ride linked here."""

    PATTERN_CHOICES = [
        ('daily', 'Daily'),
        ('weekdays', 'Weekdays'),
        ('weekends', 'Weekends'),
        ('weekly', 'Weekly'),
        ('custom', 'Custom'),
    ]

    passenger = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='ride_series'
    )
    label = models.CharField(max_length=120, blank=True)
    recurrence_pattern = models.CharField(max_length=20, choices=PATTERN_CHOICES, default='weekly')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'ride_series'
        ordering = ['-created_at']

    def __str__(self):
        return f"Series #{self.id} ({self.recurrence_pattern}) - {self.passenger}"


class Ride(models.Model):
    """
    A passenger's request for transport or a task.

    `status` and `driver` are only ever changed through the ride state machine
    (services.ride_management.state_machine), which writes conditionally on the
    expected current status and bumps `version`.
    """

    passenger = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='rides'
    )

    driver = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='assigned_rides'
    )

    # Driver released by a cancellation (driver itself is cleared)
    previous_driver = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )

    service_kind = models.CharField(max_length=20, choices=ServiceKind.choices, default=ServiceKind.TAXI)
    timing = models.CharField(max_length=20, choices=RideTiming.choices, default=RideTiming.INSTANT)

    # Pickup location
    pickup_latitude = models.DecimalField(max_digits=9, decimal_places=6)
    pickup_longitude = models.DecimalField(max_digits=9, decimal_places=6)
    pickup_address = models.TextField(blank=True, default='')

    # Dropoff location
    dropoff_latitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)
    dropoff_longitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)
    dropoff_address = models.TextField(blank=True, default='')

    number_of_passengers = models.IntegerField(default=1)

    estimated_price = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    agreed_price = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)

    scheduled_for = models.DateTimeField(null=True, blank=True)
    match_radius = models.PositiveIntegerField(default=5000)  # metres, instant rides only

    series = models.ForeignKey(
        RideSeries,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='rides'
    )
    batch_id = models.UUIDField(null=True, blank=True, db_index=True)

    status = models.CharField(max_length=20, choices=RideStatus.choices, default=RideStatus.PENDING)
    status_changed_at = models.DateTimeField(auto_now_add=True)
    version = models.PositiveIntegerField(default=1)

    # Timestamps
    requested_at = models.DateTimeField(auto_now_add=True)
    last_offer_at = models.DateTimeField(null=True, blank=True)
    accepted_at = models.DateTimeField(null=True, blank=True)
    arrived_at = models.DateTimeField(null=True, blank=True)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    cancelled_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )
    cancellation_reason = models.TextField(blank=True, default='')

    class Meta:
        db_table = 'rides'
        ordering = ['-requested_at']
        indexes = [
            models.Index(fields=['status', 'timing'], name='ride_status_timing_idx'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=(
                    Q(driver__isnull=False, status__in=ASSIGNED_STATUSES)
                    | Q(driver__isnull=True, status__in=[RideStatus.PENDING, RideStatus.CANCELLED])
                ),
                name='ride_driver_matches_status',
            ),
            models.UniqueConstraint(
                fields=['driver'],
                condition=Q(timing=RideTiming.INSTANT, status__in=EXECUTION_STATUSES),
                name='one_active_instant_ride_per_driver',
            ),
        ]

    @property
    def is_instant(self) -> bool:
        return self.timing == RideTiming.INSTANT

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def price(self):
        """Agreed fare once accepted, otherwise the passenger's estimate."""
        return self.agreed_price if self.agreed_price is not None else self.estimated_price

    def __str__(self):
        return f"Ride #{self.id} - {self.passenger} - {self.status}"


class RideOffer(models.Model):
    """A driver's bid on a PENDING ride."""

    ride = models.ForeignKey(
        Ride,
        on_delete=models.CASCADE,
        related_name='offers'
    )

    driver = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='ride_offers',
        limit_choices_to={'role': 'driver'}
    )

    price = models.DecimalField(max_digits=10, decimal_places=2)
    message = models.TextField(blank=True, default='')

    status = models.CharField(max_length=20, choices=OfferStatus.choices, default=OfferStatus.PENDING)
    version = models.PositiveIntegerField(default=1)

    submitted_at = models.DateTimeField(auto_now_add=True)
    responded_at = models.DateTimeField(null=True, blank=True)
    rejection_notified_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'ride_offers'
        ordering = ['submitted_at', 'id']
        constraints = [
            models.UniqueConstraint(
                fields=['ride', 'driver'],
                condition=Q(status=OfferStatus.PENDING),
                name='one_pending_offer_per_driver_ride',
            ),
            models.UniqueConstraint(
                fields=['ride'],
                condition=Q(status=OfferStatus.ACCEPTED),
                name='one_accepted_offer_per_ride',
            ),
        ]

    def __str__(self):
        return f"Offer #{self.id} - Ride {self.ride_id} -> Driver {self.driver_id} ({self.status})"
