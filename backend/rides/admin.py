"""Tells what to show in the Django admin interface for rides app"""

from django.contrib import admin
from .models import Ride, RideOffer, RideSeries


class RideOfferInline(admin.TabularInline):
    model = RideOffer
    extra = 0
    fields = ("driver", "price", "status", "submitted_at", "responded_at")
    readonly_fields = fields
    can_delete = False


@admin.register(Ride)
class RideAdmin(admin.ModelAdmin):
    """Ride admin. Status and driver are read-only: changes go through the state machine."""
    list_display = ['id', 'passenger', 'driver', 'service_kind', 'timing', 'status', 'version', 'requested_at']
    list_filter = ['status', 'timing', 'service_kind', 'requested_at']
    search_fields = ['passenger__username', 'driver__username', 'pickup_address']
    readonly_fields = ['status', 'driver', 'previous_driver', 'version', 'agreed_price',
                       'requested_at', 'accepted_at', 'arrived_at', 'started_at',
                       'completed_at', 'cancelled_at', 'cancelled_by']
    date_hierarchy = 'requested_at'
    inlines = [RideOfferInline]


@admin.register(RideOffer)
class RideOfferAdmin(admin.ModelAdmin):
    list_display = ("id", "ride", "driver", "price", "status", "submitted_at", "responded_at")
    list_filter = ("status",)
    search_fields = ("ride__id", "driver__username")
    readonly_fields = ("status", "version", "responded_at", "rejection_notified_at")


@admin.register(RideSeries)
class RideSeriesAdmin(admin.ModelAdmin):
    list_display = ("id", "passenger", "label", "recurrence_pattern", "created_at")
    search_fields = ("passenger__username", "label")
