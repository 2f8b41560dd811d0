from django.contrib import admin
from drivers.models import DriverPresence


@admin.register(DriverPresence)
class DriverPresenceAdmin(admin.ModelAdmin):
    """Admin panel for driver presence rows"""

    list_display = [
        "user",
        "vehicle_number",
        "is_online",
        "current_latitude",
        "current_longitude",
        "active_ride",
        "last_location_update",
    ]

    list_filter = [
        "is_online",
        "last_location_update",
    ]

    search_fields = [
        "user__username",
        "vehicle_number",
    ]

    # Maintained by the active-ride guard
    readonly_fields = [
        "active_ride",
        "version",
        "last_location_update",
    ]

    ordering = ("user__username",)
