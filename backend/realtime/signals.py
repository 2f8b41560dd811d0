"""In-process signal fired after a committed ride or offer change."""

from django.dispatch import Signal

# Sent with `event` (realtime.events.ChangeEvent)
ride_or_offer_changed = Signal()
