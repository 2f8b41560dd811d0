"""
Offer ledger service.

This module handles:
    - Drivers submitting and withdrawing bids
    - Passengers accepting one bid (rejecting the rest)
    - Expiring bids on cancelled rides and stale bids
    - Re-sending rejection notices that never went out
"""

from .ledger import (
    accept_offer,
    expire_open_offers,
    expire_stale_offers,
    list_offers_for_ride,
    resend_missed_rejection_notices,
    settle_accepted_offer,
    submit_offer,
    withdraw_offer,
)

__all__ = [
    "submit_offer",
    "withdraw_offer",
    "accept_offer",
    "list_offers_for_ride",
    "settle_accepted_offer",
    "expire_open_offers",
    "expire_stale_offers",
    "resend_missed_rejection_notices",
]
