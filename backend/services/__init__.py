"""
Services package - Business logic layer.

This package contains all business logic services that operate on Django models
but are decoupled from the HTTP/WebSocket layer.

Modules:
    - ride_management: Ride lifecycle, state machine and active-ride guard
    - offers: Bid ledger
    - feed: Feed categorization for drivers and passengers
    - matching: Driver/ride proximity lookups
"""
