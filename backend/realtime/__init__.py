"""
Realtime app: WebSocket delivery of ride and offer changes.

Key Components:
    - events.py: ChangeEvent construction and on-commit dispatch
    - subscriptions.py: in-process subscription API
    - consumers/: WebSocket consumers (feed, ride tracking)
    - notifications.py: user-facing notification messages
"""
