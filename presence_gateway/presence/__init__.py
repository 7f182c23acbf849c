"""
Presence app.

This app contains:
- The presence registry: reference-counted membership of identities in channels,
  kept in sharded Redis and updated with atomic server-side scripts
- Connection liveness tracking consulted while registering
- A Channels consumer for `/ws/presence/<channel>/` that announces joins and leaves
"""

from .errors import InvalidArgument, PresenceError, StoreError
from .registry import Departure, Presence, PresenceRegistry

__all__ = [
    "Departure",
    "InvalidArgument",
    "Presence",
    "PresenceError",
    "PresenceRegistry",
    "StoreError",
]
