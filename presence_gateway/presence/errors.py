"""
Presence error taxonomy.

- StoreError: transport, timeout or script failure. Always surfaced, never retried.
- InvalidArgument: a required field was missing; raised before any store call.

"Not found" is not an exception: registry lookups return ``None`` instead.
"""


class PresenceError(Exception):
    """Base class for presence registry errors."""


class StoreError(PresenceError):
    """The presence store could not complete an operation."""


class InvalidArgument(PresenceError, ValueError):
    """A required argument was missing or empty."""
