"""
Process-wide presence registry and connection tracker.

Built lazily from Django settings (see ``presence_gateway.settings``):

    PRESENCE_BACKEND = "redis"        # or "memory"
    PRESENCE_REDIS_SERVERS = ["redis-a:6379", "redis-b:6379"]   # one entry per shard
    PRESENCE_LIVENESS = "local"       # or "redis"
"""

from __future__ import annotations

import logging
from typing import List, Optional

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

from .keys import DEFAULT_PREFIX, KeyScheme
from .liveness import ConnectionTracker, LocalConnectionTracker, RedisConnectionTracker
from .registry import DEFAULT_PAGE_SIZE, PresenceRegistry
from .sharding import ShardRouter
from .stores import InMemoryPresenceStore, PresenceStore, RedisPresenceStore

logger = logging.getLogger(__name__)

_registry: Optional[PresenceRegistry] = None
_tracker: Optional[ConnectionTracker] = None


def _setting(name: str, default):
    return getattr(settings, name, default)


def build_stores() -> List[PresenceStore]:
    backend = _setting("PRESENCE_BACKEND", "redis")
    if backend == "memory":
        return [InMemoryPresenceStore()]
    if backend != "redis":
        raise ImproperlyConfigured(f"Unknown PRESENCE_BACKEND {backend!r}; expected 'redis' or 'memory'")

    servers = list(_setting("PRESENCE_REDIS_SERVERS", []) or [])
    if not servers:
        servers = [_setting("REDIS_URL", "redis://127.0.0.1:6379/0")]
    keys = KeyScheme(prefix=_setting("PRESENCE_KEY_PREFIX", DEFAULT_PREFIX))
    return [RedisPresenceStore.from_address(address, keys=keys) for address in servers]


def build_connection_tracker() -> ConnectionTracker:
    kind = _setting("PRESENCE_LIVENESS", "local")
    if kind == "local":
        return LocalConnectionTracker()
    if kind != "redis":
        raise ImproperlyConfigured(f"Unknown PRESENCE_LIVENESS {kind!r}; expected 'local' or 'redis'")

    url = _setting("PRESENCE_LIVENESS_REDIS_URL", None) or _setting("REDIS_URL", "redis://127.0.0.1:6379/0")
    return RedisConnectionTracker.from_url(
        url,
        instance_id=_setting("INSTANCE_ID", "unknown-instance"),
        ttl_seconds=int(_setting("PRESENCE_CONNECTION_TTL_SECONDS", 120)),
        refresh_seconds=float(_setting("PRESENCE_CONNECTION_REFRESH_SECONDS", 30)),
        key_prefix=_setting("PRESENCE_KEY_PREFIX", DEFAULT_PREFIX),
    )


def get_connection_tracker() -> ConnectionTracker:
    global _tracker
    if _tracker is None:
        _tracker = build_connection_tracker()
        logger.info("Initialized connection tracker: %s", _tracker.__class__.__name__)
    return _tracker


def get_presence_registry() -> PresenceRegistry:
    """
    Returns the process-wide registry, building it on first use.

    The registry uses the connection tracker as its liveness oracle, so the
    consumer that records connects and disconnects is what the registry asks.
    """

    global _registry
    if _registry is None:
        stores = build_stores()
        _registry = PresenceRegistry(
            ShardRouter.from_list(stores),
            get_connection_tracker(),
            page_size=int(_setting("PRESENCE_PAGE_SIZE", DEFAULT_PAGE_SIZE)),
        )
        logger.info("Initialized presence registry with %d shard(s): %s", len(stores), [s.name for s in stores])
    return _registry


def set_presence_registry(registry: PresenceRegistry) -> None:
    """Manually set the registry (useful for testing)."""
    global _registry
    _registry = registry


def set_connection_tracker(tracker: ConnectionTracker) -> None:
    global _tracker
    _tracker = tracker


def reset_presence() -> None:
    """Forget both singletons so the next access rebuilds them from settings."""
    global _registry, _tracker
    _registry = None
    _tracker = None
