import pytest
from django.core.exceptions import ImproperlyConfigured
from django.test import override_settings

from presence_gateway.presence import conf
from presence_gateway.presence.liveness import LocalConnectionTracker, RedisConnectionTracker
from presence_gateway.presence.stores import InMemoryPresenceStore, RedisPresenceStore


@pytest.fixture(autouse=True)
def _reset():
    conf.reset_presence()
    yield
    conf.reset_presence()


def test_memory_backend_from_settings():
    registry = conf.get_presence_registry()
    assert isinstance(registry.store_for("lobby"), InMemoryPresenceStore)
    assert isinstance(conf.get_connection_tracker(), LocalConnectionTracker)
    # Singletons.
    assert conf.get_presence_registry() is registry


@override_settings(
    PRESENCE_BACKEND="redis",
    PRESENCE_REDIS_SERVERS=["redis-a:6379", "redis-b:6379"],
    PRESENCE_KEY_PREFIX="px",
)
def test_redis_backend_builds_one_store_per_server():
    stores = conf.build_stores()
    assert [s.name for s in stores] == ["redis-a:6379", "redis-b:6379"]
    assert all(isinstance(s, RedisPresenceStore) for s in stores)
    assert stores[0]._keys.prefix == "px"


@override_settings(PRESENCE_BACKEND="redis", PRESENCE_REDIS_SERVERS=[], REDIS_URL="redis://cache:6379/1")
def test_redis_backend_falls_back_to_redis_url():
    assert [s.name for s in conf.build_stores()] == ["redis://cache:6379/1"]


@override_settings(PRESENCE_BACKEND="cassandra")
def test_unknown_backend():
    with pytest.raises(ImproperlyConfigured):
        conf.build_stores()


@override_settings(
    PRESENCE_LIVENESS="redis",
    PRESENCE_LIVENESS_REDIS_URL="redis://cache:6379/3",
    INSTANCE_ID="i-42",
    PRESENCE_CONNECTION_REFRESH_SECONDS=10,
)
def test_redis_liveness_from_settings():
    tracker = conf.build_connection_tracker()
    assert isinstance(tracker, RedisConnectionTracker)
    assert tracker.refresh_interval == 10
    assert tracker.connection_key("c1") == "presence:conn:c1"


@override_settings(PRESENCE_LIVENESS="gossip")
def test_unknown_liveness():
    with pytest.raises(ImproperlyConfigured):
        conf.build_connection_tracker()


def test_set_presence_registry(registry):
    conf.set_presence_registry(registry)
    assert conf.get_presence_registry() is registry
