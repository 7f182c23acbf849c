"""
Pytest configuration and fixtures for presence gateway tests.

Django is configured in-process with the in-memory channel layer and the
in-memory presence store, so no Redis server is needed.
"""

import django
import pytest
from django.conf import settings

if not settings.configured:
    settings.configure(
        DEBUG=True,
        SECRET_KEY="test-secret-key",
        ALLOWED_HOSTS=["testserver", "localhost"],
        INSTALLED_APPS=[
            "channels",
            "presence_gateway.presence.apps.PresenceConfig",
        ],
        ROOT_URLCONF="presence_gateway.urls",
        DATABASES={},
        USE_TZ=True,
        CHANNEL_LAYERS={"default": {"BACKEND": "channels.layers.InMemoryChannelLayer"}},
        PRESENCE_BACKEND="memory",
        PRESENCE_LIVENESS="local",
    )
    django.setup()

from presence_gateway.presence.liveness import LocalConnectionTracker  # noqa: E402
from presence_gateway.presence.registry import PresenceRegistry  # noqa: E402
from presence_gateway.presence.sharding import ShardRouter  # noqa: E402
from presence_gateway.presence.stores import InMemoryPresenceStore  # noqa: E402


@pytest.fixture
def store():
    return InMemoryPresenceStore()


@pytest.fixture
def tracker():
    return LocalConnectionTracker()


@pytest.fixture
def registry(store, tracker):
    # Small pages so roster scans always span several round trips.
    return PresenceRegistry(ShardRouter({"node0": store}), tracker, page_size=2)
