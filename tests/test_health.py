import json

import pytest
from django.test import RequestFactory

from presence_gateway.health import health, presence_health
from presence_gateway.presence import conf
from presence_gateway.presence.errors import StoreError
from presence_gateway.presence.registry import PresenceRegistry
from presence_gateway.presence.sharding import ShardRouter
from presence_gateway.presence.stores import InMemoryPresenceStore


class UnreachableStore(InMemoryPresenceStore):
    async def ping(self):
        raise StoreError("connection refused")


@pytest.fixture(autouse=True)
def _reset():
    conf.reset_presence()
    yield
    conf.reset_presence()


def test_health_is_cheap():
    response = health(RequestFactory().get("/health/"))
    assert response.status_code == 200
    assert json.loads(response.content)["status"] == "ok"


@pytest.mark.asyncio
async def test_presence_health_ok(registry):
    conf.set_presence_registry(registry)
    response = await presence_health(RequestFactory().get("/health/presence/"))
    assert response.status_code == 200
    assert json.loads(response.content)["shards"]["node0"]["status"] == "healthy"


@pytest.mark.asyncio
async def test_presence_health_unavailable(tracker):
    conf.set_presence_registry(PresenceRegistry(ShardRouter({"node0": UnreachableStore()}), tracker))
    response = await presence_health(RequestFactory().get("/health/presence/"))
    assert response.status_code == 503
