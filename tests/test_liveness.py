from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from presence_gateway.presence.errors import StoreError
from presence_gateway.presence.liveness import LocalConnectionTracker, RedisConnectionTracker


@pytest.mark.asyncio
async def test_local_tracker_lifecycle():
    tracker = LocalConnectionTracker()
    assert tracker.refresh_interval is None
    assert await tracker.is_alive("c1") is False

    await tracker.connected("c1")
    assert await tracker.is_alive("c1") is True
    assert await tracker.refresh("c1") is True

    await tracker.disconnected("c1")
    assert await tracker.is_alive("c1") is False
    assert await tracker.refresh("c1") is False
    # Disconnecting twice is harmless.
    await tracker.disconnected("c1")


def make_tracker():
    client = MagicMock()
    client.eval = AsyncMock(return_value=1)
    client.exists = AsyncMock(return_value=1)
    client.aclose = AsyncMock()
    tracker = RedisConnectionTracker(
        client, instance_id="i-123", ttl_seconds=90, refresh_seconds=15, key_prefix="presence"
    )
    return tracker, client


@pytest.mark.asyncio
async def test_redis_tracker_connected_writes_owned_record():
    tracker, client = make_tracker()

    await tracker.connected("c1")

    args = client.eval.await_args.args
    assert args[1:5] == (1, "presence:conn:c1", "90", "i-123")
    assert tracker.refresh_interval == 15


@pytest.mark.asyncio
async def test_redis_tracker_refresh_reports_missing_record():
    tracker, client = make_tracker()
    client.eval.return_value = 0
    assert await tracker.refresh("c1") is False

    client.eval.return_value = 1
    assert await tracker.refresh("c1") is True
    assert client.eval.await_args.args[2:5] == ("presence:conn:c1", "i-123", "90")


@pytest.mark.asyncio
async def test_redis_tracker_disconnect_only_deletes_own_record():
    tracker, client = make_tracker()
    client.eval.return_value = 0

    await tracker.disconnected("c1")

    assert client.eval.await_args.args[1:] == (1, "presence:conn:c1", "i-123")


@pytest.mark.asyncio
async def test_redis_tracker_is_alive():
    tracker, client = make_tracker()
    assert await tracker.is_alive("c1") is True
    client.exists.assert_awaited_with("presence:conn:c1")

    client.exists.return_value = 0
    assert await tracker.is_alive("c1") is False


@pytest.mark.asyncio
async def test_redis_tracker_errors_are_store_errors():
    tracker, client = make_tracker()
    client.exists.side_effect = RedisTimeoutError("timed out")

    with pytest.raises(StoreError):
        await tracker.is_alive("c1")


@pytest.mark.asyncio
@pytest.mark.parametrize("method", ["connected", "refresh", "disconnected"])
async def test_redis_tracker_write_errors_are_store_errors(method):
    tracker, client = make_tracker()
    client.eval.side_effect = RedisConnectionError("connection refused")

    with pytest.raises(StoreError) as excinfo:
        await getattr(tracker, method)("c1")
    assert isinstance(excinfo.value.__cause__, RedisConnectionError)

@pytest.mark.asyncio
async def test_redis_tracker_close():
    tracker, client = make_tracker()
    await tracker.close()
    client.aclose.assert_awaited_once()
