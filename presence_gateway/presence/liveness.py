"""
Connection liveness.

The registry asks one question: "is connection X still alive?". The gateway
answers it through a ConnectionTracker, which it also tells about connects,
refreshes and disconnects.

- LocalConnectionTracker: the connections owned by this process. Enough when a
  channel's sockets all land on one instance.
- RedisConnectionTracker: one TTL'd record per connection, shared by every
  instance behind the load balancer. The owning instance refreshes the TTL while
  the socket is open; if the instance dies the record expires on its own.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator, Optional, Set

import redis.asyncio as redis
from redis.exceptions import RedisError

from .errors import StoreError

logger = logging.getLogger(__name__)


@contextmanager
def _tracker_errors(operation: str, connection_id: str) -> Iterator[None]:
    try:
        yield
    except RedisError as exc:
        raise StoreError(f"{operation} failed for connection {connection_id!r}: {exc}") from exc


class LivenessOracle(ABC):
    @abstractmethod
    async def is_alive(self, connection_id: str) -> bool:
        ...


class ConnectionTracker(LivenessOracle):
    """LivenessOracle that the gateway keeps up to date."""

    # Seconds between refreshes; None when records never expire.
    refresh_interval: Optional[float] = None

    @abstractmethod
    async def connected(self, connection_id: str) -> None:
        ...

    @abstractmethod
    async def refresh(self, connection_id: str) -> bool:
        """Keep the record alive. Returns False if it was missing or expired."""

    @abstractmethod
    async def disconnected(self, connection_id: str) -> None:
        ...

    async def close(self) -> None:
        return None


class LocalConnectionTracker(ConnectionTracker):
    def __init__(self) -> None:
        self._alive: Set[str] = set()

    async def connected(self, connection_id: str) -> None:
        self._alive.add(connection_id)

    async def refresh(self, connection_id: str) -> bool:
        return connection_id in self._alive

    async def disconnected(self, connection_id: str) -> None:
        self._alive.discard(connection_id)

    async def is_alive(self, connection_id: str) -> bool:
        return connection_id in self._alive


_LUA_TOUCH_CONNECTION = r"""
local key = KEYS[1]
local ttl = tonumber(ARGV[1])
local instance_id = ARGV[2]
local now = ARGV[3]

redis.call("HSET", key, "instance_id", instance_id, "updated_at", now)
redis.call("EXPIRE", key, ttl)
return 1
"""


_LUA_REFRESH_IF_OWNER = r"""
local key = KEYS[1]
local instance_id = ARGV[1]
local ttl = tonumber(ARGV[2])
local now = ARGV[3]

local current = redis.call("HGET", key, "instance_id")
if current == instance_id then
  redis.call("HSET", key, "updated_at", now)
  redis.call("EXPIRE", key, ttl)
  return 1
end
return 0
"""


_LUA_DELETE_IF_OWNER = r"""
local key = KEYS[1]
local instance_id = ARGV[1]

local current = redis.call("HGET", key, "instance_id")
if current == instance_id then
  return redis.call("DEL", key)
end
return 0
"""


class RedisConnectionTracker(ConnectionTracker):
    """
    Cluster-wide connection records.

    Key: ``<prefix>:conn:<connection_id>`` -> hash(instance_id, updated_at), with TTL.
    """

    def __init__(
        self,
        client: redis.Redis,
        *,
        instance_id: str,
        ttl_seconds: int = 120,
        refresh_seconds: float = 30,
        key_prefix: str = "presence",
    ):
        self._client = client
        self._instance_id = instance_id
        self._ttl_seconds = ttl_seconds
        self._prefix = key_prefix
        self.refresh_interval = refresh_seconds

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisConnectionTracker":
        client = redis.from_url(
            url,
            decode_responses=True,
            health_check_interval=30,
        )
        return cls(client, **kwargs)

    def connection_key(self, connection_id: str) -> str:
        return f"{self._prefix}:conn:{connection_id}"

    async def connected(self, connection_id: str) -> None:
        # NOTE: redis-py `eval` takes (script, numkeys, *keys_and_args)
        with _tracker_errors("connect", connection_id):
            await self._client.eval(
                _LUA_TOUCH_CONNECTION,
                1,
                self.connection_key(connection_id),
                str(self._ttl_seconds),
                self._instance_id,
                str(time.time()),
            )

    async def refresh(self, connection_id: str) -> bool:
        with _tracker_errors("refresh", connection_id):
            refreshed = await self._client.eval(
                _LUA_REFRESH_IF_OWNER,
                1,
                self.connection_key(connection_id),
                self._instance_id,
                str(self._ttl_seconds),
                str(time.time()),
            )
        return bool(refreshed)

    async def disconnected(self, connection_id: str) -> None:
        with _tracker_errors("disconnect", connection_id):
            deleted = await self._client.eval(
                _LUA_DELETE_IF_OWNER,
                1,
                self.connection_key(connection_id),
                self._instance_id,
            )
        if not deleted:
            logger.debug("Connection %s was not owned by %s on disconnect", connection_id, self._instance_id)

    async def is_alive(self, connection_id: str) -> bool:
        with _tracker_errors("liveness check", connection_id):
            return bool(await self._client.exists(self.connection_key(connection_id)))

    async def close(self) -> None:
        await self._client.aclose()
