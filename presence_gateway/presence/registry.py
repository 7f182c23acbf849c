"""
Presence registry.

Tracks which identities are present in which channels when one identity may
hold many connections at once. All serialization of concurrent updates is left
to the shard's atomic transactions; the registry holds no locks and no state of
its own beyond the router and the liveness oracle.

Typical gateway use:

    joined = await registry.register(channel, connection_id, "alice", {"name": "Alice"})
    if joined:
        broadcast({"event": "joined", "identity": "alice", "payload": {...}})

    departure = await registry.deregister(channel, connection_id)
    if departure and departure.is_last:
        broadcast({"event": "left", "identity": departure.identity})
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .errors import InvalidArgument, StoreError
from .liveness import LivenessOracle
from .sharding import ShardRouter
from .stores import PresenceStore

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100


@dataclass(frozen=True)
class Departure:
    identity: str
    is_last: bool


@dataclass(frozen=True)
class Presence:
    identity: str
    payload: Any


def encode_payload(payload: Any) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def decode_payload(raw: str) -> Any:
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        # Written by something other than this registry; hand it back untouched.
        return raw


def _now_ms() -> int:
    return int(time.time() * 1000)


class PresenceRegistry:
    """
    Public presence operations on top of the shard router.

    Args:
        router: channel -> PresenceStore routing
        liveness: answers whether a connection is still open
        page_size: identities requested per roster scan page
        clock: returns the registration score (ms); injectable for tests
    """

    def __init__(
        self,
        router: ShardRouter[PresenceStore],
        liveness: LivenessOracle,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        clock: Callable[[], int] = _now_ms,
    ):
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        self._router = router
        self._liveness = liveness
        self._page_size = page_size
        self._clock = clock

    def store_for(self, channel: str) -> PresenceStore:
        return self._router.shard_for(channel)

    async def register(self, channel: str, connection_id: str, identity: str, payload: Any = None) -> bool:
        """
        Register ``connection_id`` as a connection of ``identity`` in ``channel``.

        Returns True only when the identity had no other connections in the
        channel, i.e. the caller should announce a join. Returns False when the
        identity merely gained a connection, or when the connection was found
        dead before or right after registering (in the latter case the
        registration is rolled back).

        Raises:
            InvalidArgument: channel, connection id or identity is empty, or the
                payload cannot be encoded as JSON
            StoreError: the shard could not be reached or the script failed
        """

        if not channel:
            raise InvalidArgument("channel is required")
        if not connection_id:
            raise InvalidArgument("connection id is required")
        if not identity:
            raise InvalidArgument("No presence id specified in presence subscription")
        try:
            encoded = encode_payload(payload)
        except (TypeError, ValueError) as exc:
            raise InvalidArgument(f"presence data is not JSON serializable: {exc}") from exc

        logger.debug("Registering client %s for presence channel %s %s", connection_id, channel, identity)

        if not await self._liveness.is_alive(connection_id):
            logger.info("Will not register client %s for presence channel %s %s", connection_id, channel, identity)
            return False

        store = self.store_for(channel)
        already_present = await store.register_membership(
            channel, connection_id, identity, encoded, self._clock()
        )

        if not await self._liveness.is_alive(connection_id):
            logger.info(
                "Client %s disappeared while registering for presence channel %s %s",
                connection_id,
                channel,
                identity,
            )
            await store.deregister_membership(channel, connection_id, identity)
            return False

        if already_present:
            logger.debug("Registered new client %s for presence channel %s %s", connection_id, channel, identity)
            return False

        logger.debug("Registered initial client %s for presence channel %s %s", connection_id, channel, identity)
        return True

    async def deregister(self, channel: str, connection_id: str) -> Optional[Departure]:
        """
        Remove ``connection_id`` from whichever identity it belongs to.

        Returns None when the connection is not registered in the channel.
        ``Departure.is_last`` is True for exactly one of an identity's
        connections: the one whose removal emptied its membership set.
        """

        store = self.store_for(channel)
        identity = await store.get_identity(channel, connection_id)
        if identity is None:
            logger.debug("No presence registered for client %s in channel %s", connection_id, channel)
            return None

        logger.debug("Deregistering client %s for presence channel %s %s", connection_id, channel, identity)

        still_present = await store.deregister_membership(channel, connection_id, identity)
        if still_present is None:
            # Another call removed this connection between the two round trips.
            logger.debug("Client %s already deregistered from presence channel %s", connection_id, channel)
            return None

        if still_present:
            logger.debug("Deregistered client %s for presence channel %s %s", connection_id, channel, identity)
        else:
            logger.debug("Deregistered final client %s for presence channel %s %s", connection_id, channel, identity)
        return Departure(identity=identity, is_last=not still_present)

    async def snapshot(self, channel: str) -> Dict[str, Any]:
        """
        Every identity present in ``channel`` mapped to its decoded payload.

        The roster is walked page by page; each round trip fetches the payloads
        of the previous page together with the next page of identities. Changes
        made while the walk is in progress may or may not be reflected. Any
        failed page fails the whole call.
        """

        store = self.store_for(channel)
        results: Dict[str, Any] = {}
        pending: List[str] = []
        cursor: Optional[int] = 0

        while cursor is not None or pending:
            try:
                page = await store.roster_page(channel, cursor, pending, self._page_size)
            except StoreError:
                logger.warning("Roster scan for channel %s aborted after %d identities", channel, len(results))
                raise

            for identity, raw in zip(pending, page.payloads):
                if raw is not None:
                    results[identity] = decode_payload(raw)

            pending = page.identities
            cursor = page.cursor

        return results

    async def lookup(self, channel: str, connection_id: str) -> Optional[Presence]:
        """The identity and payload behind ``connection_id``, or None."""

        store = self.store_for(channel)
        identity = await store.get_identity(channel, connection_id)
        if identity is None:
            return None

        raw = await store.get_payload(channel, identity)
        if raw is None:
            return None
        return Presence(identity=identity, payload=decode_payload(raw))

    async def health_check(self) -> Dict[str, Any]:
        shards: Dict[str, Any] = {}
        for name, store in self._router.shards.items():
            start = time.time()
            try:
                await store.ping()
                shards[name] = {
                    "status": "healthy",
                    "store": store.name,
                    "latency_ms": round((time.time() - start) * 1000, 2),
                }
            except StoreError as e:
                shards[name] = {
                    "status": "unhealthy",
                    "store": store.name,
                    "latency_ms": round((time.time() - start) * 1000, 2),
                    "error": str(e),
                }

        healthy = all(s["status"] == "healthy" for s in shards.values())
        return {"status": "healthy" if healthy else "unhealthy", "shards": shards}

    async def close(self) -> None:
        for store in self._router.shards.values():
            await store.close()
