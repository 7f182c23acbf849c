"""
Per-shard presence stores.

A store owns one shard's data and exposes the two atomic membership
transactions plus the reads the registry composes into lookups and roster
snapshots. Every method is one round trip to the shard.

- RedisPresenceStore: production store. Transactions run as server-side Lua
  scripts (EVALSHA, falling back to EVAL once per script load).
- InMemoryPresenceStore: single-process store with the same contract. Each
  mutation runs without yielding to the event loop, which gives it the same
  atomicity the scripts get from Redis.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError

from .errors import StoreError
from .keys import KeyScheme
from .scripts import (
    ALREADY_PRESENT,
    DEREGISTER_MEMBERSHIP,
    FIRST_JOIN,
    LAST_LEFT,
    NOT_A_MEMBER,
    REGISTER_MEMBERSHIP,
    STILL_PRESENT,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RosterPage:
    """
    Result of one roster round trip.

    ``payloads`` lines up with the identities the caller asked to load;
    ``identities`` is what this page's scan found. ``cursor`` is ``None`` once
    the scan has wrapped around.
    """

    cursor: Optional[int]
    identities: List[str] = field(default_factory=list)
    payloads: List[Optional[str]] = field(default_factory=list)


class PresenceStore(ABC):
    """One shard of presence state."""

    name: str = "store"

    @abstractmethod
    async def register_membership(
        self, channel: str, connection_id: str, identity: str, payload: str, now: int
    ) -> bool:
        """
        Atomically record ``connection_id`` as a connection of ``identity``.

        Overwrites the payload and reverse pointer, adds the connection to the
        membership set and refreshes the identity in the roster. Returns True if
        the identity already had connections before this call.
        """

    @abstractmethod
    async def deregister_membership(self, channel: str, connection_id: str, identity: str) -> Optional[bool]:
        """
        Atomically remove ``connection_id`` from ``identity``.

        Returns True if other connections remain, False if this was the last one
        (roster entry and payload are gone), None if the connection was not a
        member.
        """

    @abstractmethod
    async def get_identity(self, channel: str, connection_id: str) -> Optional[str]:
        ...

    @abstractmethod
    async def get_payload(self, channel: str, identity: str) -> Optional[str]:
        ...

    @abstractmethod
    async def roster_page(
        self, channel: str, cursor: Optional[int], load: Sequence[str], count: int
    ) -> RosterPage:
        """
        Fetch payloads for ``load`` and, unless ``cursor`` is None, scan the next
        roster page starting at ``cursor``; both in one round trip.
        """

    @abstractmethod
    async def ping(self) -> bool:
        ...

    async def close(self) -> None:
        return None


@contextmanager
def _store_errors(operation: str, channel: str) -> Iterator[None]:
    try:
        yield
    except RedisError as exc:
        raise StoreError(f"{operation} failed for channel {channel!r}: {exc}") from exc


class RedisPresenceStore(PresenceStore):
    """Presence shard backed by one Redis node."""

    def __init__(self, client: redis.Redis, keys: Optional[KeyScheme] = None, name: str = "redis"):
        self._client = client
        self._keys = keys or KeyScheme()
        self.name = name
        self._register_script = client.register_script(REGISTER_MEMBERSHIP)
        self._deregister_script = client.register_script(DEREGISTER_MEMBERSHIP)

    @classmethod
    def from_address(cls, address: str, keys: Optional[KeyScheme] = None) -> "RedisPresenceStore":
        """
        Build a store from ``host:port`` or a ``redis://`` URL.

        The client keeps its own connection pool, shared by every call routed to
        this shard.
        """

        url = address if "://" in address else f"redis://{address}"
        client = redis.from_url(
            url,
            decode_responses=True,
            health_check_interval=30,
        )
        return cls(client, keys=keys, name=address)

    async def register_membership(
        self, channel: str, connection_id: str, identity: str, payload: str, now: int
    ) -> bool:
        with _store_errors("register-membership", channel):
            result = await self._register_script(
                keys=self._keys.membership_keys(channel, connection_id, identity),
                args=[connection_id, identity, payload, now],
            )

        if result == ALREADY_PRESENT:
            return True
        if result == FIRST_JOIN:
            return False
        raise StoreError(f"register-membership returned unexpected result {result!r} for channel {channel!r}")

    async def deregister_membership(self, channel: str, connection_id: str, identity: str) -> Optional[bool]:
        with _store_errors("deregister-membership", channel):
            result = await self._deregister_script(
                keys=self._keys.membership_keys(channel, connection_id, identity),
                args=[connection_id, identity],
            )

        if result == STILL_PRESENT:
            return True
        if result == LAST_LEFT:
            return False
        if result == NOT_A_MEMBER:
            return None
        raise StoreError(f"deregister-membership returned unexpected result {result!r} for channel {channel!r}")

    async def get_identity(self, channel: str, connection_id: str) -> Optional[str]:
        with _store_errors("get identity", channel):
            return await self._client.get(self._keys.reverse(channel, connection_id))

    async def get_payload(self, channel: str, identity: str) -> Optional[str]:
        with _store_errors("get payload", channel):
            return await self._client.get(self._keys.payload(channel, identity))

    async def roster_page(
        self, channel: str, cursor: Optional[int], load: Sequence[str], count: int
    ) -> RosterPage:
        if not load and cursor is None:
            return RosterPage(cursor=None)

        pipe = self._client.pipeline(transaction=False)
        if load:
            pipe.mget([self._keys.payload(channel, identity) for identity in load])
        if cursor is not None:
            pipe.zscan(self._keys.roster(channel), cursor, count=count)

        with _store_errors("roster page", channel):
            results = await pipe.execute()

        payloads: List[Optional[str]] = list(results.pop(0)) if load else []
        if cursor is None:
            return RosterPage(cursor=None, payloads=payloads)

        next_cursor, members = results.pop(0)
        # ZSCAN yields (member, score) pairs; only the member is needed here
        identities = [member for member, _score in members]
        return RosterPage(cursor=int(next_cursor) or None, identities=identities, payloads=payloads)

    async def ping(self) -> bool:
        with _store_errors("ping", self.name):
            return bool(await self._client.ping())

    async def close(self) -> None:
        await self._client.aclose()


class InMemoryPresenceStore(PresenceStore):
    """Presence shard held in process memory. Not shared across processes."""

    def __init__(self, name: str = "memory"):
        self.name = name
        self._payloads: Dict[Tuple[str, str], str] = {}
        self._reverse: Dict[Tuple[str, str], str] = {}
        self._members: Dict[Tuple[str, str], Dict[str, int]] = {}
        self._rosters: Dict[str, Dict[str, int]] = {}

    async def register_membership(
        self, channel: str, connection_id: str, identity: str, payload: str, now: int
    ) -> bool:
        # Yield once up front, like a network round trip; the mutation below
        # must not await.
        await asyncio.sleep(0)

        members = self._members.setdefault((channel, identity), {})
        existed = bool(members)

        self._payloads[(channel, identity)] = payload
        self._reverse[(channel, connection_id)] = identity
        members[connection_id] = now
        self._rosters.setdefault(channel, {})[identity] = now
        return existed

    async def deregister_membership(self, channel: str, connection_id: str, identity: str) -> Optional[bool]:
        await asyncio.sleep(0)

        if self._reverse.get((channel, connection_id)) == identity:
            del self._reverse[(channel, connection_id)]

        members = self._members.get((channel, identity))
        if not members or members.pop(connection_id, None) is None:
            return None
        if members:
            return True

        del self._members[(channel, identity)]
        roster = self._rosters.get(channel)
        if roster is not None:
            roster.pop(identity, None)
            if not roster:
                del self._rosters[channel]
        self._payloads.pop((channel, identity), None)
        return False

    async def get_identity(self, channel: str, connection_id: str) -> Optional[str]:
        await asyncio.sleep(0)
        return self._reverse.get((channel, connection_id))

    async def get_payload(self, channel: str, identity: str) -> Optional[str]:
        await asyncio.sleep(0)
        return self._payloads.get((channel, identity))

    async def roster_page(
        self, channel: str, cursor: Optional[int], load: Sequence[str], count: int
    ) -> RosterPage:
        await asyncio.sleep(0)

        payloads = [self._payloads.get((channel, identity)) for identity in load]
        if cursor is None:
            return RosterPage(cursor=None, payloads=payloads)

        roster = self._rosters.get(channel, {})
        ordered = sorted(roster, key=lambda identity: (roster[identity], identity))
        identities = ordered[cursor:cursor + count]
        next_cursor: Optional[int] = cursor + count
        if next_cursor >= len(ordered):
            next_cursor = None
        return RosterPage(cursor=next_cursor, identities=identities, payloads=payloads)

    async def ping(self) -> bool:
        return True
