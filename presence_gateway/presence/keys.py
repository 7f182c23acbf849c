"""
Redis key layout for presence.

    <prefix>:data:<channel>:<identity>      -> presence payload (string)
    <prefix>:pid:<channel>:<connection_id>  -> identity (string)
    <prefix>:cids:<channel>:<identity>      -> ZSET of connection ids, score = registration ms
    <prefix>:pids:<channel>                 -> ZSET of identities, score = latest registration ms

Every key embeds the channel, so routing on the channel alone keeps all four
families on one shard.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

DEFAULT_PREFIX = "presence"


@dataclass(frozen=True)
class KeyScheme:
    prefix: str = DEFAULT_PREFIX

    def _key(self, *parts: str) -> str:
        return ":".join((self.prefix,) + parts)

    def payload(self, channel: str, identity: str) -> str:
        return self._key("data", channel, identity)

    def reverse(self, channel: str, connection_id: str) -> str:
        return self._key("pid", channel, connection_id)

    def members(self, channel: str, identity: str) -> str:
        return self._key("cids", channel, identity)

    def roster(self, channel: str) -> str:
        return self._key("pids", channel)

    def membership_keys(self, channel: str, connection_id: str, identity: str) -> Tuple[str, str, str, str]:
        """KEYS[1..4] for both membership scripts, in script order."""
        return (
            self.payload(channel, identity),
            self.reverse(channel, connection_id),
            self.members(channel, identity),
            self.roster(channel),
        )
