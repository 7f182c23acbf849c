"""
Channel -> shard routing.

A consistent hash ring over the configured shard names. Each shard is placed on
the ring at several virtual points so channels spread evenly; a channel is owned
by the first point clockwise from its hash. The mapping only depends on the
channel string and the shard names, so every process configured with the same
pool agrees on it.
"""

from __future__ import annotations

import bisect
import hashlib
from typing import Dict, Generic, List, Mapping, Tuple, TypeVar

T = TypeVar("T")

DEFAULT_VIRTUAL_NODES = 64


def _hash(value: str) -> int:
    return int(hashlib.md5(value.encode("utf-8")).hexdigest(), 16)


class ShardRouter(Generic[T]):
    """Maps a channel name to one shard out of a fixed pool."""

    def __init__(self, shards: Mapping[str, T], virtual_nodes: int = DEFAULT_VIRTUAL_NODES):
        if not shards:
            raise ValueError("ShardRouter needs at least one shard")
        if virtual_nodes < 1:
            raise ValueError("virtual_nodes must be >= 1")

        self._shards: Dict[str, T] = dict(shards)
        self._ring: List[Tuple[int, str]] = []
        for name in sorted(self._shards):
            for i in range(virtual_nodes):
                self._ring.append((_hash(f"{name}#{i}"), name))
        self._ring.sort()
        self._points = [point for point, _ in self._ring]

    @classmethod
    def from_list(cls, shards: List[T], virtual_nodes: int = DEFAULT_VIRTUAL_NODES) -> "ShardRouter[T]":
        """Name shards ``node0``, ``node1``, ... by position."""
        return cls({f"node{i}": shard for i, shard in enumerate(shards)}, virtual_nodes=virtual_nodes)

    def shard_name_for(self, channel: str) -> str:
        idx = bisect.bisect(self._points, _hash(channel))
        if idx == len(self._ring):
            idx = 0
        return self._ring[idx][1]

    def shard_for(self, channel: str) -> T:
        return self._shards[self.shard_name_for(channel)]

    @property
    def shards(self) -> Dict[str, T]:
        return dict(self._shards)

    def __len__(self) -> int:
        return len(self._shards)
