import pytest

from presence_gateway.presence.sharding import ShardRouter


def _channels(n):
    return [f"/presence/room-{i}" for i in range(n)]


def test_requires_shards():
    with pytest.raises(ValueError):
        ShardRouter({})


def test_single_shard_owns_everything():
    router = ShardRouter({"node0": "a"})
    assert {router.shard_for(c) for c in _channels(50)} == {"a"}


def test_from_list_names_shards_by_position():
    router = ShardRouter.from_list(["a", "b", "c"])
    assert router.shards == {"node0": "a", "node1": "b", "node2": "c"}
    assert len(router) == 3


def test_routing_is_deterministic_across_instances():
    first = ShardRouter.from_list(["a", "b", "c", "d"])
    second = ShardRouter.from_list(["a", "b", "c", "d"])
    for channel in _channels(200):
        assert first.shard_name_for(channel) == second.shard_name_for(channel)
        assert first.shard_for(channel) == first.shard_for(channel)


def test_routing_depends_on_names_not_insertion_order():
    first = ShardRouter({"node0": "a", "node1": "b"})
    second = ShardRouter({"node1": "b", "node0": "a"})
    for channel in _channels(100):
        assert first.shard_for(channel) == second.shard_for(channel)


def test_channels_spread_over_all_shards():
    router = ShardRouter.from_list(["a", "b", "c", "d"])
    counts = {}
    for channel in _channels(2000):
        shard = router.shard_for(channel)
        counts[shard] = counts.get(shard, 0) + 1
    assert set(counts) == {"a", "b", "c", "d"}
    assert min(counts.values()) > 200


def test_adding_a_shard_moves_a_minority_of_channels():
    before = ShardRouter.from_list(["a", "b", "c", "d"])
    after = ShardRouter.from_list(["a", "b", "c", "d", "e"])
    channels = _channels(2000)
    stayed = sum(1 for c in channels if before.shard_for(c) == after.shard_for(c))
    assert stayed > len(channels) * 0.6
