import pytest
from pydantic import ValidationError

from presence_gateway.presence.models import (
    JoinedEvent,
    LeftEvent,
    PresenceSubscription,
    SubscribeRequest,
)


def _subscription(msg):
    return PresenceSubscription.from_request(
        SubscribeRequest.model_validate(msg), channel="lobby", connection_id="c1"
    )


def test_subscription_from_request():
    sub = _subscription({"type": "subscribe", "presence": {"id": " alice ", "data": {"name": "Alice"}}})
    assert sub.identity == "alice"
    assert sub.payload == {"name": "Alice"}
    assert sub.error is None


@pytest.mark.parametrize(
    "msg",
    [
        {"type": "subscribe"},
        {"type": "subscribe", "presence": {}},
        {"type": "subscribe", "presence": {"id": "   ", "data": 1}},
    ],
)
def test_subscription_without_id_carries_error(msg):
    sub = _subscription(msg)
    assert sub.identity is None
    assert sub.error == "No presence id specified in presence subscription"


def test_subscribe_request_rejects_wrong_type():
    with pytest.raises(ValidationError):
        SubscribeRequest.model_validate({"type": "lookup"})


def test_broadcast_events_shape():
    assert JoinedEvent(identity="alice", payload={"a": 1}).model_dump() == {
        "event": "joined",
        "identity": "alice",
        "payload": {"a": 1},
    }
    assert LeftEvent(identity="alice").model_dump() == {"event": "left", "identity": "alice"}
