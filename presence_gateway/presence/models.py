"""
Pydantic models for presence WebSocket messages.

Requests are validated on the way in; events are serialized with
``model_dump()`` on the way out.
"""

from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field


class PresenceInfo(BaseModel):
    id: Optional[str] = None
    data: Any = None


class SubscribeRequest(BaseModel):
    type: Literal["subscribe"] = "subscribe"
    presence: Optional[PresenceInfo] = None


class RosterRequest(BaseModel):
    type: Literal["presence"] = "presence"


class LookupRequest(BaseModel):
    type: Literal["lookup"] = "lookup"
    connection_id: Optional[str] = None


class PresenceSubscription(BaseModel):
    """One presence subscription as it moves from the socket to the registry."""
    channel: str
    connection_id: str
    identity: Optional[str] = None
    payload: Any = None
    error: Optional[str] = None

    @classmethod
    def from_request(cls, request: SubscribeRequest, *, channel: str, connection_id: str) -> "PresenceSubscription":
        presence = request.presence or PresenceInfo()
        identity = presence.id.strip() if isinstance(presence.id, str) else None
        subscription = cls(
            channel=channel,
            connection_id=connection_id,
            identity=identity or None,
            payload=presence.data,
        )
        if not subscription.identity:
            subscription.error = "No presence id specified in presence subscription"
        return subscription


class ConnectedEvent(BaseModel):
    type: Literal["connected"] = "connected"
    channel: str
    connection_id: str


class SubscribedEvent(BaseModel):
    type: Literal["subscribed"] = "subscribed"
    channel: str
    identity: str
    presence: Dict[str, Any] = Field(default_factory=dict)


class RosterEvent(BaseModel):
    type: Literal["presence"] = "presence"
    channel: str
    presence: Dict[str, Any] = Field(default_factory=dict)


class LookupEvent(BaseModel):
    type: Literal["lookup"] = "lookup"
    connection_id: str
    identity: Optional[str] = None
    payload: Any = None


class JoinedEvent(BaseModel):
    """Broadcast when an identity's first connection registers."""
    event: Literal["joined"] = "joined"
    identity: str
    payload: Any = None


class LeftEvent(BaseModel):
    """Broadcast when an identity's last connection deregisters."""
    event: Literal["left"] = "left"
    identity: str


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    error: str
