"""
WebSocket consumer that binds presence to a channel.

Key behavior:
- URL: /ws/presence/<channel>/
- Each socket is one connection with a server-assigned connection_id.
- Many sockets may claim the same identity; joins and leaves are broadcast once
  per identity through the channel layer group of the channel.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import re
import uuid
from typing import Any, Dict, Optional

from channels.generic.websocket import AsyncWebsocketConsumer
from pydantic import ValidationError

from .conf import get_connection_tracker, get_presence_registry
from .errors import StoreError
from .liveness import ConnectionTracker
from .models import (
    ConnectedEvent,
    ErrorEvent,
    JoinedEvent,
    LeftEvent,
    LookupEvent,
    LookupRequest,
    PresenceSubscription,
    RosterEvent,
    SubscribedEvent,
    SubscribeRequest,
)
from .registry import PresenceRegistry

logger = logging.getLogger(__name__)

SUBSCRIBE_FAILED = "An error occurred subscribing to presence channel"
PRESENCE_UNAVAILABLE = "presence_unavailable"


class PresenceConsumer(AsyncWebsocketConsumer):
    """
    Client protocol:
    - {"type":"subscribe","presence":{"id":"alice","data":{...}}} -> register, reply with roster
    - {"type":"presence"} -> current roster for this channel
    - {"type":"lookup","connection_id":"..."} -> identity + payload behind a connection (default: own)
    """

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.presence_channel: Optional[str] = None
        self.group_name: Optional[str] = None
        self.connection_id: str = uuid.uuid4().hex  # server-assigned per-connection id
        self.identity: Optional[str] = None
        self.registry: Optional[PresenceRegistry] = None
        self.tracker: Optional[ConnectionTracker] = None
        self._refresh_task: Optional[asyncio.Task] = None

    @staticmethod
    def _group_name(channel: str) -> str:
        """
        Channels group names must be ASCII and shorter than 100 characters.
        The digest keeps two channels that sanitize alike in separate groups.
        """

        safe = re.sub(r"[^a-zA-Z0-9_.-]", "_", channel)[:60]
        digest = hashlib.sha1(channel.encode("utf-8")).hexdigest()[:12]
        return f"presence.{safe}.{digest}"

    async def connect(self) -> None:
        self.presence_channel = self.scope["url_route"]["kwargs"]["channel"]
        self.group_name = self._group_name(self.presence_channel)
        self.registry = get_presence_registry()
        self.tracker = get_connection_tracker()

        await self.accept()

        try:
            await self.tracker.connected(self.connection_id)
        except StoreError:
            logger.error("Could not record connection %s as alive", self.connection_id, exc_info=True)
            await self.close(code=1011)
            return

        await self.channel_layer.group_add(self.group_name, self.channel_name)

        if self.tracker.refresh_interval:
            self._refresh_task = asyncio.create_task(self._liveness_refresh_loop())

        await self.send_json(
            ConnectedEvent(channel=self.presence_channel, connection_id=self.connection_id).model_dump()
        )

    async def disconnect(self, close_code: int) -> None:
        if self._refresh_task:
            self._refresh_task.cancel()
            self._refresh_task = None

        if self.tracker:
            try:
                await self.tracker.disconnected(self.connection_id)
            except StoreError:
                logger.warning("Could not clear connection %s from tracker", self.connection_id, exc_info=True)

        if self.group_name:
            await self.channel_layer.group_discard(self.group_name, self.channel_name)

        # Also covers a subscribe whose reply failed after the store committed it;
        # an unregistered connection is a single cheap read.
        if self.registry:
            await self._leave()

    async def receive(self, text_data: Optional[str] = None, bytes_data: Optional[bytes] = None) -> None:
        if not text_data:
            return

        try:
            msg = json.loads(text_data)
        except json.JSONDecodeError:
            await self.send_json(ErrorEvent(error="invalid_json").model_dump())
            return

        if not isinstance(msg, dict):
            await self.send_json(ErrorEvent(error="invalid_message").model_dump())
            return

        msg_type = msg.get("type")
        try:
            if msg_type == "subscribe":
                await self._subscribe(SubscribeRequest.model_validate(msg))
                return
            if msg_type == "presence":
                await self._send_roster()
                return
            if msg_type == "lookup":
                await self._lookup(LookupRequest.model_validate(msg))
                return
        except ValidationError:
            await self.send_json(ErrorEvent(error="invalid_message").model_dump())
            return

        await self.send_json(ErrorEvent(error="unknown_message_type").model_dump())

    async def _subscribe(self, request: SubscribeRequest) -> None:
        subscription = PresenceSubscription.from_request(
            request, channel=self.presence_channel, connection_id=self.connection_id
        )
        if subscription.error:
            await self.send_json(ErrorEvent(error=subscription.error).model_dump())
            return

        # A connection belongs to one identity per channel.
        if self.identity and self.identity != subscription.identity:
            if not await self._leave():
                # The old identity still holds this connection; registering the
                # new one would orphan it.
                await self.send_json(ErrorEvent(error=SUBSCRIBE_FAILED).model_dump())
                return

        # Set before the call: the transaction may commit even if the call fails.
        self.identity = subscription.identity

        try:
            is_new = await self.registry.register(
                subscription.channel,
                subscription.connection_id,
                subscription.identity,
                subscription.payload,
            )
        except StoreError:
            logger.error(
                "error adding client %s to presence channel %s",
                subscription.connection_id,
                subscription.channel,
                exc_info=True,
            )
            await self.send_json(ErrorEvent(error=SUBSCRIBE_FAILED).model_dump())
            return

        if is_new:
            await self.channel_layer.group_send(
                self.group_name,
                {
                    "type": "presence.joined",
                    "identity": subscription.identity,
                    "payload": subscription.payload,
                },
            )

        try:
            roster = await self.registry.snapshot(subscription.channel)
        except StoreError:
            logger.error("error loading presence roster for %s", subscription.channel, exc_info=True)
            await self.send_json(ErrorEvent(error=SUBSCRIBE_FAILED).model_dump())
            return

        await self.send_json(
            SubscribedEvent(
                channel=subscription.channel,
                identity=subscription.identity,
                presence=roster,
            ).model_dump()
        )

    async def _leave(self) -> bool:
        """
        Deregister this connection from the channel.

        Returns False when the store could not be reached; the connection is then
        still registered under ``self.identity``.
        """

        try:
            departure = await self.registry.deregister(self.presence_channel, self.connection_id)
        except StoreError:
            logger.error(
                "error unsubscribing client %s (%s) from presence channel %s",
                self.connection_id,
                self.identity,
                self.presence_channel,
                exc_info=True,
            )
            return False

        self.identity = None
        if departure and departure.is_last:
            await self.channel_layer.group_send(
                self.group_name,
                {"type": "presence.left", "identity": departure.identity},
            )
        return True

    async def _send_roster(self) -> None:
        try:
            roster = await self.registry.snapshot(self.presence_channel)
        except StoreError:
            logger.error("error loading presence roster for %s", self.presence_channel, exc_info=True)
            await self.send_json(ErrorEvent(error=PRESENCE_UNAVAILABLE).model_dump())
            return

        await self.send_json(RosterEvent(channel=self.presence_channel, presence=roster).model_dump())

    async def _lookup(self, request: LookupRequest) -> None:
        target = request.connection_id or self.connection_id
        try:
            presence = await self.registry.lookup(self.presence_channel, target)
        except StoreError:
            logger.error("error looking up presence for %s in %s", target, self.presence_channel, exc_info=True)
            await self.send_json(ErrorEvent(error=PRESENCE_UNAVAILABLE).model_dump())
            return

        event = LookupEvent(connection_id=target)
        if presence is not None:
            event = LookupEvent(connection_id=target, identity=presence.identity, payload=presence.payload)
        await self.send_json(event.model_dump())

    async def presence_joined(self, event: Dict[str, Any]) -> None:
        """
        Handler for group join broadcasts.
        """
        await self.send_json(JoinedEvent(identity=event["identity"], payload=event.get("payload")).model_dump())

    async def presence_left(self, event: Dict[str, Any]) -> None:
        await self.send_json(LeftEvent(identity=event["identity"]).model_dump())

    async def _liveness_refresh_loop(self) -> None:
        """
        Keeps this connection's liveness record from expiring.

        No messages are sent to the client (this is not a heartbeat).
        """

        try:
            while True:
                await asyncio.sleep(self.tracker.refresh_interval)
                try:
                    ok = await self.tracker.refresh(self.connection_id)
                    if not ok:
                        # Record expired/was deleted; recreate it.
                        await self.tracker.connected(self.connection_id)
                except StoreError:
                    logger.warning("Liveness refresh failed for connection %s", self.connection_id, exc_info=True)
        except asyncio.CancelledError:
            return

    async def send_json(self, payload: Dict[str, Any]) -> None:
        await self.send(text_data=json.dumps(payload, separators=(",", ":"), ensure_ascii=False))
