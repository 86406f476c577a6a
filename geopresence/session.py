import logging
from typing import Any, Optional

from pydantic import ValidationError as PayloadError

from geopresence.delivery import DeliveryEngine
from geopresence.schemas.realtime import (
    ClientEvent,
    LoginPayload,
    SendLocationPayload,
    SendMessagePayload,
    ServerEvent,
    SessionState,
)
from geopresence.websocket_manager import Connection

logger = logging.getLogger(__name__)


class RealtimeSession:
    def __init__(self, connection: Connection, engine: DeliveryEngine):
        self.connection = connection
        self.engine = engine
        self.state = SessionState.ANONYMOUS
        self.username: Optional[str] = None

    async def handle(self, event: ClientEvent, payload: Any = None) -> None:
        if self.state is SessionState.CLOSED:
            logger.debug("Ignoring %s on closed connection %s", event.value, self.connection.connection_id)
            return

        if event is ClientEvent.DISCONNECT:
            await self.close()
        elif event is ClientEvent.PING:
            await self.engine.manager.send_personal_event(self.connection, ServerEvent.PONG.value)
        elif event is ClientEvent.LOGIN:
            await self._login(payload)
        elif self.state is not SessionState.AUTHENTICATED:
            await self.connection.send_error(f"Login required before {event.value}")
        elif event is ClientEvent.SEND_LOCATION:
            await self._send_location(payload)
        elif event is ClientEvent.SEND_MESSAGE:
            await self._send_message(payload)

    async def _login(self, payload: Any) -> None:
        if isinstance(payload, str):
            payload = {"username": payload}
        try:
            data = LoginPayload.model_validate(payload)
        except PayloadError:
            await self.connection.send_error("Invalid login payload")
            return

        if self.username is not None and self.username != data.username:
            await self.engine.user_offline(self.username, self.connection)

        self.username = data.username
        self.state = SessionState.AUTHENTICATED
        logger.info("%s logged in on %s", data.username, self.connection.connection_id)
        await self.engine.user_online(data.username, self.connection)

    async def _send_location(self, payload: Any) -> None:
        try:
            data = SendLocationPayload.model_validate(payload)
        except PayloadError:
            await self.connection.send_error("Invalid location payload")
            return
        if data.username and data.username != self.username:
            logger.warning("%s sent a location for %s; using the session user", self.username, data.username)
        await self.engine.update_location(self.username, data.lat, data.lng, self.connection)

    async def _send_message(self, payload: Any) -> None:
        try:
            data = SendMessagePayload.model_validate(payload)
        except PayloadError:
            await self.connection.send_error("Invalid message payload")
            return
        if data.sender and data.sender != self.username:
            logger.warning("%s sent a message as %s; using the session user", self.username, data.sender)
        await self.engine.send_message(self.username, data.to, data.message, self.connection)

    async def close(self) -> None:
        if self.state is SessionState.CLOSED:
            return
        previous, self.state = self.state, SessionState.CLOSED
        if previous is SessionState.AUTHENTICATED:
            logger.info("%s disconnected from %s", self.username, self.connection.connection_id)
            await self.engine.user_offline(self.username, self.connection)
