import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Optional, TypeVar

from geopresence.exceptions import StorageError
from geopresence.presence import PresenceRegistry
from geopresence.schemas.message import Message
from geopresence.schemas.realtime import ServerEvent
from geopresence.schemas.user import Location, User, UserStatus
from geopresence.storage.base import StorageAdapter
from geopresence.websocket_manager import Connection, ConnectionManager

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MessageClock:
    """Server-side timestamps, strictly increasing within the process."""

    def __init__(self):
        self._last: Optional[datetime] = None

    def now(self) -> datetime:
        current = datetime.now(timezone.utc)
        if self._last is not None and current <= self._last:
            current = self._last + timedelta(microseconds=1)
        self._last = current
        return current


class DeliveryEngine:
    def __init__(
        self,
        storage: StorageAdapter,
        registry: PresenceRegistry,
        manager: ConnectionManager,
        storage_timeout: float = 5.0,
        clock: Optional[MessageClock] = None,
    ):
        self.storage = storage
        self.registry = registry
        self.manager = manager
        self.storage_timeout = storage_timeout
        self.clock = clock or MessageClock()

    async def _persist(self, description: str, operation: Awaitable[T]) -> Optional[T]:
        try:
            return await asyncio.wait_for(operation, timeout=self.storage_timeout)
        except asyncio.TimeoutError:
            logger.error("%s: storage did not answer within %.1fs", description, self.storage_timeout)
        except StorageError as e:
            logger.error("%s: %s", description, e.message)
        return None

    async def _set_status(self, username: str, status: UserStatus) -> None:
        def mutate(user: User) -> User:
            return user.model_copy(update={"status": status, "last_seen": self.clock.now()})

        updated = await self._persist(f"status {status.value} for {username}", self.storage.update_user(username, mutate))
        if updated is None:
            logger.debug("No durable status change for %s", username)

    async def user_online(self, username: str, connection: Connection) -> None:
        displaced = await self.registry.set_online(username, connection)
        if displaced is not None:
            logger.info("%s logged in again, %s replaces %s", username, connection.connection_id, displaced.connection_id)
        await self._set_status(username, UserStatus.ONLINE)
        await self.manager.broadcast(ServerEvent.USER_ONLINE.value, username)

    async def user_offline(self, username: str, connection: Connection) -> bool:
        """Release `username` if `connection` still owns it. Returns whether it did."""
        if not await self.registry.remove_if_owner(username, connection):
            logger.info("%s closed but %s no longer owns it; keeping it online", connection.connection_id, username)
            return False
        await self._set_status(username, UserStatus.OFFLINE)
        await self.manager.broadcast(ServerEvent.USER_OFFLINE.value, username, exclude=connection)
        return True

    async def update_location(self, username: str, lat: float, lng: float, sender: Connection) -> None:
        location = Location(lat=lat, lng=lng)

        def mutate(user: User) -> User:
            return user.model_copy(update={"location": location})

        await self._persist(f"location for {username}", self.storage.update_user(username, mutate))
        await self.manager.broadcast(
            ServerEvent.USER_LOCATION.value,
            {"username": username, "lat": lat, "lng": lng},
            exclude=sender,
        )

    async def send_message(self, sender: str, recipient: str, body: str, sender_connection: Connection) -> bool:
        message = Message(sender=sender, recipient=recipient, body=body, timestamp=self.clock.now())
        stored = await self._persist(
            f"message {sender} -> {recipient}", self.storage.append_message(message)
        ) is not None

        target = self.registry.get_connection(recipient)
        if target is not None:
            await self.manager.send_personal_event(
                target, ServerEvent.NEW_MESSAGE.value, message.model_dump(by_alias=True, mode="json", exclude={"is_read"})
            )
        else:
            logger.debug("%s is offline, message from %s not pushed", recipient, sender)

        await self.manager.send_personal_event(sender_connection, ServerEvent.MESSAGE_SENT.value, {"success": stored})
        return stored
