import asyncio
import json
import logging
import uuid
from typing import Any, List, Optional, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class Connection:
    # identity is the object itself, connection_id is only for logs
    def __init__(self, connection_id: Optional[str] = None):
        self.connection_id = connection_id or uuid.uuid4().hex

    async def send_text(self, text: str) -> None:
        raise NotImplementedError

    async def send_event(self, event_type: str, data: Any = None) -> None:
        await self.send_text(json.dumps({"type": event_type, "data": data}))

    async def send_error(self, message: str) -> None:
        await self.send_text(json.dumps({"type": "error", "message": message}))

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.connection_id}>"


class WebSocketConnection(Connection):
    def __init__(self, websocket: WebSocket, connection_id: Optional[str] = None):
        super().__init__(connection_id)
        self.websocket = websocket

    async def send_text(self, text: str) -> None:
        await self.websocket.send_text(text)


class ConnectionManager:
    def __init__(self):
        self.active_connections: Set[Connection] = set()
        self._lock = asyncio.Lock()

    async def connect(self, connection: Connection) -> None:
        async with self._lock:
            self.active_connections.add(connection)
        logger.info("Connection opened: %s (%d open)", connection.connection_id, len(self.active_connections))

    async def disconnect(self, connection: Connection) -> None:
        async with self._lock:
            self.active_connections.discard(connection)
        logger.info("Connection closed: %s (%d open)", connection.connection_id, len(self.active_connections))

    async def send_personal_event(self, connection: Connection, event_type: str, data: Any = None) -> bool:
        try:
            await connection.send_event(event_type, data)
            return True
        except Exception as e:
            logger.warning("Dropping %s for %s: %s", event_type, connection.connection_id, e)
            async with self._lock:
                self.active_connections.discard(connection)
            return False

    async def broadcast(self, event_type: str, data: Any = None, exclude: Optional[Connection] = None) -> int:
        async with self._lock:
            targets: List[Connection] = [c for c in self.active_connections if c is not exclude]
        delivered = 0
        for connection in targets:
            if await self.send_personal_event(connection, event_type, data):
                delivered += 1
        return delivered

    def connection_count(self) -> int:
        return len(self.active_connections)
