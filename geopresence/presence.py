import asyncio
from typing import Dict, List, Optional

from geopresence.websocket_manager import Connection


class PresenceRegistry:
    def __init__(self):
        self._entries: Dict[str, Connection] = {}
        self._lock = asyncio.Lock()

    async def set_online(self, username: str, connection: Connection) -> Optional[Connection]:
        async with self._lock:
            previous = self._entries.get(username)
            self._entries[username] = connection
        if previous is connection:
            return None
        return previous

    def get_connection(self, username: str) -> Optional[Connection]:
        return self._entries.get(username)

    async def remove_if_owner(self, username: str, connection: Connection) -> bool:
        """Drop the entry only if it still points at `connection`."""
        async with self._lock:
            if self._entries.get(username) is not connection:
                return False
            del self._entries[username]
            return True

    def is_online(self, username: str) -> bool:
        return username in self._entries

    def online_usernames(self) -> List[str]:
        return list(self._entries.keys())
