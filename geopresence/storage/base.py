import asyncio
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Dict, List, Optional

from geopresence.exceptions import DuplicateUsername
from geopresence.schemas.message import Message
from geopresence.schemas.user import User


class KeyedLock:
    """One asyncio.Lock per key, kept only while someone holds or waits for it."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if not self._holders[key]:
                del self._holders[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class StorageAdapter(ABC):
    """Durable users and messages. Failures surface as StorageError."""

    def __init__(self):
        self._user_locks = KeyedLock()

    async def init(self) -> None:
        pass

    async def close(self) -> None:
        pass

    @abstractmethod
    async def find_user(self, username: str) -> Optional[User]:
        ...

    @abstractmethod
    async def upsert_user(self, user: User) -> User:
        ...

    @abstractmethod
    async def list_users(self) -> List[User]:
        ...

    @abstractmethod
    async def append_message(self, message: Message) -> Message:
        ...

    @abstractmethod
    async def list_conversation(self, user_a: str, user_b: str, limit: int = 50) -> List[Message]:
        """Most recent `limit` messages between the two users, oldest first."""

    async def update_user(self, username: str, mutate: Callable[[User], User]) -> Optional[User]:
        async with self._user_locks.hold(username):
            user = await self.find_user(username)
            if user is None:
                return None
            return await self.upsert_user(mutate(user))

    async def create_user(self, user: User) -> User:
        async with self._user_locks.hold(user.username):
            if await self.find_user(user.username) is not None:
                raise DuplicateUsername(user.username)
            return await self.upsert_user(user)
