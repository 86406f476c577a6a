import asyncio
import json
import logging
import os
import tempfile
from typing import Any, Callable, Dict, List, Optional

from geopresence.exceptions import StorageError
from geopresence.schemas.message import Message
from geopresence.schemas.user import User
from geopresence.storage.base import StorageAdapter

logger = logging.getLogger(__name__)


def _empty_document() -> Dict[str, list]:
    return {"users": [], "messages": []}


class JsonFileStorage(StorageAdapter):
    """Single JSON document `{users: [...], messages: [...]}`, rewritten wholesale on every mutation."""

    def __init__(self, path: str):
        super().__init__()
        self.path = path
        self._doc: Dict[str, list] = _empty_document()
        self._write_lock = asyncio.Lock()

    async def init(self) -> None:
        if not os.path.exists(self.path):
            await self._write(_empty_document())
            logger.info("Created empty database at %s", self.path)
        self._doc = await asyncio.to_thread(self._read)

    def _read(self) -> Dict[str, list]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error("Error reading %s, starting from an empty document: %s", self.path, e)
            return _empty_document()
        data.setdefault("users", [])
        data.setdefault("messages", [])
        return data

    def _dump(self, doc: Dict[str, list]) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".db-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(doc, f, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    async def _write(self, doc: Dict[str, list]) -> None:
        try:
            await asyncio.to_thread(self._dump, doc)
        except OSError as e:
            logger.error("Error writing %s: %s", self.path, e)
            raise StorageError(f"Could not write database: {e}")

    def _user_index(self, username: str) -> Optional[int]:
        for i, raw in enumerate(self._doc["users"]):
            if raw.get("username") == username:
                return i
        return None

    async def _commit(self, change: Callable[[Dict[str, list]], Dict[str, list]]) -> None:
        async with self._write_lock:
            doc = change(self._doc)
            await self._write(doc)
            self._doc = doc

    async def _apply(self, change: Callable[[Dict[str, list]], Dict[str, list]]) -> None:
        # once the file is being rewritten, memory must follow it even if the caller gives up
        await asyncio.shield(self._commit(change))

    async def find_user(self, username: str) -> Optional[User]:
        idx = self._user_index(username)
        if idx is None:
            return None
        return User.model_validate(self._doc["users"][idx])

    async def upsert_user(self, user: User) -> User:
        record: Dict[str, Any] = user.model_dump(by_alias=True, mode="json")

        def change(doc: Dict[str, list]) -> Dict[str, list]:
            users = list(doc["users"])
            for i, raw in enumerate(users):
                if raw.get("username") == user.username:
                    users[i] = record
                    break
            else:
                users.append(record)
            return {**doc, "users": users}

        await self._apply(change)
        return user

    async def list_users(self) -> List[User]:
        return [User.model_validate(raw) for raw in self._doc["users"]]

    async def append_message(self, message: Message) -> Message:
        record = message.model_dump(by_alias=True, mode="json")
        await self._apply(lambda doc: {**doc, "messages": doc["messages"] + [record]})
        return message

    async def list_conversation(self, user_a: str, user_b: str, limit: int = 50) -> List[Message]:
        messages = [Message.model_validate(raw) for raw in self._doc["messages"]]
        conversation = sorted((m for m in messages if m.involves(user_a, user_b)), key=lambda m: m.timestamp)
        return conversation[-limit:] if limit > 0 else []
