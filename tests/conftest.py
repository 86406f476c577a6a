import asyncio
import functools
import json
from datetime import datetime, timezone
from typing import Any, List, Optional

import pytest
from fastapi.testclient import TestClient

from geopresence.auth import get_password_hash
from geopresence.delivery import DeliveryEngine
from geopresence.exceptions import StorageError
from geopresence.main import create_app
from geopresence.presence import PresenceRegistry
from geopresence.schemas.user import Location, User, UserStatus
from geopresence.storage import JsonFileStorage, SqlStorage
from geopresence.websocket_manager import Connection, ConnectionManager


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeConnection(Connection):
    """Records every frame it is sent; can be told to fail like a dead socket."""

    def __init__(self, name: str, fail: bool = False):
        super().__init__(connection_id=name)
        self.frames: List[dict] = []
        self.fail = fail

    async def send_text(self, text: str) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.frames.append(json.loads(text))

    def events(self, event_type: Optional[str] = None) -> List[Any]:
        return [f.get("data") for f in self.frames if event_type is None or f["type"] == event_type]

    def types(self) -> List[str]:
        return [f["type"] for f in self.frames]


class BrokenStorage(JsonFileStorage):
    """Reads work, every write fails."""

    async def _write(self, doc):
        raise StorageError("disk full")


class SlowStorage(JsonFileStorage):
    async def append_message(self, message):
        await asyncio.sleep(1)
        return await super().append_message(message)


@functools.lru_cache(maxsize=None)
def _hash(password: str) -> str:
    return get_password_hash(password)


def make_user(username: str, password: str = "secret", **overrides) -> User:
    fields = dict(
        id=f"id-{username}",
        username=username,
        password_hash=_hash(password),
        display_name=username.title(),
        status=UserStatus.OFFLINE,
        last_seen=datetime(2024, 1, 1, tzinfo=timezone.utc),
        location=Location(lat=-6.2088, lng=106.8456),
    )
    fields.update(overrides)
    return User(**fields)


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "db.json")


@pytest.fixture(params=["json", "sql"])
async def storage(request, tmp_path):
    if request.param == "json":
        backend = JsonFileStorage(str(tmp_path / "db.json"))
    else:
        backend = SqlStorage(f"sqlite+aiosqlite:///{tmp_path / 'db.sqlite'}")
    await backend.init()
    yield backend
    await backend.close()


@pytest.fixture
async def json_storage(db_path):
    backend = JsonFileStorage(db_path)
    await backend.init()
    return backend


@pytest.fixture
def engine(json_storage):
    return DeliveryEngine(json_storage, PresenceRegistry(), ConnectionManager(), storage_timeout=0.5)


@pytest.fixture
def client(db_path):
    app = create_app(storage=JsonFileStorage(db_path))
    with TestClient(app) as test_client:
        yield test_client
