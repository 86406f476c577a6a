import asyncio
import json
import time

import pytest

from conftest import BrokenStorage, FakeConnection, SlowStorage, make_user
from geopresence.delivery import DeliveryEngine, MessageClock
from geopresence.presence import PresenceRegistry
from geopresence.schemas.realtime import ClientEvent, SessionState
from geopresence.schemas.user import Location, UserStatus
from geopresence.session import RealtimeSession
from geopresence.storage import JsonFileStorage
from geopresence.websocket_manager import ConnectionManager

pytestmark = pytest.mark.anyio


async def open_session(engine, name):
    conn = FakeConnection(name)
    await engine.manager.connect(conn)
    return conn, RealtimeSession(conn, engine)


@pytest.fixture
async def users(json_storage):
    for name in ("alice", "bob", "carol"):
        await json_storage.create_user(make_user(name))


async def test_login_binds_connection_and_announces(engine, json_storage, users):
    watcher, _ = await open_session(engine, "watcher")
    conn, session = await open_session(engine, "alice-1")

    await session.handle(ClientEvent.LOGIN, "alice")

    assert session.state is SessionState.AUTHENTICATED
    assert engine.registry.get_connection("alice") is conn
    assert (await json_storage.find_user("alice")).status is UserStatus.ONLINE
    assert watcher.events("user-online") == ["alice"]
    assert conn.events("user-online") == ["alice"]


async def test_login_accepts_object_payload(engine, users):
    conn, session = await open_session(engine, "alice-1")
    await session.handle(ClientEvent.LOGIN, {"username": "alice"})
    assert engine.registry.get_connection("alice") is conn


async def test_invalid_login_payload_stays_anonymous(engine):
    conn, session = await open_session(engine, "c1")

    await session.handle(ClientEvent.LOGIN, {"name": "alice"})

    assert session.state is SessionState.ANONYMOUS
    assert conn.types() == ["error"]
    assert engine.registry.online_usernames() == []


async def test_anonymous_session_cannot_send(engine, json_storage, users):
    watcher, _ = await open_session(engine, "watcher")
    conn, session = await open_session(engine, "c1")

    await session.handle(ClientEvent.SEND_MESSAGE, {"from": "alice", "to": "bob", "message": "hi"})
    await session.handle(ClientEvent.SEND_LOCATION, {"username": "alice", "lat": 1, "lng": 2})

    assert conn.types() == ["error", "error"]
    assert watcher.frames == []
    assert await json_storage.list_conversation("alice", "bob") == []


async def test_send_location_persists_then_broadcasts_to_others(engine, json_storage, users):
    watcher, _ = await open_session(engine, "watcher")
    conn, session = await open_session(engine, "alice-1")
    await session.handle(ClientEvent.LOGIN, "alice")

    await session.handle(ClientEvent.SEND_LOCATION, {"username": "alice", "lat": -6.9, "lng": 107.6})

    assert (await json_storage.find_user("alice")).location == Location(lat=-6.9, lng=107.6)
    assert watcher.events("user-location") == [{"username": "alice", "lat": -6.9, "lng": 107.6}]
    assert conn.events("user-location") == []


async def test_location_uses_session_identity(engine, json_storage, users):
    _, session = await open_session(engine, "alice-1")
    await session.handle(ClientEvent.LOGIN, "alice")

    await session.handle(ClientEvent.SEND_LOCATION, {"username": "bob", "lat": 10, "lng": 20})

    assert (await json_storage.find_user("alice")).location == Location(lat=10, lng=20)
    assert (await json_storage.find_user("bob")).location != Location(lat=10, lng=20)


async def test_message_to_offline_recipient_is_stored_and_acked(engine, json_storage, users):
    conn, session = await open_session(engine, "alice-1")
    await session.handle(ClientEvent.LOGIN, "alice")

    await session.handle(ClientEvent.SEND_MESSAGE, {"from": "alice", "to": "bob", "message": "hi"})

    stored = await json_storage.list_conversation("alice", "bob")
    assert [(m.sender, m.recipient, m.body) for m in stored] == [("alice", "bob", "hi")]
    assert conn.events("message-sent") == [{"success": True}]
    assert conn.events("new-message") == []


async def test_message_to_online_recipient_is_pushed(engine, users):
    alice, alice_session = await open_session(engine, "alice-1")
    bob, bob_session = await open_session(engine, "bob-1")
    carol, carol_session = await open_session(engine, "carol-1")
    for session, name in ((alice_session, "alice"), (bob_session, "bob"), (carol_session, "carol")):
        await session.handle(ClientEvent.LOGIN, name)

    await alice_session.handle(ClientEvent.SEND_MESSAGE, {"to": "bob", "message": "hi bob"})

    pushed = bob.events("new-message")
    assert len(pushed) == 1
    assert pushed[0]["from"] == "alice"
    assert pushed[0]["to"] == "bob"
    assert pushed[0]["message"] == "hi bob"
    assert "timestamp" in pushed[0]
    assert carol.events("new-message") == []
    assert alice.events("message-sent") == [{"success": True}]


async def test_message_timestamps_are_assigned_by_server(engine, json_storage, users):
    _, session = await open_session(engine, "alice-1")
    await session.handle(ClientEvent.LOGIN, "alice")

    for i in range(3):
        await session.handle(
            ClientEvent.SEND_MESSAGE, {"to": "bob", "message": f"m{i}", "timestamp": "1999-01-01T00:00:00Z"}
        )

    stamps = [m.timestamp for m in await json_storage.list_conversation("alice", "bob")]
    assert stamps == sorted(stamps)
    assert len(set(stamps)) == 3
    assert all(ts.year > 1999 for ts in stamps)


async def test_disconnect_releases_registry_and_announces(engine, json_storage, users):
    watcher, _ = await open_session(engine, "watcher")
    conn, session = await open_session(engine, "alice-1")
    await session.handle(ClientEvent.LOGIN, "alice")

    await session.handle(ClientEvent.DISCONNECT)

    assert session.state is SessionState.CLOSED
    assert engine.registry.get_connection("alice") is None
    assert (await json_storage.find_user("alice")).status is UserStatus.OFFLINE
    assert watcher.events("user-offline") == ["alice"]


async def test_closing_anonymous_session_has_no_side_effects(engine):
    watcher, _ = await open_session(engine, "watcher")
    _, session = await open_session(engine, "c1")

    await session.close()
    await session.close()

    assert session.state is SessionState.CLOSED
    assert watcher.frames == []


async def test_closed_session_ignores_events(engine, json_storage, users):
    conn, session = await open_session(engine, "alice-1")
    await session.handle(ClientEvent.LOGIN, "alice")
    await session.close()
    conn.frames.clear()

    await session.handle(ClientEvent.SEND_MESSAGE, {"to": "bob", "message": "late"})
    await session.handle(ClientEvent.LOGIN, "alice")

    assert conn.frames == []
    assert await json_storage.list_conversation("alice", "bob") == []
    assert engine.registry.get_connection("alice") is None


async def test_older_connection_disconnect_does_not_evict_newer_login(engine, json_storage, users):
    watcher, _ = await open_session(engine, "watcher")
    first, first_session = await open_session(engine, "alice-1")
    second, second_session = await open_session(engine, "alice-2")

    await first_session.handle(ClientEvent.LOGIN, "alice")
    await second_session.handle(ClientEvent.LOGIN, "alice")
    assert engine.registry.get_connection("alice") is second

    await first_session.close()

    assert engine.registry.get_connection("alice") is second
    assert (await json_storage.find_user("alice")).status is UserStatus.ONLINE
    assert watcher.events("user-offline") == []

    await second_session.close()
    assert engine.registry.get_connection("alice") is None
    assert watcher.events("user-offline") == ["alice"]


async def test_messages_follow_the_newest_login(engine, users):
    first, first_session = await open_session(engine, "bob-1")
    second, second_session = await open_session(engine, "bob-2")
    _, alice_session = await open_session(engine, "alice-1")
    await first_session.handle(ClientEvent.LOGIN, "bob")
    await second_session.handle(ClientEvent.LOGIN, "bob")
    await alice_session.handle(ClientEvent.LOGIN, "alice")

    await alice_session.handle(ClientEvent.SEND_MESSAGE, {"to": "bob", "message": "which one?"})

    assert first.events("new-message") == []
    assert len(second.events("new-message")) == 1


async def test_relogin_as_other_user_releases_previous_identity(engine, json_storage, users):
    watcher, _ = await open_session(engine, "watcher")
    conn, session = await open_session(engine, "c1")
    await session.handle(ClientEvent.LOGIN, "alice")

    await session.handle(ClientEvent.LOGIN, "bob")

    assert session.username == "bob"
    assert engine.registry.get_connection("alice") is None
    assert engine.registry.get_connection("bob") is conn
    assert (await json_storage.find_user("alice")).status is UserStatus.OFFLINE
    assert watcher.events("user-offline") == ["alice"]
    assert watcher.events("user-online") == ["alice", "bob"]


async def test_ping_answers_pong(engine):
    conn, session = await open_session(engine, "c1")
    await session.handle(ClientEvent.PING)
    assert conn.types() == ["pong"]


async def test_dead_socket_does_not_break_broadcast(engine, users):
    dead = FakeConnection("dead", fail=True)
    await engine.manager.connect(dead)
    watcher, _ = await open_session(engine, "watcher")
    _, session = await open_session(engine, "alice-1")

    await session.handle(ClientEvent.LOGIN, "alice")

    assert watcher.events("user-online") == ["alice"]
    assert dead not in engine.manager.active_connections


async def test_storage_failure_does_not_block_realtime_delivery(db_path):
    storage = BrokenStorage(db_path)
    engine = DeliveryEngine(storage, PresenceRegistry(), ConnectionManager(), storage_timeout=0.5)
    alice, alice_session = await open_session(engine, "alice-1")
    bob, bob_session = await open_session(engine, "bob-1")
    await alice_session.handle(ClientEvent.LOGIN, "alice")
    await bob_session.handle(ClientEvent.LOGIN, "bob")

    await alice_session.handle(ClientEvent.SEND_LOCATION, {"lat": 1, "lng": 2})
    await alice_session.handle(ClientEvent.SEND_MESSAGE, {"to": "bob", "message": "hi"})

    assert bob.events("user-location") == [{"username": "alice", "lat": 1, "lng": 2}]
    assert [m["message"] for m in bob.events("new-message")] == ["hi"]
    assert alice.events("message-sent") == [{"success": False}]


async def test_slow_storage_is_bounded(db_path):
    storage = SlowStorage(db_path)
    await storage.init()
    engine = DeliveryEngine(storage, PresenceRegistry(), ConnectionManager(), storage_timeout=0.05)
    alice, session = await open_session(engine, "alice-1")
    await session.handle(ClientEvent.LOGIN, "alice")

    await session.handle(ClientEvent.SEND_MESSAGE, {"to": "bob", "message": "hi"})

    assert alice.events("message-sent") == [{"success": False}]


def test_message_clock_is_strictly_increasing():
    clock = MessageClock()
    stamps = [clock.now() for _ in range(100)]
    assert all(a < b for a, b in zip(stamps, stamps[1:]))


class SlowDiskStorage(JsonFileStorage):
    slow_writes = 0

    def _dump(self, doc):
        if self.slow_writes:
            self.slow_writes -= 1
            time.sleep(0.3)
        super()._dump(doc)


async def test_timed_out_write_still_lands_in_memory_and_on_disk(db_path):
    storage = SlowDiskStorage(db_path)
    await storage.init()
    engine = DeliveryEngine(storage, PresenceRegistry(), ConnectionManager(), storage_timeout=0.1)
    alice, session = await open_session(engine, "alice-1")
    await session.handle(ClientEvent.LOGIN, "alice")

    storage.slow_writes = 1
    await session.handle(ClientEvent.SEND_MESSAGE, {"to": "bob", "message": "m1"})
    assert alice.events("message-sent") == [{"success": False}]

    await asyncio.sleep(0.4)
    await session.handle(ClientEvent.SEND_MESSAGE, {"to": "bob", "message": "m2"})
    assert alice.events("message-sent") == [{"success": False}, {"success": True}]

    assert [m.body for m in await storage.list_conversation("alice", "bob")] == ["m1", "m2"]
    with open(db_path) as f:
        assert [m["message"] for m in json.load(f)["messages"]] == ["m1", "m2"]


async def test_anonymous_logins_leave_no_per_user_locks(engine, json_storage):
    for i in range(50):
        _, session = await open_session(engine, f"ghost-conn-{i}")
        await session.handle(ClientEvent.LOGIN, f"ghost{i}")
        await session.close()

    assert engine.registry.online_usernames() == []
    assert len(json_storage._user_locks) == 0
