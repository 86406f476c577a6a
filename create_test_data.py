#!/usr/bin/env python3

import asyncio
import sys
import uuid
from datetime import datetime, timedelta, timezone
from typing import List

from geopresence.auth import get_password_hash
from geopresence.config import settings
from geopresence.database import build_storage
from geopresence.schemas.message import Message
from geopresence.schemas.user import Location, User, UserStatus
from geopresence.storage.base import StorageAdapter

USERS_DATA = [
    {"username": "alice", "nama": "Alice", "lat": -6.2088, "lng": 106.8456},
    {"username": "bob", "nama": "Bob", "lat": -6.1751, "lng": 106.8650},
    {"username": "charlie", "nama": "Charlie", "lat": -6.2297, "lng": 106.6894},
    {"username": "diana", "nama": "Diana", "lat": -6.9175, "lng": 107.6191},
]

MESSAGES_DATA = [
    ("alice", "bob", "Hey Bob! Where are you right now?"),
    ("bob", "alice", "Near the station, heading your way"),
    ("alice", "bob", "Great, I can see you on the map"),
    ("charlie", "diana", "Diana, are you still in Bandung?"),
    ("diana", "charlie", "Yes, back tomorrow"),
]


async def create_test_users(storage: StorageAdapter, password: str = "password123") -> List[User]:
    created_users = []
    for data in USERS_DATA:
        existing_user = await storage.find_user(data["username"])
        if existing_user:
            created_users.append(existing_user)
            print(f"User {data['username']} exists (ID: {existing_user.id})")
            continue

        user = User(
            id=uuid.uuid4().hex,
            username=data["username"],
            password_hash=get_password_hash(password),
            display_name=data["nama"],
            status=UserStatus.OFFLINE,
            last_seen=datetime.now(timezone.utc),
            location=Location(lat=data["lat"], lng=data["lng"]),
            avatar_url=settings.AVATAR_URL_TEMPLATE.format(username=data["username"]),
        )
        created_users.append(await storage.create_user(user))
        print(f"Created user: {user.username} (ID: {user.id})")
    return created_users


async def create_test_messages(storage: StorageAdapter) -> List[Message]:
    start = datetime.now(timezone.utc) - timedelta(minutes=len(MESSAGES_DATA))
    created_messages = []
    for i, (sender, recipient, body) in enumerate(MESSAGES_DATA):
        message = Message(sender=sender, recipient=recipient, body=body, timestamp=start + timedelta(minutes=i))
        created_messages.append(await storage.append_message(message))
        print(f"Created message from {sender} to {recipient}: '{body[:30]}...'")
    return created_messages


async def main():
    print("Creating test data for GeoPresence...\n")

    storage = build_storage()
    try:
        await storage.init()

        print("1. Creating test users...")
        users = await create_test_users(storage)
        print(f"Created/found {len(users)} users\n")

        print("2. Creating test messages...")
        messages = await create_test_messages(storage)
        print(f"Created {len(messages)} messages\n")

        print("Users:")
        for user in users:
            print(f"  - {user.username} ({user.display_name}) - password: password123")
    except Exception as e:
        print(f"Error creating test data: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)
    finally:
        await storage.close()


if __name__ == "__main__":
    asyncio.run(main())
