import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import and_, desc, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from geopresence.exceptions import StorageError
from geopresence.models import Base, MessageRow, UserRow
from geopresence.schemas.message import Message
from geopresence.schemas.user import Location, User, UserStatus
from geopresence.storage.base import StorageAdapter

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    # sqlite hands back naive datetimes even for timezone-aware columns
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_user(row: UserRow) -> User:
    location = None
    if row.lat is not None and row.lng is not None:
        location = Location(lat=row.lat, lng=row.lng)
    return User(
        id=row.id,
        username=row.username,
        password_hash=row.password_hash,
        display_name=row.display_name,
        status=UserStatus(row.status),
        last_seen=_as_utc(row.last_seen),
        location=location,
        is_vip=row.is_vip,
        avatar_url=row.avatar_url,
    )


def _to_message(row: MessageRow) -> Message:
    return Message(
        sender=row.sender,
        recipient=row.recipient,
        body=row.body,
        timestamp=_as_utc(row.timestamp),
        is_read=row.is_read,
    )


class SqlStorage(StorageAdapter):
    def __init__(self, database_url: str, echo: bool = False):
        super().__init__()
        self.engine = create_async_engine(database_url, echo=echo)
        self.session_factory = async_sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)

    async def init(self) -> None:
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            raise StorageError(f"Could not initialize database: {e}")

    async def close(self) -> None:
        await self.engine.dispose()

    async def find_user(self, username: str) -> Optional[User]:
        try:
            async with self.session_factory() as db:
                result = await db.execute(select(UserRow).where(UserRow.username == username))
                row = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("find_user(%s) failed: %s", username, e)
            raise StorageError(f"Could not read user: {e}")
        return _to_user(row) if row is not None else None

    async def upsert_user(self, user: User) -> User:
        try:
            async with self.session_factory() as db:
                result = await db.execute(select(UserRow).where(UserRow.username == user.username))
                row = result.scalar_one_or_none()
                if row is None:
                    row = UserRow(id=user.id, username=user.username)
                    db.add(row)
                row.password_hash = user.password_hash
                row.display_name = user.display_name
                row.status = user.status.value
                row.last_seen = user.last_seen
                row.lat = user.location.lat if user.location else None
                row.lng = user.location.lng if user.location else None
                row.is_vip = user.is_vip
                row.avatar_url = user.avatar_url
                await db.commit()
        except SQLAlchemyError as e:
            logger.error("upsert_user(%s) failed: %s", user.username, e)
            raise StorageError(f"Could not write user: {e}")
        return user

    async def list_users(self) -> List[User]:
        try:
            async with self.session_factory() as db:
                result = await db.execute(select(UserRow).order_by(UserRow.username))
                rows = list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("list_users failed: %s", e)
            raise StorageError(f"Could not read users: {e}")
        return [_to_user(row) for row in rows]

    async def append_message(self, message: Message) -> Message:
        try:
            async with self.session_factory() as db:
                db.add(MessageRow(
                    sender=message.sender,
                    recipient=message.recipient,
                    body=message.body,
                    timestamp=message.timestamp,
                    is_read=message.is_read,
                ))
                await db.commit()
        except SQLAlchemyError as e:
            logger.error("append_message(%s -> %s) failed: %s", message.sender, message.recipient, e)
            raise StorageError(f"Could not store message: {e}")
        return message

    async def list_conversation(self, user_a: str, user_b: str, limit: int = 50) -> List[Message]:
        if limit <= 0:
            return []
        query = (
            select(MessageRow)
            .where(or_(
                and_(MessageRow.sender == user_a, MessageRow.recipient == user_b),
                and_(MessageRow.sender == user_b, MessageRow.recipient == user_a),
            ))
            .order_by(desc(MessageRow.timestamp), desc(MessageRow.id))
            .limit(limit)
        )
        try:
            async with self.session_factory() as db:
                result = await db.execute(query)
                rows = list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("list_conversation(%s, %s) failed: %s", user_a, user_b, e)
            raise StorageError(f"Could not read messages: {e}")
        return [_to_message(row) for row in reversed(rows)]
