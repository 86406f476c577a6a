import logging
import uuid
from datetime import datetime, timezone
from urllib.parse import quote

from fastapi import APIRouter, Depends

from geopresence.auth import authenticate_user, create_access_token, get_password_hash
from geopresence.config import settings
from geopresence.database import get_storage
from geopresence.schemas.user import (
    LoginResponse,
    Location,
    RegisterResponse,
    User,
    UserCreate,
    UserLogin,
    UserStatus,
)
from geopresence.storage.base import StorageAdapter

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/register", response_model=RegisterResponse)
async def register_user(user_data: UserCreate, storage: StorageAdapter = Depends(get_storage)):
    user = User(
        id=uuid.uuid4().hex,
        username=user_data.username,
        password_hash=get_password_hash(user_data.password),
        display_name=user_data.display_name or user_data.username,
        status=UserStatus.OFFLINE,
        last_seen=datetime.now(timezone.utc),
        location=Location(lat=settings.DEFAULT_LAT, lng=settings.DEFAULT_LNG),
        is_vip=False,
        avatar_url=settings.AVATAR_URL_TEMPLATE.format(username=quote(user_data.username)),
    )
    await storage.create_user(user)
    logger.info("Registered %s", user.username)
    return {"success": True, "message": "Registration successful"}


@router.post("/login", response_model=LoginResponse)
async def login_user(credentials: UserLogin, storage: StorageAdapter = Depends(get_storage)):
    user = await authenticate_user(storage, credentials.username, credentials.password)

    def mark_online(record: User) -> User:
        return record.model_copy(update={"status": UserStatus.ONLINE, "last_seen": datetime.now(timezone.utc)})

    user = await storage.update_user(user.username, mark_online) or user
    token = create_access_token(data={"sub": user.username, "id": user.id})
    return {"success": True, "token": token, "user": user.public()}
