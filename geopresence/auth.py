from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from geopresence.config import settings
from geopresence.exceptions import InvalidPassword, InvalidToken, UserNotFound
from geopresence.schemas.user import User
from geopresence.storage.base import StorageAdapter

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode["exp"] = datetime.now(timezone.utc) + expires_delta
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> str:
    """Return the username carried by `token` or raise InvalidToken."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError as e:
        raise InvalidToken(f"Invalid token: {e}")

    username = payload.get("sub")
    if not username:
        raise InvalidToken()
    return username


async def authenticate_user(storage: StorageAdapter, username: str, password: str) -> User:
    user = await storage.find_user(username)
    if user is None:
        raise UserNotFound(username)
    if not verify_password(password, user.password_hash):
        raise InvalidPassword()
    return user
