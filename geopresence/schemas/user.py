from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class UserStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"


class Location(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class UserPublic(BaseModel):
    id: str
    username: str
    display_name: str = Field(alias="nama")
    status: UserStatus = UserStatus.OFFLINE
    last_seen: datetime = Field(alias="lastSeen")
    location: Optional[Location] = None
    is_vip: bool = Field(False, alias="isVip")
    avatar_url: Optional[str] = Field(None, alias="avatar")

    class Config:
        populate_by_name = True


class User(UserPublic):
    password_hash: str = Field(alias="password")

    def public(self) -> UserPublic:
        return UserPublic.model_validate(self.model_dump(exclude={"password_hash"}))


class UserCreate(BaseModel):
    username: str = Field(..., min_length=1, max_length=50)
    password: str = Field(..., min_length=1)
    display_name: Optional[str] = Field(None, alias="nama")

    class Config:
        populate_by_name = True


class UserLogin(BaseModel):
    username: str
    password: str


class LocationUpdate(Location):
    token: str


class RegisterResponse(BaseModel):
    success: bool
    message: str


class LoginResponse(BaseModel):
    success: bool
    token: str
    user: UserPublic


class UsersResponse(BaseModel):
    success: bool
    users: List[UserPublic]


class SuccessResponse(BaseModel):
    success: bool
