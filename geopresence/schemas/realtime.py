from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from geopresence.schemas.user import Location


class ClientEvent(str, Enum):
    LOGIN = "login"
    SEND_LOCATION = "send-location"
    SEND_MESSAGE = "send-message"
    PING = "ping"
    # never sent by clients, raised by the transport when the socket goes away
    DISCONNECT = "disconnect"


class ServerEvent(str, Enum):
    USER_ONLINE = "user-online"
    USER_OFFLINE = "user-offline"
    USER_LOCATION = "user-location"
    NEW_MESSAGE = "new-message"
    MESSAGE_SENT = "message-sent"
    PONG = "pong"
    ERROR = "error"


class SessionState(str, Enum):
    ANONYMOUS = "anonymous"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


class LoginPayload(BaseModel):
    username: str = Field(..., min_length=1)


class SendLocationPayload(Location):
    username: Optional[str] = None


class SendMessagePayload(BaseModel):
    sender: Optional[str] = Field(None, alias="from")
    to: str = Field(..., min_length=1)
    message: str

    class Config:
        populate_by_name = True


class ClientFrame(BaseModel):
    action: ClientEvent
    data: Any = None
