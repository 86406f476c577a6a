from .base import Base
from .user import UserRow
from .message import MessageRow

__all__ = [
    "Base",
    "UserRow",
    "MessageRow",
]
