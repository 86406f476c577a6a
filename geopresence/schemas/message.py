from datetime import datetime
from typing import List

from pydantic import BaseModel, Field


class Message(BaseModel):
    """Immutable direct message. Wire and storage names are from/to/message."""

    sender: str = Field(alias="from")
    recipient: str = Field(alias="to")
    body: str = Field(alias="message")
    timestamp: datetime
    is_read: bool = Field(False, alias="isRead")

    class Config:
        populate_by_name = True
        frozen = True

    def involves(self, a: str, b: str) -> bool:
        return (self.sender == a and self.recipient == b) or (self.sender == b and self.recipient == a)


class MessagesResponse(BaseModel):
    success: bool
    messages: List[Message]
