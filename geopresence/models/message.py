from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from .base import Base


class MessageRow(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    # usernames, intentionally not foreign keys
    sender = Column(String(50), nullable=False, index=True)
    recipient = Column(String(50), nullable=False, index=True)
    body = Column(Text, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
    is_read = Column(Boolean, default=False, nullable=False)
