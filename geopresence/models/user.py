from sqlalchemy import Boolean, Column, DateTime, Float, String

from .base import Base


class UserRow(Base):
    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    username = Column(String(50), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    display_name = Column(String(100), nullable=False)
    status = Column(String(16), nullable=False, default="offline")
    last_seen = Column(DateTime(timezone=True), nullable=False)
    # both null when no location is known
    lat = Column(Float, nullable=True)
    lng = Column(Float, nullable=True)
    is_vip = Column(Boolean, default=False, nullable=False)
    avatar_url = Column(String(255), nullable=True)
