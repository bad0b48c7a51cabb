"""
External calendar connection model
"""
import enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class CalendarKind(str, enum.Enum):
    GOOGLE = "google"
    MICROSOFT = "microsoft"
    ICAL = "ical"


class CalendarConnection(Base):
    __tablename__ = "calendar_connections"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    kind = Column(String(20), nullable=False)

    # OAuth tokens (encrypted); empty for feed connections
    access_token = Column(Text, nullable=True)
    refresh_token = Column(Text, nullable=True)
    token_expires_at = Column(DateTime, nullable=True)

    account_email = Column(String(255), nullable=True)
    feed_url = Column(String(2000), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    last_error = Column(String(500), nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    user = relationship("User")
