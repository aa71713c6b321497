import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import Boolean, Column, DateTime, Text, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.database import Base

ONLINE_WINDOW = timedelta(minutes=5)


class User(Base):
    """Operator account."""

    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(Text, nullable=False, unique=True)
    name = Column(Text, nullable=False)
    password_hash = Column(Text, nullable=False)
    is_operator = Column(Boolean, nullable=False, default=True)
    is_admin = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    last_seen_at = Column(DateTime(timezone=True))
    settings = Column(Text)  # JSON blob, see UserSettings
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    conversations = relationship("Conversation", back_populates="user")

    def has_operator_access(self) -> bool:
        return bool(self.is_active and (self.is_operator or self.is_admin))

    def has_admin_access(self) -> bool:
        return bool(self.is_active and self.is_admin)

    def is_online(self, now: datetime | None = None) -> bool:
        if self.last_seen_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        last_seen = self.last_seen_at
        if last_seen.tzinfo is None:
            last_seen = last_seen.replace(tzinfo=timezone.utc)
        return now - last_seen < ONLINE_WINDOW
