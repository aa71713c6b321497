import uuid
from datetime import datetime, timezone

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Index, Integer, Text, Uuid, text
from sqlalchemy.orm import relationship

from app.database import Base

OPEN_STATUS_CLAUSE = text("status IN ('waiting', 'active')")


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (
        # at most one open conversation per sender
        Index(
            "uq_conversations_open_per_sender",
            "telegram_user_id",
            unique=True,
            postgresql_where=OPEN_STATUS_CLAUSE,
            sqlite_where=OPEN_STATUS_CLAUSE,
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    telegram_user_id = Column(BigInteger, ForeignKey("telegram_users.id"), nullable=False)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"))  # assigned operator
    status = Column(Text, nullable=False, default="waiting")  # waiting, active, closed
    last_message_at = Column(DateTime(timezone=True))
    unread_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    telegram_user = relationship("TelegramUser", back_populates="conversations")
    user = relationship("User", back_populates="conversations")
    messages = relationship("Message", back_populates="conversation", cascade="all, delete-orphan")
