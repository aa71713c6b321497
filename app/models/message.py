import uuid
from datetime import datetime, timezone

from sqlalchemy import BigInteger, Boolean, Column, DateTime, ForeignKey, Integer, Text, Uuid
from sqlalchemy.orm import relationship

from app.database import Base


class Message(Base):
    __tablename__ = "messages"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id = Column(Uuid, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)
    from_operator = Column(Boolean, nullable=False, default=False)
    content = Column(Text, nullable=False, default="")
    read = Column(Boolean, nullable=False, default=False)
    telegram_message_id = Column(BigInteger)
    media_type = Column(Text)  # photo, document, video, voice, audio, sticker, animation
    media_url = Column(Text)  # Telegram file id
    file_name = Column(Text)
    file_size = Column(BigInteger)
    mime_type = Column(Text)
    duration = Column(Integer)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    conversation = relationship("Conversation", back_populates="messages")
    edits = relationship("MessageEdit", back_populates="message", cascade="all, delete-orphan")
