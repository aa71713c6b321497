import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Text, Uuid
from sqlalchemy.orm import relationship

from app.database import Base


class MessageEdit(Base):
    __tablename__ = "message_edits"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    message_id = Column(Uuid, ForeignKey("messages.id", ondelete="CASCADE"), nullable=False)
    previous_content = Column(Text, nullable=False)
    edited_by_user_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"))
    edit_reason = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    message = relationship("Message", back_populates="edits")
