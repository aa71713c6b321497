from sqlalchemy import BigInteger, Boolean, Column, DateTime, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.database import Base


class TelegramUser(Base):
    __tablename__ = "telegram_users"

    id = Column(BigInteger, primary_key=True, autoincrement=False)  # Telegram user id
    username = Column(Text)
    first_name = Column(Text)
    last_name = Column(Text)
    photo_url = Column(Text)
    country_code = Column(Text)
    is_blocked = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    conversations = relationship("Conversation", back_populates="telegram_user")

    @property
    def full_name(self) -> str:
        parts = [self.first_name or "", self.last_name or ""]
        name = " ".join(part for part in parts if part)
        return name or f"User {self.id}"

    @property
    def display_name(self) -> str:
        if self.username:
            return f"@{self.username}"
        return self.full_name
