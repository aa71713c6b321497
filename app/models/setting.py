from sqlalchemy import Column, DateTime, Text
from sqlalchemy.sql import func

from app.database import Base

TELEGRAM_BOT_TOKEN_KEY = "telegram_bot_token"


class Setting(Base):
    __tablename__ = "settings"

    key = Column(Text, primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
