from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from app.schemas.telegram_user import TelegramUserResponse


class ConversationResponse(BaseModel):
    id: UUID
    telegram_user_id: int
    user_id: Optional[UUID] = None
    status: str
    last_message_at: Optional[datetime] = None
    unread_count: int
    created_at: Optional[datetime] = None
    telegram_user: Optional[TelegramUserResponse] = None
    last_message: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ConversationListResponse(BaseModel):
    conversations: list[ConversationResponse]
    total: int


class AssignRequest(BaseModel):
    user_id: UUID


class StatusUpdateRequest(BaseModel):
    status: str
