from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class MessageResponse(BaseModel):
    id: UUID
    conversation_id: UUID
    from_operator: bool
    content: str
    read: bool
    telegram_message_id: Optional[int] = None
    media_type: Optional[str] = None
    media_url: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    duration: Optional[int] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class SendMessageRequest(BaseModel):
    conversation_id: UUID
    content: str = Field(min_length=1)


class EditMessageRequest(BaseModel):
    content: str = Field(min_length=1)
    edit_reason: Optional[str] = None


class MessageEditResponse(BaseModel):
    id: UUID
    message_id: UUID
    previous_content: str
    edited_by_user_id: Optional[UUID] = None
    edit_reason: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
