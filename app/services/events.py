"""Domain events pushed to connected operators."""

import re
from datetime import datetime, timezone
from typing import Optional, Union
from uuid import UUID

from pydantic import BaseModel


class MediaFields(BaseModel):
    media_type: Optional[str] = None
    media_url: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    duration: Optional[int] = None


class MessageReceived(MediaFields):
    conversation_id: UUID
    message_id: UUID
    content: str
    telegram_user_id: int
    telegram_user_name: str


class MessageSent(MediaFields):
    conversation_id: UUID
    message_id: UUID
    content: str
    user_id: UUID
    user_name: str


class ConversationCreated(BaseModel):
    conversation_id: UUID
    telegram_user_id: int
    telegram_user_name: str


class ConversationStatusChanged(BaseModel):
    conversation_id: UUID
    status: str
    user_id: Optional[UUID] = None


class ConversationAssigned(BaseModel):
    conversation_id: UUID
    user_id: UUID
    user_name: str


class ConversationClosed(BaseModel):
    conversation_id: UUID


class UserTyping(BaseModel):
    conversation_id: UUID
    user_id: UUID
    user_name: str


class TelegramUserTyping(BaseModel):
    conversation_id: UUID
    telegram_user_id: int


class UserOnline(BaseModel):
    user_id: UUID
    user_name: str


class UserOffline(BaseModel):
    user_id: UUID


class MessageRead(BaseModel):
    message_id: UUID
    conversation_id: UUID


class Error(BaseModel):
    message: str
    code: Optional[str] = None


class BotStatus(BaseModel):
    status: str


Event = Union[
    MessageReceived,
    MessageSent,
    ConversationCreated,
    ConversationStatusChanged,
    ConversationAssigned,
    ConversationClosed,
    UserTyping,
    TelegramUserTyping,
    UserOnline,
    UserOffline,
    MessageRead,
    Error,
    BotStatus,
]

EVENT_TAGS: dict[type, str] = {
    MessageReceived: "message.received",
    MessageSent: "message.sent",
    ConversationCreated: "conversation.created",
    ConversationStatusChanged: "conversation.status_changed",
    ConversationAssigned: "conversation.assigned",
    ConversationClosed: "conversation.closed",
    UserTyping: "user.typing",
    TelegramUserTyping: "telegram_user.typing",
    UserOnline: "user.online",
    UserOffline: "user.offline",
    MessageRead: "message.read",
    Error: "error",
    BotStatus: "bot.status",
}

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def event_tag(event: BaseModel) -> str:
    return EVENT_TAGS[type(event)]


def variant_name(event: BaseModel) -> str:
    return _CAMEL_BOUNDARY.sub("_", type(event).__name__).lower()


def event_frame(event: BaseModel) -> dict:
    """Wire frame sent over the websocket."""
    data = {"type": variant_name(event), **event.model_dump(mode="json")}
    return {
        "type": event_tag(event),
        "data": data,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
