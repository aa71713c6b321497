"""Inbound Telegram message handling."""

import html
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from sqlalchemy.orm import Session

from app.l10n import LocaleCatalog
from app.logging_config import get_logger
from app.models import Conversation, Message, TelegramUser, User
from app.schemas.telegram import TelegramMessage, TelegramUpdate
from app.schemas.telegram import TelegramUser as TelegramSender
from app.schemas.user import UserSettings
from app.services.conversation_service import resolve_conversation
from app.services.events import ConversationCreated, MessageReceived
from app.services.fanout_service import ConnectionManager
from app.services.telegram_service import TelegramService

logger = get_logger("ingestion")

NOTIFICATION_PREVIEW_LENGTH = 50


class MessageKind(str, Enum):
    TEXT = "text"
    PHOTO = "photo"
    DOCUMENT = "document"
    VIDEO = "video"
    VOICE = "voice"
    AUDIO = "audio"
    STICKER = "sticker"
    ANIMATION = "animation"


class IngestStatus(str, Enum):
    STORED = "stored"
    UNSUPPORTED = "unsupported"
    EMPTY = "empty"
    BLOCKED = "blocked"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


@dataclass
class MediaDescriptor:
    kind: MessageKind
    locator: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    duration: Optional[int] = None

    def as_fields(self) -> dict:
        return {
            "media_type": self.kind.value,
            "media_url": self.locator,
            "file_name": self.file_name,
            "file_size": self.file_size,
            "mime_type": self.mime_type,
            "duration": self.duration,
        }


@dataclass
class IngestOutcome:
    status: IngestStatus
    conversation: Optional[Conversation] = None
    message: Optional[Message] = None
    is_new: bool = False
    replies: list[str] = field(default_factory=list)


def classify_message(message: TelegramMessage) -> Optional[MessageKind]:
    """Return the message kind, or None when the type is unsupported."""
    if message.text is not None:
        return MessageKind.TEXT
    if message.photo:
        return MessageKind.PHOTO
    if message.document:
        return MessageKind.DOCUMENT
    if message.video:
        return MessageKind.VIDEO
    if message.voice:
        return MessageKind.VOICE
    if message.audio:
        return MessageKind.AUDIO
    if message.sticker:
        return MessageKind.STICKER
    if message.animation:
        return MessageKind.ANIMATION
    return None


def extract_content(message: TelegramMessage, kind: MessageKind) -> tuple[str, Optional[MediaDescriptor]]:
    """Split a message into display text and an optional media descriptor."""
    caption = message.caption

    if kind == MessageKind.TEXT:
        return message.text or "", None

    if kind == MessageKind.PHOTO:
        largest = max(message.photo, key=lambda size: size.width * size.height)
        return caption or "", MediaDescriptor(kind, largest.file_id, file_size=largest.file_size)

    if kind == MessageKind.DOCUMENT:
        doc = message.document
        return caption or "Document", MediaDescriptor(
            kind, doc.file_id, file_name=doc.file_name, file_size=doc.file_size, mime_type=doc.mime_type
        )

    if kind == MessageKind.VIDEO:
        video = message.video
        return caption or "Video", MediaDescriptor(
            kind, video.file_id, file_size=video.file_size, mime_type=video.mime_type, duration=video.duration
        )

    if kind == MessageKind.VOICE:
        voice = message.voice
        return "Voice message", MediaDescriptor(
            kind, voice.file_id, file_size=voice.file_size, mime_type=voice.mime_type, duration=voice.duration
        )

    if kind == MessageKind.AUDIO:
        audio = message.audio
        return caption or "Audio", MediaDescriptor(
            kind,
            audio.file_id,
            file_name=audio.file_name,
            file_size=audio.file_size,
            mime_type=audio.mime_type,
            duration=audio.duration,
        )

    if kind == MessageKind.STICKER:
        sticker = message.sticker
        text = f"Sticker {sticker.emoji}" if sticker.emoji else "Sticker"
        return text, MediaDescriptor(kind, sticker.file_id, file_size=sticker.file_size)

    animation = message.animation
    return caption or "Animation", MediaDescriptor(
        kind,
        animation.file_id,
        file_name=animation.file_name,
        file_size=animation.file_size,
        mime_type=animation.mime_type,
        duration=animation.duration,
    )


def country_from_language(language_code: Optional[str]) -> Optional[str]:
    """``en-US`` -> ``US``, ``ru`` -> ``RU``."""
    if not language_code:
        return None
    region = language_code.replace("_", "-").split("-")[-1]
    return region.upper() or None


def sender_display_name(sender: TelegramSender) -> str:
    if sender.username:
        return sender.username
    if sender.first_name:
        return sender.first_name
    return f"User {sender.id}"


def get_or_create_telegram_user(db: Session, sender: TelegramSender) -> TelegramUser:
    telegram_user = db.query(TelegramUser).filter(TelegramUser.id == sender.id).first()
    if telegram_user:
        return telegram_user

    telegram_user = TelegramUser(
        id=sender.id,
        username=sender.username,
        first_name=sender.first_name,
        last_name=sender.last_name,
        country_code=country_from_language(sender.language_code),
        is_blocked=False,
    )
    db.add(telegram_user)
    db.flush()
    logger.info("Telegram user created", extra={"context": {"telegram_user_id": sender.id}})
    return telegram_user


async def refresh_avatar(db: Session, telegram: TelegramService, telegram_user: TelegramUser) -> None:
    """Best-effort avatar lookup; failures are logged only."""
    try:
        photo_url = await telegram.find_avatar_url(telegram_user.id)
    except Exception as exc:
        logger.warning(
            "Avatar lookup failed",
            extra={"context": {"telegram_user_id": telegram_user.id, "error": str(exc)}},
        )
        return
    if photo_url:
        telegram_user.photo_url = photo_url
        db.flush()


def is_duplicate(db: Session, telegram_user_id: int, telegram_message_id: int) -> bool:
    return (
        db.query(Message.id)
        .join(Conversation, Message.conversation_id == Conversation.id)
        .filter(
            Conversation.telegram_user_id == telegram_user_id,
            Message.telegram_message_id == telegram_message_id,
            Message.from_operator.is_(False),
        )
        .first()
        is not None
    )


def notification_text(telegram_user: TelegramUser, first_message: str) -> str:
    preview = first_message
    if len(preview) > NOTIFICATION_PREVIEW_LENGTH:
        preview = preview[:NOTIFICATION_PREVIEW_LENGTH] + "..."
    return (
        "🔔 <b>New conversation</b>\n\n"
        f"From: {html.escape(telegram_user.full_name)}\n"
        f"Message: {html.escape(preview)}\n\n"
        "Please log in to the system to respond."
    )


async def notify_operators(db: Session, telegram: TelegramService, telegram_user: TelegramUser, first_message: str) -> int:
    """Ping operators who opted into Telegram notifications. Returns delivered count."""
    text = notification_text(telegram_user, first_message)
    delivered = 0
    for operator in db.query(User).filter(User.is_active.is_(True)).all():
        chat_id = UserSettings.from_blob(operator.settings).telegram_notifications_user_id
        if chat_id is None:
            continue
        result = await telegram.send_message(chat_id, text, parse_mode="HTML")
        if result.ok:
            delivered += 1
        else:
            logger.warning(
                "Operator notification failed",
                extra={"context": {"operator_id": str(operator.id), "error": result.error}},
            )
    return delivered


async def _reply(telegram: TelegramService, chat_id: int, text: str, outcome: IngestOutcome) -> None:
    result = await telegram.send_message(chat_id, text)
    outcome.replies.append(text)
    if not result.ok:
        logger.warning(
            "Reply to sender failed",
            extra={"context": {"chat_id": chat_id, "error": result.error}},
        )


async def ingest_message(
    db: Session,
    telegram: TelegramService,
    fanout: ConnectionManager,
    locales: LocaleCatalog,
    message: TelegramMessage,
) -> IngestOutcome:
    """Store an inbound sender message and notify operators."""
    sender = message.from_user
    if sender is None or sender.is_bot:
        return IngestOutcome(IngestStatus.IGNORED)

    chat_id = message.chat.id
    sender_country = country_from_language(sender.language_code)

    kind = classify_message(message)
    if kind is None:
        outcome = IngestOutcome(IngestStatus.UNSUPPORTED)
        await _reply(telegram, chat_id, locales.for_country(sender_country, "unsupported"), outcome)
        return outcome

    text, media = extract_content(message, kind)
    if kind == MessageKind.TEXT and not text.strip():
        outcome = IngestOutcome(IngestStatus.EMPTY)
        await _reply(telegram, chat_id, locales.for_country(sender_country, "empty_message"), outcome)
        return outcome

    telegram_user = get_or_create_telegram_user(db, sender)
    if not telegram_user.photo_url:
        await refresh_avatar(db, telegram, telegram_user)
    db.commit()

    if telegram_user.is_blocked:
        outcome = IngestOutcome(IngestStatus.BLOCKED)
        await _reply(telegram, chat_id, locales.for_country(telegram_user.country_code, "error"), outcome)
        logger.info("Message from blocked sender dropped", extra={"context": {"telegram_user_id": sender.id}})
        return outcome

    if is_duplicate(db, telegram_user.id, message.message_id):
        logger.info(
            "Duplicate update ignored",
            extra={"context": {"telegram_user_id": sender.id, "telegram_message_id": message.message_id}},
        )
        return IngestOutcome(IngestStatus.DUPLICATE)

    conversation, is_new = resolve_conversation(db, telegram_user.id)
    db.commit()
    outcome = IngestOutcome(IngestStatus.STORED, conversation=conversation, is_new=is_new)

    if is_new:
        await fanout.broadcast(
            ConversationCreated(
                conversation_id=conversation.id,
                telegram_user_id=telegram_user.id,
                telegram_user_name=telegram_user.full_name,
            )
        )
        await notify_operators(db, telegram, telegram_user, text)

    media_fields = media.as_fields() if media else {}
    stored = Message(
        conversation_id=conversation.id,
        from_operator=False,
        content=text,
        read=False,
        telegram_message_id=message.message_id,
        **media_fields,
    )
    db.add(stored)
    db.flush()

    db.query(Conversation).filter(Conversation.id == conversation.id).update(
        {
            Conversation.last_message_at: datetime.now(timezone.utc),
            Conversation.unread_count: Conversation.unread_count + 1,
        },
        synchronize_session=False,
    )
    db.commit()
    db.refresh(conversation)
    outcome.message = stored

    if is_new:
        await _reply(telegram, chat_id, locales.for_country(telegram_user.country_code, "welcome"), outcome)

    await fanout.broadcast(
        MessageReceived(
            conversation_id=conversation.id,
            message_id=stored.id,
            content=text,
            telegram_user_id=telegram_user.id,
            telegram_user_name=sender_display_name(sender),
            **media_fields,
        )
    )
    logger.info(
        "Message ingested",
        extra={
            "context": {
                "conversation_id": str(conversation.id),
                "telegram_user_id": telegram_user.id,
                "kind": kind.value,
                "is_new": is_new,
            }
        },
    )
    return outcome


def command_reply(locales: LocaleCatalog, message: TelegramMessage) -> Optional[str]:
    """Reply text for a bot command, or None if the message is not a command."""
    text = (message.text or "").strip()
    if not text.startswith("/") or message.from_user is None:
        return None
    command = text.split()[0].split("@")[0].lower()
    country = country_from_language(message.from_user.language_code)
    if command == "/start":
        return locales.for_country(country, "start", first_name=message.from_user.first_name)
    if command == "/help":
        return locales.for_country(country, "help")
    return locales.for_country(country, "unknown_command")


async def handle_update(
    update: TelegramUpdate,
    session_factory: Callable[[], Session],
    telegram: TelegramService,
    fanout: ConnectionManager,
    locales: LocaleCatalog,
) -> Optional[IngestOutcome]:
    """Process one update in its own session. Failures end in an apology, never an exception."""
    message = update.message
    if message is None:
        return None

    reply = command_reply(locales, message)
    if reply is not None:
        await telegram.send_message(message.chat.id, reply)
        return None

    db = session_factory()
    try:
        return await ingest_message(db, telegram, fanout, locales, message)
    except Exception as exc:
        db.rollback()
        logger.error(
            "Failed to process update",
            extra={"context": {"update_id": update.update_id, "error": str(exc)}},
            exc_info=True,
        )
        country = country_from_language(message.from_user.language_code) if message.from_user else None
        await telegram.send_message(message.chat.id, locales.for_country(country, "apology"))
        return None
    finally:
        db.close()
