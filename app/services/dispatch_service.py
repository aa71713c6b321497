"""Operator replies delivered through the bot."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from app.logging_config import get_logger
from app.models import Conversation, Message, TelegramUser, User
from app.services.events import Error, MessageSent
from app.services.fanout_service import ConnectionManager
from app.services.result import Result
from app.services.telegram_service import SendStatus, TelegramService

logger = get_logger("dispatch")

BOT_UNAVAILABLE = "bot_unavailable"
USER_BLOCKED = "user_blocked"
TRANSPORT_ERROR = "transport_error"


def mark_sender_blocked(db: Session, telegram_user_id: int) -> None:
    try:
        db.query(TelegramUser).filter(TelegramUser.id == telegram_user_id).update(
            {TelegramUser.is_blocked: True}, synchronize_session=False
        )
        db.commit()
    except Exception as exc:
        db.rollback()
        logger.error(
            "Failed to mark sender blocked",
            extra={"context": {"telegram_user_id": telegram_user_id, "error": str(exc)}},
        )


async def dispatch(
    db: Session,
    telegram: Optional[TelegramService],
    fanout: ConnectionManager,
    conversation: Conversation,
    text: str,
    operator: User,
) -> Result[Message]:
    """Send an operator reply to the conversation's sender.

    Error codes: ``bot_unavailable`` (no live bot), ``user_blocked`` (the
    sender blocked the bot or is gone; sender is marked blocked) and
    ``transport_error`` (anything else; nothing is stored).
    """
    if telegram is None:
        return Result.failure("Bot is not connected. Please configure bot token in settings.", BOT_UNAVAILABLE)

    telegram_user_id = conversation.telegram_user_id
    result = await telegram.send_message(telegram_user_id, text)

    if result.status == SendStatus.BLOCKED:
        mark_sender_blocked(db, telegram_user_id)
        await fanout.broadcast(
            Error(
                message=f"User {telegram_user_id} has blocked the bot. Message was not delivered.",
                code="USER_BLOCKED",
            )
        )
        logger.info(
            "Reply not delivered, sender blocked the bot",
            extra={"context": {"conversation_id": str(conversation.id), "telegram_user_id": telegram_user_id}},
        )
        return Result.failure("User has blocked the bot", USER_BLOCKED)

    if result.status == SendStatus.FAILED:
        logger.warning(
            "Reply not delivered",
            extra={"context": {"conversation_id": str(conversation.id), "error": result.error}},
        )
        return Result.failure(f"Failed to send Telegram message: {result.error}", TRANSPORT_ERROR)

    message = Message(
        conversation_id=conversation.id,
        from_operator=True,
        content=text,
        read=True,
        telegram_message_id=result.message_id,
    )
    db.add(message)
    conversation.last_message_at = datetime.now(timezone.utc)
    conversation.unread_count = 0
    db.commit()
    db.refresh(message)

    await fanout.broadcast(
        MessageSent(
            conversation_id=conversation.id,
            message_id=message.id,
            content=message.content,
            user_id=operator.id,
            user_name=operator.email,
        )
    )
    logger.info(
        "Reply delivered",
        extra={"context": {"conversation_id": str(conversation.id), "operator_id": str(operator.id)}},
    )
    return Result.success(message)
