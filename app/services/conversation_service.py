from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.logging_config import get_logger
from app.models import Conversation
from app.services.state_machine import OPEN_STATUSES, ConversationStatus

logger = get_logger("conversation_service")


def find_open_conversation(db: Session, telegram_user_id: int, exclude_id=None) -> Optional[Conversation]:
    """Return the sender's waiting or active conversation, if any."""
    query = db.query(Conversation).filter(
        Conversation.telegram_user_id == telegram_user_id,
        Conversation.status.in_([status.value for status in OPEN_STATUSES]),
    )
    if exclude_id is not None:
        query = query.filter(Conversation.id != exclude_id)
    return query.order_by(Conversation.created_at.desc()).first()


def resolve_conversation(db: Session, telegram_user_id: int) -> tuple[Conversation, bool]:
    """Find the sender's open conversation or open a new one.

    Returns ``(conversation, is_new)``. ``is_new`` is True only for the call
    that created the row, so first-contact side effects fire once per
    conversation lifetime. A concurrent creator losing the race on the
    open-conversation unique index gets the winner's row back.
    """
    conversation = find_open_conversation(db, telegram_user_id)
    if conversation:
        return conversation, False

    conversation = Conversation(
        telegram_user_id=telegram_user_id,
        status=ConversationStatus.WAITING.value,
        last_message_at=datetime.now(timezone.utc),
        unread_count=0,
    )
    try:
        with db.begin_nested():
            db.add(conversation)
            db.flush()
    except IntegrityError:
        existing = find_open_conversation(db, telegram_user_id)
        if existing is None:
            raise
        logger.info(
            "Open conversation created concurrently",
            extra={"context": {"telegram_user_id": telegram_user_id, "conversation_id": str(existing.id)}},
        )
        return existing, False

    logger.info(
        "Conversation created",
        extra={"context": {"telegram_user_id": telegram_user_id, "conversation_id": str(conversation.id)}},
    )
    return conversation, True
