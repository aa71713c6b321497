from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.database import get_db
from app.deps import get_bot_manager, get_current_user, get_fanout
from app.errors import BadRequestError, ConflictError, NotFoundError, ValidationError
from app.logging_config import get_logger
from app.models import Conversation, Message, TelegramUser, User
from app.schemas.conversation import (
    AssignRequest,
    ConversationListResponse,
    ConversationResponse,
    StatusUpdateRequest,
)
from app.services.bot_manager import BotManager
from app.services.conversation_service import find_open_conversation
from app.services.events import ConversationAssigned, ConversationClosed, ConversationStatusChanged
from app.services.fanout_service import ConnectionManager
from app.services.state_machine import (
    ConversationStatus,
    InvalidTransitionError,
    assign,
    is_open,
    transition,
)

router = APIRouter(prefix="/conversations", tags=["conversations"])
logger = get_logger("conversations")


def get_conversation_or_404(db: Session, conversation_id: UUID) -> Conversation:
    conversation = db.query(Conversation).filter(Conversation.id == conversation_id).first()
    if not conversation:
        raise NotFoundError(f"Conversation {conversation_id} not found")
    return conversation


def to_response(db: Session, conversation: Conversation) -> ConversationResponse:
    last = (
        db.query(Message.content)
        .filter(Message.conversation_id == conversation.id)
        .order_by(Message.created_at.desc())
        .first()
    )
    response = ConversationResponse.model_validate(conversation)
    response.last_message = last[0] if last else None
    return response


def ensure_can_reopen(db: Session, conversation: Conversation, target: ConversationStatus) -> None:
    if conversation.status == ConversationStatus.CLOSED.value and is_open(target):
        other = find_open_conversation(db, conversation.telegram_user_id, exclude_id=conversation.id)
        if other is not None:
            raise ConflictError("Sender already has an open conversation")


async def notify_sender(bot_manager: BotManager, conversation: Conversation, key: str, **params):
    """Best-effort localized notice to the sender."""
    telegram = bot_manager.current_transport()
    if telegram is None:
        return
    country = conversation.telegram_user.country_code if conversation.telegram_user else None
    text = bot_manager.locales.for_country(country, key, **params)
    result = await telegram.send_message(conversation.telegram_user_id, text)
    if not result.ok:
        logger.warning(
            "Sender notice not delivered",
            extra={"context": {"conversation_id": str(conversation.id), "key": key, "error": result.error}},
        )


@router.get("", response_model=ConversationListResponse)
def list_conversations(
    status: Optional[str] = None,
    user_id: Optional[UUID] = None,
    search: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    query = db.query(Conversation).join(TelegramUser, Conversation.telegram_user_id == TelegramUser.id)

    if status:
        if status not in {s.value for s in ConversationStatus}:
            raise ValidationError(f"Unknown status: {status}")
        query = query.filter(Conversation.status == status)
    else:
        query = query.filter(Conversation.status != ConversationStatus.CLOSED.value)

    if user_id:
        query = query.filter(Conversation.user_id == user_id)
    elif not user.has_admin_access():
        query = query.filter(or_(Conversation.user_id == user.id, Conversation.user_id.is_(None)))

    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(
            or_(
                TelegramUser.first_name.ilike(pattern),
                TelegramUser.last_name.ilike(pattern),
                TelegramUser.username.ilike(pattern),
            )
        )

    total = query.count()
    conversations = (
        query.order_by(Conversation.last_message_at.desc(), Conversation.created_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return ConversationListResponse(conversations=[to_response(db, c) for c in conversations], total=total)


@router.get("/{conversation_id}", response_model=ConversationResponse)
def get_conversation(conversation_id: UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return to_response(db, get_conversation_or_404(db, conversation_id))


@router.patch("/{conversation_id}/assign", response_model=ConversationResponse)
async def assign_conversation(
    conversation_id: UUID,
    request: AssignRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    fanout: ConnectionManager = Depends(get_fanout),
    bot_manager: BotManager = Depends(get_bot_manager),
):
    conversation = get_conversation_or_404(db, conversation_id)
    operator = db.query(User).filter(User.id == request.user_id).first()
    if operator is None or not operator.has_operator_access():
        raise NotFoundError(f"Operator {request.user_id} not found")

    ensure_can_reopen(db, conversation, ConversationStatus.ACTIVE)
    try:
        conversation.status = assign(ConversationStatus(conversation.status)).value
    except InvalidTransitionError as exc:
        raise BadRequestError(str(exc))
    conversation.user_id = operator.id
    db.commit()
    db.refresh(conversation)

    await fanout.broadcast(
        ConversationAssigned(conversation_id=conversation.id, user_id=operator.id, user_name=operator.name)
    )
    await notify_sender(bot_manager, conversation, "operator_assigned", operator_name=operator.name)
    logger.info(
        "Conversation assigned",
        extra={"context": {"conversation_id": str(conversation.id), "operator_id": str(operator.id)}},
    )
    return to_response(db, conversation)


async def _change_status(
    db: Session,
    conversation: Conversation,
    target: ConversationStatus,
    user: User,
    fanout: ConnectionManager,
    bot_manager: BotManager,
) -> Conversation:
    current = ConversationStatus(conversation.status)
    if current == target:
        return conversation

    ensure_can_reopen(db, conversation, target)
    try:
        conversation.status = transition(current, target).value
    except InvalidTransitionError as exc:
        raise BadRequestError(str(exc))
    db.commit()
    db.refresh(conversation)

    if target == ConversationStatus.CLOSED:
        await fanout.broadcast(ConversationClosed(conversation_id=conversation.id))
        await notify_sender(bot_manager, conversation, "conversation_closed")
    else:
        await fanout.broadcast(
            ConversationStatusChanged(conversation_id=conversation.id, status=target.value, user_id=user.id)
        )
    logger.info(
        "Conversation status changed",
        extra={"context": {"conversation_id": str(conversation.id), "from": current.value, "to": target.value}},
    )
    return conversation


@router.patch("/{conversation_id}/status", response_model=ConversationResponse)
async def update_status(
    conversation_id: UUID,
    request: StatusUpdateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    fanout: ConnectionManager = Depends(get_fanout),
    bot_manager: BotManager = Depends(get_bot_manager),
):
    try:
        target = ConversationStatus(request.status)
    except ValueError:
        raise ValidationError(f"Invalid status: {request.status}. Expected waiting, active or closed")
    conversation = get_conversation_or_404(db, conversation_id)
    conversation = await _change_status(db, conversation, target, user, fanout, bot_manager)
    return to_response(db, conversation)


@router.patch("/{conversation_id}/close", response_model=ConversationResponse)
async def close_conversation(
    conversation_id: UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    fanout: ConnectionManager = Depends(get_fanout),
    bot_manager: BotManager = Depends(get_bot_manager),
):
    conversation = get_conversation_or_404(db, conversation_id)
    conversation = await _change_status(db, conversation, ConversationStatus.CLOSED, user, fanout, bot_manager)
    return to_response(db, conversation)


@router.patch("/{conversation_id}/mark-read", response_model=ConversationResponse)
def mark_read(conversation_id: UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    conversation = get_conversation_or_404(db, conversation_id)
    db.query(Message).filter(
        Message.conversation_id == conversation.id,
        Message.from_operator.is_(False),
        Message.read.is_(False),
    ).update({Message.read: True}, synchronize_session=False)
    conversation.unread_count = 0
    db.commit()
    db.refresh(conversation)
    return to_response(db, conversation)


@router.delete("/{conversation_id}")
def delete_conversation(conversation_id: UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    conversation = get_conversation_or_404(db, conversation_id)
    db.delete(conversation)
    db.commit()
    logger.info(
        "Conversation deleted",
        extra={"context": {"conversation_id": str(conversation_id), "user_id": str(user.id)}},
    )
    return {"success": True}
