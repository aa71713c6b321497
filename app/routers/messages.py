from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.database import get_db
from app.deps import get_bot_manager, get_current_user, get_fanout
from app.errors import BadRequestError, ForbiddenError, InternalError, NotFoundError
from app.logging_config import get_logger
from app.models import Conversation, Message, MessageEdit, User
from app.routers.conversations import get_conversation_or_404
from app.schemas.message import EditMessageRequest, MessageEditResponse, MessageResponse, SendMessageRequest
from app.services.bot_manager import BotManager
from app.services.dispatch_service import USER_BLOCKED, dispatch
from app.services.events import MessageRead, MessageSent
from app.services.fanout_service import ConnectionManager

router = APIRouter(prefix="/messages", tags=["messages"])
logger = get_logger("messages")


def get_message_or_404(db: Session, message_id: UUID) -> Message:
    message = db.query(Message).filter(Message.id == message_id).first()
    if not message:
        raise NotFoundError(f"Message {message_id} not found")
    return message


@router.get("", response_model=list[MessageResponse])
def list_messages(
    conversation_id: UUID,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    get_conversation_or_404(db, conversation_id)
    return (
        db.query(Message)
        .filter(Message.conversation_id == conversation_id)
        .order_by(Message.created_at.asc())
        .offset(offset)
        .limit(limit)
        .all()
    )


@router.get("/search", response_model=list[MessageResponse])
def search_messages(
    query: str = Query(min_length=1),
    conversation_id: Optional[UUID] = None,
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    q = db.query(Message).filter(Message.content.ilike(f"%{query}%"))
    if conversation_id:
        q = q.filter(Message.conversation_id == conversation_id)
    return q.order_by(Message.created_at.desc()).limit(limit).all()


@router.post("/send", response_model=MessageResponse)
async def send_message(
    request: SendMessageRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    fanout: ConnectionManager = Depends(get_fanout),
    bot_manager: BotManager = Depends(get_bot_manager),
):
    conversation = get_conversation_or_404(db, request.conversation_id)
    result = await dispatch(db, bot_manager.current_transport(), fanout, conversation, request.content, user)
    if result.ok:
        return result.value
    if result.failed_with(USER_BLOCKED):
        raise BadRequestError(result.error)
    raise InternalError(result.error)


@router.patch("/{message_id}/read", response_model=MessageResponse)
async def mark_message_read(
    message_id: UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    fanout: ConnectionManager = Depends(get_fanout),
):
    message = get_message_or_404(db, message_id)
    if not message.read:
        message.read = True
        conversation = db.query(Conversation).filter(Conversation.id == message.conversation_id).first()
        db.flush()
        conversation.unread_count = (
            db.query(Message)
            .filter(
                Message.conversation_id == conversation.id,
                Message.from_operator.is_(False),
                Message.read.is_(False),
            )
            .count()
        )
        db.commit()
        db.refresh(message)
    await fanout.broadcast(MessageRead(message_id=message.id, conversation_id=message.conversation_id))
    return message


@router.patch("/{message_id}/edit", response_model=MessageResponse)
async def edit_message(
    message_id: UUID,
    request: EditMessageRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    fanout: ConnectionManager = Depends(get_fanout),
):
    message = get_message_or_404(db, message_id)
    if not message.from_operator:
        raise ForbiddenError("Only operator messages can be edited")

    db.add(
        MessageEdit(
            message_id=message.id,
            previous_content=message.content,
            edited_by_user_id=user.id,
            edit_reason=request.edit_reason,
        )
    )
    message.content = request.content
    db.commit()
    db.refresh(message)

    await fanout.broadcast(
        MessageSent(
            conversation_id=message.conversation_id,
            message_id=message.id,
            content=message.content,
            user_id=user.id,
            user_name=user.email,
            media_type=message.media_type,
            media_url=message.media_url,
            file_name=message.file_name,
            file_size=message.file_size,
            mime_type=message.mime_type,
            duration=message.duration,
        )
    )
    logger.info("Message edited", extra={"context": {"message_id": str(message.id), "user_id": str(user.id)}})
    return message


@router.get("/{message_id}/history", response_model=list[MessageEditResponse])
def message_history(message_id: UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    get_message_or_404(db, message_id)
    return (
        db.query(MessageEdit)
        .filter(MessageEdit.message_id == message_id)
        .order_by(MessageEdit.created_at.asc())
        .all()
    )
