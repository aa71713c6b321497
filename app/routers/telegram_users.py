from typing import Optional

import httpx
from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session

from app.database import get_db
from app.deps import get_bot_manager, get_current_user
from app.errors import InternalError, NotFoundError
from app.logging_config import get_logger
from app.models import TelegramUser, User
from app.schemas.telegram_user import BlockRequest, TelegramUserResponse
from app.services.bot_manager import BotManager

router = APIRouter(prefix="/telegram-users", tags=["telegram-users"])
photo_router = APIRouter(tags=["telegram-users"])
logger = get_logger("telegram_users")


def get_telegram_user_or_404(db: Session, telegram_user_id: int) -> TelegramUser:
    telegram_user = db.query(TelegramUser).filter(TelegramUser.id == telegram_user_id).first()
    if not telegram_user:
        raise NotFoundError(f"Telegram user {telegram_user_id} not found")
    return telegram_user


@router.get("", response_model=list[TelegramUserResponse])
def list_telegram_users(
    is_blocked: Optional[bool] = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    query = db.query(TelegramUser)
    if is_blocked is not None:
        query = query.filter(TelegramUser.is_blocked.is_(is_blocked))
    return query.order_by(TelegramUser.created_at.desc()).offset(offset).limit(limit).all()


@router.get("/{telegram_user_id}", response_model=TelegramUserResponse)
def get_telegram_user(telegram_user_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return get_telegram_user_or_404(db, telegram_user_id)


@router.patch("/{telegram_user_id}/block", response_model=TelegramUserResponse)
def block_telegram_user(
    telegram_user_id: int,
    request: BlockRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    telegram_user = get_telegram_user_or_404(db, telegram_user_id)
    telegram_user.is_blocked = request.is_blocked
    db.commit()
    db.refresh(telegram_user)
    logger.info(
        "Telegram user block flag changed",
        extra={"context": {"telegram_user_id": telegram_user_id, "is_blocked": request.is_blocked, "by": str(user.id)}},
    )
    return telegram_user


@photo_router.get("/telegram-photo/{telegram_user_id}")
async def telegram_photo(
    telegram_user_id: int,
    db: Session = Depends(get_db),
    bot_manager: BotManager = Depends(get_bot_manager),
):
    """Proxy the sender's avatar so the bot token never reaches the browser."""
    telegram_user = get_telegram_user_or_404(db, telegram_user_id)
    if not telegram_user.photo_url:
        raise NotFoundError("Photo not found")
    telegram = bot_manager.current_transport()
    if telegram is None:
        raise InternalError("Bot is not connected")
    try:
        content, content_type = await telegram.download(telegram_user.photo_url)
    except httpx.HTTPError as exc:
        logger.warning(
            "Avatar download failed",
            extra={"context": {"telegram_user_id": telegram_user_id, "error": str(exc)}},
        )
        raise NotFoundError("Photo not available")
    return Response(content=content, media_type=content_type, headers={"Cache-Control": "public, max-age=86400"})
