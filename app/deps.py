from datetime import datetime, timezone

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from app.database import get_db
from app.errors import ForbiddenError, UnauthorizedError
from app.models import User
from app.services.auth_service import user_from_token
from app.services.bot_manager import BotManager
from app.services.fanout_service import ConnectionManager


def get_current_user(authorization: str | None = Header(default=None), db: Session = Depends(get_db)) -> User:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise UnauthorizedError("Missing bearer token")
    user = user_from_token(db, authorization[7:].strip())
    user.last_seen_at = datetime.now(timezone.utc)
    db.commit()
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.has_admin_access():
        raise ForbiddenError("Admin access required")
    return user


def get_fanout(request: Request) -> ConnectionManager:
    return request.app.state.fanout


def get_bot_manager(request: Request) -> BotManager:
    return request.app.state.bot_manager
