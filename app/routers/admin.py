"""Admin API endpoints for operator accounts and bot configuration."""

from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from app.database import get_db
from app.deps import get_bot_manager, require_admin
from app.errors import BadRequestError, ConflictError, NotFoundError
from app.logging_config import get_logger
from app.models import User
from app.models.setting import TELEGRAM_BOT_TOKEN_KEY
from app.schemas.settings import SystemSettingsResponse, SystemSettingsUpdate, token_preview
from app.schemas.user import UserCreate, UserResponse, UserUpdate
from app.services.auth_service import hash_password
from app.services.bot_manager import BotManager
from app.services.settings_service import get_bot_token, set_setting

router = APIRouter(prefix="/admin", tags=["admin"])
logger = get_logger("admin")


# === USERS ===


def get_user_or_404(db: Session, user_id: UUID) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError(f"User {user_id} not found")
    return user


@router.get("/users", response_model=list[UserResponse])
def list_users(db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    return [UserResponse.from_user(user) for user in db.query(User).order_by(User.created_at.asc()).all()]


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(request: UserCreate, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    email = request.email.strip().lower()
    if db.query(User).filter(User.email == email).first():
        raise ConflictError("User with this email already exists")
    user = User(
        email=email,
        name=request.name,
        password_hash=hash_password(request.password),
        is_operator=request.is_operator,
        is_admin=request.is_admin,
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("User created", extra={"context": {"user_id": str(user.id), "by": str(admin.id)}})
    return UserResponse.from_user(user)


@router.patch("/users/{user_id}", response_model=UserResponse)
def update_user(
    user_id: UUID,
    request: UserUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    user = get_user_or_404(db, user_id)
    changes = request.model_dump(exclude_unset=True)

    if user.id == admin.id and (changes.get("is_active") is False or changes.get("is_admin") is False):
        raise BadRequestError("You cannot deactivate or demote yourself")

    if "email" in changes:
        email = changes.pop("email").strip().lower()
        if email != user.email and db.query(User).filter(User.email == email).first():
            raise ConflictError("User with this email already exists")
        user.email = email
    if "password" in changes:
        user.password_hash = hash_password(changes.pop("password"))
    for field, value in changes.items():
        if value is not None:
            setattr(user, field, value)

    db.commit()
    db.refresh(user)
    logger.info("User updated", extra={"context": {"user_id": str(user.id), "by": str(admin.id)}})
    return UserResponse.from_user(user)


@router.delete("/users/{user_id}")
def delete_user(user_id: UUID, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    user = get_user_or_404(db, user_id)
    if user.id == admin.id:
        raise BadRequestError("You cannot delete yourself")
    db.delete(user)
    db.commit()
    logger.info("User deleted", extra={"context": {"user_id": str(user_id), "by": str(admin.id)}})
    return {"success": True}


# === SETTINGS ===


def _settings_response(db: Session, bot_manager: BotManager) -> SystemSettingsResponse:
    token = get_bot_token(db)
    return SystemSettingsResponse(
        has_telegram_bot_token=bool(token),
        telegram_bot_token_preview=token_preview(token),
        bot_status=bot_manager.status().value,
    )


@router.get("/settings", response_model=SystemSettingsResponse)
def get_settings(
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    bot_manager: BotManager = Depends(get_bot_manager),
):
    return _settings_response(db, bot_manager)


@router.put("/settings", response_model=SystemSettingsResponse)
def update_settings(
    request: SystemSettingsUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    bot_manager: BotManager = Depends(get_bot_manager),
):
    if request.telegram_bot_token is not None:
        token = request.telegram_bot_token.strip()
        set_setting(db, TELEGRAM_BOT_TOKEN_KEY, token or None)
        if token:
            background_tasks.add_task(bot_manager.restart, token)
        else:
            background_tasks.add_task(bot_manager.stop)
        logger.info(
            "Bot token updated",
            extra={"context": {"by": str(admin.id), "preview": token_preview(token)}},
        )
    return _settings_response(db, bot_manager)
