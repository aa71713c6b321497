from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.database import get_db
from app.deps import get_current_user
from app.errors import BadRequestError, ConflictError
from app.models import User
from app.schemas.user import PasswordChange, ProfileUpdate, UserResponse, UserSettings, UserSettingsUpdate
from app.services.auth_service import hash_password, verify_password

router = APIRouter(prefix="/users", tags=["users"])


@router.get("", response_model=list[UserResponse])
def list_operators(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    operators = db.query(User).filter(User.is_active.is_(True)).order_by(User.name.asc()).all()
    return [UserResponse.from_user(operator) for operator in operators if operator.has_operator_access()]


@router.get("/me", response_model=UserResponse)
def get_me(user: User = Depends(get_current_user)):
    return UserResponse.from_user(user)


@router.patch("/me", response_model=UserResponse)
def update_me(request: ProfileUpdate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    if request.email is not None:
        email = request.email.strip().lower()
        if email != user.email and db.query(User).filter(User.email == email).first():
            raise ConflictError("Email already in use")
        user.email = email
    if request.name is not None:
        user.name = request.name
    db.commit()
    db.refresh(user)
    return UserResponse.from_user(user)


@router.patch("/me/settings", response_model=UserSettings)
def update_my_settings(request: UserSettingsUpdate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    current = UserSettings.from_blob(user.settings)
    merged = UserSettings(**{**current.model_dump(), **request.model_dump(exclude_unset=True)})
    user.settings = merged.to_blob()
    db.commit()
    return merged


@router.post("/me/password")
def change_password(request: PasswordChange, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    if not verify_password(request.current_password, user.password_hash):
        raise BadRequestError("Current password is incorrect")
    user.password_hash = hash_password(request.new_password)
    db.commit()
    return {"success": True}
