import json
from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.logging_config import get_logger

logger = get_logger("user_settings")


class UserSettings(BaseModel):
    theme: str = "light"
    language: str = "en"
    notifications_enabled: bool = True
    notification_sound_enabled: bool = True
    telegram_notifications_user_id: Optional[int] = None

    @field_validator("telegram_notifications_user_id", mode="before")
    @classmethod
    def parse_telegram_id(cls, value: object) -> Optional[int]:
        if value is None or value == "":
            return None
        if isinstance(value, bool):
            raise ValueError("telegram_notifications_user_id must be numeric")
        if isinstance(value, int):
            return value
        if isinstance(value, str) and value.strip().lstrip("-").isdigit():
            return int(value.strip())
        raise ValueError("telegram_notifications_user_id must be numeric")

    @classmethod
    def from_blob(cls, blob: Optional[str]) -> "UserSettings":
        """Parse the stored settings blob; defaults when missing or malformed."""
        if not blob:
            return cls()
        try:
            data = json.loads(blob)
            if not isinstance(data, dict):
                raise ValueError("settings blob is not an object")
            return cls(**data)
        except ValueError as exc:
            logger.warning("Malformed user settings", extra={"context": {"error": str(exc)}})
            return cls()

    def to_blob(self) -> str:
        return self.model_dump_json()


class UserSettingsUpdate(BaseModel):
    theme: Optional[str] = None
    language: Optional[str] = None
    notifications_enabled: Optional[bool] = None
    notification_sound_enabled: Optional[bool] = None
    telegram_notifications_user_id: Optional[int] = None


class UserResponse(BaseModel):
    id: UUID
    email: str
    name: str
    is_operator: bool
    is_admin: bool
    is_active: bool
    is_online: bool = False
    last_seen_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    settings: UserSettings = Field(default_factory=UserSettings)

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_user(cls, user) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            is_operator=user.is_operator,
            is_admin=user.is_admin,
            is_active=user.is_active,
            is_online=user.is_online(),
            last_seen_at=user.last_seen_at,
            created_at=user.created_at,
            settings=UserSettings.from_blob(user.settings),
        )


class LoginRequest(BaseModel):
    email: str
    password: str


class LoginResponse(BaseModel):
    token: str
    user: UserResponse


class UserCreate(BaseModel):
    email: str
    name: str
    password: str = Field(min_length=6)
    is_operator: bool = True
    is_admin: bool = False


class UserUpdate(BaseModel):
    email: Optional[str] = None
    name: Optional[str] = None
    password: Optional[str] = Field(default=None, min_length=6)
    is_operator: Optional[bool] = None
    is_admin: Optional[bool] = None
    is_active: Optional[bool] = None


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None


class PasswordChange(BaseModel):
    current_password: str
    new_password: str = Field(min_length=6)
