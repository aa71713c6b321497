from typing import Optional

from pydantic import BaseModel


class SystemSettingsUpdate(BaseModel):
    telegram_bot_token: Optional[str] = None


class SystemSettingsResponse(BaseModel):
    has_telegram_bot_token: bool
    telegram_bot_token_preview: Optional[str] = None
    bot_status: str


def token_preview(token: Optional[str]) -> Optional[str]:
    if not token:
        return None
    if len(token) > 10:
        return f"{token[:4]}...{token[-4:]}"
    return "***"
