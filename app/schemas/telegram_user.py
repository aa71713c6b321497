from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, model_validator


class TelegramUserResponse(BaseModel):
    id: int
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    photo_url: Optional[str] = None
    country_code: Optional[str] = None
    is_blocked: bool
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @model_validator(mode="after")
    def proxy_photo_url(self) -> "TelegramUserResponse":
        # stored URL embeds the bot token
        if self.photo_url:
            self.photo_url = f"/api/telegram-photo/{self.id}"
        return self


class BlockRequest(BaseModel):
    is_blocked: bool
