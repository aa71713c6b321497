from typing import Optional

from pydantic import BaseModel, ConfigDict


class TelegramUser(BaseModel):
    id: int
    is_bot: bool = False
    first_name: str
    last_name: Optional[str] = None
    username: Optional[str] = None
    language_code: Optional[str] = None

    @property
    def full_name(self) -> str:
        if self.last_name:
            return f"{self.first_name} {self.last_name}"
        return self.first_name


class TelegramChatPhoto(BaseModel):
    small_file_id: str
    small_file_unique_id: Optional[str] = None
    big_file_id: str
    big_file_unique_id: Optional[str] = None


class TelegramChat(BaseModel):
    id: int
    type: str  # private, group, supergroup, channel
    title: Optional[str] = None
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    photo: Optional[TelegramChatPhoto] = None


class TelegramPhotoSize(BaseModel):
    file_id: str
    file_unique_id: str
    width: int
    height: int
    file_size: Optional[int] = None


class TelegramDocument(BaseModel):
    file_id: str
    file_unique_id: str
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    file_size: Optional[int] = None


class TelegramAudio(BaseModel):
    file_id: str
    file_unique_id: str
    duration: int
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    file_size: Optional[int] = None


class TelegramVoice(BaseModel):
    file_id: str
    file_unique_id: str
    duration: int
    mime_type: Optional[str] = None
    file_size: Optional[int] = None


class TelegramVideo(BaseModel):
    file_id: str
    file_unique_id: str
    width: int
    height: int
    duration: int
    mime_type: Optional[str] = None
    file_size: Optional[int] = None


class TelegramSticker(BaseModel):
    file_id: str
    file_unique_id: str
    width: int
    height: int
    emoji: Optional[str] = None
    file_size: Optional[int] = None


class TelegramAnimation(BaseModel):
    file_id: str
    file_unique_id: str
    width: int
    height: int
    duration: int
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    file_size: Optional[int] = None


class TelegramMessage(BaseModel):
    message_id: int
    date: int
    chat: TelegramChat
    from_user: Optional[TelegramUser] = None  # "from" is reserved in Python
    text: Optional[str] = None
    caption: Optional[str] = None
    photo: Optional[list[TelegramPhotoSize]] = None
    document: Optional[TelegramDocument] = None
    audio: Optional[TelegramAudio] = None
    voice: Optional[TelegramVoice] = None
    video: Optional[TelegramVideo] = None
    sticker: Optional[TelegramSticker] = None
    animation: Optional[TelegramAnimation] = None

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def __init__(self, **data):
        # Handle "from" -> "from_user" mapping
        if "from" in data:
            data["from_user"] = data.pop("from")
        super().__init__(**data)


class TelegramUpdate(BaseModel):
    update_id: int
    message: Optional[TelegramMessage] = None


class TelegramFile(BaseModel):
    file_id: str
    file_unique_id: Optional[str] = None
    file_size: Optional[int] = None
    file_path: Optional[str] = None


class TelegramUserProfilePhotos(BaseModel):
    total_count: int
    photos: list[list[TelegramPhotoSize]] = []
