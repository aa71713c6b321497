from dataclasses import dataclass
from enum import Enum
from typing import Optional

import httpx

from app.logging_config import get_logger
from app.schemas.telegram import (
    TelegramChat,
    TelegramFile,
    TelegramUpdate,
    TelegramUser,
    TelegramUserProfilePhotos,
)

logger = get_logger("telegram_service")

UNREACHABLE_MARKERS = (
    "bot was blocked",
    "user is deactivated",
    "chat not found",
)
FATAL_ERROR_CODES = {401, 404, 409}


class TelegramAPIError(Exception):
    def __init__(self, method: str, description: str, error_code: Optional[int] = None):
        self.method = method
        self.description = description
        self.error_code = error_code
        super().__init__(f"{method} failed: {description}")

    @property
    def is_fatal(self) -> bool:
        """Credential revoked or another poller owns the bot."""
        return self.error_code in FATAL_ERROR_CODES


class SendStatus(str, Enum):
    SENT = "sent"
    BLOCKED = "blocked"
    FAILED = "failed"


@dataclass
class SendMessageResult:
    status: SendStatus
    message_id: Optional[int] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == SendStatus.SENT


def is_unreachable(description: str) -> bool:
    lowered = (description or "").lower()
    return any(marker in lowered for marker in UNREACHABLE_MARKERS)


class TelegramService:
    """Async client for the Telegram Bot API."""

    BASE_URL = "https://api.telegram.org/bot{token}"
    FILE_URL = "https://api.telegram.org/file/bot{token}/{file_path}"

    def __init__(self, bot_token: str, client: Optional[httpx.AsyncClient] = None, timeout: float = 15.0):
        self.bot_token = bot_token
        self.base_url = self.BASE_URL.format(token=bot_token)
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def _make_request(self, method: str, data: Optional[dict] = None, timeout: Optional[float] = None) -> dict:
        """Make request to Telegram API."""
        url = f"{self.base_url}/{method}"
        kwargs = {"json": data or {}}
        if timeout is not None:
            kwargs["timeout"] = timeout
        try:
            response = await self._client.post(url, **kwargs)
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(
                "Telegram API request failed",
                extra={"context": {"method": method, "error": str(e)}},
            )
            return {"ok": False, "description": str(e)}

    async def _call(self, method: str, data: Optional[dict] = None, timeout: Optional[float] = None):
        payload = await self._make_request(method, data, timeout=timeout)
        if not payload.get("ok"):
            raise TelegramAPIError(
                method,
                payload.get("description") or "Unknown error",
                payload.get("error_code"),
            )
        return payload.get("result")

    async def get_me(self) -> TelegramUser:
        return TelegramUser(**await self._call("getMe"))

    async def get_updates(self, offset: Optional[int] = None, timeout: int = 30) -> list[TelegramUpdate]:
        data = {"timeout": timeout, "allowed_updates": ["message"]}
        if offset is not None:
            data["offset"] = offset
        result = await self._call("getUpdates", data, timeout=timeout + 10)
        return [TelegramUpdate(**item) for item in result or []]

    async def send_message(self, chat_id: int, text: str, parse_mode: Optional[str] = None) -> SendMessageResult:
        """Send message and classify the outcome."""
        data = {"chat_id": chat_id, "text": text}
        if parse_mode:
            data["parse_mode"] = parse_mode
        try:
            result = await self._call("sendMessage", data)
        except TelegramAPIError as e:
            if is_unreachable(e.description):
                logger.info(
                    "Telegram recipient unreachable",
                    extra={"context": {"chat_id": chat_id, "error": e.description}},
                )
                return SendMessageResult(status=SendStatus.BLOCKED, error=e.description)
            return SendMessageResult(status=SendStatus.FAILED, error=e.description)
        return SendMessageResult(status=SendStatus.SENT, message_id=result.get("message_id"))

    async def get_chat(self, chat_id: int) -> TelegramChat:
        return TelegramChat(**await self._call("getChat", {"chat_id": chat_id}))

    async def get_file(self, file_id: str) -> TelegramFile:
        return TelegramFile(**await self._call("getFile", {"file_id": file_id}))

    async def get_user_profile_photos(self, user_id: int, limit: int = 1) -> TelegramUserProfilePhotos:
        result = await self._call("getUserProfilePhotos", {"user_id": user_id, "limit": limit})
        return TelegramUserProfilePhotos(**result)

    def file_url(self, file_path: str) -> str:
        return self.FILE_URL.format(token=self.bot_token, file_path=file_path)

    async def find_avatar_url(self, user_id: int) -> Optional[str]:
        """Resolve a downloadable avatar URL: chat photo first, then profile photos."""
        file_id = None
        try:
            chat = await self.get_chat(user_id)
        except TelegramAPIError as e:
            logger.info(
                "getChat failed, trying profile photos",
                extra={"context": {"user_id": user_id, "error": e.description}},
            )
            chat = None
        if chat is not None and chat.photo:
            file_id = chat.photo.big_file_id
        else:
            photos = await self.get_user_profile_photos(user_id)
            if photos.photos and photos.photos[0]:
                file_id = photos.photos[0][-1].file_id
        if not file_id:
            return None
        telegram_file = await self.get_file(file_id)
        if not telegram_file.file_path:
            return None
        return self.file_url(telegram_file.file_path)

    async def download(self, url: str) -> tuple[bytes, str]:
        response = await self._client.get(url)
        response.raise_for_status()
        return response.content, response.headers.get("content-type", "image/jpeg")
