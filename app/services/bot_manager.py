"""Lifecycle of the single Telegram bot session."""

import asyncio
from enum import Enum
from typing import Callable, Optional

from sqlalchemy.orm import Session

from app.l10n import LocaleCatalog
from app.logging_config import get_logger
from app.services.events import BotStatus
from app.services.fanout_service import ConnectionManager
from app.services.ingestion_service import handle_update
from app.services.result import Result
from app.services.telegram_service import TelegramAPIError, TelegramService

logger = get_logger("bot_manager")

IDENTITY_CHECK_TIMEOUT_SECONDS = 5.0
RESTART_PAUSE_SECONDS = 0.1
POLL_TIMEOUT_SECONDS = 30
RETRY_BACKOFF_SECONDS = 1.0
MAX_BACKOFF_SECONDS = 30.0


class BotState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class BotManager:
    """Owns at most one running bot session and its receive loop."""

    def __init__(
        self,
        fanout: ConnectionManager,
        locales: LocaleCatalog,
        session_factory: Callable[[], Session],
        telegram_factory: Callable[[str], TelegramService] = TelegramService,
        poll_timeout: int = POLL_TIMEOUT_SECONDS,
    ):
        self.fanout = fanout
        self.locales = locales
        self.session_factory = session_factory
        self.telegram_factory = telegram_factory
        self.poll_timeout = poll_timeout
        self.bot_username: Optional[str] = None
        self._status = BotState.DISCONNECTED
        self._telegram: Optional[TelegramService] = None
        self._task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()

    def status(self) -> BotState:
        return self._status

    def current_transport(self) -> Optional[TelegramService]:
        """The live transport, or None when the bot is not connected."""
        return self._telegram

    async def _set_status(self, status: BotState) -> None:
        self._status = status
        logger.info("Bot status changed", extra={"context": {"status": status.value}})
        await self.fanout.broadcast(BotStatus(status=status.value))

    async def start(self, token: str) -> Result[str]:
        async with self._lock:
            await self._stop_locked()
            await self._set_status(BotState.CONNECTING)

            telegram = self.telegram_factory(token)
            try:
                me = await asyncio.wait_for(telegram.get_me(), timeout=IDENTITY_CHECK_TIMEOUT_SECONDS)
            except asyncio.TimeoutError:
                await telegram.close()
                await self._set_status(BotState.ERROR)
                logger.error("Bot identity check timed out")
                return Result.failure("Timed out connecting to Telegram", "timeout")
            except TelegramAPIError as exc:
                await telegram.close()
                await self._set_status(BotState.ERROR)
                logger.error("Bot identity check failed", extra={"context": {"error": exc.description}})
                return Result.failure(exc.description, "auth_failed")

            self._telegram = telegram
            self.bot_username = me.username
            await self._set_status(BotState.CONNECTED)
            self._task = asyncio.create_task(self._run(telegram))
            logger.info("Bot started", extra={"context": {"username": me.username}})
            return Result.success(me.username or "")

    async def stop(self) -> None:
        async with self._lock:
            await self._stop_locked()

    async def restart(self, token: str) -> Result[str]:
        await self.stop()
        await asyncio.sleep(RESTART_PAUSE_SECONDS)
        return await self.start(token)

    async def _stop_locked(self) -> None:
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._telegram is not None:
            await self._telegram.close()
            self._telegram = None
        self.bot_username = None
        await self._set_status(BotState.DISCONNECTED)

    async def _run(self, telegram: TelegramService) -> None:
        """Receive loop; clears the session when it ends on its own."""
        final_status = BotState.DISCONNECTED
        try:
            await self._poll(telegram)
        except TelegramAPIError as exc:
            final_status = BotState.ERROR
            logger.error(
                "Bot receive loop stopped",
                extra={"context": {"error": exc.description, "error_code": exc.error_code}},
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            final_status = BotState.ERROR
            logger.error("Bot receive loop crashed", extra={"context": {"error": str(exc)}}, exc_info=True)

        # a concurrent stop cancels this task while it waits here
        async with self._lock:
            if self._telegram is not telegram:
                return
            self._telegram = None
            self._task = None
            self.bot_username = None
            await telegram.close()
            await self._set_status(final_status)

    async def _poll(self, telegram: TelegramService) -> None:
        offset: Optional[int] = None
        backoff = RETRY_BACKOFF_SECONDS
        while True:
            try:
                updates = await telegram.get_updates(offset=offset, timeout=self.poll_timeout)
            except TelegramAPIError as exc:
                if exc.is_fatal:
                    raise
                logger.warning(
                    "Polling failed, retrying",
                    extra={"context": {"error": exc.description, "backoff": backoff}},
                )
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, MAX_BACKOFF_SECONDS)
                continue

            backoff = RETRY_BACKOFF_SECONDS
            for update in updates:
                offset = update.update_id + 1
                await handle_update(update, self.session_factory, telegram, self.fanout, self.locales)
