import asyncio
import os

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from app.config import settings
from app.database import Base, SessionLocal, engine, get_db
from app.errors import register_error_handlers
from app.l10n import LocaleCatalog
from app.logging_config import get_logger, setup_logging
from app.models import Conversation, TelegramUser, User
from app.routers import (
    admin,
    analytics,
    auth,
    bot,
    conversations,
    messages,
    telegram_users,
    templates,
    users,
    websocket,
)
from app.services.bot_manager import BotManager
from app.services.fanout_service import ConnectionManager
from app.services.seed_service import seed_database
from app.services.settings_service import get_bot_token

setup_logging(settings.effective_log_level, settings.environment)
logger = get_logger("main")

app = FastAPI(
    title="SupportDesk API",
    description="Support desk backend bridging a Telegram bot with human operators",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_error_handlers(app)

app.state.fanout = ConnectionManager()
app.state.locales = LocaleCatalog.load(settings.locales_dir)
app.state.bot_manager = BotManager(app.state.fanout, app.state.locales, SessionLocal)

for module in (auth, bot, conversations, messages, telegram_users, templates, users, analytics, admin):
    app.include_router(module.router, prefix="/api")
app.include_router(telegram_users.photo_router, prefix="/api")
app.include_router(websocket.router)

_bot_start_task: asyncio.Task | None = None


def _is_bot_autostart_enabled() -> bool:
    return not os.environ.get("PYTEST_CURRENT_TEST")


@app.on_event("startup")
async def startup() -> None:
    global _bot_start_task
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        if settings.is_development:
            seed_database(db)
        token = get_bot_token(db)
    finally:
        db.close()

    if not token:
        logger.warning("Telegram bot token is not configured; bot stays disconnected")
        return
    if _is_bot_autostart_enabled():
        _bot_start_task = asyncio.create_task(app.state.bot_manager.start(token))


@app.on_event("shutdown")
async def shutdown() -> None:
    global _bot_start_task
    if _bot_start_task is not None and not _bot_start_task.done():
        _bot_start_task.cancel()
        try:
            await _bot_start_task
        except asyncio.CancelledError:
            pass
    _bot_start_task = None
    await app.state.bot_manager.stop()


@app.get("/api/health")
async def health():
    return {"status": "ok", "bot": app.state.bot_manager.status().value}


@app.get("/api/db-check")
def db_check(db: Session = Depends(get_db)):
    return {
        "status": "ok",
        "conversations": db.query(Conversation).count(),
        "telegram_users": db.query(TelegramUser).count(),
        "users": db.query(User).count(),
    }


def run() -> None:
    import uvicorn

    uvicorn.run("app.main:app", host=settings.backend_host, port=settings.backend_port)
