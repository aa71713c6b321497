import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ.setdefault("JWT_SECRET", "test-secret")

from unittest.mock import AsyncMock, Mock  # noqa: E402

import pytest  # noqa: E402

from app.database import Base, SessionLocal, engine  # noqa: E402
from app.l10n import LocaleCatalog  # noqa: E402
from factories import FakeTelegram  # noqa: E402


@pytest.fixture
def db():
    """Real in-memory SQLite session with a fresh schema."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="session")
def locales():
    return LocaleCatalog.load()


@pytest.fixture
def telegram():
    return FakeTelegram()


@pytest.fixture
def fanout():
    manager = Mock()
    manager.broadcast = AsyncMock(return_value=True)
    manager.send_to_operator = AsyncMock(return_value=True)
    return manager


@pytest.fixture
def bot(telegram, locales):
    """Connected bot manager double installed on the app."""
    from app.main import app
    from app.services.bot_manager import BotState

    manager = Mock()
    manager.locales = locales
    manager.bot_username = "desk_bot"
    manager.status.return_value = BotState.CONNECTED
    manager.current_transport.return_value = telegram
    manager.restart = AsyncMock()
    manager.stop = AsyncMock()

    previous = app.state.bot_manager
    app.state.bot_manager = manager
    yield manager
    app.state.bot_manager = previous


@pytest.fixture
def client(db, fanout, bot):
    from fastapi.testclient import TestClient

    from app.main import app

    previous = app.state.fanout
    app.state.fanout = fanout
    yield TestClient(app)
    app.state.fanout = previous
