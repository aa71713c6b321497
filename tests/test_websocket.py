from unittest.mock import patch
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from app.services.auth_service import create_access_token
from app.services.fanout_service import ConnectionManager
from factories import make_operator


@pytest.fixture
def live_client(db, bot):
    """Client wired to a real connection manager."""
    from app.main import app

    previous = app.state.fanout
    manager = ConnectionManager()
    app.state.fanout = manager
    yield TestClient(app), manager
    app.state.fanout = previous


class TestWebsocketAuth:
    def test_rejects_missing_token(self, live_client):
        client, _ = live_client
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/ws"):
                pass
        assert exc_info.value.code == 1008

    def test_rejects_invalid_token(self, live_client):
        client, _ = live_client
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/ws?token=garbage"):
                pass
        assert exc_info.value.code == 1008

    def test_rejects_inactive_operator(self, live_client, db):
        client, _ = live_client
        operator = make_operator(db, is_active=False)
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect(f"/ws?token={create_access_token(operator)}"):
                pass

    def test_subprotocol_token_is_echoed(self, live_client, db):
        client, manager = live_client
        operator = make_operator(db, name="Olga")

        with client.websocket_connect("/ws", subprotocols=["access_token", create_access_token(operator)]) as ws:
            assert ws.accepted_subprotocol == "access_token"
            frame = ws.receive_json()
            assert frame["type"] == "user.online"
            assert frame["data"]["user_name"] == "Olga"
            assert manager.is_connected(operator.id)

        assert not manager.is_connected(operator.id)


class TestWebsocketMessages:
    def test_ping_pong(self, live_client, db):
        client, _ = live_client
        operator = make_operator(db)

        with client.websocket_connect(f"/ws?token={create_access_token(operator)}") as ws:
            ws.receive_json()
            ws.send_text('{"type": "ping"}')
            assert ws.receive_json() == {"type": "pong"}

    def test_typing_is_broadcast(self, live_client, db):
        client, _ = live_client
        operator = make_operator(db, name="Olga")
        conversation_id = uuid4()

        with client.websocket_connect(f"/ws?token={create_access_token(operator)}") as ws:
            ws.receive_json()
            ws.send_json({"type": "typing", "conversation_id": str(conversation_id)})
            frame = ws.receive_json()

        assert frame["type"] == "user.typing"
        assert frame["data"]["conversation_id"] == str(conversation_id)
        assert frame["data"]["user_id"] == str(operator.id)

    def test_malformed_messages_are_ignored(self, live_client, db):
        client, _ = live_client
        operator = make_operator(db)

        with client.websocket_connect(f"/ws?token={create_access_token(operator)}") as ws:
            ws.receive_json()
            ws.send_text("not json")
            ws.send_json({"type": "typing", "conversation_id": "nope"})
            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}


class TestConnectionPool:
    def test_open_socket_holds_no_database_connection(self, live_client, tmp_path):
        from sqlalchemy import create_engine
        from sqlalchemy.orm import sessionmaker
        from sqlalchemy.pool import QueuePool

        from app.database import Base
        from app.routers import websocket as websocket_router

        engine = create_engine(
            f"sqlite:///{tmp_path / 'pool.db'}",
            connect_args={"check_same_thread": False},
            poolclass=QueuePool,
            pool_size=1,
            max_overflow=0,
        )
        Base.metadata.create_all(bind=engine)
        pooled_sessions = sessionmaker(autocommit=False, autoflush=False, bind=engine)
        session = pooled_sessions()
        operator = make_operator(session)
        token = create_access_token(operator)
        session.close()

        client, _ = live_client
        try:
            with patch.object(websocket_router, "SessionLocal", pooled_sessions):
                with client.websocket_connect(f"/ws?token={token}") as ws:
                    ws.receive_json()
                    ws.send_json({"type": "ping"})
                    assert ws.receive_json() == {"type": "pong"}
                    assert engine.pool.checkedout() == 0
        finally:
            engine.dispose()
