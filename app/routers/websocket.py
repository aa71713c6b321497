import json
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from app.database import SessionLocal
from app.errors import UnauthorizedError
from app.logging_config import get_logger
from app.services.auth_service import user_from_token
from app.services.events import UserOffline, UserOnline, UserTyping

router = APIRouter(tags=["websocket"])
logger = get_logger("websocket")

TOKEN_SUBPROTOCOL = "access_token"
POLICY_VIOLATION = 1008


def extract_token(websocket: WebSocket) -> tuple[Optional[str], Optional[str]]:
    """Token from ``Sec-WebSocket-Protocol: access_token, <jwt>`` or ``?token=``.

    Returns ``(token, subprotocol_to_echo)``.
    """
    header = websocket.headers.get("sec-websocket-protocol")
    if header:
        parts = [part.strip() for part in header.split(",") if part.strip()]
        if len(parts) >= 2 and parts[0] == TOKEN_SUBPROTOCOL:
            return parts[1], TOKEN_SUBPROTOCOL
    return websocket.query_params.get("token"), None


async def _handle_client_message(websocket: WebSocket, fanout, user_id: UUID, user_name: str, raw: str) -> None:
    try:
        payload = json.loads(raw)
    except ValueError:
        logger.warning("Malformed websocket message", extra={"context": {"user_id": str(user_id)}})
        return
    if not isinstance(payload, dict):
        return

    kind = payload.get("type")
    if kind == "ping":
        await websocket.send_json({"type": "pong"})
    elif kind == "typing":
        try:
            conversation_id = UUID(str(payload.get("conversation_id")))
        except ValueError:
            return
        await fanout.broadcast(UserTyping(conversation_id=conversation_id, user_id=user_id, user_name=user_name))


def authenticate(token: str) -> tuple[UUID, str]:
    """Resolve the operator behind a socket token.

    The session is closed before returning so an open socket never pins a pooled
    connection.
    """
    db = SessionLocal()
    try:
        user = user_from_token(db, token)
        return user.id, user.name
    finally:
        db.close()


@router.websocket("/ws")
async def operator_events(websocket: WebSocket):
    fanout = websocket.app.state.fanout
    token, subprotocol = extract_token(websocket)
    if not token:
        await websocket.close(code=POLICY_VIOLATION)
        return
    try:
        user_id, user_name = authenticate(token)
    except UnauthorizedError as exc:
        logger.info("Websocket auth rejected", extra={"context": {"error": exc.message}})
        await websocket.close(code=POLICY_VIOLATION)
        return

    first_session = not fanout.is_connected(user_id)
    await fanout.connect(websocket, user_id, subprotocol=subprotocol)
    if first_session:
        await fanout.broadcast(UserOnline(user_id=user_id, user_name=user_name))

    try:
        while True:
            raw = await websocket.receive_text()
            await _handle_client_message(websocket, fanout, user_id, user_name, raw)
    except WebSocketDisconnect:
        pass
    finally:
        if await fanout.disconnect(websocket, user_id):
            await fanout.broadcast(UserOffline(user_id=user_id))
