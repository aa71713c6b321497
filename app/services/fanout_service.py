"""Fan-out of domain events to connected operator websockets."""

import asyncio
from collections import defaultdict
from typing import Dict, Set

from fastapi import WebSocket
from pydantic import BaseModel

from app.logging_config import get_logger
from app.services.events import event_frame, event_tag

logger = get_logger("fanout")


class ConnectionManager:
    def __init__(self):
        self.active_connections: Dict[str, Set[WebSocket]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, operator_id: str, subprotocol: str | None = None) -> None:
        await websocket.accept(subprotocol=subprotocol)
        async with self._lock:
            self.active_connections[str(operator_id)].add(websocket)
        logger.info(
            "Operator connected",
            extra={"context": {"operator_id": str(operator_id), "sessions": self.session_count(operator_id)}},
        )

    async def disconnect(self, websocket: WebSocket, operator_id: str) -> bool:
        """Remove a socket. Returns True when it was the operator's last session."""
        key = str(operator_id)
        async with self._lock:
            sockets = self.active_connections.get(key)
            if sockets is None:
                return False
            sockets.discard(websocket)
            if sockets:
                return False
            del self.active_connections[key]
        logger.info("Operator disconnected", extra={"context": {"operator_id": key}})
        return True

    def session_count(self, operator_id: str) -> int:
        return len(self.active_connections.get(str(operator_id)) or ())

    def is_connected(self, operator_id: str) -> bool:
        return self.session_count(operator_id) > 0

    async def _send(self, operator_id: str, websocket: WebSocket, frame: dict) -> bool:
        try:
            await websocket.send_json(frame)
            return True
        except Exception as exc:
            logger.warning(
                "Dropping dead websocket",
                extra={"context": {"operator_id": operator_id, "error": str(exc)}},
            )
            await self.disconnect(websocket, operator_id)
            return False

    def _frame(self, event: BaseModel) -> dict | None:
        try:
            return event_frame(event)
        except Exception as exc:
            logger.error(
                "Failed to serialize event",
                extra={"context": {"event": type(event).__name__, "error": str(exc)}},
            )
            return None

    async def broadcast(self, event: BaseModel) -> bool:
        """Send an event to every connected operator. Never raises."""
        frame = self._frame(event)
        if frame is None:
            return False
        targets = [(key, ws) for key, sockets in list(self.active_connections.items()) for ws in list(sockets)]
        delivered = True
        for key, websocket in targets:
            if not await self._send(key, websocket, frame):
                delivered = False
        logger.debug(
            "Event broadcast",
            extra={"context": {"type": event_tag(event), "sessions": len(targets)}},
        )
        return delivered

    async def send_to_operator(self, operator_id: str, event: BaseModel) -> bool:
        """Send an event to one operator's sessions. Never raises."""
        frame = self._frame(event)
        if frame is None:
            return False
        key = str(operator_id)
        sockets = list(self.active_connections.get(key) or ())
        if not sockets:
            return False
        delivered = True
        for websocket in sockets:
            if not await self._send(key, websocket, frame):
                delivered = False
        return delivered
