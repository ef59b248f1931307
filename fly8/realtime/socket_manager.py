"""
In-process real-time channel.

Each authenticated WebSocket joins ``user:<id>`` and ``role:<role>``. Emits are
scheduled as background tasks and never awaited by the caller; a socket that
fails to receive is dropped.
"""
import asyncio
import logging
from collections import defaultdict
from typing import Any, Dict, Set

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

logger = logging.getLogger(__name__)


class ConnectionManager:
    def __init__(self):
        self._rooms: Dict[str, Set[WebSocket]] = defaultdict(set)
        self._pending: Set[asyncio.Task] = set()

    async def connect(self, websocket: WebSocket, user_id: str, role: str) -> None:
        await websocket.accept()
        self._rooms[f"user:{user_id}"].add(websocket)
        self._rooms[f"role:{role}"].add(websocket)
        logger.info("Socket connected: %s (%s)", user_id, role)
        await websocket.send_json({"event": "connected", "data": {"userId": user_id, "role": role}})

    def disconnect(self, websocket: WebSocket) -> None:
        for room in list(self._rooms):
            self._rooms[room].discard(websocket)
            if not self._rooms[room]:
                del self._rooms[room]

    def room_size(self, room: str) -> int:
        return len(self._rooms.get(room, ()))

    async def _send(self, room: str, event: str, data: Any) -> None:
        frame = {"event": event, "data": jsonable_encoder(data)}
        for websocket in list(self._rooms.get(room, ())):
            try:
                await websocket.send_json(frame)
            except Exception as exc:
                logger.warning("Dropping socket in %s after send failure: %s", room, exc)
                self.disconnect(websocket)

    def emit(self, room: str, event: str, data: Any) -> None:
        if not self._rooms.get(room):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self._send(room, event, data))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def emit_to_user(self, user_id: str, event: str, data: Any) -> None:
        self.emit(f"user:{user_id}", event, data)

    def emit_to_role(self, role: str, event: str, data: Any) -> None:
        self.emit(f"role:{role}", event, data)


socket_manager = ConnectionManager()
