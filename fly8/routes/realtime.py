"""
Real-time channel – WebSocket endpoint authenticated with the same JWT as the
REST API (passed as ``?token=``).
"""
import logging

from fastapi import APIRouter, HTTPException, Query, WebSocket, WebSocketDisconnect, status

from fly8.realtime.socket_manager import socket_manager
from fly8.utils.auth import decode_access_token

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Realtime"])


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket, token: str = Query("")):
    try:
        payload = decode_access_token(token)
    except HTTPException as exc:
        logger.info("Rejected socket: %s", exc.detail)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    user_id, role = payload.get("sub"), payload.get("role")
    if not user_id or not role:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await socket_manager.connect(websocket, user_id, role)
    try:
        while True:
            message = await websocket.receive_text()
            if message == "ping":
                await websocket.send_json({"event": "pong", "data": {}})
    except WebSocketDisconnect:
        logger.info("Socket disconnected: %s", user_id)
    finally:
        socket_manager.disconnect(websocket)
