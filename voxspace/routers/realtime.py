"""WebSocket endpoint that relays committed row changes."""
from __future__ import annotations

import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from .deps import get_hub

router = APIRouter()
logger = logging.getLogger(__name__)


@router.websocket("/ws/changes")
async def change_stream(websocket: WebSocket) -> None:
    """Keep a connection open and push every change event the hub publishes."""

    sockets = get_hub().sockets
    await sockets.connect(websocket)
    logger.info("Change socket connected from %s", websocket.client)
    try:
        while True:
            try:
                raw = await websocket.receive_text()
            except WebSocketDisconnect:
                break

            try:
                payload = json.loads(raw)
            except json.JSONDecodeError:
                payload = {"type": raw}

            if isinstance(payload, dict) and (payload.get("type") or "").lower() == "ping":
                await websocket.send_text(json.dumps({"type": "pong"}))
    finally:
        await sockets.disconnect(websocket)
        logger.info("Change socket disconnected from %s", websocket.client)


__all__ = ["router"]
