"""
WebSocket push of traffic updates and warnings
"""

import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from services.realtime import manager

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Realtime"])


@router.websocket("/ws/traffic")
async def traffic_socket(websocket: WebSocket):
    """
    Clients receive ``traffic-update`` and ``traffic-warning`` events and
    may send ``{"action": "subscribe-traffic", "bounds": "..."}``.
    """
    await manager.connect(websocket)
    try:
        while True:
            text = await websocket.receive_text()
            try:
                message = json.loads(text)
            except ValueError:
                logger.debug(f"Ignoring non-JSON WebSocket message: {text[:100]}")
                continue
            if isinstance(message, dict):
                await manager.handle_message(websocket, message)
    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(websocket)
