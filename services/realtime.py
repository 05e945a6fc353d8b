"""
WebSocket connection registry.

Every connection is in the ``traffic`` room. A client that sends
``{"action": "subscribe-traffic", "bounds": "..."}`` also joins
``traffic-{bounds}``. Messages are ``{"event": ..., "data": ...}`` JSON.
"""

from datetime import datetime
from typing import Any, Dict, Set

from fastapi import WebSocket
import logging

logger = logging.getLogger(__name__)

DEFAULT_ROOM = "traffic"


def room_for_bounds(bounds: str) -> str:
    return f"traffic-{bounds}"


class ConnectionManager:
    """Tracks open sockets per room and fans messages out to them."""

    def __init__(self):
        self.rooms: Dict[str, Set[WebSocket]] = {}
        self.connection_metadata: Dict[WebSocket, Dict[str, Any]] = {}

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.rooms.setdefault(DEFAULT_ROOM, set()).add(websocket)
        self.connection_metadata[websocket] = {
            "connection_id": f"ws:{id(websocket)}",
            "connected_at": datetime.utcnow(),
            "rooms": {DEFAULT_ROOM},
            "message_count": 0,
        }
        logger.info(f"WebSocket client connected: ws:{id(websocket)}")

    def join(self, websocket: WebSocket, room: str):
        metadata = self.connection_metadata.get(websocket)
        if metadata is None:
            return
        self.rooms.setdefault(room, set()).add(websocket)
        metadata["rooms"].add(room)
        logger.debug(f"{metadata['connection_id']} joined {room}")

    def disconnect(self, websocket: WebSocket):
        metadata = self.connection_metadata.pop(websocket, None)
        if metadata is None:
            return

        for room in metadata["rooms"]:
            members = self.rooms.get(room)
            if members is None:
                continue
            members.discard(websocket)
            if not members:
                del self.rooms[room]

        duration = (datetime.utcnow() - metadata["connected_at"]).total_seconds()
        logger.info(
            f"WebSocket client disconnected: {metadata['connection_id']} "
            f"after {duration:.0f}s, {metadata['message_count']} messages"
        )

    @property
    def connection_count(self) -> int:
        return len(self.connection_metadata)

    async def send_to_room(self, room: str, event: str, data: Any) -> int:
        """Send to every socket in ``room``. Sockets that fail are dropped."""
        message = {"event": event, "data": data}
        delivered = 0
        failed = []

        for websocket in list(self.rooms.get(room, ())):
            try:
                await websocket.send_json(message)
            except Exception as e:
                logger.warning(f"WebSocket send failed, dropping connection: {e}")
                failed.append(websocket)
                continue
            self.connection_metadata[websocket]["message_count"] += 1
            delivered += 1

        for websocket in failed:
            self.disconnect(websocket)
        return delivered

    async def broadcast(self, event: str, data: Any) -> int:
        return await self.send_to_room(DEFAULT_ROOM, event, data)

    async def handle_message(self, websocket: WebSocket, message: Dict[str, Any]):
        """Apply a client control message. Unknown actions are ignored."""
        if message.get("action") == "subscribe-traffic" and message.get("bounds"):
            self.join(websocket, room_for_bounds(str(message["bounds"])))


# Process-wide instance shared by the WebSocket route and the scheduler
manager = ConnectionManager()
