"""WebSocket manager for pushing synchronized updates to UI clients."""
import logging
from typing import Any, Dict, Set

from fastapi import WebSocket

from farm_sync.models import (
    AlertMessage,
    DeviceStatusMessage,
    ErrorMessage,
    SensorReadingMessage,
)

logger = logging.getLogger(__name__)


class WebSocketManager:
    """Manages UI WebSocket connections and broadcasts."""

    def __init__(self):
        """Initialize WebSocket manager."""
        self.active_connections: Set[WebSocket] = set()

    async def connect(self, websocket: WebSocket):
        """Accept a UI client."""
        await websocket.accept()
        self.active_connections.add(websocket)
        logger.info(f"UI client connected. Total connections: {len(self.active_connections)}")

    def disconnect(self, websocket: WebSocket):
        """Forget a UI client."""
        self.active_connections.discard(websocket)

    async def broadcast(self, message: Dict[str, Any]):
        """Send a JSON message to every connected UI client."""
        if not self.active_connections:
            return

        disconnected = set()
        for connection in list(self.active_connections):
            try:
                await connection.send_json(message)
            except Exception as e:
                logger.debug(f"Dropping UI client after send error: {e}")
                disconnected.add(connection)

        # Remove disconnected connections
        for conn in disconnected:
            self.disconnect(conn)

    async def broadcast_routed(self, message: Any):
        """Forward a routed push message to the UI."""
        if isinstance(message, SensorReadingMessage):
            kind = "sensorReading"
        elif isinstance(message, AlertMessage):
            kind = "alert"
        elif isinstance(message, DeviceStatusMessage):
            kind = "deviceStatus"
        elif isinstance(message, ErrorMessage):
            kind = "error"
        else:
            return

        await self.broadcast({
            "type": kind,
            "data": message.payload.model_dump(mode="json", by_alias=True),
        })

    async def broadcast_connection_state(self, state: str, error: str = None):
        """Tell UI clients about a push channel state change."""
        await self.broadcast({"type": "connection", "data": {"state": state, "error": error}})


# Global WebSocket manager instance
websocket_manager = WebSocketManager()
