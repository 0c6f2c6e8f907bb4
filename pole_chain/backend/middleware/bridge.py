import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from fastapi import WebSocket

logger = logging.getLogger("Broadcast")

Listener = Callable[[str, Dict[str, Any]], None]


# --- WebSocket Manager ---
class ConnectionManager:
    def __init__(self):
        self.active_connections: List[WebSocket] = []

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.append(websocket)
        logger.info(f"WebSocket client connected ({len(self.active_connections)} active)")

    def disconnect(self, websocket: WebSocket):
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)
        logger.info(f"WebSocket client disconnected ({len(self.active_connections)} active)")

    async def broadcast(self, message: dict):
        for connection in list(self.active_connections):
            try:
                await connection.send_json(message)
            except Exception as e:
                logger.warning(f"Error sending to client, dropping it: {e}")
                self.disconnect(connection)


class EventBroadcaster:
    """
    emit(event, payload) from any thread.

    WebSocket fan-out is scheduled onto the captured server loop; plain
    listeners (MQTT sink, tests) are called synchronously. Purely
    observational: a failing subscriber never affects the caller.
    """
    def __init__(self, manager: Optional[ConnectionManager] = None):
        self.manager = manager or ConnectionManager()
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self._listeners: List[Listener] = []

    def attach_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self.loop = loop
        logger.info(f"Broadcast loop captured: {loop}")

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        for listener in self._listeners:
            try:
                listener(event, payload)
            except Exception as e:
                logger.error(f"Broadcast listener failed on {event}: {e}")

        if not self.manager.active_connections:
            return
        message = {"event": event, "payload": payload}
        if self.loop and self.loop.is_running():
            asyncio.run_coroutine_threadsafe(self.manager.broadcast(message), self.loop)
        else:
            logger.debug(f"Event loop not ready, {event} not sent to WebSocket clients")
