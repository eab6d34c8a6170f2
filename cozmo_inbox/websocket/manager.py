from __future__ import annotations

import asyncio

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from cozmo_inbox.logging import get_logger
from cozmo_inbox.websocket.events import WebSocketEvent

logger = get_logger(__name__)

HEARTBEAT_INTERVAL_SECONDS = 25


class ConnectionManager:
    """
    Tracks notification sockets of this process.

    Local connection pool: owner key -> [WebSocket]
    """

    def __init__(self, heartbeat_interval: float = HEARTBEAT_INTERVAL_SECONDS) -> None:
        self._connections: dict[str, list[WebSocket]] = {}
        self._heartbeat_tasks: dict[tuple[str, int], asyncio.Task] = {}
        self._heartbeat_interval = heartbeat_interval

    @property
    def connection_count(self) -> int:
        return sum(len(sockets) for sockets in self._connections.values())

    async def register_connection(self, key: str, websocket: WebSocket) -> None:
        """Register a new WebSocket connection."""
        self._connections.setdefault(key, []).append(websocket)
        logger.debug("websocket_registered key=%s", key)

        await websocket.send_json(WebSocketEvent.ack(key).payload())
        self._start_heartbeat(key, websocket)

    async def unregister_connection(self, key: str, websocket: WebSocket) -> None:
        await self._remove_connection(key, websocket)

    async def _remove_connection(self, key: str, websocket: WebSocket) -> None:
        self._stop_heartbeat(key, websocket)
        sockets = self._connections.get(key)
        if sockets is not None:
            if websocket in sockets:
                sockets.remove(websocket)
            if not sockets:
                del self._connections[key]
        logger.debug("websocket_unregistered key=%s", key)

    def _start_heartbeat(self, key: str, websocket: WebSocket) -> None:
        task_key = (key, id(websocket))
        if task_key in self._heartbeat_tasks or self._heartbeat_interval <= 0:
            return
        self._heartbeat_tasks[task_key] = asyncio.create_task(self._heartbeat_loop(key, websocket))

    def _stop_heartbeat(self, key: str, websocket: WebSocket) -> None:
        task = self._heartbeat_tasks.pop((key, id(websocket)), None)
        if task:
            task.cancel()

    async def _heartbeat_loop(self, key: str, websocket: WebSocket) -> None:
        try:
            while websocket.client_state == WebSocketState.CONNECTED:
                await asyncio.sleep(self._heartbeat_interval)
                await self.send_heartbeat(key, websocket)
        except asyncio.CancelledError:
            pass

    async def send_heartbeat(self, key: str, websocket: WebSocket) -> None:
        try:
            await websocket.send_json(WebSocketEvent.heartbeat().payload())
        except Exception:
            await self._remove_connection(key, websocket)

    async def broadcast(self, event: WebSocketEvent) -> int:
        """Send an event to every open connection. Returns the number of sockets reached."""
        event_data = event.payload()
        delivered = 0
        for key, sockets in list(self._connections.items()):
            for ws in list(sockets):
                try:
                    if ws.client_state == WebSocketState.CONNECTED:
                        await ws.send_json(event_data)
                        delivered += 1
                except Exception:
                    logger.debug("websocket_send_failed key=%s", key, exc_info=True)
                    await self._remove_connection(key, ws)
        return delivered

    async def close_all(self) -> None:
        for key, sockets in list(self._connections.items()):
            for ws in list(sockets):
                await self._remove_connection(key, ws)


# Singleton instance
_manager: ConnectionManager | None = None


def get_connection_manager() -> ConnectionManager:
    """Get the singleton ConnectionManager instance."""
    global _manager
    if _manager is None:
        _manager = ConnectionManager()
    return _manager
