"""WebSocket endpoint for new-message notifications."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from cozmo_inbox.logging import get_logger
from cozmo_inbox.websocket.events import InboundMessage, InboundMessageType, WebSocketEvent
from cozmo_inbox.websocket.manager import get_connection_manager

logger = get_logger(__name__)

router = APIRouter(tags=["websocket"])


@router.websocket("/ws/notifications")
async def notifications_websocket(websocket: WebSocket):
    """
    Pushes a ``message_new`` event for every stored inbound message.

    Client messages:
    - {type: "ping"} - Keep-alive ping

    Server events:
    - connection_ack - Connection established
    - message_new - New message stored
    - notification_error - A stored row could not be decoded
    - heartbeat - Ping response
    """
    await websocket.accept()
    manager = get_connection_manager()
    key = websocket.query_params.get("user_id") or f"anon:{uuid.uuid4().hex}"
    await manager.register_connection(key, websocket)
    try:
        while True:
            data = await websocket.receive_text()
            await _handle_client_message(key, websocket, data)
    except WebSocketDisconnect:
        logger.debug("notifications_websocket_disconnected key=%s", key)
    finally:
        await manager.unregister_connection(key, websocket)


async def _handle_client_message(key: str, websocket: WebSocket, raw_data: str) -> None:
    try:
        inbound = InboundMessage.model_validate_json(raw_data)
    except ValidationError:
        logger.warning("notifications_websocket_invalid_frame key=%s", key)
        return
    if inbound.type is InboundMessageType.PING:
        await websocket.send_json(WebSocketEvent.heartbeat().payload())
