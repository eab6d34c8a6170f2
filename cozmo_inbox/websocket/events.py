from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class EventType(StrEnum):
    """Events pushed on the notification stream."""

    MESSAGE_NEW = "message_new"
    NOTIFICATION_ERROR = "notification_error"
    CONNECTION_ACK = "connection_ack"
    HEARTBEAT = "heartbeat"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class WebSocketEvent(BaseModel):
    event: EventType
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=_utcnow)

    @classmethod
    def ack(cls, key: str) -> WebSocketEvent:
        return cls(event=EventType.CONNECTION_ACK, data={"key": key, "status": "connected"})

    @classmethod
    def heartbeat(cls) -> WebSocketEvent:
        return cls(event=EventType.HEARTBEAT, data={"status": "ok"})

    @classmethod
    def failure(cls, code: str, detail: str) -> WebSocketEvent:
        """A change-feed row that could not be decoded into a message."""
        return cls(event=EventType.NOTIFICATION_ERROR, data={"code": code, "detail": detail})

    def payload(self) -> dict[str, Any]:
        """JSON-ready form handed to ``WebSocket.send_json``."""
        return self.model_dump(mode="json")


class InboundMessageType(StrEnum):
    PING = "ping"


class InboundMessage(BaseModel):
    """Frame sent by a notification client. Only pings are understood."""

    type: InboundMessageType
    data: dict[str, Any] | None = None
