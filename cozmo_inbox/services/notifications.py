"""Turns inserted messages into ``message_new`` notification events."""

from __future__ import annotations

from cozmo_inbox.logging import get_logger
from cozmo_inbox.schemas.message import Message
from cozmo_inbox.services.change_feed import ChangeFeed, Subscription
from cozmo_inbox.services.errors import DecodeError
from cozmo_inbox.websocket.events import EventType, WebSocketEvent
from cozmo_inbox.websocket.manager import ConnectionManager

logger = get_logger(__name__)

PREVIEW_LENGTH = 100


def notification_title(message: Message) -> str:
    if message.customer is not None and message.customer.name:
        return f"New message from {message.customer.name}"
    return f"New {message.channel.value} message"


def notification_preview(content: str, limit: int = PREVIEW_LENGTH) -> str:
    if len(content) <= limit:
        return content
    return content[:limit] + "..."


def build_message_event(message: Message) -> WebSocketEvent:
    return WebSocketEvent(
        event=EventType.MESSAGE_NEW,
        data={
            "message_id": str(message.id),
            "customer_id": str(message.customer_id) if message.customer_id else None,
            "channel": message.channel.value,
            "title": notification_title(message),
            "body": notification_preview(message.content),
        },
    )


class NewMessageNotifier:
    def __init__(self, feed: ChangeFeed, manager: ConnectionManager) -> None:
        self._feed = feed
        self._manager = manager
        self._subscription: Subscription | None = None

    @property
    def running(self) -> bool:
        return self._subscription is not None and self._subscription.active

    def start(self) -> None:
        if self.running:
            return
        self._subscription = self._feed.subscribe_new_messages(self._on_insert, self._on_error)
        logger.info("message_notifier_started")

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
            logger.info("message_notifier_stopped")

    async def _on_insert(self, message: Message) -> None:
        delivered = await self._manager.broadcast(build_message_event(message))
        logger.debug("message_notification_sent message_id=%s sockets=%s", message.id, delivered)

    async def _on_error(self, error: DecodeError) -> None:
        await self._manager.broadcast(WebSocketEvent.failure(error.code, error.detail))
