"""Routes agent replies to the sender of the message's channel."""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from cozmo_inbox.logging import get_logger
from cozmo_inbox.models.enums import Channel
from cozmo_inbox.schemas.customer import Customer
from cozmo_inbox.schemas.message import Message
from cozmo_inbox.services import senders
from cozmo_inbox.services.errors import MissingContactInfo, TransportError
from cozmo_inbox.services.observability import OUTBOUND_MESSAGES

logger = get_logger(__name__)

DEFAULT_REPLY_SUBJECT = "Your message"

EmailSender = Callable[[str, str, str], Awaitable[bool]]
WhatsAppSender = Callable[[str, str], Awaitable[bool]]


def build_reply_subject(subject: str | None) -> str:
    base = (subject or "").strip() or DEFAULT_REPLY_SUBJECT
    if base.lower().startswith("re:"):
        return base
    return f"Re: {base}"


class ReplyDispatcher:
    """Delivers a reply through the channel the message arrived on.

    Instagram and Facebook have no sender; those replies are skipped (logged)
    rather than failed, so the reply is still recorded locally.
    """

    def __init__(
        self,
        send_email: EmailSender | None = None,
        send_whatsapp: WhatsAppSender | None = None,
    ) -> None:
        self._send_email = send_email or senders.send_email
        self._send_whatsapp = send_whatsapp or senders.send_whatsapp

    async def dispatch_reply(self, message: Message, content: str, customer: Customer | None = None) -> None:
        customer = customer or message.customer
        if message.channel is Channel.email:
            if customer is None or not customer.email:
                raise MissingContactInfo("missing_email", "Customer has no email address on file")
            sent = await self._send_email(customer.email, build_reply_subject(message.subject), content)
        elif message.channel is Channel.whatsapp:
            if customer is None or not customer.phone:
                raise MissingContactInfo("missing_phone", "Customer has no phone number on file")
            sent = await self._send_whatsapp(customer.phone, content)
        else:
            OUTBOUND_MESSAGES.labels(channel=message.channel.value, status="skipped").inc()
            logger.info(
                "reply_dispatch_unsupported message_id=%s channel=%s",
                message.id,
                message.channel.value,
            )
            return
        if not sent:
            raise TransportError(
                f"{message.channel.value}_send_failed",
                f"Reply could not be delivered via {message.channel.value}",
            )
        logger.info("reply_dispatched message_id=%s channel=%s", message.id, message.channel.value)
