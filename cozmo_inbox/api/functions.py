"""HTTP entry points for the outbound channel senders."""

from fastapi import APIRouter

from cozmo_inbox.schemas.senders import SendEmailRequest, SendResult, SendWhatsAppRequest
from cozmo_inbox.services import senders
from cozmo_inbox.services.errors import InboxValidationError, TransportError

router = APIRouter(prefix="/functions", tags=["functions"])


@router.post("/send-email", response_model=SendResult)
async def send_email(payload: SendEmailRequest):
    if not (payload.to and payload.subject and payload.content):
        raise InboxValidationError("missing_fields", "Missing required fields: to, subject, content")
    body = await senders.deliver_email(
        payload.to,
        payload.subject,
        payload.content,
        from_email=payload.from_email,
        from_name=payload.from_name,
    )
    if body is None:
        raise TransportError("email_send_failed", "Failed to send email")
    return SendResult(message="Email sent successfully", id=str(body.get("id")))


@router.post("/send-whatsapp", response_model=SendResult)
async def send_whatsapp(payload: SendWhatsAppRequest):
    if not (payload.to and payload.content):
        raise InboxValidationError("missing_fields", "Missing required fields: to, content")
    body = await senders.deliver_whatsapp(payload.to, payload.content)
    if body is None:
        raise TransportError("whatsapp_send_failed", "Failed to send WhatsApp message")
    return SendResult(message="WhatsApp message sent successfully", data=body)
