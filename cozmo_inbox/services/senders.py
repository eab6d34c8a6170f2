"""Outbound channel senders.

Each sender returns ``True`` only when the provider accepted the message and
``False`` on transport or provider failure (details are logged). Provider
credentials are read from the environment on every call, so a missing
credential surfaces as :class:`ConfigurationError` at send time.
"""

from __future__ import annotations

import os
import re

import httpx

from cozmo_inbox.config import settings
from cozmo_inbox.logging import get_logger
from cozmo_inbox.services.errors import ConfigurationError
from cozmo_inbox.services.observability import OUTBOUND_MESSAGES

logger = get_logger(__name__)

DEFAULT_FROM_EMAIL = "onboarding@resend.dev"
DEFAULT_FROM_NAME = "CozmoMail"


def _require_env(name: str, channel: str) -> str:
    value = (os.getenv(name) or "").strip()
    if not value:
        raise ConfigurationError(f"{channel}_not_configured", f"{name} is not set")
    return value


def format_whatsapp_number(value: str) -> str:
    return re.sub(r"\D", "", value or "")


def build_email_payload(
    to: str,
    subject: str,
    html_content: str,
    *,
    from_email: str | None = None,
    from_name: str | None = None,
) -> dict:
    sender_email = from_email or os.getenv("DEFAULT_FROM_EMAIL") or DEFAULT_FROM_EMAIL
    sender_name = from_name or os.getenv("DEFAULT_FROM_NAME") or DEFAULT_FROM_NAME
    return {
        "from": f"{sender_name} <{sender_email}>",
        "to": [to],
        "subject": subject,
        "html": html_content,
    }


def build_whatsapp_payload(to: str, content: str) -> dict:
    return {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": format_whatsapp_number(to),
        "type": "text",
        "text": {"preview_url": False, "body": content},
    }


async def _post_json(url: str, *, payload: dict, token: str) -> dict | None:
    """POST *payload* and return the decoded body, or ``None`` on failure."""
    headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
    try:
        async with httpx.AsyncClient(timeout=settings.sender_timeout_seconds) as client:
            response = await client.post(url, json=payload, headers=headers)
            response.raise_for_status()
            body = response.json()
    except httpx.HTTPStatusError as exc:
        detail = exc.response.text if exc.response is not None else str(exc)
        logger.warning("provider_rejected url=%s status=%s detail=%s", url, exc.response.status_code, detail)
        return None
    except httpx.HTTPError as exc:
        logger.warning("provider_transport_error url=%s error=%s", url, exc)
        return None
    except ValueError:
        logger.warning("provider_invalid_response url=%s", url)
        return None
    return body if isinstance(body, dict) else None


async def deliver_email(
    to: str,
    subject: str,
    html_content: str,
    *,
    from_email: str | None = None,
    from_name: str | None = None,
) -> dict | None:
    """Send through the email provider and return its acceptance payload."""
    api_key = _require_env("RESEND_API_KEY", "email")
    payload = build_email_payload(to, subject, html_content, from_email=from_email, from_name=from_name)
    body = await _post_json(settings.resend_api_url, payload=payload, token=api_key)
    if not body or not body.get("id"):
        OUTBOUND_MESSAGES.labels(channel="email", status="failed").inc()
        logger.warning("email_send_failed to=%s subject=%s", to, subject)
        return None
    OUTBOUND_MESSAGES.labels(channel="email", status="sent").inc()
    logger.info("email_sent to=%s provider_id=%s", to, body.get("id"))
    return body


async def send_email(
    to: str,
    subject: str,
    html_content: str,
    *,
    from_email: str | None = None,
    from_name: str | None = None,
) -> bool:
    body = await deliver_email(to, subject, html_content, from_email=from_email, from_name=from_name)
    return body is not None


async def deliver_whatsapp(to: str, content: str) -> dict | None:
    """Send a WhatsApp text message and return the provider acceptance payload."""
    api_key = _require_env("WHATSAPP_API_KEY", "whatsapp")
    phone_number_id = _require_env("WHATSAPP_PHONE_NUMBER_ID", "whatsapp")
    if not format_whatsapp_number(to):
        logger.warning("whatsapp_send_invalid_number to=%s", to)
        OUTBOUND_MESSAGES.labels(channel="whatsapp", status="failed").inc()
        return None
    url = f"{settings.meta_graph_base_url.rstrip('/')}/{phone_number_id}/messages"
    body = await _post_json(url, payload=build_whatsapp_payload(to, content), token=api_key)
    if not body or not body.get("messages"):
        OUTBOUND_MESSAGES.labels(channel="whatsapp", status="failed").inc()
        logger.warning("whatsapp_send_failed to=%s", to)
        return None
    OUTBOUND_MESSAGES.labels(channel="whatsapp", status="sent").inc()
    logger.info("whatsapp_sent to=%s", to)
    return body


async def send_whatsapp(to: str, content: str) -> bool:
    return await deliver_whatsapp(to, content) is not None
