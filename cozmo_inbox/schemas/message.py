from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import Field

from cozmo_inbox.models.enums import Channel, MessageCategory
from cozmo_inbox.schemas.common import EntityModel, PatchModel
from cozmo_inbox.schemas.customer import Customer


class Attachment(EntityModel):
    id: UUID
    message_id: UUID
    file_name: str
    file_path: str
    file_size: int = 0
    file_type: str | None = None
    url: str


class Message(EntityModel):
    id: UUID
    customer_id: UUID | None = None
    channel: Channel
    content: str
    subject: str | None = None
    timestamp: datetime
    is_read: bool = False
    category: MessageCategory | None = None
    is_replied: bool = False
    reply_content: str | None = None
    reply_timestamp: datetime | None = None
    attachments: list[Attachment] = Field(default_factory=list)
    customer: Customer | None = None


class MessageCreate(PatchModel):
    customer_id: UUID | None = None
    channel: Channel | None = None
    content: str | None = None
    subject: str | None = Field(default=None, max_length=200)
    timestamp: datetime | None = None
    is_read: bool | None = None
    category: MessageCategory | None = None
    is_replied: bool | None = None
    reply_content: str | None = None
    reply_timestamp: datetime | None = None


class MessageUpdate(MessageCreate):
    pass
