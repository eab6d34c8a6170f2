from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class SendEmailRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    to: str | None = None
    subject: str | None = None
    content: str | None = None
    from_email: str | None = Field(default=None, alias="from")
    from_name: str | None = Field(default=None, alias="fromName")


class SendWhatsAppRequest(BaseModel):
    to: str | None = None
    content: str | None = None


class SendResult(BaseModel):
    message: str
    id: str | None = None
    data: dict | None = None
