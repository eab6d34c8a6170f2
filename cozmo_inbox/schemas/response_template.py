from __future__ import annotations

from uuid import UUID

from pydantic import Field, field_validator

from cozmo_inbox.models.enums import MessageCategory
from cozmo_inbox.schemas.common import EntityModel, PatchModel


def _split_keywords(value):
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return value


class ResponseTemplate(EntityModel):
    id: UUID
    name: str
    content: str
    category: MessageCategory | None = None
    keywords: list[str] = Field(default_factory=list)


class ResponseTemplateCreate(PatchModel):
    name: str | None = Field(default=None, max_length=160)
    content: str | None = None
    category: MessageCategory | None = None
    keywords: list[str] | None = None

    @field_validator("keywords", mode="before")
    @classmethod
    def _keywords_from_csv(cls, value):
        return _split_keywords(value)


class ResponseTemplateUpdate(ResponseTemplateCreate):
    pass
