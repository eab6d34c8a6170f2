from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import Field

from cozmo_inbox.models.enums import CustomerStatus
from cozmo_inbox.schemas.common import EntityModel, PatchModel


class Customer(EntityModel):
    id: UUID
    name: str
    email: str
    phone: str | None = None
    status: CustomerStatus = CustomerStatus.new
    notes: str | None = None
    last_contact: datetime | None = None
    avatar: str | None = None


class CustomerCreate(PatchModel):
    name: str | None = Field(default=None, max_length=160)
    email: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=40)
    status: CustomerStatus | None = None
    notes: str | None = None
    avatar: str | None = Field(default=None, max_length=500)


class CustomerUpdate(CustomerCreate):
    pass
