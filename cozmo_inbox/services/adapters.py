"""Mapping between stored row shape and application entities.

Rows are plain mappings keyed by column name (``avatar_url``, ``title``,
``is_read``...). Entities are the pydantic models in ``cozmo_inbox.schemas``.
Only fields present on the input are carried across, so a partial entity
becomes a sparse row patch and a partial row becomes an entity whose
``model_fields_set`` matches the row.

An empty ``phone`` decodes to ``None`` (no number on file), so encoding that
customer again yields ``phone=None`` rather than ``""``.
"""

from __future__ import annotations

import enum
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import inspect as sa_inspect

from cozmo_inbox.schemas.customer import Customer
from cozmo_inbox.schemas.message import Attachment, Message
from cozmo_inbox.schemas.response_template import ResponseTemplate
from cozmo_inbox.services.errors import DecodeError
from cozmo_inbox.services.storage import storage

# (entity attribute, row column)
CUSTOMER_FIELDS: tuple[tuple[str, str], ...] = (
    ("id", "id"),
    ("name", "name"),
    ("email", "email"),
    ("phone", "phone"),
    ("status", "status"),
    ("notes", "notes"),
    ("avatar", "avatar_url"),
    ("last_contact", "updated_at"),
)

MESSAGE_FIELDS: tuple[tuple[str, str], ...] = (
    ("id", "id"),
    ("customer_id", "customer_id"),
    ("channel", "channel"),
    ("content", "content"),
    ("subject", "subject"),
    ("timestamp", "timestamp"),
    ("is_read", "is_read"),
    ("category", "category"),
    ("is_replied", "is_replied"),
    ("reply_content", "reply_content"),
    ("reply_timestamp", "reply_timestamp"),
)

TEMPLATE_FIELDS: tuple[tuple[str, str], ...] = (
    ("id", "id"),
    ("name", "title"),
    ("content", "content"),
    ("category", "category"),
    ("keywords", "keywords"),
)

ATTACHMENT_FIELDS: tuple[tuple[str, str], ...] = (
    ("id", "id"),
    ("message_id", "message_id"),
    ("file_name", "file_name"),
    ("file_path", "file_path"),
    ("file_size", "file_size"),
    ("file_type", "file_type"),
)


def orm_row(obj: Any, *, loaded_only: bool = False) -> dict[str, Any]:
    """Column-name keyed snapshot of a mapped instance.

    ``loaded_only`` reads the instance dict without triggering lazy loads,
    which is what flush hooks need for rows that are being deleted.
    """
    state = sa_inspect(obj)
    row: dict[str, Any] = {}
    for attr in state.mapper.column_attrs:
        if loaded_only:
            if attr.key not in state.dict:
                continue
            value = state.dict[attr.key]
        else:
            value = getattr(obj, attr.key)
        if isinstance(value, enum.Enum):
            value = value.value
        row[attr.columns[0].name] = value
    return row


def _pick(row: Mapping[str, Any], fields: tuple[tuple[str, str], ...]) -> dict[str, Any]:
    data = {}
    for attr, column in fields:
        if column not in row:
            continue
        value = row[column]
        # timestamptz columns come back naive from some drivers
        if isinstance(value, datetime) and value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        data[attr] = value
    return data


def _validate(model: type[BaseModel], data: dict[str, Any], label: str):
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise DecodeError(f"invalid_{label}_row", f"Malformed {label} row ({location}): {first.get('msg')}")


def _encode(values: Mapping[str, Any] | BaseModel, fields: tuple[tuple[str, str], ...]) -> dict[str, Any]:
    if isinstance(values, BaseModel):
        values = values.model_dump(exclude_unset=True)
    row: dict[str, Any] = {}
    for attr, column in fields:
        if attr not in values:
            continue
        value = values[attr]
        if isinstance(value, enum.Enum):
            value = value.value
        row[column] = value
    return row


def row_to_customer(row: Mapping[str, Any]) -> Customer:
    data = _pick(row, CUSTOMER_FIELDS)
    if "phone" in data and not data["phone"]:
        data["phone"] = None
    return _validate(Customer, data, "customer")


def customer_to_row(customer: Mapping[str, Any] | BaseModel) -> dict[str, Any]:
    return _encode(customer, CUSTOMER_FIELDS)


def row_to_attachment(
    row: Mapping[str, Any],
    url_for: Callable[[str], str] | None = None,
) -> Attachment:
    data = _pick(row, ATTACHMENT_FIELDS)
    if row.get("url"):
        data["url"] = row["url"]
    elif data.get("file_path"):
        data["url"] = (url_for or storage.public_url)(data["file_path"])
    return _validate(Attachment, data, "attachment")


def attachment_to_row(attachment: Mapping[str, Any] | BaseModel) -> dict[str, Any]:
    return _encode(attachment, ATTACHMENT_FIELDS)


def row_to_message(row: Mapping[str, Any]) -> Message:
    data = _pick(row, MESSAGE_FIELDS)
    for flag in ("is_read", "is_replied"):
        if flag in data and data[flag] is None:
            data[flag] = False
    customer_row = row.get("customer")
    if customer_row:
        data["customer"] = row_to_customer(customer_row)
    attachment_rows = row.get("attachments")
    if attachment_rows:
        data["attachments"] = [row_to_attachment(item) for item in attachment_rows]
    return _validate(Message, data, "message")


def message_to_row(message: Mapping[str, Any] | BaseModel) -> dict[str, Any]:
    return _encode(message, MESSAGE_FIELDS)


def row_to_template(row: Mapping[str, Any]) -> ResponseTemplate:
    data = _pick(row, TEMPLATE_FIELDS)
    if "keywords" in data and data["keywords"] is None:
        data["keywords"] = []
    return _validate(ResponseTemplate, data, "template")


def template_to_row(template: Mapping[str, Any] | BaseModel) -> dict[str, Any]:
    return _encode(template, TEMPLATE_FIELDS)
