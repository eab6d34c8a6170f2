"""Message repository."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy.orm import Session, joinedload

from cozmo_inbox.logging import get_logger
from cozmo_inbox.models.message import Message as MessageModel
from cozmo_inbox.schemas.message import Message, MessageCreate, MessageUpdate
from cozmo_inbox.services.adapters import message_to_row, orm_row, row_to_message
from cozmo_inbox.services.attachments import Attachments
from cozmo_inbox.services.common import coerce_uuid
from cozmo_inbox.services.customers import apply_patch, reject_nulls, require_fields
from cozmo_inbox.services.errors import InboxValidationError, NotFoundError

logger = get_logger(__name__)

REQUIRED_ON_CREATE = ("content", "channel")
NOT_NULL_COLUMNS = ("timestamp", "is_read", "is_replied")


def _message_row(db: Session, message: MessageModel) -> dict[str, Any]:
    row = orm_row(message)
    if message.customer is not None:
        row["customer"] = orm_row(message.customer)
    try:
        row["attachments"] = [orm_row(item) for item in Attachments.list_models(db, message.id)]
    except Exception:
        logger.warning("message_attachments_load_failed message_id=%s", message.id, exc_info=True)
        row["attachments"] = []
    return row


def _check_reply_fields(message: MessageModel, patch: dict) -> None:
    is_replied = patch.get("is_replied", message.is_replied)
    reply_content = patch.get("reply_content", message.reply_content)
    reply_timestamp = patch.get("reply_timestamp", message.reply_timestamp)
    if is_replied and (not reply_content or reply_timestamp is None):
        raise InboxValidationError(
            "message_reply_incomplete",
            "A replied message needs both reply content and reply timestamp",
        )


class Messages:
    @staticmethod
    def _get_model(db: Session, message_id) -> MessageModel:
        message = db.get(MessageModel, coerce_uuid(message_id), options=[joinedload(MessageModel.customer)])
        if not message:
            raise NotFoundError("message_not_found", "Message not found")
        return message

    @staticmethod
    def list(db: Session) -> list[Message]:
        rows = (
            db.query(MessageModel)
            .options(joinedload(MessageModel.customer))
            .order_by(MessageModel.timestamp.desc(), MessageModel.id.asc())
            .all()
        )
        return [row_to_message(_message_row(db, row)) for row in rows]

    @staticmethod
    def list_for_customer(db: Session, customer_id) -> list[Message]:
        rows = (
            db.query(MessageModel)
            .filter(MessageModel.customer_id == coerce_uuid(customer_id))
            .order_by(MessageModel.timestamp.desc(), MessageModel.id.asc())
            .all()
        )
        return [row_to_message(_message_row(db, row)) for row in rows]

    @staticmethod
    def get(db: Session, message_id) -> Message:
        return row_to_message(_message_row(db, Messages._get_model(db, message_id)))

    @staticmethod
    def create(db: Session, payload: MessageCreate, *, owner_id: str | None = None) -> Message:
        values = payload.set_fields()
        require_fields("message", values, REQUIRED_ON_CREATE)
        message = MessageModel(user_id=owner_id)
        patch = message_to_row(payload)
        reject_nulls("message", patch, NOT_NULL_COLUMNS)
        patch.setdefault("timestamp", datetime.now(UTC))
        _check_reply_fields(message, {"is_replied": False, **patch})
        apply_patch(message, patch)
        db.add(message)
        db.commit()
        db.refresh(message)
        logger.info("message_created message_id=%s channel=%s", message.id, message.channel.value)
        return row_to_message(_message_row(db, message))

    @staticmethod
    def update(db: Session, message_id, payload: MessageUpdate) -> Message:
        message = Messages._get_model(db, message_id)
        patch = message_to_row(payload)
        for field in REQUIRED_ON_CREATE:
            if field in patch and not patch[field]:
                raise InboxValidationError("message_invalid_update", f"Message {field} cannot be empty")
        reject_nulls("message", patch, NOT_NULL_COLUMNS)
        if "category" in patch and patch["category"] is None and message.category is not None:
            raise InboxValidationError("message_category_clear", "Message category cannot be cleared")
        _check_reply_fields(message, patch)
        apply_patch(message, patch)
        db.commit()
        db.refresh(message)
        return row_to_message(_message_row(db, message))

    @staticmethod
    def delete(db: Session, message_id) -> bool:
        message = Messages._get_model(db, message_id)
        removed = Attachments.purge_for_message(db, message.id)
        db.flush()
        db.delete(message)
        db.commit()
        logger.info("message_deleted message_id=%s attachments_removed=%s", message_id, removed)
        return True


messages = Messages()
