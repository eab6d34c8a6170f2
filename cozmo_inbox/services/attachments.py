"""Attachment records and their stored blobs."""

from __future__ import annotations

import uuid
from pathlib import PurePosixPath

from sqlalchemy.orm import Session

from cozmo_inbox.config import settings
from cozmo_inbox.logging import get_logger
from cozmo_inbox.models.message import Attachment as AttachmentModel
from cozmo_inbox.models.message import Message as MessageModel
from cozmo_inbox.schemas.message import Attachment
from cozmo_inbox.services.adapters import orm_row, row_to_attachment
from cozmo_inbox.services.common import coerce_uuid
from cozmo_inbox.services.errors import InboxValidationError, NotFoundError
from cozmo_inbox.services.storage import storage

logger = get_logger(__name__)


def build_storage_key(message_id, file_name: str) -> str:
    suffix = PurePosixPath(file_name or "").suffix
    return f"{message_id}/{uuid.uuid4().hex}{suffix}"


class Attachments:
    @staticmethod
    def list_models(db: Session, message_id) -> list[AttachmentModel]:
        return (
            db.query(AttachmentModel)
            .filter(AttachmentModel.message_id == coerce_uuid(message_id))
            .order_by(AttachmentModel.created_at.asc())
            .all()
        )

    @staticmethod
    def list_for_message(db: Session, message_id) -> list[Attachment]:
        return [row_to_attachment(orm_row(item)) for item in Attachments.list_models(db, message_id)]

    @staticmethod
    def upload(
        db: Session,
        message_id,
        *,
        file_name: str,
        data: bytes,
        content_type: str | None = None,
        owner_id: str | None = None,
    ) -> Attachment:
        message_uuid = coerce_uuid(message_id)
        if not db.get(MessageModel, message_uuid):
            raise NotFoundError("message_not_found", "Message not found")
        if not file_name:
            raise InboxValidationError("attachment_missing_name", "Attachment file name is required")
        if len(data) > settings.attachment_max_size_bytes:
            raise InboxValidationError(
                "attachment_too_large",
                f"Attachment exceeds {settings.attachment_max_size_bytes} bytes",
            )
        key = build_storage_key(message_uuid, file_name)
        storage.save(key, data, content_type or "")
        attachment = AttachmentModel(
            message_id=message_uuid,
            file_name=file_name,
            file_path=key,
            file_size=len(data),
            file_type=content_type,
            user_id=owner_id,
        )
        try:
            db.add(attachment)
            db.commit()
        except Exception:
            db.rollback()
            logger.warning("attachment_record_failed message_id=%s key=%s", message_uuid, key, exc_info=True)
            storage.remove(key)
            raise
        db.refresh(attachment)
        logger.info("attachment_uploaded attachment_id=%s message_id=%s", attachment.id, message_uuid)
        return row_to_attachment(orm_row(attachment))

    @staticmethod
    def delete(db: Session, attachment_id) -> bool:
        attachment = db.get(AttachmentModel, coerce_uuid(attachment_id))
        if not attachment:
            raise NotFoundError("attachment_not_found", "Attachment not found")
        storage.remove(attachment.file_path)
        db.delete(attachment)
        db.commit()
        return True

    @staticmethod
    def purge_for_message(db: Session, message_id) -> int:
        """Remove every attachment of a message without committing.

        Blob removal is best-effort: a failing blob delete is logged and the
        record is removed regardless.
        """
        removed = 0
        for attachment in Attachments.list_models(db, message_id):
            try:
                storage.remove(attachment.file_path)
            except Exception:
                logger.warning(
                    "attachment_blob_delete_failed attachment_id=%s path=%s",
                    attachment.id,
                    attachment.file_path,
                    exc_info=True,
                )
            db.delete(attachment)
            removed += 1
        return removed


attachments = Attachments()
