from fastapi import APIRouter, Depends, File, UploadFile, status
from sqlalchemy.orm import Session

from cozmo_inbox.api.deps import get_db, get_owner_id
from cozmo_inbox.schemas.message import Attachment
from cozmo_inbox.services import attachments as attachments_service
from cozmo_inbox.services import messages as messages_service

router = APIRouter(tags=["attachments"])


@router.get("/messages/{message_id}/attachments", response_model=list[Attachment])
def list_attachments(message_id: str, db: Session = Depends(get_db)):
    messages_service.messages.get(db, message_id)
    return attachments_service.attachments.list_for_message(db, message_id)


@router.post(
    "/messages/{message_id}/attachments",
    response_model=Attachment,
    status_code=status.HTTP_201_CREATED,
)
async def upload_attachment(
    message_id: str,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    owner_id: str | None = Depends(get_owner_id),
):
    data = await file.read()
    return attachments_service.attachments.upload(
        db,
        message_id,
        file_name=file.filename or "",
        data=data,
        content_type=file.content_type,
        owner_id=owner_id,
    )


@router.delete("/attachments/{attachment_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_attachment(attachment_id: str, db: Session = Depends(get_db)):
    attachments_service.attachments.delete(db, attachment_id)
