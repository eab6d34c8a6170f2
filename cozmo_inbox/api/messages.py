from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from cozmo_inbox.api.deps import get_db, get_owner_id
from cozmo_inbox.schemas.message import Message, MessageCreate, MessageUpdate
from cozmo_inbox.services import messages as messages_service

router = APIRouter(prefix="/messages", tags=["messages"])


@router.get("", response_model=list[Message])
def list_messages(db: Session = Depends(get_db)):
    return messages_service.messages.list(db)


@router.post("", response_model=Message, status_code=status.HTTP_201_CREATED)
def create_message(
    payload: MessageCreate,
    db: Session = Depends(get_db),
    owner_id: str | None = Depends(get_owner_id),
):
    return messages_service.messages.create(db, payload, owner_id=owner_id)


@router.get("/{message_id}", response_model=Message)
def get_message(message_id: str, db: Session = Depends(get_db)):
    return messages_service.messages.get(db, message_id)


@router.patch("/{message_id}", response_model=Message)
def update_message(message_id: str, payload: MessageUpdate, db: Session = Depends(get_db)):
    return messages_service.messages.update(db, message_id, payload)


@router.delete("/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_message(message_id: str, db: Session = Depends(get_db)):
    messages_service.messages.delete(db, message_id)
