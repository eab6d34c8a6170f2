from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from cozmo_inbox.api.deps import get_db, get_owner_id
from cozmo_inbox.schemas.customer import Customer, CustomerCreate, CustomerUpdate
from cozmo_inbox.schemas.message import Message
from cozmo_inbox.services import customers as customers_service
from cozmo_inbox.services import messages as messages_service

router = APIRouter(prefix="/customers", tags=["customers"])


@router.get("", response_model=list[Customer])
def list_customers(db: Session = Depends(get_db)):
    return customers_service.customers.list(db)


@router.post("", response_model=Customer, status_code=status.HTTP_201_CREATED)
def create_customer(
    payload: CustomerCreate,
    db: Session = Depends(get_db),
    owner_id: str | None = Depends(get_owner_id),
):
    return customers_service.customers.create(db, payload, owner_id=owner_id)


@router.get("/{customer_id}", response_model=Customer)
def get_customer(customer_id: str, db: Session = Depends(get_db)):
    return customers_service.customers.get(db, customer_id)


@router.patch("/{customer_id}", response_model=Customer)
def update_customer(customer_id: str, payload: CustomerUpdate, db: Session = Depends(get_db)):
    return customers_service.customers.update(db, customer_id, payload)


@router.delete("/{customer_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_customer(customer_id: str, db: Session = Depends(get_db)):
    customers_service.customers.delete(db, customer_id)


@router.get("/{customer_id}/messages", response_model=list[Message])
def list_customer_messages(customer_id: str, db: Session = Depends(get_db)):
    customers_service.customers.get(db, customer_id)
    return messages_service.messages.list_for_customer(db, customer_id)
