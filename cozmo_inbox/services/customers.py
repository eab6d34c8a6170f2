"""Customer repository."""

from __future__ import annotations

from sqlalchemy.orm import Session

from cozmo_inbox.logging import get_logger
from cozmo_inbox.models.customer import Customer as CustomerModel
from cozmo_inbox.schemas.customer import Customer, CustomerCreate, CustomerUpdate
from cozmo_inbox.services.adapters import customer_to_row, orm_row, row_to_customer
from cozmo_inbox.services.common import coerce_uuid
from cozmo_inbox.services.errors import InboxValidationError, NotFoundError

logger = get_logger(__name__)

READ_ONLY_COLUMNS = frozenset({"id", "user_id", "created_at", "updated_at"})
REQUIRED_ON_CREATE = ("name", "email")
NOT_NULL_COLUMNS = ("status",)


def require_fields(label: str, values: dict, required: tuple[str, ...]) -> None:
    missing = [field for field in required if values.get(field) in (None, "")]
    if missing:
        raise InboxValidationError(
            f"{label}_missing_fields",
            f"Missing required fields for {label}: {', '.join(missing)}",
        )


def reject_nulls(label: str, patch: dict, columns: tuple[str, ...]) -> None:
    nulled = [column for column in columns if column in patch and patch[column] is None]
    if nulled:
        raise InboxValidationError(
            f"{label}_null_fields",
            f"Fields of {label} cannot be null: {', '.join(nulled)}",
        )


def apply_patch(model, patch: dict) -> None:
    for column, value in patch.items():
        if column in READ_ONLY_COLUMNS:
            continue
        setattr(model, column, value)


class Customers:
    @staticmethod
    def _get_model(db: Session, customer_id) -> CustomerModel:
        customer = db.get(CustomerModel, coerce_uuid(customer_id))
        if not customer:
            raise NotFoundError("customer_not_found", "Customer not found")
        return customer

    @staticmethod
    def list(db: Session) -> list[Customer]:
        rows = db.query(CustomerModel).order_by(CustomerModel.name.asc(), CustomerModel.id.asc()).all()
        return [row_to_customer(orm_row(row)) for row in rows]

    @staticmethod
    def get(db: Session, customer_id) -> Customer:
        return row_to_customer(orm_row(Customers._get_model(db, customer_id)))

    @staticmethod
    def create(db: Session, payload: CustomerCreate, *, owner_id: str | None = None) -> Customer:
        require_fields("customer", payload.set_fields(), REQUIRED_ON_CREATE)
        patch = customer_to_row(payload)
        reject_nulls("customer", patch, NOT_NULL_COLUMNS)
        customer = CustomerModel(user_id=owner_id)
        apply_patch(customer, patch)
        db.add(customer)
        db.commit()
        db.refresh(customer)
        logger.info("customer_created customer_id=%s", customer.id)
        return row_to_customer(orm_row(customer))

    @staticmethod
    def update(db: Session, customer_id, payload: CustomerUpdate) -> Customer:
        customer = Customers._get_model(db, customer_id)
        patch = customer_to_row(payload)
        for field in REQUIRED_ON_CREATE:
            if field in patch and not patch[field]:
                raise InboxValidationError("customer_invalid_update", f"Customer {field} cannot be empty")
        reject_nulls("customer", patch, NOT_NULL_COLUMNS)
        apply_patch(customer, patch)
        db.commit()
        db.refresh(customer)
        return row_to_customer(orm_row(customer))

    @staticmethod
    def delete(db: Session, customer_id) -> bool:
        customer = Customers._get_model(db, customer_id)
        db.delete(customer)
        db.commit()
        logger.info("customer_deleted customer_id=%s", customer_id)
        return True


customers = Customers()
