"""Response template repository."""

from __future__ import annotations

from sqlalchemy.orm import Session

from cozmo_inbox.models.response_template import ResponseTemplate as ResponseTemplateModel
from cozmo_inbox.schemas.response_template import (
    ResponseTemplate,
    ResponseTemplateCreate,
    ResponseTemplateUpdate,
)
from cozmo_inbox.services.adapters import orm_row, row_to_template, template_to_row
from cozmo_inbox.services.common import coerce_uuid
from cozmo_inbox.services.customers import apply_patch, require_fields
from cozmo_inbox.services.errors import InboxValidationError, NotFoundError

REQUIRED_ON_CREATE = ("name", "content")


def template_matches(template: ResponseTemplate, query: str) -> bool:
    """Case-insensitive match on name, content or any keyword."""
    needle = (query or "").strip().lower()
    if not needle:
        return True
    if needle in template.name.lower() or needle in template.content.lower():
        return True
    return any(needle in keyword.lower() for keyword in template.keywords)


class ResponseTemplates:
    @staticmethod
    def _get_model(db: Session, template_id) -> ResponseTemplateModel:
        template = db.get(ResponseTemplateModel, coerce_uuid(template_id))
        if not template:
            raise NotFoundError("template_not_found", "Template not found")
        return template

    @staticmethod
    def list(db: Session) -> list[ResponseTemplate]:
        rows = (
            db.query(ResponseTemplateModel)
            .order_by(ResponseTemplateModel.title.asc(), ResponseTemplateModel.id.asc())
            .all()
        )
        return [row_to_template(orm_row(row)) for row in rows]

    @staticmethod
    def get(db: Session, template_id) -> ResponseTemplate:
        return row_to_template(orm_row(ResponseTemplates._get_model(db, template_id)))

    @staticmethod
    def create(db: Session, payload: ResponseTemplateCreate, *, owner_id: str | None = None) -> ResponseTemplate:
        require_fields("template", payload.set_fields(), REQUIRED_ON_CREATE)
        template = ResponseTemplateModel(user_id=owner_id, keywords=[])
        apply_patch(template, template_to_row(payload))
        db.add(template)
        db.commit()
        db.refresh(template)
        return row_to_template(orm_row(template))

    @staticmethod
    def update(db: Session, template_id, payload: ResponseTemplateUpdate) -> ResponseTemplate:
        template = ResponseTemplates._get_model(db, template_id)
        patch = template_to_row(payload)
        if "title" in patch and not patch["title"]:
            raise InboxValidationError("template_invalid_update", "Template name cannot be empty")
        if "content" in patch and not patch["content"]:
            raise InboxValidationError("template_invalid_update", "Template content cannot be empty")
        apply_patch(template, patch)
        db.commit()
        db.refresh(template)
        return row_to_template(orm_row(template))

    @staticmethod
    def delete(db: Session, template_id) -> bool:
        template = ResponseTemplates._get_model(db, template_id)
        db.delete(template)
        db.commit()
        return True


response_templates = ResponseTemplates()
