from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from cozmo_inbox.api.deps import get_db, get_owner_id
from cozmo_inbox.schemas.response_template import (
    ResponseTemplate,
    ResponseTemplateCreate,
    ResponseTemplateUpdate,
)
from cozmo_inbox.services import templates as templates_service

router = APIRouter(prefix="/templates", tags=["templates"])


@router.get("", response_model=list[ResponseTemplate])
def list_templates(q: str | None = Query(default=None), db: Session = Depends(get_db)):
    items = templates_service.response_templates.list(db)
    if q:
        items = [item for item in items if templates_service.template_matches(item, q)]
    return items


@router.post("", response_model=ResponseTemplate, status_code=status.HTTP_201_CREATED)
def create_template(
    payload: ResponseTemplateCreate,
    db: Session = Depends(get_db),
    owner_id: str | None = Depends(get_owner_id),
):
    return templates_service.response_templates.create(db, payload, owner_id=owner_id)


@router.get("/{template_id}", response_model=ResponseTemplate)
def get_template(template_id: str, db: Session = Depends(get_db)):
    return templates_service.response_templates.get(db, template_id)


@router.patch("/{template_id}", response_model=ResponseTemplate)
def update_template(template_id: str, payload: ResponseTemplateUpdate, db: Session = Depends(get_db)):
    return templates_service.response_templates.update(db, template_id, payload)


@router.delete("/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_template(template_id: str, db: Session = Depends(get_db)):
    templates_service.response_templates.delete(db, template_id)
