from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.database import get_db
from app.deps import get_current_user
from app.errors import ForbiddenError, NotFoundError
from app.models import MessageTemplate, User
from app.schemas.template import TemplateCreate, TemplateResponse, TemplateUpdate

router = APIRouter(prefix="/templates", tags=["templates"])


def get_template_or_404(db: Session, template_id: UUID) -> MessageTemplate:
    template = db.query(MessageTemplate).filter(MessageTemplate.id == template_id).first()
    if not template:
        raise NotFoundError(f"Template {template_id} not found")
    return template


def ensure_owner(template: MessageTemplate, user: User) -> None:
    if template.user_id != user.id and not user.has_admin_access():
        raise ForbiddenError("Only the author or an admin can change this template")


@router.get("", response_model=list[TemplateResponse])
def list_templates(category: Optional[str] = None, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    query = db.query(MessageTemplate)
    if category:
        query = query.filter(MessageTemplate.category == category)
    return query.order_by(MessageTemplate.usage_count.desc(), MessageTemplate.title.asc()).all()


@router.post("", response_model=TemplateResponse, status_code=201)
def create_template(request: TemplateCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    template = MessageTemplate(
        title=request.title,
        content=request.content,
        category=request.category,
        user_id=user.id,
        usage_count=0,
    )
    db.add(template)
    db.commit()
    db.refresh(template)
    return template


@router.get("/{template_id}", response_model=TemplateResponse)
def get_template(template_id: UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return get_template_or_404(db, template_id)


@router.patch("/{template_id}", response_model=TemplateResponse)
def update_template(
    template_id: UUID,
    request: TemplateUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    template = get_template_or_404(db, template_id)
    ensure_owner(template, user)
    for field, value in request.model_dump(exclude_unset=True).items():
        setattr(template, field, value)
    db.commit()
    db.refresh(template)
    return template


@router.delete("/{template_id}")
def delete_template(template_id: UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    template = get_template_or_404(db, template_id)
    ensure_owner(template, user)
    db.delete(template)
    db.commit()
    return {"success": True}


@router.patch("/{template_id}/use", response_model=TemplateResponse)
def use_template(template_id: UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    template = get_template_or_404(db, template_id)
    db.query(MessageTemplate).filter(MessageTemplate.id == template.id).update(
        {MessageTemplate.usage_count: MessageTemplate.usage_count + 1}, synchronize_session=False
    )
    db.commit()
    db.refresh(template)
    return template
