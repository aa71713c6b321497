from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class TemplateCreate(BaseModel):
    title: str = Field(min_length=1)
    content: str = Field(min_length=1)
    category: Optional[str] = None


class TemplateUpdate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    category: Optional[str] = None


class TemplateResponse(BaseModel):
    id: UUID
    title: str
    content: str
    category: Optional[str] = None
    user_id: Optional[UUID] = None
    usage_count: int
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
