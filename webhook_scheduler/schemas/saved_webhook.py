from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from webhook_scheduler.schemas.builder import BuilderState


class SavedWebhookCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    builder_state: BuilderState

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError('Name is required')
        return v.strip()


class SavedWebhookUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    builder_state: Optional[BuilderState] = None


class SavedWebhookResponse(BaseModel):
    id: str
    name: str
    builder_state: Optional[Dict[str, Any]] = None
    message_data: Optional[Dict[str, Any]] = None
    files: List[Dict[str, Any]] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

    @field_validator('files', mode='before')
    @classmethod
    def default_files(cls, v):
        return v or []
