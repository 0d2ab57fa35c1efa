"""Tag protection request/response schemas."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class CreateTagRuleRequest(BaseModel):
    pattern: str = Field(..., max_length=255)
    allow_admin_override: bool = True


class TagRuleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    repository_id: uuid.UUID
    pattern: str
    allow_admin_override: bool
    created_by: uuid.UUID | None
    created_at: datetime
