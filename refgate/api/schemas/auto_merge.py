"""Auto-merge gate schemas."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict


class EnableAutoMergeRequest(BaseModel):
    merge_method: str = "merge"


class AutoMergeStatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    pull_request_id: uuid.UUID
    state: str
    enabled: bool
    method: str | None
    enabled_by: uuid.UUID | None
    enabled_at: datetime | None


class TriggerResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    merged: bool
    reason: str | None
    missing: list[str]
    failing: list[str]
