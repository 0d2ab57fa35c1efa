"""Commit status request/response schemas."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CreateStatusRequest(BaseModel):
    state: Literal["pending", "success", "failure", "error"]
    context: str | None = Field(None, max_length=255)
    description: str | None = Field(None, max_length=255)
    target_url: str | None = None

    @field_validator("context", mode="before")
    @classmethod
    def _blank_context_is_default(cls, v: str | None) -> str | None:
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v


class StatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    sha: str
    state: str
    context: str
    description: str | None
    target_url: str | None
    creator_id: uuid.UUID | None
    created_at: datetime


class CombinedStatusResponse(BaseModel):
    state: str
    sha: str
    total_count: int
    statuses: list[StatusResponse]


class RequiredChecksRequest(BaseModel):
    contexts: list[str]


class RequiredCheckResponse(BaseModel):
    passed: bool
    missing: list[str]
    failing: list[str]


class RecordStatusResponse(StatusResponse):
    """A recorded status plus any auto-merges it unblocked."""

    merged_pull_requests: int = 0
