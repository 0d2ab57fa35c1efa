"""Push validation and ref-advance hook schemas."""

from __future__ import annotations

import uuid

from pydantic import BaseModel, Field


class RefUpdateSchema(BaseModel):
    ref: str
    old_sha: str = Field(..., pattern=r"^[0-9a-fA-F]{40}$")
    new_sha: str = Field(..., pattern=r"^[0-9a-fA-F]{40}$")


class ValidatePushRequest(BaseModel):
    updates: list[RefUpdateSchema] = Field(..., min_length=1)
    privileged: bool = False


class BlockedRef(BaseModel):
    ref: str
    reason: str


class ValidatePushResponse(BaseModel):
    allowed: bool
    reason: str | None = None
    blocked: list[BlockedRef] = []


class RefAdvancedRequest(BaseModel):
    branch: str


class RefAdvancedResponse(BaseModel):
    invalidated: list[uuid.UUID]
