"""Branch protection schemas."""

from __future__ import annotations

from pydantic import BaseModel


class SetBranchProtectionRequest(BaseModel):
    required_status_checks: list[str] = []


class BranchProtectionResponse(BaseModel):
    branch: str
    is_protected: bool
    required_status_checks: list[str]
