"""Branch protection router."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from refgate.api.deps import get_branch_protection_service, get_session
from refgate.api.schemas.branch_protection import (
    BranchProtectionResponse,
    SetBranchProtectionRequest,
)
from refgate.services.branch_protection_service import BranchProtectionService

router = APIRouter()

# Branch names may contain slashes.
_PATH = "/{repository_id}/branches/{branch:path}/protection"


@router.get(_PATH, response_model=BranchProtectionResponse)
async def get_protection(
    repository_id: uuid.UUID,
    branch: str,
    session: AsyncSession = Depends(get_session),
    svc: BranchProtectionService = Depends(get_branch_protection_service),
) -> BranchProtectionResponse:
    protection = await svc.get_protection(session, repository_id, branch)
    return BranchProtectionResponse(
        branch=branch,
        is_protected=protection.is_protected,
        required_status_checks=protection.required_contexts,
    )


@router.put(_PATH, response_model=BranchProtectionResponse)
async def set_protection(
    repository_id: uuid.UUID,
    branch: str,
    body: SetBranchProtectionRequest,
    session: AsyncSession = Depends(get_session),
    svc: BranchProtectionService = Depends(get_branch_protection_service),
) -> BranchProtectionResponse:
    protection = await svc.set_protection(
        session, repository_id, branch, body.required_status_checks
    )
    return BranchProtectionResponse(
        branch=branch,
        is_protected=protection.is_protected,
        required_status_checks=protection.required_contexts,
    )


@router.delete(_PATH, status_code=204)
async def remove_protection(
    repository_id: uuid.UUID,
    branch: str,
    session: AsyncSession = Depends(get_session),
    svc: BranchProtectionService = Depends(get_branch_protection_service),
) -> Response:
    await svc.remove_protection(session, repository_id, branch)
    return Response(status_code=204)
