"""Push hooks router — ref-update validation and source-branch advance."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from refgate.api.deps import (
    get_auto_merge_service,
    get_branch_protection_service,
    get_session,
    get_tag_protection_service,
)
from refgate.api.schemas.push import (
    BlockedRef,
    RefAdvancedRequest,
    RefAdvancedResponse,
    ValidatePushRequest,
    ValidatePushResponse,
)
from refgate.services.auto_merge_service import AutoMergeService
from refgate.services.branch_protection_service import BranchProtectionService
from refgate.services.tag_protection_service import (
    RefUpdate,
    TagProtectionService,
    combine_validations,
)

router = APIRouter()


@router.post("/{repository_id}/push/validate", response_model=ValidatePushResponse)
async def validate_push(
    repository_id: uuid.UUID,
    body: ValidatePushRequest,
    session: AsyncSession = Depends(get_session),
    tags: TagProtectionService = Depends(get_tag_protection_service),
    branches: BranchProtectionService = Depends(get_branch_protection_service),
) -> ValidatePushResponse:
    updates = [RefUpdate(ref_name=u.ref, old_sha=u.old_sha, new_sha=u.new_sha) for u in body.updates]
    result = combine_validations(
        [
            await tags.validate_push_batch(
                session, repository_id, updates, privileged=body.privileged
            ),
            await branches.validate_push_batch(session, repository_id, updates),
        ]
    )
    return ValidatePushResponse(
        allowed=result.allowed,
        reason=result.reason,
        blocked=[BlockedRef(ref=ref, reason=reason) for ref, reason in result.blocked_refs],
    )


@router.post("/{repository_id}/push/advanced", response_model=RefAdvancedResponse)
async def source_ref_advanced(
    repository_id: uuid.UUID,
    body: RefAdvancedRequest,
    session: AsyncSession = Depends(get_session),
    svc: AutoMergeService = Depends(get_auto_merge_service),
) -> RefAdvancedResponse:
    invalidated = await svc.on_source_ref_advanced(session, repository_id, body.branch)
    return RefAdvancedResponse(invalidated=invalidated)
