"""Commit statuses router — status ledger and required-check queries."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.ext.asyncio import AsyncSession

from refgate.api.deps import get_auto_merge_service, get_commit_status_service, get_session
from refgate.api.schemas.common import PageMeta, PaginatedResponse
from refgate.api.schemas.status import (
    CombinedStatusResponse,
    CreateStatusRequest,
    RecordStatusResponse,
    RequiredCheckResponse,
    RequiredChecksRequest,
    StatusResponse,
)
from refgate.services.auto_merge_service import AutoMergeService
from refgate.services.commit_status_service import CommitStatusService

router = APIRouter()


@router.post(
    "/{repository_id}/statuses/{sha}", response_model=RecordStatusResponse, status_code=201
)
async def create_status(
    repository_id: uuid.UUID,
    sha: str,
    body: CreateStatusRequest,
    x_actor_id: uuid.UUID | None = Header(None),
    session: AsyncSession = Depends(get_session),
    svc: CommitStatusService = Depends(get_commit_status_service),
    auto_merge: AutoMergeService = Depends(get_auto_merge_service),
) -> RecordStatusResponse:
    status = await svc.record(
        session,
        repository_id,
        sha,
        body.state,
        context=body.context,
        description=body.description,
        target_url=body.target_url,
        creator_id=x_actor_id,
    )
    results = await auto_merge.on_status_reported(session, repository_id, sha)
    return RecordStatusResponse(
        **StatusResponse.model_validate(status).model_dump(),
        merged_pull_requests=sum(1 for r in results if r.merged),
    )


@router.get(
    "/{repository_id}/commits/{sha}/statuses",
    response_model=PaginatedResponse[StatusResponse],
)
async def list_statuses(
    repository_id: uuid.UUID,
    sha: str,
    cursor: str | None = Query(None),
    page_size: int = Query(20, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
    svc: CommitStatusService = Depends(get_commit_status_service),
) -> PaginatedResponse[StatusResponse]:
    result = await svc.list_statuses(
        session, repository_id, sha, cursor=cursor, page_size=page_size
    )
    return PaginatedResponse(
        data=[StatusResponse.model_validate(s) for s in result["data"]],
        meta=PageMeta(next_cursor=result["next_cursor"], has_more=result["has_more"]),
    )


@router.get("/{repository_id}/commits/{sha}/status", response_model=CombinedStatusResponse)
async def get_combined_status(
    repository_id: uuid.UUID,
    sha: str,
    session: AsyncSession = Depends(get_session),
    svc: CommitStatusService = Depends(get_commit_status_service),
) -> CombinedStatusResponse:
    combined = await svc.combined(session, repository_id, sha)
    return CombinedStatusResponse(
        state=combined.state,
        sha=combined.sha,
        total_count=combined.total_count,
        statuses=[StatusResponse.model_validate(s) for s in combined.statuses],
    )


@router.post(
    "/{repository_id}/commits/{sha}/required-checks", response_model=RequiredCheckResponse
)
async def check_required(
    repository_id: uuid.UUID,
    sha: str,
    body: RequiredChecksRequest,
    session: AsyncSession = Depends(get_session),
    svc: CommitStatusService = Depends(get_commit_status_service),
) -> RequiredCheckResponse:
    result = await svc.check_required(session, repository_id, sha, body.contexts)
    return RequiredCheckResponse(
        passed=result.passed, missing=result.missing, failing=result.failing
    )
