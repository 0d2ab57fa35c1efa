"""Auto-merge router — gate transitions and the review-submitted trigger."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from refgate.api.deps import get_actor_id, get_auto_merge_service, get_session
from refgate.api.schemas.auto_merge import (
    AutoMergeStatusResponse,
    EnableAutoMergeRequest,
    TriggerResponse,
)
from refgate.services.auto_merge_service import AutoMergeService

router = APIRouter()


@router.get("/{pr_id}/auto-merge", response_model=AutoMergeStatusResponse)
async def get_auto_merge(
    pr_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    svc: AutoMergeService = Depends(get_auto_merge_service),
) -> AutoMergeStatusResponse:
    return AutoMergeStatusResponse.model_validate(await svc.get_status(session, pr_id))


@router.post("/{pr_id}/auto-merge", response_model=AutoMergeStatusResponse)
async def enable_auto_merge(
    pr_id: uuid.UUID,
    body: EnableAutoMergeRequest,
    actor_id: uuid.UUID = Depends(get_actor_id),
    session: AsyncSession = Depends(get_session),
    svc: AutoMergeService = Depends(get_auto_merge_service),
) -> AutoMergeStatusResponse:
    status = await svc.enable(session, pr_id, actor_id, method=body.merge_method)
    return AutoMergeStatusResponse.model_validate(status)


@router.delete("/{pr_id}/auto-merge", response_model=AutoMergeStatusResponse)
async def disable_auto_merge(
    pr_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    svc: AutoMergeService = Depends(get_auto_merge_service),
) -> AutoMergeStatusResponse:
    return AutoMergeStatusResponse.model_validate(await svc.disable(session, pr_id))


@router.post("/{pr_id}/auto-merge/trigger", response_model=TriggerResponse)
async def trigger_auto_merge(
    pr_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    svc: AutoMergeService = Depends(get_auto_merge_service),
) -> TriggerResponse:
    return TriggerResponse.model_validate(await svc.on_trigger(session, pr_id))
