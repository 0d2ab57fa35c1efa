"""Tag protection rules router."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from refgate.api.deps import get_actor_id, get_session, get_tag_protection_service
from refgate.api.schemas.tag_protection import CreateTagRuleRequest, TagRuleResponse
from refgate.services.tag_protection_service import TagProtectionService

router = APIRouter()


@router.get("/{repository_id}/tag-protection", response_model=list[TagRuleResponse])
async def list_rules(
    repository_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    svc: TagProtectionService = Depends(get_tag_protection_service),
) -> list[TagRuleResponse]:
    rules = await svc.list_rules(session, repository_id)
    return [TagRuleResponse.model_validate(r) for r in rules]


@router.post(
    "/{repository_id}/tag-protection", response_model=TagRuleResponse, status_code=201
)
async def create_rule(
    repository_id: uuid.UUID,
    body: CreateTagRuleRequest,
    actor_id: uuid.UUID = Depends(get_actor_id),
    session: AsyncSession = Depends(get_session),
    svc: TagProtectionService = Depends(get_tag_protection_service),
) -> TagRuleResponse:
    rule = await svc.add_rule(
        session,
        repository_id,
        body.pattern,
        created_by=actor_id,
        allow_admin_override=body.allow_admin_override,
    )
    return TagRuleResponse.model_validate(rule)


@router.get("/{repository_id}/tag-protection/{rule_id}", response_model=TagRuleResponse)
async def get_rule(
    repository_id: uuid.UUID,
    rule_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    svc: TagProtectionService = Depends(get_tag_protection_service),
) -> TagRuleResponse:
    rule = await svc.get_rule(session, repository_id, rule_id)
    return TagRuleResponse.model_validate(rule)


@router.delete("/{repository_id}/tag-protection/{rule_id}", status_code=204)
async def delete_rule(
    repository_id: uuid.UUID,
    rule_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    svc: TagProtectionService = Depends(get_tag_protection_service),
) -> Response:
    await svc.remove_rule(session, repository_id, rule_id)
    return Response(status_code=204)
