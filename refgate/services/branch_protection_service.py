"""BranchProtectionService — protection config read by the merge gate and push hook."""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from refgate.core.refs import (
    extract_branch_name,
    is_zero_sha,
    matches_ref_pattern,
    pattern_specificity,
)
from refgate.dao.branch_dao import BranchDAO
from refgate.dao.repository_dao import RepositoryDAO
from refgate.models.branch import Branch
from refgate.services import NotFoundError, ValidationError
from refgate.services.commit_status_service import CommitStatusService, RequiredCheckResult
from refgate.services.tag_protection_service import PushValidation, RefUpdate

log = structlog.get_logger("refgate.service.branch_protection")


@dataclass
class BranchProtection:
    is_protected: bool
    required_contexts: list[str] = field(default_factory=list)


UNPROTECTED = BranchProtection(is_protected=False)


def find_protected_branch(branch: str, rows: Iterable[Branch]) -> Branch | None:
    """Protected row governing *branch*: an exact name first, else the narrowest pattern."""
    rows = list(rows)
    for row in rows:
        if row.name == branch:
            return row
    matching = [row for row in rows if matches_ref_pattern(branch, row.name)]
    if not matching:
        return None
    return min(matching, key=lambda row: pattern_specificity(row.name))


def describe_checks(result: RequiredCheckResult) -> str:
    reasons: list[str] = []
    if result.missing:
        reasons.append(f"Missing required checks: {', '.join(result.missing)}")
    if result.failing:
        reasons.append(f"Failing checks: {', '.join(result.failing)}")
    return ". ".join(reasons) or "Required status checks have not passed"


class BranchProtectionService:
    """Stateless service for per-branch protection settings and branch push checks."""

    def __init__(
        self,
        branch_dao: BranchDAO,
        repository_dao: RepositoryDAO,
        commit_status_service: CommitStatusService,
    ) -> None:
        self._branch_dao = branch_dao
        self._repo_dao = repository_dao
        self._status_service = commit_status_service

    async def get_protection(
        self, session: AsyncSession, repository_id: uuid.UUID, branch: str
    ) -> BranchProtection:
        """Return the branch protection; unknown branches are unprotected."""
        row = await self._branch_dao.get_by_name(session, repository_id, branch)
        if row is None or not row.is_protected:
            return UNPROTECTED
        return BranchProtection(
            is_protected=True,
            required_contexts=list(row.required_status_checks or []),
        )

    async def set_protection(
        self,
        session: AsyncSession,
        repository_id: uuid.UUID,
        branch: str,
        required_contexts: list[str],
    ) -> BranchProtection:
        """Protect *branch* and replace its required status contexts.

        Contexts are stripped and de-duplicated, keeping first-seen order.
        """
        branch = branch.strip()
        if not branch:
            raise ValidationError("branch name is required")
        if not await self._repo_dao.exists(session, repository_id):
            raise NotFoundError("repository not found")

        contexts: list[str] = []
        for ctx in required_contexts:
            ctx = ctx.strip()
            if not ctx:
                raise ValidationError("required status check names must not be empty")
            if ctx not in contexts:
                contexts.append(ctx)

        row = await self._branch_dao.upsert_protection(
            session,
            repository_id,
            branch,
            is_protected=True,
            required_status_checks=contexts,
        )
        log.info(
            "branch_protection.set",
            repository_id=str(repository_id),
            branch=branch,
            required_contexts=contexts,
        )
        return BranchProtection(is_protected=row.is_protected, required_contexts=contexts)

    async def remove_protection(
        self, session: AsyncSession, repository_id: uuid.UUID, branch: str
    ) -> None:
        row = await self._branch_dao.get_by_name(session, repository_id, branch)
        if row is None or not row.is_protected:
            raise NotFoundError("branch protection not found")
        await self._branch_dao.update(
            session, row.id, is_protected=False, required_status_checks=[]
        )
        log.info("branch_protection.removed", repository_id=str(repository_id), branch=branch)

    # ── push validation ───────────────────────────────────────────────────

    async def validate_push_batch(
        self,
        session: AsyncSession,
        repository_id: uuid.UUID,
        updates: list[RefUpdate],
    ) -> PushValidation:
        """Validate the branch refs of one push against protected branches.

        Deleting a protected branch is blocked. Any other update is blocked
        until the branch's required status checks pass on the new sha.
        Non-branch refs are ignored.
        """
        branch_updates = [u for u in updates if extract_branch_name(u.ref_name) is not None]
        if not branch_updates:
            return PushValidation(allowed=True)
        rows = await self._branch_dao.list_protected(session, repository_id)
        if not rows:
            return PushValidation(allowed=True)

        blocked: list[tuple[str, str]] = []
        for upd in branch_updates:
            branch = extract_branch_name(upd.ref_name)
            row = find_protected_branch(branch, rows)  # type: ignore[arg-type]
            if row is None:
                continue
            if is_zero_sha(upd.new_sha):
                blocked.append((upd.ref_name, f"Cannot delete protected branch '{branch}'"))
                continue
            required = list(row.required_status_checks or [])
            if not required:
                continue
            checks = await self._status_service.check_required(
                session, repository_id, upd.new_sha, required
            )
            if not checks.passed:
                blocked.append((upd.ref_name, describe_checks(checks)))

        if blocked:
            log.info(
                "branch_protection.push_blocked",
                repository_id=str(repository_id),
                refs=[ref for ref, _ in blocked],
            )
            return PushValidation(allowed=False, reason=blocked[0][1], blocked_refs=blocked)
        return PushValidation(allowed=True)

    async def validate_push(
        self,
        session: AsyncSession,
        repository_id: uuid.UUID,
        ref_name: str,
        old_sha: str,
        new_sha: str,
    ) -> PushValidation:
        return await self.validate_push_batch(
            session,
            repository_id,
            [RefUpdate(ref_name=ref_name, old_sha=old_sha, new_sha=new_sha)],
        )
