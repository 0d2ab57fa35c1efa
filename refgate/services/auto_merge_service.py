"""AutoMergeService — per-pull-request merge gate and its trigger evaluation."""

from __future__ import annotations

import asyncio
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Union

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from refgate.core.locks import KeyedLock
from refgate.dao.pull_request_dao import PullRequestDAO
from refgate.dao.review_dao import ReviewDAO
from refgate.engines.merge import MergeExecutor, MergeOutcome
from refgate.engines.notification import GateEvent, NotificationDispatcher
from refgate.models.pull_request import MERGE_METHODS, PullRequest
from refgate.services import ConflictError, NotFoundError, ServiceError, ValidationError
from refgate.services.branch_protection_service import BranchProtectionService
from refgate.services.commit_status_service import CommitStatusService, RequiredCheckResult

log = structlog.get_logger("refgate.service.auto_merge")

# Gate events wait in session.info until the transaction that produced them commits.
_OUTBOX_KEY = "refgate.gate_events"


def _outbox(session: AsyncSession) -> list[GateEvent]:
    return session.info.setdefault(_OUTBOX_KEY, [])


def has_pending_events(session: AsyncSession) -> bool:
    return bool(session.info.get(_OUTBOX_KEY))


# ── gate variant ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class GateDisabled:
    pass


@dataclass(frozen=True)
class GateEnabled:
    strategy: str
    actor_id: uuid.UUID
    since: datetime


Gate = Union[GateDisabled, GateEnabled]

DISABLED = GateDisabled()


def gate_of(pr: PullRequest) -> Gate:
    """Read the gate columns of *pr* as a single variant."""
    if not pr.auto_merge_enabled:
        return DISABLED
    return GateEnabled(
        strategy=pr.auto_merge_method,
        actor_id=pr.auto_merge_enabled_by,
        since=pr.auto_merge_enabled_at,
    )


@dataclass
class GateStatus:
    pull_request_id: uuid.UUID
    state: str
    gate: Gate

    @property
    def enabled(self) -> bool:
        return isinstance(self.gate, GateEnabled)

    @property
    def method(self) -> str | None:
        return self.gate.strategy if isinstance(self.gate, GateEnabled) else None

    @property
    def enabled_by(self) -> uuid.UUID | None:
        return self.gate.actor_id if isinstance(self.gate, GateEnabled) else None

    @property
    def enabled_at(self) -> datetime | None:
        return self.gate.since if isinstance(self.gate, GateEnabled) else None


@dataclass
class TriggerResult:
    merged: bool
    reason: str | None = None
    missing: list[str] = field(default_factory=list)
    failing: list[str] = field(default_factory=list)


# ── eligibility ───────────────────────────────────────────────────────────


def evaluate_eligibility(
    gate: Gate,
    state: str,
    approvals: int,
    required_approvals: int,
    required_contexts: list[str],
    checks: RequiredCheckResult | None,
) -> TriggerResult:
    """Decide whether a gated pull request may be merged now.

    ``required_contexts`` comes from the destination branch protection and
    ``checks`` is their evaluation against the head commit (``None`` when
    no head commit is known). Returns ``merged=True`` for "eligible".
    """
    if not isinstance(gate, GateEnabled):
        return TriggerResult(merged=False, reason="auto-merge is not enabled")
    if state != "open":
        return TriggerResult(merged=False, reason=f"pull request is {state}")
    if approvals < required_approvals:
        return TriggerResult(
            merged=False,
            reason=f"{approvals} of {required_approvals} required approvals",
        )
    if required_contexts:
        if checks is None:
            return TriggerResult(
                merged=False,
                reason="no head commit to check",
                missing=list(required_contexts),
            )
        if not checks.passed:
            return TriggerResult(
                merged=False,
                reason="required status checks have not passed",
                missing=list(checks.missing),
                failing=list(checks.failing),
            )
    return TriggerResult(merged=True)


class AutoMergeService:
    """Auto-merge gate transitions and trigger handling.

    ``on_trigger`` is serialized per pull request by an in-process lock plus
    a row lock on the pull request, so the merge executor runs at most once
    for a given enabled gate.
    """

    def __init__(
        self,
        pull_request_dao: PullRequestDAO,
        review_dao: ReviewDAO,
        commit_status_service: CommitStatusService,
        branch_protection_service: BranchProtectionService,
        merge_executor: MergeExecutor,
        dispatcher: NotificationDispatcher,
        merge_timeout: float | None = None,
    ) -> None:
        self._pr_dao = pull_request_dao
        self._review_dao = review_dao
        self._status_service = commit_status_service
        self._protection_service = branch_protection_service
        self._executor = merge_executor
        self._dispatcher = dispatcher
        self._merge_timeout = merge_timeout or float(
            os.environ.get("REFGATE_MERGE_TIMEOUT", "30")
        )
        self._locks = KeyedLock()

    # ── gate transitions ──────────────────────────────────────────────────

    async def enable(
        self,
        session: AsyncSession,
        pr_id: uuid.UUID,
        actor_id: uuid.UUID,
        method: str = "merge",
    ) -> GateStatus:
        """Enable auto-merge with *method* on behalf of *actor_id*.

        Raises :class:`ValidationError` for an unknown method or a pull
        request that is not open or is a draft, :class:`NotFoundError` if it
        does not exist, :class:`ConflictError` if already enabled.
        """
        if method not in MERGE_METHODS:
            raise ValidationError(
                f"invalid merge method {method!r}; expected one of {', '.join(MERGE_METHODS)}"
            )
        pr = await self._pr_dao.get_by_id(session, pr_id)
        if pr is None:
            raise NotFoundError("pull request not found")
        if pr.state != "open":
            raise ValidationError(f"cannot enable auto-merge on a {pr.state} pull request")
        if pr.is_draft:
            raise ValidationError("cannot enable auto-merge on a draft pull request")
        if pr.auto_merge_enabled:
            raise ConflictError("auto-merge is already enabled")

        now = datetime.now(timezone.utc)
        if not await self._pr_dao.enable_gate(
            session, pr_id, method=method, enabled_by=actor_id, enabled_at=now
        ):
            raise ConflictError("auto-merge is already enabled")

        log.info(
            "auto_merge.enabled",
            pull_request_id=str(pr_id),
            method=method,
            actor_id=str(actor_id),
        )
        return GateStatus(
            pull_request_id=pr_id,
            state=pr.state,
            gate=GateEnabled(strategy=method, actor_id=actor_id, since=now),
        )

    async def disable(self, session: AsyncSession, pr_id: uuid.UUID) -> GateStatus:
        pr = await self._pr_dao.get_by_id(session, pr_id)
        if pr is None:
            raise NotFoundError("pull request not found")
        if not await self._pr_dao.clear_gate(session, pr_id):
            raise ConflictError("auto-merge is not enabled")
        log.info("auto_merge.disabled", pull_request_id=str(pr_id))
        return GateStatus(pull_request_id=pr_id, state=pr.state, gate=DISABLED)

    async def get_status(self, session: AsyncSession, pr_id: uuid.UUID) -> GateStatus:
        pr = await self._pr_dao.get_by_id(session, pr_id)
        if pr is None:
            raise NotFoundError("pull request not found")
        return GateStatus(pull_request_id=pr.id, state=pr.state, gate=gate_of(pr))

    # ── triggers ──────────────────────────────────────────────────────────

    async def on_trigger(self, session: AsyncSession, pr_id: uuid.UUID) -> TriggerResult:
        """Merge *pr_id* if its gate is enabled and every condition holds.

        Never raises for an ineligible request or a failed merge; the gate
        stays enabled after a failure so a later trigger retries.
        """
        async with self._locks.hold(pr_id):
            pr = await self._pr_dao.get_for_update(session, pr_id)
            if pr is None:
                return TriggerResult(merged=False, reason="pull request not found")

            gate = gate_of(pr)
            if not isinstance(gate, GateEnabled) or pr.state != "open":
                return evaluate_eligibility(gate, pr.state, 0, 0, [], None)

            approvals = await self._review_dao.count_approved(session, pr.id)
            protection = await self._protection_service.get_protection(
                session, pr.repository_id, pr.target_branch
            )
            required = protection.required_contexts if protection.is_protected else []

            checks: RequiredCheckResult | None = None
            if required and pr.head_sha:
                checks = await self._status_service.check_required(
                    session, pr.repository_id, pr.head_sha, required
                )

            verdict = evaluate_eligibility(
                gate, pr.state, approvals, pr.required_approvals, required, checks
            )
            if not verdict.merged:
                log.debug(
                    "auto_merge.not_eligible",
                    pull_request_id=str(pr_id),
                    reason=verdict.reason,
                )
                return verdict

            return await self._merge(session, pr, gate)

    async def on_status_reported(
        self, session: AsyncSession, repository_id: uuid.UUID, sha: str
    ) -> list[TriggerResult]:
        """Re-evaluate every gated pull request whose head commit is *sha*.

        Each evaluation runs in its own savepoint. A database or service
        error rolls back that evaluation only and is logged, so the caller's
        transaction (holding the status report) can still commit.
        """
        try:
            async with session.begin_nested():
                prs = await self._pr_dao.list_open_gated_by_head_sha(
                    session, repository_id, sha
                )
        except SQLAlchemyError:
            log.error(
                "auto_merge.trigger_failed",
                repository_id=str(repository_id),
                sha=sha,
                exc_info=True,
            )
            return []
        return [await self._trigger_isolated(session, pr.id) for pr in prs]

    async def on_source_ref_advanced(
        self, session: AsyncSession, repository_id: uuid.UUID, source_branch: str
    ) -> list[uuid.UUID]:
        """Disable auto-merge on open requests whose source branch moved.

        Returns the ids of the pull requests whose gate was cleared. Their
        ``invalidated`` events go out through :meth:`flush_events`.
        """
        cleared = await self._pr_dao.clear_gates_by_source_branch(
            session, repository_id, source_branch
        )
        for pr_id in cleared:
            log.info(
                "auto_merge.invalidated",
                pull_request_id=str(pr_id),
                source_branch=source_branch,
            )
            _outbox(session).append(
                GateEvent(
                    kind="invalidated",
                    pull_request_id=pr_id,
                    repository_id=repository_id,
                    detail=f"new commits were pushed to {source_branch}",
                )
            )
        return cleared

    def flush_events(self, session: AsyncSession) -> int:
        """Dispatch the gate events recorded on *session*; call once it has committed.

        Returns the number of events handed to the dispatcher.
        """
        events = session.info.pop(_OUTBOX_KEY, [])
        for event in events:
            self._dispatcher.dispatch(event)
        return len(events)

    # ── internal ──────────────────────────────────────────────────────────

    async def _trigger_isolated(self, session: AsyncSession, pr_id: uuid.UUID) -> TriggerResult:
        outbox = _outbox(session)
        mark = len(outbox)
        try:
            async with session.begin_nested():
                return await self.on_trigger(session, pr_id)
        except (SQLAlchemyError, ServiceError) as exc:
            del outbox[mark:]
            log.error("auto_merge.trigger_failed", pull_request_id=str(pr_id), exc_info=True)
            return TriggerResult(merged=False, reason=f"trigger failed: {exc}")

    async def _merge(
        self, session: AsyncSession, pr: PullRequest, gate: GateEnabled
    ) -> TriggerResult:
        try:
            outcome = await asyncio.wait_for(
                self._executor.merge(pr.id, gate.actor_id, gate.strategy),
                timeout=self._merge_timeout,
            )
        except asyncio.TimeoutError:
            outcome = MergeOutcome(
                success=False, reason=f"merge timed out after {self._merge_timeout:g}s"
            )
        except Exception as exc:
            log.error("auto_merge.executor_error", pull_request_id=str(pr.id), exc_info=True)
            outcome = MergeOutcome(success=False, reason=f"merge executor error: {exc}")

        if not outcome.success:
            log.warning(
                "auto_merge.merge_failed",
                pull_request_id=str(pr.id),
                reason=outcome.reason,
            )
            self._notify(session, pr, "merge_failed", outcome.reason)
            return TriggerResult(merged=False, reason=outcome.reason or "merge failed")

        merged = await self._pr_dao.mark_merged(
            session, pr.id, merged_by=gate.actor_id, merged_at=datetime.now(timezone.utc)
        )
        if not merged:
            # Unreachable while the row lock is held.
            log.warning("auto_merge.gate_changed", pull_request_id=str(pr.id))

        log.info(
            "auto_merge.merged",
            pull_request_id=str(pr.id),
            method=gate.strategy,
            merge_sha=outcome.merge_sha,
        )
        detail = f"merge commit {outcome.merge_sha}" if outcome.merge_sha else None
        self._notify(session, pr, "merged", detail)
        return TriggerResult(merged=True)

    def _notify(
        self, session: AsyncSession, pr: PullRequest, kind: str, detail: str | None
    ) -> None:
        _outbox(session).append(
            GateEvent(
                kind=kind,
                pull_request_id=pr.id,
                repository_id=pr.repository_id,
                number=pr.number,
                title=pr.title,
                detail=detail,
            )
        )
