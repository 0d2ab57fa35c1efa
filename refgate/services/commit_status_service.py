"""CommitStatusService — status ledger and required-check validation."""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from refgate.core.refs import is_valid_sha
from refgate.dao.commit_status_dao import CommitStatusDAO
from refgate.dao.repository_dao import RepositoryDAO
from refgate.models.commit_status import STATUS_STATES, CommitStatus
from refgate.services import NotFoundError, ValidationError

log = structlog.get_logger("refgate.service.commit_status")

DEFAULT_CONTEXT = "default"

# Combined-state priority: the highest-ranked latest state wins.
STATE_PRIORITY: dict[str, int] = {
    "success": 0,
    "pending": 1,
    "failure": 2,
    "error": 3,
}


@dataclass
class CombinedStatus:
    state: str
    sha: str
    total_count: int
    statuses: list[CommitStatus] = field(default_factory=list)


@dataclass
class RequiredCheckResult:
    """Outcome of a required-context check.

    Pending contexts appear in neither list but still keep ``passed`` False.
    """

    passed: bool
    missing: list[str] = field(default_factory=list)
    failing: list[str] = field(default_factory=list)


def latest_per_context(statuses: Iterable[CommitStatus]) -> dict[str, CommitStatus]:
    """Pick the newest report per context.

    The highest ``seq`` (insertion order) wins, so the last write wins even
    when a concurrent transaction stamped an earlier ``created_at``.
    """
    latest: dict[str, CommitStatus] = {}
    for status in statuses:
        current = latest.get(status.context)
        if current is None or status.seq > current.seq:
            latest[status.context] = status
    return latest


def combine_states(states: Iterable[str]) -> str:
    """Reduce states by priority; no states at all is ``pending``, never success."""
    combined: str | None = None
    for state in states:
        if combined is None or STATE_PRIORITY[state] > STATE_PRIORITY[combined]:
            combined = state
    return combined if combined is not None else "pending"


def evaluate_required(
    latest: dict[str, CommitStatus], required_contexts: Iterable[str]
) -> RequiredCheckResult:
    missing: list[str] = []
    failing: list[str] = []
    pending = False
    for context in required_contexts:
        status = latest.get(context)
        if status is None:
            missing.append(context)
        elif status.state in ("failure", "error"):
            failing.append(f"{context} ({status.state})")
        elif status.state == "pending":
            pending = True
    return RequiredCheckResult(
        passed=not missing and not failing and not pending,
        missing=missing,
        failing=failing,
    )


class CommitStatusService:
    """Stateless service over the append-only status ledger."""

    def __init__(self, commit_status_dao: CommitStatusDAO, repository_dao: RepositoryDAO) -> None:
        self._status_dao = commit_status_dao
        self._repo_dao = repository_dao

    async def record(
        self,
        session: AsyncSession,
        repository_id: uuid.UUID,
        sha: str,
        state: str,
        *,
        context: str | None = None,
        description: str | None = None,
        target_url: str | None = None,
        creator_id: uuid.UUID | None = None,
    ) -> CommitStatus:
        """Append a status report.

        Raises :class:`ValidationError` for a malformed sha or unknown state,
        :class:`NotFoundError` if the repository does not exist.
        """
        if not is_valid_sha(sha):
            raise ValidationError(f"invalid commit sha: {sha!r}")
        if state not in STATUS_STATES:
            raise ValidationError(f"invalid state: {state!r}")
        if not await self._repo_dao.exists(session, repository_id):
            raise NotFoundError("repository not found")

        status = await self._status_dao.create(
            session,
            repository_id=repository_id,
            sha=sha,
            state=state,
            context=context or DEFAULT_CONTEXT,
            description=description,
            target_url=target_url,
            creator_id=creator_id,
        )
        log.info(
            "commit_status.recorded",
            repository_id=str(repository_id),
            sha=sha,
            context=status.context,
            state=state,
        )
        return status

    async def list_statuses(
        self,
        session: AsyncSession,
        repository_id: uuid.UUID,
        sha: str,
        cursor: str | None = None,
        page_size: int = 20,
    ) -> dict:
        """Return the full report history for a commit, newest first."""
        page = await self._status_dao.list_by_commit(session, repository_id, sha, cursor, page_size)
        return {
            "data": page.data,
            "next_cursor": page.next_cursor,
            "has_more": page.has_more,
        }

    async def latest_by_context(
        self, session: AsyncSession, repository_id: uuid.UUID, sha: str
    ) -> dict[str, CommitStatus]:
        """Return the newest report for every context reported against *sha*."""
        rows = await self._status_dao.list_latest_by_context(session, repository_id, sha)
        return latest_per_context(rows)

    async def combined(
        self, session: AsyncSession, repository_id: uuid.UUID, sha: str
    ) -> CombinedStatus:
        latest = await self.latest_by_context(session, repository_id, sha)
        statuses = sorted(latest.values(), key=lambda s: s.context)
        return CombinedStatus(
            state=combine_states(s.state for s in statuses),
            sha=sha,
            total_count=len(statuses),
            statuses=statuses,
        )

    async def check_required(
        self,
        session: AsyncSession,
        repository_id: uuid.UUID,
        sha: str,
        required_contexts: list[str],
    ) -> RequiredCheckResult:
        """Classify each required context as missing, failing, or neither."""
        if not required_contexts:
            return RequiredCheckResult(passed=True)
        rows = await self._status_dao.list_latest_by_context(
            session, repository_id, sha, contexts=list(required_contexts)
        )
        return evaluate_required(latest_per_context(rows), required_contexts)
