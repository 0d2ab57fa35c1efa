"""PullRequestDAO — pull_requests table, including the auto-merge gate columns."""

import uuid
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from refgate.dao.base import BaseDAO
from refgate.models.pull_request import PullRequest

_CLEARED_GATE = {
    "auto_merge_enabled": False,
    "auto_merge_method": None,
    "auto_merge_enabled_by": None,
    "auto_merge_enabled_at": None,
}


class PullRequestDAO(BaseDAO[PullRequest]):
    model = PullRequest

    # ── read ──────────────────────────────────────────────────────────────

    async def get_for_update(self, session: AsyncSession, pk: uuid.UUID) -> PullRequest | None:
        """Load a pull request under ``SELECT ... FOR UPDATE``.

        The row lock is held until the surrounding transaction ends, which
        serializes gate evaluation against concurrent triggers and disables.
        """
        self._require_pk(pk)
        stmt = (
            select(PullRequest)
            .where(PullRequest.id == pk)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        return result.scalars().first()

    async def list_open_gated_by_head_sha(
        self, session: AsyncSession, repository_id: uuid.UUID, head_sha: str
    ) -> list[PullRequest]:
        """Open pull requests at *head_sha* with auto-merge enabled.

        Ordered by id so concurrent triggers take row locks in the same order.
        """
        stmt = (
            select(PullRequest)
            .where(
                PullRequest.repository_id == repository_id,
                PullRequest.head_sha == head_sha,
                PullRequest.state == "open",
                PullRequest.auto_merge_enabled.is_(True),
            )
            .order_by(PullRequest.id)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    # ── write (gate transitions) ──────────────────────────────────────────

    async def enable_gate(
        self,
        session: AsyncSession,
        pk: uuid.UUID,
        *,
        method: str,
        enabled_by: uuid.UUID,
        enabled_at: datetime,
    ) -> bool:
        """Enable auto-merge if it is currently disabled. Returns False otherwise."""
        self._require_pk(pk)
        stmt = (
            update(PullRequest)
            .where(PullRequest.id == pk, PullRequest.auto_merge_enabled.is_(False))
            .values(
                auto_merge_enabled=True,
                auto_merge_method=method,
                auto_merge_enabled_by=enabled_by,
                auto_merge_enabled_at=enabled_at,
                updated_at=func.now(),
            )
            .returning(PullRequest.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def clear_gate(self, session: AsyncSession, pk: uuid.UUID) -> bool:
        """Disable auto-merge if it is currently enabled. Returns False otherwise."""
        self._require_pk(pk)
        stmt = (
            update(PullRequest)
            .where(PullRequest.id == pk, PullRequest.auto_merge_enabled.is_(True))
            .values(**_CLEARED_GATE, updated_at=func.now())
            .returning(PullRequest.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def mark_merged(
        self,
        session: AsyncSession,
        pk: uuid.UUID,
        *,
        merged_by: uuid.UUID,
        merged_at: datetime,
    ) -> bool:
        """Record a completed auto-merge and clear the gate in one statement.

        Only applies while the request is open with the gate still enabled.
        """
        self._require_pk(pk)
        stmt = (
            update(PullRequest)
            .where(
                PullRequest.id == pk,
                PullRequest.state == "open",
                PullRequest.auto_merge_enabled.is_(True),
            )
            .values(
                **_CLEARED_GATE,
                state="merged",
                merged_by=merged_by,
                merged_at=merged_at,
                updated_at=func.now(),
            )
            .returning(PullRequest.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def clear_gates_by_source_branch(
        self, session: AsyncSession, repository_id: uuid.UUID, source_branch: str
    ) -> list[uuid.UUID]:
        """Disable auto-merge on every open, gated request from *source_branch*.

        Returns the ids of the requests whose gate was cleared.
        """
        stmt = (
            update(PullRequest)
            .where(
                PullRequest.repository_id == repository_id,
                PullRequest.source_branch == source_branch,
                PullRequest.state == "open",
                PullRequest.auto_merge_enabled.is_(True),
            )
            .values(**_CLEARED_GATE, updated_at=func.now())
            .returning(PullRequest.id)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())
