"""CommitStatusDAO — commit_statuses table operations (append-only)."""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from refgate.dao.base import BaseDAO, Page
from refgate.models.commit_status import CommitStatus


class CommitStatusDAO(BaseDAO[CommitStatus]):
    model = CommitStatus
    cursor_tiebreak = "seq"

    # ── read ──────────────────────────────────────────────────────────────

    async def list_by_commit(
        self,
        session: AsyncSession,
        repository_id: uuid.UUID,
        sha: str,
        cursor: str | None = None,
        page_size: int = 20,
    ) -> Page[CommitStatus]:
        """Paginated status history for one commit, newest first (API)."""
        query = select(CommitStatus).where(
            CommitStatus.repository_id == repository_id,
            CommitStatus.sha == sha,
        )
        return await self.paginate(session, query, cursor, page_size)

    async def list_latest_by_context(
        self,
        session: AsyncSession,
        repository_id: uuid.UUID,
        sha: str,
        contexts: list[str] | None = None,
    ) -> list[CommitStatus]:
        """Return the newest report per context for one commit.

        ``DISTINCT ON (context)`` keeps the first row of each context under
        ``seq DESC``, so the report inserted last wins regardless of the
        timestamps of concurrent transactions. *contexts* narrows the lookup.
        """
        stmt = (
            select(CommitStatus)
            .where(
                CommitStatus.repository_id == repository_id,
                CommitStatus.sha == sha,
            )
            .distinct(CommitStatus.context)
            .order_by(CommitStatus.context, CommitStatus.seq.desc())
        )
        if contexts is not None:
            stmt = stmt.where(CommitStatus.context.in_(contexts))
        result = await session.execute(stmt)
        return list(result.scalars().all())
