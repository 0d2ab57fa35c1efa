"""BranchDAO — branches table operations."""

import uuid

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from refgate.dao.base import BaseDAO
from refgate.models.branch import Branch


class BranchDAO(BaseDAO[Branch]):
    model = Branch

    async def get_by_name(
        self, session: AsyncSession, repository_id: uuid.UUID, name: str
    ) -> Branch | None:
        stmt = select(Branch).where(Branch.repository_id == repository_id, Branch.name == name)
        result = await session.execute(stmt)
        return result.scalars().first()

    async def list_protected(self, session: AsyncSession, repository_id: uuid.UUID) -> list[Branch]:
        """Protected branch rows of a repository; names may be glob patterns."""
        stmt = (
            select(Branch)
            .where(Branch.repository_id == repository_id, Branch.is_protected.is_(True))
            .order_by(Branch.created_at, Branch.id)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def upsert_protection(
        self,
        session: AsyncSession,
        repository_id: uuid.UUID,
        name: str,
        *,
        is_protected: bool,
        required_status_checks: list[str],
    ) -> Branch:
        """Create the branch row or overwrite its protection settings.

        ON CONFLICT (repository_id, name) DO UPDATE.
        """
        stmt = insert(Branch).values(
            repository_id=repository_id,
            name=name,
            is_protected=is_protected,
            required_status_checks=required_status_checks,
        )
        stmt = stmt.on_conflict_do_update(
            constraint="uq_branches_repo_name",
            set_={
                "is_protected": stmt.excluded.is_protected,
                "required_status_checks": stmt.excluded.required_status_checks,
                "updated_at": func.now(),
            },
        ).returning(Branch)
        result = await session.execute(stmt.execution_options(populate_existing=True))
        return result.scalar_one()
