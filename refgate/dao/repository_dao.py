"""RepositoryDAO — repositories table operations."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from refgate.dao.base import BaseDAO
from refgate.models.repository import Repository


class RepositoryDAO(BaseDAO[Repository]):
    model = Repository

    async def get_by_owner_and_name(
        self, session: AsyncSession, owner: str, name: str
    ) -> Repository | None:
        stmt = select(Repository).where(Repository.owner == owner, Repository.name == name)
        result = await session.execute(stmt)
        return result.scalars().first()
