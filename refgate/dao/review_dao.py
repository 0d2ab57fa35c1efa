"""ReviewDAO — pull_request_reviews table (read side)."""

import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from refgate.dao.base import BaseDAO
from refgate.models.review import Review


class ReviewDAO(BaseDAO[Review]):
    model = Review

    async def list_by_pull_request(
        self, session: AsyncSession, pull_request_id: uuid.UUID
    ) -> list[Review]:
        stmt = (
            select(Review)
            .where(Review.pull_request_id == pull_request_id)
            .order_by(Review.created_at.asc())
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def count_approved(self, session: AsyncSession, pull_request_id: uuid.UUID) -> int:
        stmt = select(func.count()).where(
            Review.pull_request_id == pull_request_id,
            Review.state == "approved",
        )
        result = await session.execute(stmt)
        return result.scalar_one()
