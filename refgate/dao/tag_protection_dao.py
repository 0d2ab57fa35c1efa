"""TagProtectionDAO — tag_protection_rules table operations."""

import uuid

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from refgate.dao.base import BaseDAO
from refgate.models.tag_protection_rule import TagProtectionRule


class DuplicatePatternError(Exception):
    """The (repository_id, pattern) unique constraint rejected an insert."""


class TagProtectionDAO(BaseDAO[TagProtectionRule]):
    model = TagProtectionRule

    # ── read ──────────────────────────────────────────────────────────────

    async def list_by_repository(
        self, session: AsyncSession, repository_id: uuid.UUID
    ) -> list[TagProtectionRule]:
        """All rules of a repository, oldest first (ties by id)."""
        stmt = (
            select(TagProtectionRule)
            .where(TagProtectionRule.repository_id == repository_id)
            .order_by(TagProtectionRule.created_at.asc(), TagProtectionRule.id.asc())
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def get_for_repository(
        self, session: AsyncSession, rule_id: uuid.UUID, repository_id: uuid.UUID
    ) -> TagProtectionRule | None:
        self._require_pk(rule_id)
        stmt = select(TagProtectionRule).where(
            TagProtectionRule.id == rule_id,
            TagProtectionRule.repository_id == repository_id,
        )
        result = await session.execute(stmt)
        return result.scalars().first()

    # ── write ─────────────────────────────────────────────────────────────

    async def insert_unique(
        self,
        session: AsyncSession,
        *,
        repository_id: uuid.UUID,
        pattern: str,
        allow_admin_override: bool,
        created_by: uuid.UUID | None,
    ) -> TagProtectionRule:
        """Insert a rule inside a savepoint.

        Raises :class:`DuplicatePatternError` when a concurrent insert won
        the unique constraint; the outer transaction stays usable.
        """
        try:
            async with session.begin_nested():
                return await self.create(
                    session,
                    repository_id=repository_id,
                    pattern=pattern,
                    allow_admin_override=allow_admin_override,
                    created_by=created_by,
                )
        except IntegrityError as exc:
            raise DuplicatePatternError(pattern) from exc

    async def delete_for_repository(
        self, session: AsyncSession, rule_id: uuid.UUID, repository_id: uuid.UUID
    ) -> bool:
        """Delete a rule scoped to its repository. Returns False if nothing matched."""
        self._require_pk(rule_id)
        stmt = (
            delete(TagProtectionRule)
            .where(
                TagProtectionRule.id == rule_id,
                TagProtectionRule.repository_id == repository_id,
            )
            .returning(TagProtectionRule.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None
