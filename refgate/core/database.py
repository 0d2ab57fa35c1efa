"""Async database engine, session factory, and declarative base."""

from datetime import datetime

from sqlalchemy import DateTime, MetaData, func, text
from sqlalchemy.ext.asyncio import AsyncAttrs, AsyncEngine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Naming convention for constraints (Alembic auto-migration friendly)
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all ORM models."""

    metadata = MetaData(naming_convention=convention)


class TimestampMixin:
    """Mixin that adds created_at / updated_at columns.

    updated_at is bumped by the DAO layer on gate transitions; the server
    default gives the ORM object a value before flush.
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


# Enum types are declared with create_type=False on the models; create them
# before create_all so repeated runs stay idempotent.
_ENUM_TYPES = {
    "status_check_state": ("pending", "success", "failure", "error"),
    "pull_request_state": ("open", "closed", "merged"),
    "review_state": ("approved", "changes_requested", "commented"),
}


async def create_schema(engine: AsyncEngine) -> None:
    """Create enum types and all tables that do not exist yet."""
    import refgate.models  # noqa: F401  (registers every table on Base.metadata)

    async with engine.begin() as conn:
        for name, values in _ENUM_TYPES.items():
            labels = ", ".join(f"'{v}'" for v in values)
            await conn.execute(text(
                "DO $$ BEGIN "
                f"  CREATE TYPE {name} AS ENUM ({labels}); "
                "EXCEPTION WHEN duplicate_object THEN NULL; END $$;"
            ))
        await conn.run_sync(Base.metadata.create_all)
