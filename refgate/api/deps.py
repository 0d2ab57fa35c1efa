"""Dependency injection — session, acting user, and service singletons."""

from __future__ import annotations

import os
import uuid
from collections.abc import AsyncGenerator

from fastapi import Header
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from refgate.dao.branch_dao import BranchDAO
from refgate.dao.commit_status_dao import CommitStatusDAO
from refgate.dao.pull_request_dao import PullRequestDAO
from refgate.dao.repository_dao import RepositoryDAO
from refgate.dao.review_dao import ReviewDAO
from refgate.dao.tag_protection_dao import TagProtectionDAO
from refgate.engines.merge import HttpMergeExecutor
from refgate.engines.notification import NotificationDispatcher
from refgate.services import ValidationError
from refgate.services.auto_merge_service import AutoMergeService, has_pending_events
from refgate.services.branch_protection_service import BranchProtectionService
from refgate.services.commit_status_service import CommitStatusService
from refgate.services.tag_protection_service import TagProtectionService

# ---------------------------------------------------------------------------
# DAO singletons
# ---------------------------------------------------------------------------
_repository_dao = RepositoryDAO()
_commit_status_dao = CommitStatusDAO()
_tag_protection_dao = TagProtectionDAO()
_branch_dao = BranchDAO()
_pull_request_dao = PullRequestDAO()
_review_dao = ReviewDAO()

# ---------------------------------------------------------------------------
# Service singletons
# ---------------------------------------------------------------------------
_commit_status_service = CommitStatusService(_commit_status_dao, _repository_dao)
_tag_protection_service = TagProtectionService(_tag_protection_dao, _repository_dao)
_branch_protection_service = BranchProtectionService(
    _branch_dao, _repository_dao, _commit_status_service
)

# Created on first use so the HTTP client binds to the running loop.
_merge_executor: HttpMergeExecutor | None = None
_dispatcher: NotificationDispatcher | None = None
_auto_merge_service: AutoMergeService | None = None

# ---------------------------------------------------------------------------
# Engine / session factory (initialised by app lifespan)
# ---------------------------------------------------------------------------
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_session_factory(database_url: str | None = None) -> async_sessionmaker[AsyncSession]:
    """Create the async engine and session factory. Called once at startup."""
    global _engine, _session_factory  # noqa: PLW0603
    url = database_url or os.environ.get(
        "REFGATE_DATABASE_URL", "postgresql+asyncpg://localhost/refgate"
    )
    _engine = create_async_engine(
        url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
        pool_recycle=1800,
    )
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _session_factory


async def dispose_engine() -> None:
    """Dispose the async engine, closing all pooled connections."""
    global _engine  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
        _engine = None


def set_session_factory(factory: async_sessionmaker[AsyncSession]) -> None:
    """Override session factory (for testing)."""
    global _session_factory  # noqa: PLW0603
    _session_factory = factory


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if _session_factory is None:
        raise RuntimeError("call init_session_factory() before handling requests")
    return _session_factory


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a per-request session with automatic commit/rollback.

    Gate events recorded during the request are dispatched only after the
    commit; a rollback drops them with the session.
    """
    async with get_session_factory()() as session:
        async with session.begin():
            yield session
        if has_pending_events(session):
            get_auto_merge_service().flush_events(session)


async def shutdown_engines() -> None:
    """Close the merge backend client and wait for pending notifications."""
    global _merge_executor, _dispatcher, _auto_merge_service  # noqa: PLW0603
    if _dispatcher is not None:
        await _dispatcher.drain()
    if _merge_executor is not None:
        await _merge_executor.close()
    _merge_executor = _dispatcher = _auto_merge_service = None


# ---------------------------------------------------------------------------
# Acting user
# ---------------------------------------------------------------------------


async def get_actor_id(x_actor_id: str | None = Header(None)) -> uuid.UUID:
    """Return the acting user id from ``X-Actor-ID``; authentication happens upstream."""
    if not x_actor_id:
        raise ValidationError("X-Actor-ID header is required")
    try:
        return uuid.UUID(x_actor_id)
    except ValueError:
        raise ValidationError(f"invalid X-Actor-ID header: {x_actor_id!r}") from None


# ---------------------------------------------------------------------------
# Service getters (for Depends())
# ---------------------------------------------------------------------------


def get_commit_status_service() -> CommitStatusService:
    return _commit_status_service


def get_tag_protection_service() -> TagProtectionService:
    return _tag_protection_service


def get_branch_protection_service() -> BranchProtectionService:
    return _branch_protection_service


def get_merge_executor() -> HttpMergeExecutor:
    global _merge_executor  # noqa: PLW0603
    if _merge_executor is None:
        _merge_executor = HttpMergeExecutor()
    return _merge_executor


def get_dispatcher() -> NotificationDispatcher:
    global _dispatcher  # noqa: PLW0603
    if _dispatcher is None:
        _dispatcher = NotificationDispatcher.from_env()
    return _dispatcher


def get_auto_merge_service() -> AutoMergeService:
    global _auto_merge_service  # noqa: PLW0603
    if _auto_merge_service is None:
        _auto_merge_service = AutoMergeService(
            _pull_request_dao,
            _review_dao,
            _commit_status_service,
            _branch_protection_service,
            get_merge_executor(),
            get_dispatcher(),
        )
    return _auto_merge_service
