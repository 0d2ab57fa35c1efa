"""commit_statuses table — append-only status reports."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    DateTime,
    Enum,
    ForeignKey,
    Identity,
    Index,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from refgate.core.database import Base, TimestampMixin

STATUS_STATES = ("pending", "success", "failure", "error")

status_check_state_enum = Enum(
    *STATUS_STATES,
    name="status_check_state",
    create_type=False,
)


class CommitStatus(TimestampMixin, Base):
    __tablename__ = "commit_statuses"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, server_default=func.gen_random_uuid()
    )
    # insertion order; the newest report per context is the highest seq
    seq: Mapped[int] = mapped_column(BigInteger, Identity(always=True), nullable=False)
    # wall clock at insert, not transaction start
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.clock_timestamp(),
        nullable=False,
    )
    repository_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("repositories.id", ondelete="CASCADE"),
        nullable=False,
    )
    sha: Mapped[str] = mapped_column(String(40), nullable=False)
    state: Mapped[str] = mapped_column(
        status_check_state_enum, nullable=False, server_default=text("'pending'")
    )
    context: Mapped[str] = mapped_column(
        String(255), nullable=False, server_default=text("'default'")
    )
    description: Mapped[Optional[str]] = mapped_column(String(255))
    target_url: Mapped[Optional[str]] = mapped_column(Text)
    creator_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))

    __table_args__ = (
        Index("idx_commit_statuses_repo_sha", "repository_id", "sha"),
        Index("idx_commit_statuses_repo_sha_context", "repository_id", "sha", "context"),
        Index("idx_commit_statuses_created_at", "created_at"),
    )
