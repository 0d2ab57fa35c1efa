"""pull_requests table (change requests + auto-merge gate columns)."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from refgate.core.database import Base, TimestampMixin

MERGE_METHODS = ("merge", "squash", "rebase")

pull_request_state_enum = Enum(
    "open",
    "closed",
    "merged",
    name="pull_request_state",
    create_type=False,
)


class PullRequest(TimestampMixin, Base):
    __tablename__ = "pull_requests"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, server_default=func.gen_random_uuid()
    )
    repository_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("repositories.id", ondelete="CASCADE"),
        nullable=False,
    )
    number: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    author_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    state: Mapped[str] = mapped_column(
        pull_request_state_enum, nullable=False, server_default=text("'open'")
    )
    is_draft: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("false")
    )
    source_branch: Mapped[str] = mapped_column(Text, nullable=False)
    target_branch: Mapped[str] = mapped_column(Text, nullable=False)
    head_sha: Mapped[Optional[str]] = mapped_column(String(40))
    required_approvals: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default=text("0")
    )
    merged_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    merged_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))

    # auto-merge gate: all set or all cleared (see ck_pull_requests_auto_merge_gate)
    auto_merge_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("false")
    )
    auto_merge_method: Mapped[Optional[str]] = mapped_column(String(10))
    auto_merge_enabled_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    auto_merge_enabled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        UniqueConstraint("repository_id", "number", name="uq_pull_requests_repo_number"),
        CheckConstraint(
            "(auto_merge_enabled AND auto_merge_method IS NOT NULL"
            " AND auto_merge_enabled_by IS NOT NULL AND auto_merge_enabled_at IS NOT NULL)"
            " OR (NOT auto_merge_enabled AND auto_merge_method IS NULL"
            " AND auto_merge_enabled_by IS NULL AND auto_merge_enabled_at IS NULL)",
            name="auto_merge_gate",
        ),
        CheckConstraint(
            "auto_merge_method IS NULL OR auto_merge_method IN ('merge', 'squash', 'rebase')",
            name="auto_merge_method",
        ),
        Index("idx_pull_requests_source", "repository_id", "source_branch"),
        Index(
            "idx_pull_requests_gated_head",
            "repository_id",
            "head_sha",
            postgresql_where="auto_merge_enabled = TRUE",
        ),
    )
