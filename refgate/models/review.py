"""pull_request_reviews table."""

import uuid
from typing import Optional

from sqlalchemy import Enum, ForeignKey, Index, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from refgate.core.database import Base, TimestampMixin

review_state_enum = Enum(
    "approved",
    "changes_requested",
    "commented",
    name="review_state",
    create_type=False,
)


class Review(TimestampMixin, Base):
    __tablename__ = "pull_request_reviews"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, server_default=func.gen_random_uuid()
    )
    pull_request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("pull_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    reviewer_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    state: Mapped[str] = mapped_column(review_state_enum, nullable=False)
    body: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (Index("idx_pull_request_reviews_pr", "pull_request_id"),)
