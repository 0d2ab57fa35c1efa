"""Gate events delivered to notifiers."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

EVENT_KINDS = ("merged", "merge_failed", "invalidated")


@dataclass
class GateEvent:
    kind: str
    pull_request_id: uuid.UUID
    repository_id: uuid.UUID
    number: int | None = None
    title: str | None = None
    detail: str | None = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        if self.kind not in EVENT_KINDS:
            raise ValueError(f"unknown gate event kind: {self.kind!r}")
