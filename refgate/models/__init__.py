"""SQLAlchemy ORM models — one file per table."""

from refgate.models.branch import Branch
from refgate.models.commit_status import CommitStatus
from refgate.models.pull_request import PullRequest
from refgate.models.repository import Repository
from refgate.models.review import Review
from refgate.models.tag_protection_rule import TagProtectionRule

__all__ = [
    "Repository",
    "CommitStatus",
    "TagProtectionRule",
    "Branch",
    "PullRequest",
    "Review",
]
