"""TagProtectionService — wildcard tag protection rules and push validation."""

from __future__ import annotations

import os
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from refgate.core.refs import (
    extract_tag_name,
    is_zero_sha,
    matches_ref_pattern,
    pattern_specificity,
)
from refgate.dao.repository_dao import RepositoryDAO
from refgate.dao.tag_protection_dao import DuplicatePatternError, TagProtectionDAO
from refgate.models.tag_protection_rule import TagProtectionRule
from refgate.services import ConflictError, NotFoundError, ValidationError

log = structlog.get_logger("refgate.service.tag_protection")

RULE_ORDERS = ("created", "specificity")


@dataclass
class RefUpdate:
    """One ``<old-sha> <new-sha> <ref>`` line of a push."""

    ref_name: str
    old_sha: str
    new_sha: str


@dataclass
class PushDecision:
    allowed: bool
    reason: str | None = None
    rule: TagProtectionRule | None = None


@dataclass
class PushValidation:
    """Aggregate decision for every ref of one push."""

    allowed: bool
    reason: str | None = None
    blocked_refs: list[tuple[str, str]] = field(default_factory=list)


def combine_validations(results: Iterable[PushValidation]) -> PushValidation:
    """Merge per-rule-family results of one push; the first blocked ref gives the reason."""
    blocked = [entry for result in results for entry in result.blocked_refs]
    if blocked:
        return PushValidation(allowed=False, reason=blocked[0][1], blocked_refs=blocked)
    return PushValidation(allowed=True)


def order_rules(rules: Iterable[TagProtectionRule], rule_order: str) -> list[TagProtectionRule]:
    """Apply the tie-break policy used when several patterns match one tag.

    ``created`` keeps storage order (oldest first); ``specificity`` puts the
    narrowest pattern first and falls back to storage order. ``sorted`` is
    stable, so storage order survives among equals.
    """
    rules = list(rules)
    if rule_order == "specificity":
        return sorted(rules, key=lambda r: pattern_specificity(r.pattern))
    return rules


def find_matching_rule(
    tag_name: str, rules: Iterable[TagProtectionRule]
) -> TagProtectionRule | None:
    """First rule whose pattern matches *tag_name*."""
    return next((r for r in rules if matches_ref_pattern(tag_name, r.pattern)), None)


def classify_update(
    tag_name: str, rule: TagProtectionRule, old_sha: str, new_sha: str, privileged: bool
) -> PushDecision:
    """Decide one update of a tag already known to match *rule*."""
    if privileged and rule.allow_admin_override:
        return PushDecision(allowed=True, rule=rule)

    if is_zero_sha(new_sha):
        return PushDecision(
            allowed=False,
            reason=(
                f"Cannot delete protected tag '{tag_name}' "
                f"(matches pattern '{rule.pattern}')"
            ),
            rule=rule,
        )
    if not is_zero_sha(old_sha) and new_sha != old_sha:
        return PushDecision(
            allowed=False,
            reason=(
                f"Cannot overwrite protected tag '{tag_name}' "
                f"(matches pattern '{rule.pattern}')"
            ),
            rule=rule,
        )
    # creation, or a no-op update
    return PushDecision(allowed=True, rule=rule)


class TagProtectionService:
    """Stateless service for tag protection CRUD and ref-push checks."""

    def __init__(
        self,
        tag_protection_dao: TagProtectionDAO,
        repository_dao: RepositoryDAO,
        rule_order: str | None = None,
    ) -> None:
        self._rule_dao = tag_protection_dao
        self._repo_dao = repository_dao
        self.rule_order = rule_order or os.environ.get("REFGATE_TAG_RULE_ORDER", "created")
        if self.rule_order not in RULE_ORDERS:
            raise ValueError(f"unknown tag rule order: {self.rule_order!r}")

    # ── CRUD ──────────────────────────────────────────────────────────────

    async def add_rule(
        self,
        session: AsyncSession,
        repository_id: uuid.UUID,
        pattern: str,
        *,
        created_by: uuid.UUID | None = None,
        allow_admin_override: bool = True,
    ) -> TagProtectionRule:
        """Create a protection rule.

        Raises :class:`ValidationError` for a blank pattern,
        :class:`NotFoundError` for an unknown repository and
        :class:`ConflictError` if the pattern already exists.
        """
        pattern = (pattern or "").strip()
        if not pattern:
            raise ValidationError("pattern is required")
        if not await self._repo_dao.exists(session, repository_id):
            raise NotFoundError("repository not found")

        existing = await self._rule_dao.get_by_field(
            session, repository_id=repository_id, pattern=pattern
        )
        if existing is not None:
            raise ConflictError(f"a protection rule with pattern '{pattern}' already exists")

        try:
            rule = await self._rule_dao.insert_unique(
                session,
                repository_id=repository_id,
                pattern=pattern,
                allow_admin_override=allow_admin_override,
                created_by=created_by,
            )
        except DuplicatePatternError:
            raise ConflictError(
                f"a protection rule with pattern '{pattern}' already exists"
            ) from None

        log.info(
            "tag_protection.rule_added",
            repository_id=str(repository_id),
            rule_id=str(rule.id),
            pattern=pattern,
        )
        return rule

    async def remove_rule(
        self, session: AsyncSession, repository_id: uuid.UUID, rule_id: uuid.UUID
    ) -> None:
        if not await self._rule_dao.delete_for_repository(session, rule_id, repository_id):
            raise NotFoundError("tag protection rule not found")
        log.info(
            "tag_protection.rule_removed",
            repository_id=str(repository_id),
            rule_id=str(rule_id),
        )

    async def get_rule(
        self, session: AsyncSession, repository_id: uuid.UUID, rule_id: uuid.UUID
    ) -> TagProtectionRule:
        rule = await self._rule_dao.get_for_repository(session, rule_id, repository_id)
        if rule is None:
            raise NotFoundError("tag protection rule not found")
        return rule

    async def list_rules(
        self, session: AsyncSession, repository_id: uuid.UUID
    ) -> list[TagProtectionRule]:
        return await self._rule_dao.list_by_repository(session, repository_id)

    # ── push validation ───────────────────────────────────────────────────

    async def validate_push(
        self,
        session: AsyncSession,
        repository_id: uuid.UUID,
        ref_name: str,
        old_sha: str,
        new_sha: str,
        privileged: bool = False,
    ) -> PushDecision:
        """Decide whether a single ref update may proceed.

        Non-tag refs and unprotected tags are always allowed; for a protected
        tag, creation is allowed while deletion and overwrite are blocked
        unless a privileged actor pushes against an overridable rule.
        """
        tag_name = extract_tag_name(ref_name)
        if tag_name is None:
            return PushDecision(allowed=True)

        rules = await self._rule_dao.list_by_repository(session, repository_id)
        rule = find_matching_rule(tag_name, order_rules(rules, self.rule_order))
        if rule is None:
            return PushDecision(allowed=True)

        decision = classify_update(tag_name, rule, old_sha, new_sha, privileged)
        if not decision.allowed:
            log.info(
                "tag_protection.push_blocked",
                repository_id=str(repository_id),
                ref=ref_name,
                pattern=rule.pattern,
            )
        return decision

    async def validate_push_batch(
        self,
        session: AsyncSession,
        repository_id: uuid.UUID,
        updates: list[RefUpdate],
        privileged: bool = False,
    ) -> PushValidation:
        """Validate every ref of one push; the first blocked ref gives the reason."""
        tag_updates = [u for u in updates if extract_tag_name(u.ref_name) is not None]
        if not tag_updates:
            return PushValidation(allowed=True)

        rules = order_rules(
            await self._rule_dao.list_by_repository(session, repository_id), self.rule_order
        )
        blocked: list[tuple[str, str]] = []
        for upd in tag_updates:
            tag_name = extract_tag_name(upd.ref_name)
            rule = find_matching_rule(tag_name, rules)  # type: ignore[arg-type]
            if rule is None:
                continue
            decision = classify_update(tag_name, rule, upd.old_sha, upd.new_sha, privileged)  # type: ignore[arg-type]
            if not decision.allowed:
                blocked.append((upd.ref_name, decision.reason or ""))

        if blocked:
            log.info(
                "tag_protection.push_blocked",
                repository_id=str(repository_id),
                refs=[ref for ref, _ in blocked],
            )
            return PushValidation(allowed=False, reason=blocked[0][1], blocked_refs=blocked)
        return PushValidation(allowed=True)
