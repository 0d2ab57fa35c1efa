"""CLI entry point: refgate.

Subcommands:
    refgate serve                                  # Run the REST API
    refgate init-db                                # Create enum types and tables
    refgate pre-receive --repository-id <uuid>     # git pre-receive hook (tag and branch protection)
    refgate post-receive --repository-id <uuid>    # git post-receive hook (auto-merge invalidation)

The hooks read ``<old-sha> <new-sha> <ref>`` lines from stdin, as git
passes them.
"""

from __future__ import annotations

import asyncio
import sys
import uuid
from typing import TextIO

import click
import structlog
from dotenv import load_dotenv

from refgate.core.logging import setup_logging
from refgate.core.refs import extract_branch_name, is_zero_sha
from refgate.services.tag_protection_service import (
    PushValidation,
    RefUpdate,
    combine_validations,
)

log = structlog.get_logger("refgate.cli")


def parse_ref_updates(stream: TextIO) -> list[RefUpdate]:
    """Parse hook input; blank lines are skipped, malformed lines rejected."""
    updates: list[RefUpdate] = []
    for lineno, raw in enumerate(stream, 1):
        line = raw.strip()
        if not line:
            continue
        parts = line.split()
        if len(parts) != 3:
            raise click.ClickException(f"malformed ref update on line {lineno}: {line!r}")
        old_sha, new_sha, ref_name = parts
        updates.append(RefUpdate(ref_name=ref_name, old_sha=old_sha, new_sha=new_sha))
    return updates


def format_rejection(result: PushValidation) -> str:
    """Render a blocked push for the pushing client (git adds the ``remote:`` prefix)."""
    lines = [f"  {ref}: {reason}" for ref, reason in result.blocked_refs]
    lines.append("")
    lines.append(f"error: {result.reason or 'push rejected by ref protection rules'}")
    return "\n".join(lines)


@click.group()
def main() -> None:
    """refgate: merge gating and ref protection for a git hosting service."""
    load_dotenv()
    setup_logging()


@main.command("serve")
@click.option("--host", default="0.0.0.0", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
@click.option("--reload", is_flag=True, help="Reload on code changes (development)")
def serve(host: str, port: int, reload: bool) -> None:
    """Run the REST API with uvicorn."""
    import uvicorn

    uvicorn.run(
        "refgate.api:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_config=None,
    )


@main.command("init-db")
@click.option(
    "--database-url", envvar="REFGATE_DATABASE_URL", default=None, help="Override database URL"
)
def init_db(database_url: str | None) -> None:
    """Create enum types and tables (idempotent)."""
    asyncio.run(_init_db(database_url))
    click.echo("schema ready")


@main.command("pre-receive")
@click.option("--repository-id", required=True, type=click.UUID)
@click.option("--privileged", is_flag=True, help="Pusher may bypass overridable rules")
def pre_receive(repository_id: uuid.UUID, privileged: bool) -> None:
    """Reject pushes that break tag or branch protection."""
    updates = parse_ref_updates(sys.stdin)
    if not updates:
        return
    result = asyncio.run(_validate_push(repository_id, updates, privileged))
    if not result.allowed:
        click.echo(format_rejection(result), err=True)
        sys.exit(1)


@main.command("post-receive")
@click.option("--repository-id", required=True, type=click.UUID)
def post_receive(repository_id: uuid.UUID) -> None:
    """Disable auto-merge on pull requests whose source branch received commits."""
    branches = []
    for upd in parse_ref_updates(sys.stdin):
        branch = extract_branch_name(upd.ref_name)
        if branch is not None and not is_zero_sha(upd.new_sha):
            branches.append(branch)
    if not branches:
        return
    invalidated = asyncio.run(_advance_branches(repository_id, branches))
    if invalidated:
        click.echo(f"auto-merge disabled on {len(invalidated)} pull request(s)", err=True)


async def _init_db(database_url: str | None) -> None:
    from sqlalchemy.ext.asyncio import create_async_engine

    from refgate.core.database import create_schema

    engine = create_async_engine(
        database_url or "postgresql+asyncpg://localhost/refgate"
    )
    try:
        await create_schema(engine)
    finally:
        await engine.dispose()
    log.info("init_db.done")


async def _validate_push(
    repository_id: uuid.UUID, updates: list[RefUpdate], privileged: bool
) -> PushValidation:
    from refgate.api.deps import (
        dispose_engine,
        get_branch_protection_service,
        get_tag_protection_service,
        init_session_factory,
    )

    factory = init_session_factory()
    tags = get_tag_protection_service()
    branches = get_branch_protection_service()
    try:
        async with factory() as session:
            return combine_validations(
                [
                    await tags.validate_push_batch(
                        session, repository_id, updates, privileged=privileged
                    ),
                    await branches.validate_push_batch(session, repository_id, updates),
                ]
            )
    finally:
        await dispose_engine()


async def _advance_branches(repository_id: uuid.UUID, branches: list[str]) -> list[uuid.UUID]:
    from refgate.api.deps import (
        dispose_engine,
        get_auto_merge_service,
        init_session_factory,
        shutdown_engines,
    )

    factory = init_session_factory()
    svc = get_auto_merge_service()
    invalidated: list[uuid.UUID] = []
    try:
        async with factory() as session:
            async with session.begin():
                for branch in branches:
                    invalidated.extend(
                        await svc.on_source_ref_advanced(session, repository_id, branch)
                    )
            svc.flush_events(session)
    finally:
        await shutdown_engines()
        await dispose_engine()
    log.info("post_receive.done", repository_id=str(repository_id), invalidated=len(invalidated))
    return invalidated


if __name__ == "__main__":
    main()
