"""Tests for the refgate CLI and git hook commands (services mocked)."""

from __future__ import annotations

import io
import uuid
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import click
import pytest
from click.testing import CliRunner

from refgate.cli import format_rejection, main, parse_ref_updates
from refgate.core.refs import ZERO_SHA
from refgate.services.tag_protection_service import PushValidation, RefUpdate

REPO_ID = str(uuid.uuid4())
OLD = "a" * 40
NEW = "b" * 40


@pytest.fixture(autouse=True)
def _no_global_setup():
    """Keep CliRunner invocations from reconfiguring logging or reading .env."""
    with patch("refgate.cli.setup_logging"), patch("refgate.cli.load_dotenv"):
        yield


# ── stdin parsing ──


class TestParseRefUpdates:
    def test_parses_lines(self):
        stream = io.StringIO(f"{OLD} {NEW} refs/heads/main\n\n{OLD} {ZERO_SHA} refs/tags/v1\n")
        updates = parse_ref_updates(stream)
        assert [(u.old_sha, u.new_sha, u.ref_name) for u in updates] == [
            (OLD, NEW, "refs/heads/main"),
            (OLD, ZERO_SHA, "refs/tags/v1"),
        ]

    def test_malformed_line(self):
        with pytest.raises(click.ClickException, match="line 1"):
            parse_ref_updates(io.StringIO("only-two fields\n"))


class TestFormatRejection:
    def test_lists_each_blocked_ref(self):
        result = PushValidation(
            allowed=False,
            reason="Cannot delete protected tag 'v1' (matches pattern 'v*')",
            blocked_refs=[
                ("refs/tags/v1", "Cannot delete protected tag 'v1' (matches pattern 'v*')"),
                ("refs/tags/v2", "Cannot overwrite protected tag 'v2' (matches pattern 'v*')"),
            ],
        )
        text = format_rejection(result)
        lines = text.splitlines()
        assert lines[0].startswith("  refs/tags/v1: Cannot delete")
        assert lines[1].startswith("  refs/tags/v2: Cannot overwrite")
        assert lines[-1] == "error: Cannot delete protected tag 'v1' (matches pattern 'v*')"


# ── hooks ──


class TestPreReceive:
    def test_allowed_push_exits_zero(self):
        runner = CliRunner()
        with patch(
            "refgate.cli._validate_push", AsyncMock(return_value=PushValidation(allowed=True))
        ) as validate:
            result = runner.invoke(
                main,
                ["pre-receive", "--repository-id", REPO_ID],
                input=f"{ZERO_SHA} {NEW} refs/tags/v1\n",
            )
        assert result.exit_code == 0
        args = validate.call_args.args
        assert str(args[0]) == REPO_ID
        assert args[1][0].ref_name == "refs/tags/v1"
        assert args[2] is False

    def test_blocked_push_exits_one(self):
        runner = CliRunner()
        blocked = PushValidation(
            allowed=False,
            reason="Cannot delete protected tag 'v1' (matches pattern 'v*')",
            blocked_refs=[("refs/tags/v1", "Cannot delete protected tag 'v1' (matches pattern 'v*')")],
        )
        with patch("refgate.cli._validate_push", AsyncMock(return_value=blocked)):
            result = runner.invoke(
                main,
                ["pre-receive", "--repository-id", REPO_ID, "--privileged"],
                input=f"{OLD} {ZERO_SHA} refs/tags/v1\n",
            )
        assert result.exit_code == 1
        assert "Cannot delete protected tag" in result.output

    def test_empty_input_is_noop(self):
        runner = CliRunner()
        with patch("refgate.cli._validate_push", AsyncMock()) as validate:
            result = runner.invoke(main, ["pre-receive", "--repository-id", REPO_ID], input="")
        assert result.exit_code == 0
        validate.assert_not_called()

    def test_repository_id_must_be_uuid(self):
        result = CliRunner().invoke(main, ["pre-receive", "--repository-id", "nope"], input="")
        assert result.exit_code == 2


class TestPostReceive:
    def test_only_advanced_branches(self):
        runner = CliRunner()
        stdin = (
            f"{OLD} {NEW} refs/heads/feature\n"
            f"{OLD} {ZERO_SHA} refs/heads/deleted\n"
            f"{ZERO_SHA} {NEW} refs/tags/v1\n"
        )
        with patch(
            "refgate.cli._advance_branches", AsyncMock(return_value=[uuid.uuid4()])
        ) as advance:
            result = runner.invoke(
                main, ["post-receive", "--repository-id", REPO_ID], input=stdin
            )
        assert result.exit_code == 0
        assert advance.call_args.args[1] == ["feature"]
        assert "auto-merge disabled on 1 pull request(s)" in result.output

    def test_no_branches_skips_database(self):
        runner = CliRunner()
        with patch("refgate.cli._advance_branches", AsyncMock()) as advance:
            result = runner.invoke(
                main,
                ["post-receive", "--repository-id", REPO_ID],
                input=f"{ZERO_SHA} {NEW} refs/tags/v1\n",
            )
        assert result.exit_code == 0
        advance.assert_not_called()


class TestInitDb:
    def test_url_option_passed_through(self):
        url = "postgresql+asyncpg://u:p@db/refgate"
        with patch("refgate.cli._init_db", AsyncMock()) as init:
            result = CliRunner().invoke(main, ["init-db", "--database-url", url])
        assert result.exit_code == 0
        init.assert_awaited_once_with(url)
        assert "schema ready" in result.output

    def test_url_from_environment(self, monkeypatch):
        monkeypatch.setenv("REFGATE_DATABASE_URL", "postgresql+asyncpg://env/refgate")
        with patch("refgate.cli._init_db", AsyncMock()) as init:
            result = CliRunner().invoke(main, ["init-db"])
        assert result.exit_code == 0
        init.assert_awaited_once_with("postgresql+asyncpg://env/refgate")


# ── hook database work ──


class _FakeSession:
    def __init__(self) -> None:
        self.info: dict = {}
        self.committed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    @asynccontextmanager
    async def begin(self):
        yield
        self.committed = True


class TestHookDatabaseWork:
    async def test_validate_push_checks_tags_and_branches(self):
        from refgate.cli import _validate_push

        session = _FakeSession()
        tags = AsyncMock()
        tags.validate_push_batch.return_value = PushValidation(allowed=True)
        branches = AsyncMock()
        branches.validate_push_batch.return_value = PushValidation(
            allowed=False,
            reason="Cannot delete protected branch 'main'",
            blocked_refs=[("refs/heads/main", "Cannot delete protected branch 'main'")],
        )
        updates = [RefUpdate(ref_name="refs/heads/main", old_sha=OLD, new_sha=ZERO_SHA)]

        with patch("refgate.api.deps.init_session_factory", return_value=lambda: session), \
                patch("refgate.api.deps.get_tag_protection_service", return_value=tags), \
                patch("refgate.api.deps.get_branch_protection_service", return_value=branches), \
                patch("refgate.api.deps.dispose_engine", AsyncMock()) as dispose:
            result = await _validate_push(uuid.UUID(REPO_ID), updates, True)

        assert result.allowed is False
        assert result.reason == "Cannot delete protected branch 'main'"
        assert tags.validate_push_batch.call_args.kwargs["privileged"] is True
        assert branches.validate_push_batch.call_args.args[2] == updates
        dispose.assert_awaited_once()

    async def test_advance_branches_notifies_after_commit(self):
        from refgate.cli import _advance_branches

        session = _FakeSession()
        flushed_after_commit: list[bool] = []
        svc = MagicMock()
        svc.on_source_ref_advanced = AsyncMock(return_value=[uuid.uuid4()])
        svc.flush_events = MagicMock(
            side_effect=lambda s: flushed_after_commit.append(s.committed)
        )

        with patch("refgate.api.deps.init_session_factory", return_value=lambda: session), \
                patch("refgate.api.deps.get_auto_merge_service", return_value=svc), \
                patch("refgate.api.deps.shutdown_engines", AsyncMock()), \
                patch("refgate.api.deps.dispose_engine", AsyncMock()):
            invalidated = await _advance_branches(uuid.UUID(REPO_ID), ["feature"])

        assert len(invalidated) == 1
        assert flushed_after_commit == [True]

    def test_blocked_branch_push_exits_one(self):
        blocked = PushValidation(
            allowed=False,
            reason="Missing required checks: ci/test",
            blocked_refs=[("refs/heads/main", "Missing required checks: ci/test")],
        )
        with patch("refgate.cli._validate_push", AsyncMock(return_value=blocked)):
            result = CliRunner().invoke(
                main,
                ["pre-receive", "--repository-id", REPO_ID],
                input=f"{OLD} {NEW} refs/heads/main\n",
            )
        assert result.exit_code == 1
        assert "refs/heads/main: Missing required checks: ci/test" in result.output
