"""Tests for CommitStatusService and the required-check rules."""

import uuid
from datetime import datetime, timedelta, timezone
from itertools import count
from unittest.mock import AsyncMock

import pytest

from refgate.dao.base import Page
from refgate.dao.commit_status_dao import CommitStatusDAO
from refgate.dao.repository_dao import RepositoryDAO
from refgate.models.commit_status import CommitStatus
from refgate.services import NotFoundError, ValidationError
from refgate.services.commit_status_service import (
    CommitStatusService,
    combine_states,
    evaluate_required,
    latest_per_context,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

BASE = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
REPO_ID = uuid.uuid4()
_seq = count(1)


def _make_status(context: str = "ci/build", state: str = "success", **overrides) -> CommitStatus:
    defaults = {
        "id": uuid.uuid4(),
        "seq": next(_seq),
        "repository_id": REPO_ID,
        "sha": "abc1234",
        "state": state,
        "context": context,
        "description": None,
        "target_url": None,
        "creator_id": None,
        "created_at": BASE,
        "updated_at": BASE,
    }
    defaults.update(overrides)
    return CommitStatus(**defaults)


def _make_service() -> tuple[CommitStatusService, CommitStatusDAO, RepositoryDAO]:
    status_dao = CommitStatusDAO()
    repo_dao = RepositoryDAO()
    return CommitStatusService(status_dao, repo_dao), status_dao, repo_dao


# ---------------------------------------------------------------------------
# pure aggregation
# ---------------------------------------------------------------------------


class TestLatestPerContext:
    def test_later_insert_wins(self):
        old = _make_status(state="failure", seq=20)
        new = _make_status(state="success", seq=21)
        assert latest_per_context([new, old])["ci/build"] is new

    def test_later_insert_wins_over_later_timestamp(self):
        # a transaction that started first can commit its report last
        stamped_late = _make_status(state="failure", seq=30, created_at=BASE + timedelta(seconds=5))
        inserted_late = _make_status(state="success", seq=31, created_at=BASE)
        assert latest_per_context([stamped_late, inserted_late])["ci/build"] is inserted_late

    def test_equal_timestamps_last_insert_wins(self):
        first = _make_status(state="failure", seq=10)
        second = _make_status(state="success", seq=11)
        assert latest_per_context([second, first])["ci/build"] is second
        assert latest_per_context([first, second])["ci/build"] is second

    def test_one_entry_per_context(self):
        rows = [_make_status("a"), _make_status("b"), _make_status("a")]
        assert set(latest_per_context(rows)) == {"a", "b"}


class TestCombineStates:
    def test_empty_is_pending(self):
        assert combine_states([]) == "pending"

    @pytest.mark.parametrize(
        "states, expected",
        [
            (["success"], "success"),
            (["success", "pending"], "pending"),
            (["pending", "failure", "success"], "failure"),
            (["failure", "error"], "error"),
            (["error", "success"], "error"),
        ],
    )
    def test_priority(self, states, expected):
        assert combine_states(states) == expected


class TestEvaluateRequired:
    def test_empty_required_passes(self):
        result = evaluate_required({}, [])
        assert result.passed is True
        assert result.missing == []
        assert result.failing == []

    def test_absent_context_is_missing_not_failing(self):
        result = evaluate_required({}, ["ci/lint"])
        assert result.missing == ["ci/lint"]
        assert result.failing == []
        assert result.passed is False

    def test_failure_and_error_are_failing(self):
        latest = latest_per_context(
            [_make_status("ci/test", "failure"), _make_status("ci/e2e", "error")]
        )
        result = evaluate_required(latest, ["ci/test", "ci/e2e"])
        assert result.failing == ["ci/test (failure)", "ci/e2e (error)"]
        assert result.passed is False

    def test_pending_blocks_without_being_listed(self):
        latest = latest_per_context([_make_status("ci/build", "pending")])
        result = evaluate_required(latest, ["ci/build"])
        assert result.passed is False
        assert result.missing == []
        assert result.failing == []

    def test_all_success_passes(self):
        latest = latest_per_context([_make_status("a"), _make_status("b")])
        assert evaluate_required(latest, ["a", "b"]).passed is True


# ---------------------------------------------------------------------------
# record
# ---------------------------------------------------------------------------


class TestRecord:
    async def test_record_success(self):
        service, status_dao, repo_dao = _make_service()
        repo_dao.exists = AsyncMock(return_value=True)
        created = _make_status()
        status_dao.create = AsyncMock(return_value=created)

        result = await service.record(AsyncMock(), REPO_ID, "abc1234", "success", context="ci/build")

        assert result is created
        kwargs = status_dao.create.call_args.kwargs
        assert kwargs["context"] == "ci/build"
        assert kwargs["state"] == "success"

    async def test_context_defaults(self):
        service, status_dao, repo_dao = _make_service()
        repo_dao.exists = AsyncMock(return_value=True)
        status_dao.create = AsyncMock(return_value=_make_status("default"))

        await service.record(AsyncMock(), REPO_ID, "abc1234", "pending")

        assert status_dao.create.call_args.kwargs["context"] == "default"

    @pytest.mark.parametrize("sha", ["abc", "not-a-sha", "g" * 40, "a" * 41])
    async def test_invalid_sha(self, sha):
        service, status_dao, repo_dao = _make_service()
        status_dao.create = AsyncMock()
        with pytest.raises(ValidationError, match="invalid commit sha"):
            await service.record(AsyncMock(), REPO_ID, sha, "success")
        status_dao.create.assert_not_called()

    async def test_invalid_state(self):
        service, _, _ = _make_service()
        with pytest.raises(ValidationError, match="invalid state"):
            await service.record(AsyncMock(), REPO_ID, "abc1234", "skipped")

    async def test_unknown_repository(self):
        service, status_dao, repo_dao = _make_service()
        repo_dao.exists = AsyncMock(return_value=False)
        status_dao.create = AsyncMock()
        with pytest.raises(NotFoundError, match="repository not found"):
            await service.record(AsyncMock(), REPO_ID, "abc1234", "success")
        status_dao.create.assert_not_called()


# ---------------------------------------------------------------------------
# reads
# ---------------------------------------------------------------------------


class TestCombined:
    async def test_no_reports(self):
        service, status_dao, _ = _make_service()
        status_dao.list_latest_by_context = AsyncMock(return_value=[])

        combined = await service.combined(AsyncMock(), REPO_ID, "abc1234")

        assert combined.state == "pending"
        assert combined.total_count == 0

    async def test_older_report_does_not_change_verdict(self):
        service, status_dao, _ = _make_service()
        current = _make_status("ci/test", "success", seq=41, created_at=BASE + timedelta(minutes=1))
        stale = _make_status("ci/test", "failure", seq=40, created_at=BASE)
        status_dao.list_latest_by_context = AsyncMock(return_value=[current, stale])

        combined = await service.combined(AsyncMock(), REPO_ID, "abc1234")

        assert combined.state == "success"
        assert combined.total_count == 1

    async def test_statuses_sorted_by_context(self):
        service, status_dao, _ = _make_service()
        status_dao.list_latest_by_context = AsyncMock(
            return_value=[_make_status("z"), _make_status("a")]
        )
        combined = await service.combined(AsyncMock(), REPO_ID, "abc1234")
        assert [s.context for s in combined.statuses] == ["a", "z"]


class TestListStatuses:
    async def test_returns_page_dict(self):
        service, status_dao, _ = _make_service()
        rows = [_make_status(), _make_status()]
        status_dao.list_by_commit = AsyncMock(
            return_value=Page(data=rows, next_cursor="abc", has_more=True)
        )

        result = await service.list_statuses(AsyncMock(), REPO_ID, "abc1234", page_size=2)

        assert result["data"] == rows
        assert result["next_cursor"] == "abc"
        assert result["has_more"] is True


class TestCheckRequired:
    async def test_empty_list_skips_lookup(self):
        service, status_dao, _ = _make_service()
        status_dao.list_latest_by_context = AsyncMock()

        result = await service.check_required(AsyncMock(), REPO_ID, "abc1234", [])

        assert result.passed is True
        status_dao.list_latest_by_context.assert_not_called()

    async def test_lookup_narrowed_to_required(self):
        service, status_dao, _ = _make_service()
        status_dao.list_latest_by_context = AsyncMock(return_value=[_make_status("ci/build")])

        await service.check_required(AsyncMock(), REPO_ID, "abc1234", ["ci/build"])

        assert status_dao.list_latest_by_context.call_args.kwargs["contexts"] == ["ci/build"]


class TestEndToEnd:
    async def test_build_success_then_test_failure(self):
        """Two reports, then a required check that names a third context."""
        service, status_dao, repo_dao = _make_service()
        repo_dao.exists = AsyncMock(return_value=True)
        ledger: list[CommitStatus] = []

        async def _create(_session, **values):
            row = _make_status(
                values["context"],
                values["state"],
                created_at=BASE + timedelta(seconds=len(ledger)),
            )
            ledger.append(row)
            return row

        async def _latest(_session, _repo_id, _sha, contexts=None):
            rows = list(latest_per_context(ledger).values())
            if contexts is not None:
                rows = [r for r in rows if r.context in contexts]
            return rows

        status_dao.create = AsyncMock(side_effect=_create)
        status_dao.list_latest_by_context = AsyncMock(side_effect=_latest)
        session = AsyncMock()

        await service.record(session, REPO_ID, "abc1234", "success", context="ci/build")
        await service.record(session, REPO_ID, "abc1234", "failure", context="ci/test")

        combined = await service.combined(session, REPO_ID, "abc1234")
        assert combined.state == "failure"
        assert combined.total_count == 2

        result = await service.check_required(
            session, REPO_ID, "abc1234", ["ci/build", "ci/test", "ci/lint"]
        )
        assert result.missing == ["ci/lint"]
        assert result.failing == ["ci/test (failure)"]
        assert result.passed is False
