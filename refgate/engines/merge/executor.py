"""Merge executor — the boundary to the git backend that performs merges."""

from __future__ import annotations

import os
import uuid
from dataclasses import dataclass
from typing import Protocol

import httpx
import structlog

log = structlog.get_logger("refgate.engine.merge")


@dataclass
class MergeOutcome:
    success: bool
    reason: str | None = None
    merge_sha: str | None = None


class MergeExecutor(Protocol):
    """Performs a merge; how it is done is opaque to the gate."""

    async def merge(
        self, pull_request_id: uuid.UUID, actor_id: uuid.UUID, method: str
    ) -> MergeOutcome: ...


class HttpMergeExecutor:
    """Ask the git backend service to merge a pull request over HTTP.

    A merge is not idempotent, so requests are never retried here; a lost
    response surfaces as a failed outcome and the gate retries on the next
    trigger.
    """

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        resolved_url = base_url or os.environ.get(
            "REFGATE_MERGE_BACKEND_URL", "http://localhost:8081"
        )
        resolved_token = token or os.environ.get("REFGATE_MERGE_BACKEND_TOKEN")
        headers = {"Accept": "application/json"}
        if resolved_token:
            headers["Authorization"] = f"Bearer {resolved_token}"
        self._client = httpx.AsyncClient(
            base_url=resolved_url,
            headers=headers,
            timeout=timeout or float(os.environ.get("REFGATE_MERGE_TIMEOUT", "30")),
            transport=transport,
        )

    # ── lifecycle ──────────────────────────────────────────────────────────

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> HttpMergeExecutor:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # ── public ─────────────────────────────────────────────────────────────

    async def merge(
        self, pull_request_id: uuid.UUID, actor_id: uuid.UUID, method: str
    ) -> MergeOutcome:
        try:
            resp = await self._client.post(
                f"/pulls/{pull_request_id}/merge",
                json={"actor_id": str(actor_id), "method": method},
            )
        except httpx.TimeoutException:
            log.warning("merge_backend.timeout", pull_request_id=str(pull_request_id))
            return MergeOutcome(success=False, reason="merge backend timed out")
        except httpx.HTTPError as exc:
            log.warning(
                "merge_backend.unreachable",
                pull_request_id=str(pull_request_id),
                error=str(exc),
            )
            return MergeOutcome(success=False, reason=f"merge backend unreachable: {exc}")

        if resp.is_success:
            body = self._json(resp)
            return MergeOutcome(success=True, merge_sha=body.get("sha"))

        body = self._json(resp)
        reason = body.get("detail") or body.get("error") or f"HTTP {resp.status_code}"
        log.warning(
            "merge_backend.rejected",
            pull_request_id=str(pull_request_id),
            status=resp.status_code,
            reason=reason,
        )
        return MergeOutcome(success=False, reason=str(reason))

    @staticmethod
    def _json(resp: httpx.Response) -> dict:
        try:
            data = resp.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}
