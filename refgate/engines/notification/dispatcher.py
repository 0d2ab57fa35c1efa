"""NotificationDispatcher — fire-and-forget fan-out of gate events."""

from __future__ import annotations

import asyncio
import os
from typing import Protocol

import structlog

from refgate.engines.notification.events import GateEvent
from refgate.engines.notification.mailer import Mailer, parse_recipients
from refgate.engines.notification.template import render_event, render_text

log = structlog.get_logger("refgate.engine.notification")


class Notifier(Protocol):
    async def notify(self, event: GateEvent) -> None: ...


class LogNotifier:
    """Emit every gate event as a structured log line."""

    async def notify(self, event: GateEvent) -> None:
        log.info(
            f"gate.{event.kind}",
            pull_request_id=str(event.pull_request_id),
            repository_id=str(event.repository_id),
            number=event.number,
            detail=event.detail,
        )


class MailNotifier:
    def __init__(self, mailer: Mailer, to: list[str]) -> None:
        self._mailer = mailer
        self._to = list(to)

    async def notify(self, event: GateEvent) -> None:
        subject, html_body = render_event(event)
        await self._mailer.send(self._to, subject, html_body, render_text(event))
        log.info(
            "notification.sent",
            pull_request_id=str(event.pull_request_id),
            kind=event.kind,
            recipients=len(self._to),
        )


class NotificationDispatcher:
    """Schedule each notifier as a background task and never wait on it.

    Pending tasks are referenced until done so the event loop does not
    collect them early; failures are logged and otherwise dropped.
    """

    def __init__(self, notifiers: list[Notifier] | None = None) -> None:
        self._notifiers: list[Notifier] = list(notifiers or [])
        self._tasks: set[asyncio.Task[None]] = set()

    @classmethod
    def from_env(cls) -> NotificationDispatcher:
        notifiers: list[Notifier] = [LogNotifier()]
        recipients = parse_recipients(os.getenv("REFGATE_NOTIFY_TO", ""))
        if recipients:
            notifiers.append(MailNotifier(Mailer(), recipients))
        return cls(notifiers)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def dispatch(self, event: GateEvent) -> None:
        for notifier in self._notifiers:
            task = asyncio.create_task(notifier.notify(event))
            self._tasks.add(task)
            task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error(
                "notification.failed",
                error=str(exc),
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    async def drain(self) -> None:
        """Wait for in-flight notifications (used at shutdown and in tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
