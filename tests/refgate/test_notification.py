"""Tests for the notification engine."""

from __future__ import annotations

import asyncio
import uuid
from unittest.mock import AsyncMock, patch

import pytest

from refgate.engines.notification import (
    GateEvent,
    LogNotifier,
    MailNotifier,
    Mailer,
    NotificationDispatcher,
)
from refgate.engines.notification.mailer import parse_recipients
from refgate.engines.notification.template import render_event, render_text

REPO_ID = uuid.uuid4()


def _event(kind: str = "merged", **overrides) -> GateEvent:
    values = {
        "kind": kind,
        "pull_request_id": uuid.uuid4(),
        "repository_id": REPO_ID,
        "number": 7,
        "title": "Bump <deps>",
    }
    values.update(overrides)
    return GateEvent(**values)


class _Recorder:
    def __init__(self) -> None:
        self.events: list[GateEvent] = []

    async def notify(self, event: GateEvent) -> None:
        self.events.append(event)


class _Exploding:
    async def notify(self, event: GateEvent) -> None:
        raise RuntimeError("smtp down")


# ── events ────────────────────────────────────────────────────────────────


class TestGateEvent:
    def test_unknown_kind_rejected(self):
        with pytest.raises(ValueError, match="unknown gate event kind"):
            _event("exploded")


# ── template ──────────────────────────────────────────────────────────────


class TestRenderEvent:
    def test_subject_and_escaping(self):
        subject, body = render_event(_event("merge_failed", detail="conflict in <a&b>"))
        assert subject.startswith("[refgate] Auto-merge failed: #7")
        assert "Bump &lt;deps&gt;" in body
        assert "conflict in &lt;a&amp;b&gt;" in body

    def test_without_number_uses_id(self):
        event = _event("invalidated", number=None, title=None)
        subject, _ = render_event(event)
        assert str(event.pull_request_id) in subject


# ── dispatcher ────────────────────────────────────────────────────────────


class TestNotificationDispatcher:
    async def test_dispatch_does_not_block(self):
        recorder = _Recorder()
        dispatcher = NotificationDispatcher([recorder])

        dispatcher.dispatch(_event())
        assert recorder.events == []
        assert dispatcher.pending == 1

        await dispatcher.drain()
        assert len(recorder.events) == 1
        assert dispatcher.pending == 0

    async def test_failures_do_not_propagate(self):
        recorder = _Recorder()
        dispatcher = NotificationDispatcher([_Exploding(), recorder])

        dispatcher.dispatch(_event())
        await dispatcher.drain()
        await asyncio.sleep(0)

        assert len(recorder.events) == 1
        assert dispatcher.pending == 0

    async def test_log_notifier(self):
        await LogNotifier().notify(_event("invalidated"))

    def test_from_env_without_mail(self, monkeypatch):
        monkeypatch.delenv("REFGATE_NOTIFY_TO", raising=False)
        dispatcher = NotificationDispatcher.from_env()
        assert [type(n) for n in dispatcher._notifiers] == [LogNotifier]

    def test_from_env_with_mail(self, monkeypatch):
        monkeypatch.setenv("REFGATE_NOTIFY_TO", "team@example.com")
        dispatcher = NotificationDispatcher.from_env()
        assert [type(n) for n in dispatcher._notifiers] == [LogNotifier, MailNotifier]


class TestMailNotifier:
    async def test_sends_rendered_mail(self):
        mailer = Mailer(host="smtp.test", port=25, user="", password="", from_addr="gate@test")
        mailer.send = AsyncMock()
        notifier = MailNotifier(mailer, ["team@example.com", "lead@example.com"])

        await notifier.notify(_event("merged", detail="merge commit abc"))

        to, subject, html_body, text_body = mailer.send.call_args.args
        assert to == ["team@example.com", "lead@example.com"]
        assert "Auto-merge completed" in subject
        assert "<html>" in html_body
        assert "merge commit abc" in text_body


class TestMailer:
    def test_recipients_parsed(self):
        assert parse_recipients(" a@x.io, ,b@x.io ,") == ["a@x.io", "b@x.io"]
        assert parse_recipients("") == []

    def test_env_defaults(self, monkeypatch):
        monkeypatch.setenv("REFGATE_SMTP_HOST", "relay.internal")
        monkeypatch.setenv("REFGATE_SMTP_PORT", "2525")
        monkeypatch.setenv("REFGATE_SMTP_USER", "bot@x.io")
        monkeypatch.delenv("REFGATE_SMTP_FROM", raising=False)
        monkeypatch.setenv("REFGATE_SMTP_STARTTLS", "0")
        mailer = Mailer()
        assert (mailer.host, mailer.port) == ("relay.internal", 2525)
        assert mailer.from_addr == "bot@x.io"
        assert mailer.starttls is False

    def test_message_has_text_and_html(self):
        mailer = Mailer(host="smtp.test", port=25, user="", password="", from_addr="gate@test")
        msg = mailer.build_message(["a@x.io", "b@x.io"], "subj", "<p>hi</p>", "hi")
        assert msg["To"] == "a@x.io, b@x.io"
        assert msg.get_content_type() == "multipart/alternative"
        parts = [p.get_content_type() for p in msg.iter_parts()]
        assert parts == ["text/plain", "text/html"]

    def test_deliver_skips_login_without_user(self):
        mailer = Mailer(host="smtp.test", port=25, user="", password="", from_addr="gate@test")
        msg = mailer.build_message(["a@x.io"], "subj", "<p>hi</p>")
        with patch("refgate.engines.notification.mailer.smtplib.SMTP") as smtp:
            mailer._deliver(msg)
        server = smtp.return_value.__enter__.return_value
        server.starttls.assert_called_once()
        server.login.assert_not_called()
        server.send_message.assert_called_once_with(msg)

    def test_deliver_logs_in_with_user(self):
        mailer = Mailer(
            host="smtp.test", port=25, user="u", password="p", from_addr="gate@test", starttls=False
        )
        msg = mailer.build_message(["a@x.io"], "subj", "<p>hi</p>")
        with patch("refgate.engines.notification.mailer.smtplib.SMTP") as smtp:
            mailer._deliver(msg)
        server = smtp.return_value.__enter__.return_value
        server.starttls.assert_not_called()
        server.login.assert_called_once_with("u", "p")


class TestRenderText:
    def test_plain_fields(self):
        text = render_text(_event("invalidated", detail="new commits were pushed to feature"))
        assert text.startswith("Auto-merge disabled\n")
        assert "Pull request: #7" in text
        assert "Title:        Bump <deps>" in text
        assert text.rstrip().endswith("new commits were pushed to feature")
