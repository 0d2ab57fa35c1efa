"""SMTP mail delivery for gate notifications.

smtplib blocks, so each send runs in a worker thread via ``asyncio.to_thread``.

Environment (read when a Mailer is built):
    REFGATE_SMTP_HOST / REFGATE_SMTP_PORT   relay address (localhost:587)
    REFGATE_SMTP_USER / REFGATE_SMTP_PASSWORD   login; skipped when user is empty
    REFGATE_SMTP_FROM   sender (defaults to the user)
    REFGATE_SMTP_STARTTLS   0 disables STARTTLS (default 1)
"""

from __future__ import annotations

import asyncio
import os
import smtplib
from collections.abc import Sequence
from email.message import EmailMessage


def parse_recipients(value: str) -> list[str]:
    """Split a comma separated address list, dropping blanks."""
    return [addr.strip() for addr in value.split(",") if addr.strip()]


class Mailer:
    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        user: str | None = None,
        password: str | None = None,
        from_addr: str | None = None,
        starttls: bool | None = None,
    ) -> None:
        self.host = host or os.getenv("REFGATE_SMTP_HOST", "localhost")
        self.port = port or int(os.getenv("REFGATE_SMTP_PORT", "587"))
        self.user = user if user is not None else os.getenv("REFGATE_SMTP_USER", "")
        self.password = password if password is not None else os.getenv("REFGATE_SMTP_PASSWORD", "")
        self.from_addr = from_addr or os.getenv("REFGATE_SMTP_FROM", "") or self.user
        if starttls is None:
            starttls = os.getenv("REFGATE_SMTP_STARTTLS", "1") != "0"
        self.starttls = starttls

    def build_message(
        self,
        to: Sequence[str],
        subject: str,
        html_body: str,
        text_body: str | None = None,
    ) -> EmailMessage:
        """multipart/alternative with a plain-text part first, then HTML."""
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.from_addr
        msg["To"] = ", ".join(to)
        msg.set_content(text_body or subject)
        msg.add_alternative(html_body, subtype="html")
        return msg

    async def send(
        self,
        to: Sequence[str],
        subject: str,
        html_body: str,
        text_body: str | None = None,
    ) -> None:
        msg = self.build_message(to, subject, html_body, text_body)
        await asyncio.to_thread(self._deliver, msg)

    def _deliver(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=30) as server:
            if self.starttls:
                server.starttls()
            if self.user:
                server.login(self.user, self.password)
            server.send_message(msg)
