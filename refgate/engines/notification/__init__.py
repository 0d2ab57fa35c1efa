"""Notification engine — best-effort delivery of auto-merge gate events."""

from refgate.engines.notification.dispatcher import (
    LogNotifier,
    MailNotifier,
    NotificationDispatcher,
    Notifier,
)
from refgate.engines.notification.events import GateEvent
from refgate.engines.notification.mailer import Mailer

__all__ = [
    "GateEvent",
    "LogNotifier",
    "MailNotifier",
    "Mailer",
    "NotificationDispatcher",
    "Notifier",
]
