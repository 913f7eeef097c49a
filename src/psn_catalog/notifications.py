"""Operator notifications."""

import logging
from abc import ABC, abstractmethod

from .db.settings import save_notification
from .models.enums import NotificationPriority
from .models.notification import Notification

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    NotificationPriority.LOW: logging.INFO,
    NotificationPriority.NORMAL: logging.INFO,
    NotificationPriority.HIGH: logging.WARNING,
    NotificationPriority.CRITICAL: logging.ERROR,
}


class NotificationSink(ABC):
    """Destination for operator alerts."""

    @abstractmethod
    def send(self, notification: Notification) -> None:
        raise NotImplementedError


class LoggingSink(NotificationSink):
    """Writes notifications to the log."""

    def send(self, notification: Notification) -> None:
        logger.log(
            _LOG_LEVELS[notification.priority],
            f"[{notification.type.value}] {notification.title}: {notification.message}",
        )


class DatabaseSink(NotificationSink):
    """Stores notifications in the admin inbox table."""

    def send(self, notification: Notification) -> None:
        save_notification(notification)


class CompositeSink(NotificationSink):
    """Fans a notification out to several sinks."""

    def __init__(self, sinks: list[NotificationSink]):
        self.sinks = sinks

    def send(self, notification: Notification) -> None:
        for sink in self.sinks:
            notify(sink, notification)


def default_sink() -> NotificationSink:
    return CompositeSink([LoggingSink(), DatabaseSink()])


def notify(sink: NotificationSink | None, notification: Notification) -> None:
    """Send without letting a sink failure reach the caller."""
    if sink is None:
        return
    try:
        sink.send(notification)
    except Exception:
        logger.exception(f"Failed to deliver notification {notification.title!r} via {type(sink).__name__}")
