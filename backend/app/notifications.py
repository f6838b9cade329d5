"""One-way notification delivery for submission events."""

from __future__ import annotations

import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class NotificationEmitter(Protocol):
    def notify(self, user_id: str, event: str, payload: dict[str, Any]) -> None:
        """Deliver an event to a user. Must not raise into the caller."""


class LoggingNotifier:
    """Records notifications in the log until a delivery channel is wired in."""

    def notify(self, user_id: str, event: str, payload: dict[str, Any]) -> None:
        logger.info("notification", extra={"user_id": user_id, "event": event, "payload": payload})


class RecordingNotifier:
    """Keeps notifications in memory; handy for embedding and tests."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, dict[str, Any]]] = []

    def notify(self, user_id: str, event: str, payload: dict[str, Any]) -> None:
        self.sent.append((user_id, event, dict(payload)))

    def events_for(self, user_id: str) -> list[str]:
        return [event for recipient, event, _ in self.sent if recipient == user_id]


def send(emitter: NotificationEmitter, user_id: str | None, event: str, payload: dict[str, Any]) -> None:
    """Best-effort delivery; failures are logged and swallowed."""
    if not user_id:
        return
    try:
        emitter.notify(user_id, event, payload)
    except Exception:  # noqa: BLE001
        logger.exception("notification delivery failed", extra={"user_id": user_id, "event": event})


_notifier: NotificationEmitter | None = None


def get_notifier() -> NotificationEmitter:
    global _notifier
    if _notifier is None:
        _notifier = LoggingNotifier()
    return _notifier


def set_notifier(notifier: NotificationEmitter | None) -> None:
    global _notifier
    _notifier = notifier


def reset_notifier() -> None:
    set_notifier(None)
