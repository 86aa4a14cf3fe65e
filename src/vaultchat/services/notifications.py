"""User-facing notifications raised by the tool pipeline."""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

__all__ = ["NotificationService", "LoggingNotificationService"]

LOGGER = logging.getLogger(__name__)


@runtime_checkable
class NotificationService(Protocol):
    """Short, transient messages shown to the user."""

    def info(self, message: str) -> None:
        ...

    def warning(self, message: str) -> None:
        ...

    def error(self, message: str) -> None:
        ...


class LoggingNotificationService:
    """Fallback notifier that writes to the application log."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or LOGGER

    def info(self, message: str) -> None:
        self._logger.info(message)

    def warning(self, message: str) -> None:
        self._logger.warning(message)

    def error(self, message: str) -> None:
        self._logger.error(message)
