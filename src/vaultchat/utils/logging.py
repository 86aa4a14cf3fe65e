"""Logging setup for the vaultchat command line host.

Everything goes to a rotating ``vaultchat.log``; the console only shows warnings
unless ``--debug`` is given. Every handler installed here carries a
:class:`SecretRedactingFilter`, so API keys and bearer tokens that leak into an
exception message or a debug payload never reach the terminal or the log file.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path
from typing import Iterable

from .sanitize import sanitize_error_message

__all__ = ["SecretRedactingFilter", "setup_logging", "get_log_path", "redact_secrets"]

LOG_DIR_ENV = "VAULTCHAT_LOG_DIR"
LOG_FILE_NAME = "vaultchat.log"
LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"

# Loggers from the HTTP and SDK stack that log every request at INFO/DEBUG.
_CHATTY_LIBRARIES: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai")

_log_path: Path | None = None


class SecretRedactingFilter(logging.Filter):
    """Rewrites each record's final message through :func:`sanitize_error_message`."""

    def __init__(self) -> None:
        super().__init__()
        self._secrets: set[str] = set()

    def add(self, secrets: Iterable[str | None]) -> None:
        self._secrets.update(secret for secret in secrets if secret)

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = sanitize_error_message(message, secrets=tuple(self._secrets))
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


_REDACTOR = SecretRedactingFilter()


def redact_secrets(secrets: Iterable[str | None]) -> None:
    """Register configured keys so they are masked in every later log line."""

    _REDACTOR.add(secrets)


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    console_level: int | None = None,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Install the rotating file handler (and a stderr handler) on the root logger.

    Repeated calls are no-ops returning the active log file unless ``force`` is set.
    """

    global _log_path
    if _log_path is not None and not force:
        return _log_path

    directory = Path(log_dir or os.environ.get(LOG_DIR_ENV) or Path.home() / ".vaultchat" / "logs").expanduser()
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / LOG_FILE_NAME

    formatter = logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S")
    file_handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    file_handler.setLevel(level)
    handlers: list[logging.Handler] = [file_handler]
    if console:
        stream_handler = logging.StreamHandler()
        stream_handler.setLevel(level if console_level is None else console_level)
        handlers.append(stream_handler)
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(_REDACTOR)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.captureWarnings(True)
    library_level = max(level, logging.WARNING)
    for name in _CHATTY_LIBRARIES:
        logging.getLogger(name).setLevel(library_level)

    _log_path = path
    return path


def get_log_path() -> Path | None:
    """Return the log file chosen by the last :func:`setup_logging` call."""

    return _log_path
