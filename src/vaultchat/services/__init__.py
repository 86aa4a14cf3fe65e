"""Service layer helpers (settings, notifications)."""

from .notifications import LoggingNotificationService, NotificationService
from .settings import SecretVault, Settings, SettingsStore, redact_secret

__all__ = [
    "LoggingNotificationService",
    "NotificationService",
    "SecretVault",
    "Settings",
    "SettingsStore",
    "redact_secret",
]
