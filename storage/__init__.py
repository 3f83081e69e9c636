"""Data persistence components."""

from .settings import AppSettings, SettingsManager, SmtpSettings, get_settings_manager
from .sqlite_store import SQLiteStore

__all__ = [
    "AppSettings",
    "SQLiteStore",
    "SettingsManager",
    "SmtpSettings",
    "get_settings_manager",
]
