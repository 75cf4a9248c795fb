from __future__ import annotations

from storyloom.config.base import AISettings, AppSettings, RetrySettings, Settings, get_settings

__all__ = (
    "AISettings",
    "AppSettings",
    "RetrySettings",
    "Settings",
    "get_settings",
)
