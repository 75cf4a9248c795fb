"""Environment driven settings for the storyloom core."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Final

from dotenv import load_dotenv

TRUE_VALUES: Final = frozenset({"1", "true", "t", "yes", "y", "on"})


def _env_str(key: str, default: str = "") -> str:
    return os.getenv(key, default)


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None or not value.strip():
        return default
    return int(value)


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None or not value.strip():
        return default
    return float(value)


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip().lower() in TRUE_VALUES


@dataclass
class AppSettings:
    """Application-wide settings."""

    NAME: str = field(default_factory=lambda: _env_str("APP_NAME", "storyloom"))
    DEBUG: bool = field(default_factory=lambda: _env_bool("APP_DEBUG", False))
    LOG_LEVEL: str = field(default_factory=lambda: _env_str("LOG_LEVEL", "INFO"))
    LOG_JSON: bool = field(default_factory=lambda: _env_bool("LOG_JSON", False))


@dataclass
class AISettings:
    """Credentials and connection defaults for the AI provider."""

    DEEPSEEK_API_KEY: str = field(default_factory=lambda: _env_str("DEEPSEEK_API_KEY"))
    DEEPSEEK_BASE_URL: str = field(
        default_factory=lambda: _env_str("DEEPSEEK_BASE_URL", "https://api.deepseek.com")
    )
    DEEPSEEK_MODEL: str = field(default_factory=lambda: _env_str("DEEPSEEK_MODEL", "deepseek-chat"))
    TIMEOUT_MS: int = field(default_factory=lambda: _env_int("AI_TIMEOUT_MS", 30_000))
    MAX_RETRIES: int = field(default_factory=lambda: _env_int("AI_MAX_RETRIES", 3))
    RETRY_DELAY_MS: int = field(default_factory=lambda: _env_int("AI_RETRY_DELAY_MS", 1_000))
    AUTO_RECONNECT: bool = field(default_factory=lambda: _env_bool("AI_AUTO_RECONNECT", True))
    SUPPORT_REASONING: bool = field(default_factory=lambda: _env_bool("DEEPSEEK_SUPPORT_REASONING", True))
    ENABLE_CACHE: bool = field(default_factory=lambda: _env_bool("DEEPSEEK_ENABLE_CACHE", False))
    COMPATIBILITY_MODE: str = field(default_factory=lambda: _env_str("DEEPSEEK_COMPATIBILITY_MODE", "openai"))


@dataclass
class RetrySettings:
    """Global retry policy applied by service adapters."""

    STRATEGY: str = field(default_factory=lambda: _env_str("AI_RETRY_STRATEGY", "exponential"))
    MULTIPLIER: float = field(default_factory=lambda: _env_float("AI_RETRY_MULTIPLIER", 2.0))
    JITTER: bool = field(default_factory=lambda: _env_bool("AI_RETRY_JITTER", True))


@dataclass
class Settings:
    app: AppSettings = field(default_factory=AppSettings)
    ai: AISettings = field(default_factory=AISettings)
    retry: RetrySettings = field(default_factory=RetrySettings)

    @classmethod
    def from_env(cls, dotenv_filename: str = ".env") -> "Settings":
        """Load settings after merging an optional ``.env`` file into the environment."""
        load_dotenv(dotenv_filename, override=False)
        return cls()


@lru_cache(maxsize=1, typed=False)
def get_settings() -> Settings:
    return Settings.from_env()


__all__ = (
    "AISettings",
    "AppSettings",
    "RetrySettings",
    "Settings",
    "get_settings",
)
