"""DeepSeek provider implementation."""

from __future__ import annotations

from storyloom.domain.ai.providers.deepseek.adapter import DeepSeekServiceAdapter, config_from_settings
from storyloom.domain.ai.providers.deepseek.connection import DeepSeekConnectionManager
from storyloom.domain.ai.providers.deepseek.errors import DeepSeekAPIError, DeepSeekErrorProcessor
from storyloom.domain.ai.providers.deepseek.handler import DeepSeekRequestHandler
from storyloom.domain.ai.providers.deepseek.request_builder import DeepSeekRequestBuilder
from storyloom.domain.ai.providers.deepseek.response_parser import DeepSeekResponseParser

__all__ = (
    "DeepSeekAPIError",
    "DeepSeekConnectionManager",
    "DeepSeekErrorProcessor",
    "DeepSeekRequestBuilder",
    "DeepSeekRequestHandler",
    "DeepSeekResponseParser",
    "DeepSeekServiceAdapter",
    "config_from_settings",
)
