"""Provider-agnostic AI service mediation."""

from __future__ import annotations

from storyloom.domain.ai.adapter import BaseAIServiceAdapter
from storyloom.domain.ai.connection import BaseConnectionManager
from storyloom.domain.ai.error_processor import BaseErrorProcessor
from storyloom.domain.ai.errors import AIError, ErrorContext, ErrorMetadata, ProcessedError
from storyloom.domain.ai.requests import BaseRequestHandler, ProviderResult, RequestParams
from storyloom.domain.ai.retry import RetryPolicy

__all__ = (
    "AIError",
    "BaseAIServiceAdapter",
    "BaseConnectionManager",
    "BaseErrorProcessor",
    "BaseRequestHandler",
    "ErrorContext",
    "ErrorMetadata",
    "ProcessedError",
    "ProviderResult",
    "RequestParams",
    "RetryPolicy",
)
