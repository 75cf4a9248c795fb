"""Enumerations shared by the AI service layer."""

from __future__ import annotations

from enum import IntEnum, StrEnum


class ConnectionStatus(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class AdapterState(StrEnum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    ENSURING_CONNECTION = "ensuring_connection"


class ErrorSeverity(StrEnum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


class ErrorCategory(StrEnum):
    SYSTEM = "system"
    NETWORK = "network"
    AI_SERVICE = "ai_service"
    VALIDATION = "validation"
    CONFIG = "config"


class RecoveryStrategy(StrEnum):
    RETRY = "retry"
    FALLBACK = "fallback"
    RESET = "reset"
    IGNORE = "ignore"
    USER_ACTION = "user_action"


class RetryStrategy(StrEnum):
    NONE = "none"
    IMMEDIATE = "immediate"
    FIXED_DELAY = "fixed_delay"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"
    CUSTOM = "custom"


class CompatibilityMode(StrEnum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    NATIVE = "native"


class ErrorCode(IntEnum):
    """Numeric error taxonomy grouped by range.

    1000-1009 generic, 1010-1019 network, 3000-3199 AI service,
    3200-3999 data validation, 4000-4999 configuration.
    """

    UNKNOWN_ERROR = 1000
    INVALID_PARAMETER = 1001
    OPERATION_TIMEOUT = 1005

    CONNECTION_FAILED = 1010
    CONNECTION_TIMEOUT = 1011
    DNS_RESOLUTION_FAILED = 1012
    SSL_HANDSHAKE_FAILED = 1013
    PROXY_ERROR = 1014
    NETWORK_UNREACHABLE = 1015
    CONNECTION_RESET = 1016
    TOO_MANY_REQUESTS = 1017
    BANDWIDTH_EXCEEDED = 1018
    FIREWALL_BLOCKED = 1019

    API_KEY_INVALID = 3000
    API_KEY_EXPIRED = 3001
    AI_QUOTA_EXCEEDED = 3002
    RATE_LIMIT_EXCEEDED = 3003
    MODEL_NOT_AVAILABLE = 3004
    SERVICE_UNAVAILABLE = 3005
    INVALID_PARAMETERS = 3006
    CONTENT_FILTERED = 3007
    TOKEN_LIMIT_EXCEEDED = 3008
    REGION_NOT_SUPPORTED = 3009

    DEEPSEEK_REASONING_FAILED = 3010
    DEEPSEEK_CACHE_ERROR = 3011
    DEEPSEEK_COMPATIBILITY_ERROR = 3012
    DEEPSEEK_TOKEN_CALC_ERROR = 3013
    DEEPSEEK_INVALID_API_KEY = 3014
    DEEPSEEK_RATE_LIMIT_EXCEEDED = 3015

    INVALID_JSON = 3200
    MISSING_REQUIRED_FIELD = 3201
    FIELD_TYPE_MISMATCH = 3202
    FIELD_VALUE_INVALID = 3203
    STRUCTURE_INVALID = 3204
    ENCODING_ERROR = 3205
    CONTENT_TRUNCATED = 3206
    LANGUAGE_DETECTION_FAILED = 3207
    SYNONYM_MAPPING_FAILED = 3208
    FALLBACK_PARSE_FAILED = 3209

    CONFIG_ERROR = 4000
    INVALID_CONFIG_FORMAT = 4001
    CONFIG_NOT_FOUND = 4002
    CONFIG_VALIDATION_FAILED = 4003
    INCOMPATIBLE_CONFIG_VERSION = 4004


__all__ = (
    "AdapterState",
    "CompatibilityMode",
    "ConnectionStatus",
    "ErrorCategory",
    "ErrorCode",
    "ErrorSeverity",
    "RecoveryStrategy",
    "RetryStrategy",
)
