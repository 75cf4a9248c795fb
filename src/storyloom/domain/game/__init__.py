"""Reconciliation of free-form model output into validated game state."""

from __future__ import annotations

from storyloom.domain.game.formatter import DataFormatter, FormatResult
from storyloom.domain.game.parser import ParseResult, ResponseParser
from storyloom.domain.game.processor import DataProcessor, ProcessOptions, ProcessPhase, ProcessResult
from storyloom.domain.game.prompts import PromptBuilder, estimate_tokens
from storyloom.domain.game.validator import DataValidator, ValidationResult

__all__ = (
    "DataFormatter",
    "DataProcessor",
    "DataValidator",
    "FormatResult",
    "ParseResult",
    "ProcessOptions",
    "ProcessPhase",
    "ProcessResult",
    "PromptBuilder",
    "ResponseParser",
    "ValidationResult",
    "estimate_tokens",
)
