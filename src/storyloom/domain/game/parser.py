"""Extract JSON game payloads from free-form model output."""

from __future__ import annotations

import json
import re
import time
from dataclasses import dataclass
from typing import Any

import structlog

from storyloom.domain.game.schemas import DEEPSEEK_PROVIDER, OPTION_IDS

logger = structlog.get_logger(__name__)

JSON_FENCE_PATTERN = re.compile(r"```json\s*(.*?)\s*```", re.DOTALL | re.IGNORECASE)
CODE_FENCE_PATTERN = re.compile(r"```[a-zA-Z]*\s*(.*?)\s*```", re.DOTALL)
REASONING_TAG_PATTERN = re.compile(r"<reasoning>.*?</reasoning>", re.DOTALL | re.IGNORECASE)

TRAILING_COMMA_PATTERN = re.compile(r",(\s*[}\]])")
BLOCK_COMMENT_PATTERN = re.compile(r"/\*.*?\*/", re.DOTALL)
LINE_COMMENT_PATTERN = re.compile(r"(?<![:\"'])//[^\n]*")
BARE_KEY_PATTERN = re.compile(r"([{,])\s*([A-Za-z_][A-Za-z0-9_]*)\s*:")


@dataclass(slots=True)
class ParseError:
    code: str
    message: str
    phase: str
    raw_content: str | None = None


@dataclass(slots=True)
class ParseMetadata:
    extraction_method: str
    auto_fix_applied: bool
    parse_time_ms: float
    original_length: int
    extracted_length: int


@dataclass(slots=True)
class ParseResult:
    success: bool
    data: dict[str, Any] | None = None
    error: ParseError | None = None
    metadata: ParseMetadata | None = None


@dataclass(slots=True)
class _Extraction:
    json_text: str | None
    method: str | None = None
    error: str | None = None


class ResponseParser:
    """Pull a JSON object out of model text, repairing common syntax slips."""

    @classmethod
    def parse_response(
        cls,
        raw_response: str,
        *,
        provider: str | None = DEEPSEEK_PROVIDER,
        enable_auto_fix: bool = True,
        strict_mode: bool = False,
    ) -> ParseResult:
        """Parse ``raw_response`` into a JSON object.

        In strict mode the object must already carry scene, narration and three
        options. Otherwise any object is accepted so the formatter can repair it.
        """
        started = time.perf_counter()
        extraction = cls.extract_json(raw_response, provider)
        if extraction.json_text is None:
            return ParseResult(
                success=False,
                error=ParseError(
                    code="EXTRACTION_FAILED",
                    message=extraction.error or "Unable to locate JSON content",
                    phase="extraction",
                    raw_content=raw_response,
                ),
            )

        auto_fixed = False
        try:
            parsed: Any = json.loads(extraction.json_text)
        except json.JSONDecodeError as exc:
            fixed = cls.try_fix_json(extraction.json_text) if enable_auto_fix else None
            if fixed is None:
                return ParseResult(
                    success=False,
                    error=ParseError(
                        code="PARSE_FAILED",
                        message=str(exc),
                        phase="parsing",
                        raw_content=extraction.json_text,
                    ),
                )
            parsed = json.loads(fixed)
            auto_fixed = True
            logger.debug("Applied JSON auto-fix", method=extraction.method)

        if not isinstance(parsed, dict) or (strict_mode and not cls.is_valid_game_data(parsed)):
            return ParseResult(
                success=False,
                error=ParseError(
                    code="INVALID_STRUCTURE",
                    message="Parsed payload does not have the expected game structure",
                    phase="validation",
                    raw_content=json.dumps(parsed, ensure_ascii=False),
                ),
            )

        return ParseResult(
            success=True,
            data=parsed,
            metadata=ParseMetadata(
                extraction_method=extraction.method or "braces",
                auto_fix_applied=auto_fixed,
                parse_time_ms=(time.perf_counter() - started) * 1000,
                original_length=len(raw_response),
                extracted_length=len(extraction.json_text),
            ),
        )

    @classmethod
    def extract_json(cls, text: str, provider: str | None = None) -> _Extraction:
        match = JSON_FENCE_PATTERN.search(text)
        if match:
            return _Extraction(json_text=match.group(1).strip(), method="markdown")

        match = CODE_FENCE_PATTERN.search(text)
        if match:
            content = match.group(1).strip()
            if content.startswith(("{", "[")):
                return _Extraction(json_text=content, method="codeblock")

        if provider == DEEPSEEK_PROVIDER:
            return cls._extract_braces(REASONING_TAG_PATTERN.sub("", text), "deepseek-reasoning")
        return cls._extract_braces(text, "braces")

    @staticmethod
    def _extract_braces(text: str, method: str) -> _Extraction:
        start = text.find("{")
        if start == -1:
            return _Extraction(json_text=None, error="No JSON object start found")

        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return _Extraction(json_text=text[start : index + 1], method=method)

        return _Extraction(json_text=None, error="Incomplete JSON object (unbalanced braces)")

    @staticmethod
    def try_fix_json(json_text: str) -> str | None:
        """Repair trailing commas, single quotes, comments and bare keys."""
        fixed = TRAILING_COMMA_PATTERN.sub(r"\1", json_text)
        fixed = fixed.replace("'", '"')
        fixed = BLOCK_COMMENT_PATTERN.sub("", fixed)
        fixed = LINE_COMMENT_PATTERN.sub("", fixed)
        fixed = BARE_KEY_PATTERN.sub(r'\1"\2":', fixed)
        fixed = TRAILING_COMMA_PATTERN.sub(r"\1", fixed)
        try:
            json.loads(fixed)
        except json.JSONDecodeError:
            return None
        return fixed

    @staticmethod
    def is_valid_game_data(data: Any) -> bool:
        if not isinstance(data, dict):
            return False
        for key in ("scene", "narration"):
            value = data.get(key)
            if not isinstance(value, str) or not value:
                return False
        options = data.get("options")
        if not isinstance(options, list) or len(options) != len(OPTION_IDS):
            return False
        for option in options:
            if not isinstance(option, dict):
                return False
            if option.get("id") not in OPTION_IDS:
                return False
            text = option.get("text")
            if not isinstance(text, str) or not text:
                return False
        return True


__all__ = (
    "ParseError",
    "ParseMetadata",
    "ParseResult",
    "ResponseParser",
)
