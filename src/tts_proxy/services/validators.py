"""
Input Validation for the Speech Pipeline.

This module turns raw request fields into an immutable ValidatedRequest.
Validation happens before quota accounting and before the upstream call so
bad requests never cost the caller anything.

Validation Rules (applied in order, first failure wins):
    1. Text: required, 10-4096 UTF-16 code units after trimming
    2. Voice: one of the 11 provider voices
    3. Speed: optional, 0.25-4.0 (default 1.0)
    4. Format: optional, one of mp3/wav/opus/aac/flac/pcm (default mp3)
    5. Instructions: optional, trimmed, at most 1000 characters
    6. Spam: long single-character runs or a word repeated 11+ times

Error Handling:
    All validation functions raise ValidationError with:
        - message: Human-readable error description
        - code: Machine-readable error code (e.g., "TEXT_TOO_LONG")

Usage:
    from tts_proxy.services.validators import RawSpeechRequest, validate_and_sanitize

    validated = validate_and_sanitize(RawSpeechRequest(input=text, voice="coral"))
    print(validated.character_count, validated.language)
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any, Optional

from tts_proxy.services.errors import ErrorCode, ErrorMessage, ValidationError

MIN_TEXT_LENGTH = 10
MAX_TEXT_LENGTH = 4096          # Provider input limit
MIN_SPEED = 0.25
MAX_SPEED = 4.0
DEFAULT_SPEED = 1.0
MAX_INSTRUCTIONS_LENGTH = 1000

VALID_VOICES = (
    "alloy",
    "ash",
    "ballad",
    "coral",
    "echo",
    "fable",
    "onyx",
    "nova",
    "sage",
    "shimmer",
    "verse",
)

# First entry is the default
VALID_FORMATS = ("mp3", "wav", "opus", "aac", "flac", "pcm")
DEFAULT_FORMAT = VALID_FORMATS[0]

SPAM_PATTERNS = (
    re.compile(r"(.)\1{20,}"),                  # same character 21+ times
    re.compile(r"(\b\w+\b)(?:\s+\1\b){10,}"),   # same word 11+ times
)

_ARABIC = re.compile(r"[\u0600-\u06FF]")
_LATIN = re.compile(r"[a-zA-Z]")
_WHITESPACE = re.compile(r"\s")


@dataclass
class RawSpeechRequest:
    """
    Request fields as received from the transport, before validation.

    Speed may arrive as a string from form or query parameters.
    """
    input: Optional[str]
    voice: Optional[str]
    speed: Any = None
    format: Optional[str] = None
    instructions: Optional[str] = None


@dataclass(frozen=True)
class ValidatedRequest:
    """
    Sanitized request ready for quota accounting and synthesis.

    Attributes:
        text: Trimmed input text.
        voice: Provider voice id.
        speed: Playback speed multiplier.
        format: Output container/codec.
        instructions: Optional delivery instructions, None when absent.
        character_count: Non-whitespace characters charged against quota.
        language: "en", "ar" or "mixed".
    """
    text: str
    voice: str
    speed: float
    format: str
    instructions: Optional[str]
    character_count: int
    language: str


def text_length(text: str) -> int:
    """Length in UTF-16 code units, the unit the provider limit is stated in."""
    return len(text.encode("utf-16-le", errors="surrogatepass")) // 2


def validate_text(text: Optional[str]) -> str:
    """
    Trim text and enforce the length bounds.

    Raises:
        ValidationError: TEXT_REQUIRED, TEXT_TOO_SHORT or TEXT_TOO_LONG.
    """
    if text is None or not isinstance(text, str):
        raise ValidationError(ErrorMessage.TEXT_REQUIRED, ErrorCode.TEXT_REQUIRED)

    trimmed = text.strip()
    length = text_length(trimmed)
    if length < MIN_TEXT_LENGTH:
        raise ValidationError(ErrorMessage.TEXT_TOO_SHORT, ErrorCode.TEXT_TOO_SHORT)
    if length > MAX_TEXT_LENGTH:
        raise ValidationError(ErrorMessage.TEXT_TOO_LONG, ErrorCode.TEXT_TOO_LONG)
    return trimmed


def validate_voice(voice: Optional[str]) -> str:
    if voice not in VALID_VOICES:
        raise ValidationError(ErrorMessage.INVALID_VOICE, ErrorCode.INVALID_VOICE)
    return voice


def validate_speed(speed: Any) -> float:
    """
    Parse and bound-check a speed multiplier.

    Args:
        speed: Number or numeric string; None means "use the default".

    Raises:
        ValidationError: INVALID_SPEED for non-numeric or out-of-range values.
    """
    if speed is None:
        return DEFAULT_SPEED
    if isinstance(speed, bool):
        raise ValidationError(ErrorMessage.INVALID_SPEED, ErrorCode.INVALID_SPEED)
    try:
        value = float(speed)
    except (TypeError, ValueError):
        raise ValidationError(ErrorMessage.INVALID_SPEED, ErrorCode.INVALID_SPEED)
    if math.isnan(value) or not (MIN_SPEED <= value <= MAX_SPEED):
        raise ValidationError(ErrorMessage.INVALID_SPEED, ErrorCode.INVALID_SPEED)
    return value


def validate_format(fmt: Optional[str]) -> str:
    if fmt is None or fmt == "":
        return DEFAULT_FORMAT
    if fmt not in VALID_FORMATS:
        raise ValidationError(ErrorMessage.INVALID_FORMAT, ErrorCode.INVALID_FORMAT)
    return fmt


def validate_instructions(instructions: Optional[str]) -> Optional[str]:
    """Trim instructions; empty becomes None."""
    if not instructions:
        return None
    trimmed = instructions.strip()
    if not trimmed:
        return None
    if len(trimmed) > MAX_INSTRUCTIONS_LENGTH:
        raise ValidationError(ErrorMessage.INSTRUCTIONS_TOO_LONG, ErrorCode.INSTRUCTIONS_TOO_LONG)
    return trimmed


def detect_spam(text: str) -> bool:
    return any(pattern.search(text) for pattern in SPAM_PATTERNS)


def detect_language(text: str) -> str:
    has_arabic = _ARABIC.search(text) is not None
    has_latin = _LATIN.search(text) is not None
    if has_arabic and has_latin:
        return "mixed"
    if has_arabic:
        return "ar"
    return "en"


def count_characters(text: str) -> int:
    """Characters charged against quota: everything except whitespace."""
    return len(_WHITESPACE.sub("", text))


def validate_and_sanitize(raw: RawSpeechRequest) -> ValidatedRequest:
    """
    Validate every field of a raw request and compute derived facts.

    Pure function: no logging, no side effects.

    Raises:
        ValidationError: On the first rule that fails.
    """
    text = validate_text(raw.input)
    voice = validate_voice(raw.voice)
    speed = validate_speed(raw.speed)
    fmt = validate_format(raw.format)
    instructions = validate_instructions(raw.instructions)

    if detect_spam(text):
        raise ValidationError(ErrorMessage.SPAM, ErrorCode.VALIDATION_ERROR)

    return ValidatedRequest(
        text=text,
        voice=voice,
        speed=speed,
        format=fmt,
        instructions=instructions,
        character_count=count_characters(text),
        language=detect_language(text),
    )
