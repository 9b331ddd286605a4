"""
Error Taxonomy for the Speech Pipeline.

Every failure the pipeline can surface is an AppError carrying:
    - message: Human-readable description (safe to show to the caller)
    - code: Stable machine-readable code for programmatic handling
    - status_code: HTTP status the API layer responds with

    ValidationError     400  caller must change the input
    RateLimitError      429  caller must wait retry_after_seconds
    QuotaExceededError  403  plan upgrade or period reset needed
    UpstreamError       provider status or 500, already retried internally
    InternalError       500  unexpected fault

Response Format:
    {
        "error": {
            "message": "Text must be at least 10 characters long",
            "code": "TEXT_TOO_SHORT",
            "statusCode": 400
        }
    }
"""
from __future__ import annotations

from typing import Any, Dict


class ErrorCode:
    """Machine-readable error codes returned in error payloads."""
    VALIDATION_ERROR = "VALIDATION_ERROR"
    TEXT_REQUIRED = "TEXT_REQUIRED"
    TEXT_TOO_SHORT = "TEXT_TOO_SHORT"
    TEXT_TOO_LONG = "TEXT_TOO_LONG"
    INVALID_VOICE = "INVALID_VOICE"
    INVALID_SPEED = "INVALID_SPEED"
    INVALID_FORMAT = "INVALID_FORMAT"
    INSTRUCTIONS_TOO_LONG = "INSTRUCTIONS_TOO_LONG"
    RATE_LIMIT_ERROR = "RATE_LIMIT_ERROR"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorMessage:
    """User-facing messages shared by the validator and the API layer."""
    TEXT_REQUIRED = "Please enter valid text (10-4096 characters)"
    TEXT_TOO_SHORT = "Text must be at least 10 characters long"
    TEXT_TOO_LONG = "Text must not exceed 4096 characters"
    INVALID_VOICE = "Please select a valid voice"
    INVALID_SPEED = "Speed must be between 0.25 and 4.0"
    INVALID_FORMAT = "Invalid audio format selected"
    INSTRUCTIONS_TOO_LONG = "Instructions must not exceed 1000 characters"
    SPAM = "Text contains spam patterns"
    UPSTREAM_FAILED = "Failed to generate speech after multiple attempts"
    INTERNAL = "An unexpected error occurred"


class AppError(Exception):
    """
    Base exception for every error the pipeline surfaces to callers.

    Attributes:
        message: Human-readable error message.
        code: Value from ErrorCode.
        status_code: HTTP status for the response.
    """

    def __init__(self, message: str, code: str = ErrorCode.INTERNAL_ERROR, status_code: int = 500):
        self.message = message
        self.code = code
        self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the structured error payload."""
        return {
            "error": {
                "message": self.message,
                "code": self.code,
                "statusCode": self.status_code,
            }
        }

    def headers(self) -> Dict[str, str]:
        """Extra response headers for this error."""
        return {}


class ValidationError(AppError):
    """Raised when a request field fails validation."""

    def __init__(self, message: str, code: str = ErrorCode.VALIDATION_ERROR):
        super().__init__(message, code, 400)


class RateLimitError(AppError):
    """Raised when an identity has used up its current rate window."""

    def __init__(self, retry_after_seconds: int, limiter: str = ""):
        self.retry_after_seconds = retry_after_seconds
        self.limiter = limiter
        super().__init__(
            f"Too many requests. Please try again in {retry_after_seconds} seconds.",
            ErrorCode.RATE_LIMIT_ERROR,
            429,
        )

    def headers(self) -> Dict[str, str]:
        return {"Retry-After": str(self.retry_after_seconds)}


class QuotaExceededError(AppError):
    """Raised when a request would push a user past the monthly character limit."""

    def __init__(self, remaining: int):
        self.remaining = remaining
        super().__init__(
            f"Monthly character limit reached. You have {remaining} characters "
            f"remaining. Upgrade to continue.",
            ErrorCode.QUOTA_EXCEEDED,
            403,
        )


class UpstreamError(AppError):
    """Raised when the speech provider fails or cannot be reached."""

    def __init__(self, status_code: int = 500, message: str = ErrorMessage.UPSTREAM_FAILED, attempts: int = 0):
        self.attempts = attempts
        super().__init__(message, ErrorCode.UPSTREAM_ERROR, status_code)


class InternalError(AppError):
    """Unexpected fault; the message never carries internal details."""

    def __init__(self, message: str = ErrorMessage.INTERNAL):
        super().__init__(message, ErrorCode.INTERNAL_ERROR, 500)
