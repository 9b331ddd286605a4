"""
tts-proxy Services Layer.

Business logic between the HTTP layer and the speech provider.

Components:
    - validators.py: Input validation and derived request facts
    - errors.py: AppError hierarchy and error codes
    - identity.py: Anonymous caller identification
    - pipeline.py: SpeechPipeline (request orchestrator)

The pipeline is imported from its module directly
(``from tts_proxy.services.pipeline import SpeechPipeline``) since it pulls
in the limits and upstream packages.
"""
from .errors import (
    AppError,
    ErrorCode,
    ErrorMessage,
    InternalError,
    QuotaExceededError,
    RateLimitError,
    UpstreamError,
    ValidationError,
)
from .validators import RawSpeechRequest, ValidatedRequest, validate_and_sanitize

__all__ = [
    "AppError",
    "ErrorCode",
    "ErrorMessage",
    "ValidationError",
    "RateLimitError",
    "QuotaExceededError",
    "UpstreamError",
    "InternalError",
    "RawSpeechRequest",
    "ValidatedRequest",
    "validate_and_sanitize",
]
