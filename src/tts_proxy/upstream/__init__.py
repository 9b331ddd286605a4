"""
Speech Provider Integration.

    - client.py: Retrying async client for the provider's speech endpoint
    - formats.py: MIME types and download filenames per audio format
"""
from .client import (
    AudioStream,
    FailureKind,
    SynthesisClient,
    SynthesisResult,
    build_payload,
    classify_status,
)
from .formats import MIME_TYPES, content_type_for, generate_filename

__all__ = [
    "SynthesisClient",
    "SynthesisResult",
    "AudioStream",
    "FailureKind",
    "classify_status",
    "build_payload",
    "MIME_TYPES",
    "content_type_for",
    "generate_filename",
]
