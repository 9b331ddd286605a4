"""
Audio format metadata for synthesized responses.
"""
from __future__ import annotations

import time
from typing import Optional

MIME_TYPES = {
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "opus": "audio/opus",
    "aac": "audio/aac",
    "flac": "audio/flac",
    "pcm": "audio/pcm",
}


def content_type_for(fmt: str) -> str:
    """MIME type for a validated output format."""
    try:
        return MIME_TYPES[fmt]
    except KeyError:
        raise ValueError(f"unsupported audio format: {fmt!r}") from None


def generate_filename(voice: str, fmt: str, now: Optional[float] = None) -> str:
    """Download name of the form ``tts-<voice>-<epoch_ms>.<fmt>``."""
    ts = time.time() if now is None else now
    return f"tts-{voice}-{int(ts * 1000)}.{fmt}"
