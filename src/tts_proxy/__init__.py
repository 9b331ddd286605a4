"""
tts-proxy: Rate-limited, quota-aware text-to-speech proxy.

Accepts text from anonymous web callers, validates it, applies per-address
and per-user rate limits and a monthly character quota, then relays the
request to an OpenAI-compatible speech provider and streams the audio back.

Key Features:
    - GET/POST /api/generate with streamed audio responses
    - Fixed-window rate limiting per address and per anonymous user
    - Monthly character quotas with FREE/BASIC/PRO tiers
    - Retrying provider client with linear backoff
    - Prometheus metrics and structured JSONL logging

Example Usage:
    >>> from tts_proxy.services.validators import RawSpeechRequest, validate_and_sanitize
    >>> req = validate_and_sanitize(RawSpeechRequest(input="Hello there, friend.", voice="coral"))
    >>> req.character_count
    18
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
