"""
Core Infrastructure for tts-proxy.

This package provides foundational components:
    - config.py: Configuration loading and validation
    - logging/: Structured logging with numeric levels and secret redaction
    - metrics.py: Prometheus metrics collection
"""
