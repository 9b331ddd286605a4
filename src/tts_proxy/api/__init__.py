"""
FastAPI REST API Layer for tts-proxy.

This package defines all HTTP endpoints:
    - routes.py: /api/generate, /api/health, /api/quota, /metrics
    - schemas.py: Response Pydantic models
    - dependencies.py: FastAPI dependency injection
"""
