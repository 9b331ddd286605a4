"""
API Response Schemas.

Pydantic models for the JSON bodies the API returns. The generate endpoint
takes form or query fields and answers with raw audio, so it has no request
model here.

Models:
    ErrorDetail / ErrorResponse: Error payload for every failed request
    HealthServices / HealthResponse: /api/health body
    QuotaSnapshot: /api/quota body

Example Error:
    {
        "error": {
            "message": "Please select a valid voice",
            "code": "INVALID_VOICE",
            "statusCode": 400
        }
    }
"""
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    message: str = Field(..., description="Human-readable error message")
    code: str = Field(..., description="Machine-readable error code")
    statusCode: int = Field(..., description="HTTP status of the response")


class ErrorResponse(BaseModel):
    """Error body shared by every endpoint."""
    error: ErrorDetail


class HealthServices(BaseModel):
    upstream: bool = Field(..., description="True if the speech provider answered the probe")


class HealthResponse(BaseModel):
    """
    Health check result.

    Attributes:
        status: "ok" when the provider is reachable, "degraded" when the
            probe failed, "down" when the check itself crashed.
        timestamp: Epoch milliseconds of the check.
        services: Per-dependency health.
    """
    status: Literal["ok", "degraded", "down"]
    timestamp: int
    services: HealthServices


class QuotaSnapshot(BaseModel):
    """Caller's monthly character quota."""
    enabled: bool
    tier: str
    used: int = Field(..., ge=0)
    limit: int = Field(..., gt=0)
    remaining: int = Field(..., ge=0)
    reset_at: str = Field(..., description="ISO 8601 UTC timestamp of the next reset")
    days_until_reset: int
    usage_fraction: float = Field(..., ge=0.0)
    warning: bool = Field(..., description="True once usage passes the warning threshold")
