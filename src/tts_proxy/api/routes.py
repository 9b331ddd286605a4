"""
tts-proxy API Routes.

Endpoints:
    GET|POST /api/generate  - Synthesize speech, streams audio back
    GET      /api/health    - Speech provider reachability
    GET      /api/quota     - Caller's monthly character quota
    GET      /metrics       - Prometheus metrics

Request Flow (/api/generate):
    1. Assign a request ID for log correlation
    2. Resolve caller identity (address + anonymous cookie)
    3. Read fields from the form body (POST) or query string (GET)
    4. Run the SpeechPipeline
    5. Stream the provider's audio with metadata headers

Fields:
    input   text to speak (required)
    voice   provider voice id (required)
    speed   0.25-4.0 (optional)
    format  mp3/wav/opus/aac/flac/pcm (optional)
    prompt  delivery instructions (optional)

Error Handling:
    Every failure is JSON with the AppError payload and the matching HTTP
    status:
    {
        "error": {
            "message": "Too many requests. Please try again in 42 seconds.",
            "code": "RATE_LIMIT_ERROR",
            "statusCode": 429
        }
    }
    429 responses carry Retry-After. Unexpected failures become 500
    INTERNAL_ERROR without internal details.

Example:
    curl -X POST http://localhost:8000/api/generate \\
        -F input="Hello there, how are you today?" -F voice=coral \\
        --output speech.mp3
"""
from __future__ import annotations

import time
import uuid
from typing import Mapping, Optional

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask

from tts_proxy.api.dependencies import get_config, get_speech_pipeline
from tts_proxy.api.schemas import ErrorResponse, HealthResponse, HealthServices, QuotaSnapshot
from tts_proxy.core.config import ProxyConfig
from tts_proxy.core.logging import error, get_logger, set_request_id
from tts_proxy.core.metrics import metrics
from tts_proxy.services.errors import AppError, InternalError
from tts_proxy.services.identity import CallerIdentity, resolve_identity
from tts_proxy.services.pipeline import GENERATE_ENDPOINT, SpeechPipeline
from tts_proxy.services.validators import RawSpeechRequest

router = APIRouter()

_LOG = get_logger("tts-proxy.api")


def _new_request_id() -> str:
    rid = uuid.uuid4().hex[:12]
    set_request_id(rid)
    return rid


def _error_response(exc: AppError, rid: str) -> JSONResponse:
    headers = dict(exc.headers())
    headers["X-Request-Id"] = rid
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


def _set_identity_cookie(response: Response, identity: CallerIdentity, config: ProxyConfig) -> None:
    if not identity.user_is_new:
        return
    response.set_cookie(
        key=config.identity.cookie_name,
        value=identity.user_id,
        max_age=config.identity.cookie_max_age_s,
        httponly=True,
        samesite="lax",
        secure=config.identity.secure_cookies,
    )


def _field(source: Mapping[str, object], name: str) -> Optional[str]:
    # Missing and blank fields both count as absent
    value = source.get(name)
    if value is None:
        return None
    value = str(value)
    return value if value.strip() else None


async def _read_fields(request: Request) -> RawSpeechRequest:
    if request.method == "GET":
        source: Mapping[str, object] = request.query_params
    else:
        source = await request.form()
    return RawSpeechRequest(
        input=_field(source, "input"),
        voice=_field(source, "voice"),
        speed=_field(source, "speed"),
        format=_field(source, "format"),
        instructions=_field(source, "prompt"),
    )


_ERROR_RESPONSES = {
    status: {"model": ErrorResponse}
    for status in (400, 403, 429, 500, 502, 503)
}


@router.api_route(
    "/api/generate",
    methods=["GET", "POST"],
    response_class=Response,
    responses=_ERROR_RESPONSES,
)
async def generate(
    request: Request,
    pipeline: SpeechPipeline = Depends(get_speech_pipeline),
    config: ProxyConfig = Depends(get_config),
):
    """
    Synthesize speech and stream the audio.

    Returns:
        StreamingResponse with headers:
            - Content-Type: MIME type of the requested format
            - Content-Disposition: inline; filename="tts-<voice>-<ms>.<fmt>"
            - Cache-Control: no-cache
            - X-Character-Count: characters charged against quota
            - X-Language: en, ar or mixed
            - X-Request-Id: request identifier for tracing

    Raises (as JSON errors):
        400: Validation failure
        403: Monthly quota exceeded
        429: Rate limited
        5xx / provider 4xx: Upstream failure
        500: Internal error
    """
    rid = _new_request_id()
    identity = resolve_identity(request.headers, request.cookies, config.identity.cookie_name)

    try:
        raw = await _read_fields(request)
        outcome = await pipeline.run(raw, identity, endpoint=GENERATE_ENDPOINT)
    except AppError as e:
        response = _error_response(e, rid)
        _set_identity_cookie(response, identity, config)
        return response
    except Exception:
        # Failure outside the pipeline, e.g. an unreadable request body
        error(_LOG, "generate_crashed", endpoint=GENERATE_ENDPOINT, identity=identity.kind, exc_info=True)
        response = _error_response(InternalError(), rid)
        _set_identity_cookie(response, identity, config)
        return response

    result = outcome.result
    headers = {
        "Content-Disposition": f'inline; filename="{result.filename}"',
        "Cache-Control": "no-cache",
        "X-Character-Count": str(outcome.request.character_count),
        "X-Language": outcome.request.language,
        "X-Request-Id": rid,
    }
    response = StreamingResponse(
        result.audio,
        media_type=result.mime_type,
        headers=headers,
        background=BackgroundTask(result.audio.aclose),
    )
    _set_identity_cookie(response, identity, config)
    outcome.run.mark_responded()
    return response


@router.get("/api/health", response_model=HealthResponse)
async def health(pipeline: SpeechPipeline = Depends(get_speech_pipeline)):
    """
    Speech provider health probe.

    Sends one minimal synthesis request; never touches rate limits or quota.
    Answers 200 when the provider is healthy and 503 otherwise.
    """
    timestamp = int(time.time() * 1000)
    try:
        healthy = await pipeline.client.health_check()
        status = "ok" if healthy else "degraded"
    except Exception:
        error(_LOG, "health_check_crashed", exc_info=True)
        healthy, status = False, "down"

    body = HealthResponse(
        status=status,
        timestamp=timestamp,
        services=HealthServices(upstream=healthy),
    )
    return JSONResponse(status_code=200 if healthy else 503, content=body.model_dump())


@router.get("/api/quota", response_model=QuotaSnapshot)
def quota(
    request: Request,
    pipeline: SpeechPipeline = Depends(get_speech_pipeline),
    config: ProxyConfig = Depends(get_config),
):
    """Caller's quota for the current monthly period."""
    _new_request_id()
    identity = resolve_identity(request.headers, request.cookies, config.identity.cookie_name)
    snapshot = QuotaSnapshot(**pipeline.quota.snapshot(identity.user_id))
    response = JSONResponse(content=snapshot.model_dump())
    _set_identity_cookie(response, identity, config)
    return response


@router.get("/metrics")
def prometheus_metrics():
    """Prometheus metrics in text exposition format."""
    content, content_type = metrics.get_metrics_response()
    return Response(content=content, media_type=content_type)
