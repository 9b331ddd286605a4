"""
Speech Provider Client.

Wraps an OpenAI-compatible ``/v1/audio/speech`` endpoint behind a single
coroutine that retries transient failures and hands back a live audio
stream.

Retry Policy:
    - attempts = max_retries + 1 (default 3)
    - before attempt n+1 the client sleeps retry_base_delay_s * n
    - provider status < 500        -> TERMINAL, raised at once with that status
    - provider status >= 500       -> RETRYABLE
    - transport error / timeout    -> RETRYABLE
    - 2xx with an empty body       -> RETRYABLE
    - retries exhausted            -> UpstreamError(500), last failure logged

The audio body is never buffered: the first chunk is read to make sure the
provider actually sent audio, then the open response is wrapped in an
AudioStream that the HTTP layer drains. Closing the stream (or cancelling the
task reading it) closes the upstream connection.

Usage:
    client = SynthesisClient(config.upstream)
    result = await client.generate(validated)
    async for chunk in result.audio:
        ...
    await client.aclose()
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional

import httpx

from tts_proxy.core.config import UpstreamConfig
from tts_proxy.core.logging import error, get_logger, success, verbose, warn
from tts_proxy.core.metrics import metrics
from tts_proxy.services.errors import ErrorMessage, UpstreamError
from tts_proxy.services.validators import ValidatedRequest
from tts_proxy.upstream.formats import content_type_for, generate_filename

_LOG = get_logger("tts-proxy.upstream")

HEALTH_CHECK_INPUT = "test"
HEALTH_CHECK_VOICE = "alloy"
HEALTH_CHECK_FORMAT = "mp3"

# Provider error bodies are logged, truncated
_MAX_ERROR_BODY = 300


class FailureKind(str, Enum):
    RETRYABLE = "retryable"
    TERMINAL = "terminal"


def classify_status(status: int) -> FailureKind:
    """Classify a non-2xx provider status."""
    return FailureKind.RETRYABLE if status >= 500 else FailureKind.TERMINAL


class AttemptFailed(Exception):
    """One failed upstream attempt, tagged with how to react to it."""

    def __init__(self, kind: FailureKind, detail: str, status: Optional[int] = None):
        self.kind = kind
        self.detail = detail
        self.status = status
        super().__init__(detail)


class AudioStream:
    """
    Async byte iterator over an open provider response.

    Yields the peeked first chunk, then the rest of the body. The underlying
    response is closed when iteration ends, fails or is abandoned.
    """

    def __init__(self, response: httpx.Response, first_chunk: bytes, chunks: AsyncIterator[bytes]):
        self._response = response
        self._first_chunk = first_chunk
        self._chunks = chunks
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def __aiter__(self) -> AsyncIterator[bytes]:
        try:
            yield self._first_chunk
            async for chunk in self._chunks:
                if chunk:
                    yield chunk
        finally:
            await self.aclose()

    async def read(self) -> bytes:
        """Drain the whole stream into memory."""
        parts = []
        async for chunk in self:
            parts.append(chunk)
        return b"".join(parts)

    async def aclose(self) -> None:
        if not self._closed:
            self._closed = True
            await self._response.aclose()


@dataclass
class SynthesisResult:
    """Successful synthesis: the live audio plus response metadata."""
    audio: AudioStream
    mime_type: str
    filename: str


def build_payload(
    model: str,
    text: str,
    voice: str,
    fmt: str,
    speed: float,
    instructions: Optional[str] = None,
) -> Dict[str, Any]:
    """JSON body for the provider; ``instructions`` only when present."""
    payload: Dict[str, Any] = {
        "model": model,
        "input": text,
        "voice": voice,
        "response_format": fmt,
        "speed": speed,
    }
    if instructions:
        payload["instructions"] = instructions
    return payload


class SynthesisClient:
    """
    Retrying client for the speech provider.

    Args:
        config: Upstream endpoint, credentials and retry policy.
        transport: Optional httpx transport (tests pass httpx.MockTransport).
        sleep: Coroutine used for backoff delays.
    """

    def __init__(
        self,
        config: UpstreamConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config
        self._sleep = sleep
        self._http = httpx.AsyncClient(
            transport=transport,
            timeout=httpx.Timeout(config.timeout_s),
        )

    @property
    def configured(self) -> bool:
        return bool(self.config.api_key)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }

    async def _attempt(self, payload: Dict[str, Any], timeout: float) -> AudioStream:
        """
        Send one request and return the opened stream.

        Raises:
            AttemptFailed: Classified failure of this attempt.
        """
        request = self._http.build_request(
            "POST",
            self.config.api_url,
            json=payload,
            headers=self._headers(),
            timeout=timeout,
        )
        try:
            response = await self._http.send(request, stream=True)
        except httpx.TransportError as e:
            raise AttemptFailed(FailureKind.RETRYABLE, f"{type(e).__name__}: {e}")

        try:
            if response.status_code >= 300:
                body = (await response.aread())[:_MAX_ERROR_BODY]
                raise AttemptFailed(
                    classify_status(response.status_code),
                    body.decode("utf-8", errors="replace"),
                    status=response.status_code,
                )

            chunks = response.aiter_bytes()
            first = b""
            async for chunk in chunks:
                if chunk:
                    first = chunk
                    break
            if not first:
                raise AttemptFailed(FailureKind.RETRYABLE, "empty response body", status=response.status_code)
        except httpx.TransportError as e:
            await response.aclose()
            raise AttemptFailed(FailureKind.RETRYABLE, f"{type(e).__name__}: {e}")
        except BaseException:
            await response.aclose()
            raise

        return AudioStream(response, first, chunks)

    async def generate(self, request: ValidatedRequest) -> SynthesisResult:
        """
        Synthesize ``request`` and return the live audio stream.

        Raises:
            UpstreamError: Provider not configured (503), terminal provider
                status, or retries exhausted (500).
        """
        if not self.configured:
            error(_LOG, "upstream_not_configured")
            raise UpstreamError(503, "Speech provider is not configured")

        payload = build_payload(
            self.config.model,
            request.text,
            request.voice,
            request.format,
            request.speed,
            request.instructions,
        )
        attempts = self.config.max_retries + 1
        last: Optional[AttemptFailed] = None

        for attempt in range(1, attempts + 1):
            t0 = time.perf_counter()
            try:
                stream = await self._attempt(payload, self.config.timeout_s)
            except AttemptFailed as e:
                last = e
                metrics.record_upstream_attempt(e.kind.value)
                if e.kind is FailureKind.TERMINAL:
                    warn(_LOG, "upstream_rejected", attempt=attempt, status=e.status, detail=e.detail)
                    raise UpstreamError(
                        e.status or 500,
                        f"Speech provider rejected the request ({e.status})",
                        attempts=attempt,
                    )

                if attempt < attempts:
                    delay = self.config.retry_base_delay_s * attempt
                    warn(_LOG, "upstream_retry", attempt=attempt, status=e.status, detail=e.detail, delay=delay)
                    await self._sleep(delay)
                continue

            metrics.record_upstream_attempt("ok")
            success(
                _LOG,
                "upstream_ok",
                attempt=attempt,
                seconds=time.perf_counter() - t0,
                format=request.format,
            )
            return SynthesisResult(
                audio=stream,
                mime_type=content_type_for(request.format),
                filename=generate_filename(request.voice, request.format),
            )

        error(
            _LOG,
            "upstream_failed",
            attempt=attempts,
            status=last.status if last else None,
            detail=last.detail if last else None,
        )
        raise UpstreamError(500, ErrorMessage.UPSTREAM_FAILED, attempts=attempts)

    async def health_check(self) -> bool:
        """
        Probe the provider with a minimal request.

        One attempt, no retries; the audio is discarded unread. Never raises.
        """
        if not self.configured:
            metrics.set_upstream_healthy(False)
            return False

        payload = build_payload(
            self.config.model,
            HEALTH_CHECK_INPUT,
            HEALTH_CHECK_VOICE,
            HEALTH_CHECK_FORMAT,
            1.0,
        )
        healthy = False
        try:
            stream = await self._attempt(payload, self.config.health_timeout_s)
            await stream.aclose()
            healthy = True
        except AttemptFailed as e:
            verbose(_LOG, "health_probe_failed", status=e.status, detail=e.detail)
        except Exception as e:
            warn(_LOG, "health_probe_error", error=str(e))

        metrics.set_upstream_healthy(healthy)
        return healthy

    async def aclose(self) -> None:
        await self._http.aclose()
