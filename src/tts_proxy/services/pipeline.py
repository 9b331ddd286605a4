"""
Speech Generation Pipeline.

SpeechPipeline is the single entry point the HTTP layer calls. It admits a
request, synthesizes it and charges the caller, in this order:

    RECEIVED -> RATE_CHECKED -> VALIDATED -> QUOTA_CHECKED
             -> SYNTHESIZED -> QUOTA_CONSUMED -> RESPONDED

Any failure moves the run to ERRORED and re-raises a typed AppError. Rate
limiting runs before validation so malformed floods are still counted.
Quota is charged only after synthesis succeeded, so a failed upstream call
costs the caller nothing. RESPONDED is marked by the HTTP layer once the
response object exists.

Limiter selection:
    - the address limiter applies to every request
    - the user limiter applies when the caller presented an existing
      anonymous token (a freshly minted id has no history to limit)

Usage:
    pipeline = get_pipeline(config)
    outcome = await pipeline.run(raw, identity)
    async for chunk in outcome.result.audio:
        ...
"""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from tts_proxy.core.config import ProxyConfig
from tts_proxy.core.logging import error, get_logger, info, verbose, warn
from tts_proxy.core.metrics import metrics
from tts_proxy.limits.quota import QuotaTracker
from tts_proxy.limits.rate_limiter import FixedWindowRateLimiter
from tts_proxy.services.errors import AppError, InternalError, UpstreamError
from tts_proxy.services.identity import CallerIdentity
from tts_proxy.services.validators import RawSpeechRequest, ValidatedRequest, validate_and_sanitize
from tts_proxy.upstream.client import SynthesisClient, SynthesisResult

_LOG = get_logger("tts-proxy.pipeline")

GENERATE_ENDPOINT = "/api/generate"


class PipelineState(str, Enum):
    RECEIVED = "received"
    RATE_CHECKED = "rate_checked"
    VALIDATED = "validated"
    QUOTA_CHECKED = "quota_checked"
    SYNTHESIZED = "synthesized"
    QUOTA_CONSUMED = "quota_consumed"
    RESPONDED = "responded"
    ERRORED = "errored"


_TERMINAL_STATES = (PipelineState.RESPONDED, PipelineState.ERRORED)

_NEXT_STATE = {
    PipelineState.RECEIVED: PipelineState.RATE_CHECKED,
    PipelineState.RATE_CHECKED: PipelineState.VALIDATED,
    PipelineState.VALIDATED: PipelineState.QUOTA_CHECKED,
    PipelineState.QUOTA_CHECKED: PipelineState.SYNTHESIZED,
    PipelineState.SYNTHESIZED: PipelineState.QUOTA_CONSUMED,
    PipelineState.QUOTA_CONSUMED: PipelineState.RESPONDED,
}


class InvalidTransition(RuntimeError):
    """Raised when a run is moved out of order."""


@dataclass
class PipelineRun:
    """State history of one request through the pipeline."""
    state: PipelineState = PipelineState.RECEIVED
    history: List[PipelineState] = field(default_factory=lambda: [PipelineState.RECEIVED])
    started_at: float = field(default_factory=time.perf_counter)
    error: Optional[AppError] = None

    @property
    def finished(self) -> bool:
        return self.state in _TERMINAL_STATES

    def advance(self, state: PipelineState) -> None:
        if self.finished or _NEXT_STATE.get(self.state) is not state:
            raise InvalidTransition(f"cannot move from {self.state.value} to {state.value}")
        self.state = state
        self.history.append(state)
        verbose(_LOG, "pipeline_state", state=state.value)

    def fail(self, exc: AppError) -> None:
        if self.finished:
            raise InvalidTransition(f"cannot fail a run in state {self.state.value}")
        self.error = exc
        self.state = PipelineState.ERRORED
        self.history.append(PipelineState.ERRORED)

    def mark_responded(self) -> None:
        self.advance(PipelineState.RESPONDED)

    def elapsed(self) -> float:
        return time.perf_counter() - self.started_at


@dataclass
class PipelineOutcome:
    """Result of a successful run: the validated request and the live audio."""
    run: PipelineRun
    request: ValidatedRequest
    result: SynthesisResult


class SpeechPipeline:
    """
    Orchestrates admission, synthesis and quota accounting.

    Args:
        ip_limiter: Limiter keyed by network address.
        user_limiter: Limiter keyed by anonymous user id.
        quota: Monthly character tracker keyed by anonymous user id.
        client: Speech provider client.
        validator: Function turning raw fields into a ValidatedRequest.
    """

    def __init__(
        self,
        ip_limiter: FixedWindowRateLimiter,
        user_limiter: FixedWindowRateLimiter,
        quota: QuotaTracker,
        client: SynthesisClient,
        validator: Callable[[RawSpeechRequest], ValidatedRequest] = validate_and_sanitize,
    ):
        self.ip_limiter = ip_limiter
        self.user_limiter = user_limiter
        self.quota = quota
        self.client = client
        self.validator = validator

    @classmethod
    def from_config(cls, config: ProxyConfig) -> "SpeechPipeline":
        rl = config.rate_limit
        return cls(
            ip_limiter=FixedWindowRateLimiter(
                "ip", rl.ip_max_requests, rl.ip_window_s, sweep_interval_s=rl.sweep_interval_s
            ),
            user_limiter=FixedWindowRateLimiter(
                "user", rl.user_max_requests, rl.user_window_s, sweep_interval_s=rl.sweep_interval_s
            ),
            quota=QuotaTracker(
                enabled=config.quota.enabled,
                tier_limits=config.quota.tier_limits,
                sweep_interval_s=config.quota.sweep_interval_s,
                warning_threshold=config.quota.warning_threshold,
            ),
            client=SynthesisClient(config.upstream),
        )

    async def run(
        self,
        raw: RawSpeechRequest,
        identity: CallerIdentity,
        endpoint: str = GENERATE_ENDPOINT,
        run: Optional[PipelineRun] = None,
    ) -> PipelineOutcome:
        """
        Take one request from receipt to a live audio stream.

        Args:
            raw: Fields as received from the transport.
            identity: Caller address and anonymous user id.
            endpoint: Endpoint name for logs.
            run: Run to record states into; a fresh one when omitted.

        Raises:
            AppError: The typed failure; the run is left in ERRORED.
        """
        run = run if run is not None else PipelineRun()
        result: Optional[SynthesisResult] = None
        try:
            self.ip_limiter.check(identity.ip)
            if not identity.user_is_new:
                self.user_limiter.check(identity.user_id)
            run.advance(PipelineState.RATE_CHECKED)

            request = self.validator(raw)
            run.advance(PipelineState.VALIDATED)

            self.quota.check_quota(identity.user_id, request.character_count)
            run.advance(PipelineState.QUOTA_CHECKED)

            result = await self.client.generate(request)
            run.advance(PipelineState.SYNTHESIZED)

            self.quota.consume_quota(identity.user_id, request.character_count)
            run.advance(PipelineState.QUOTA_CONSUMED)
        except AppError as e:
            await self._discard(result)
            self._record_failure(run, e, identity, endpoint)
            raise
        except Exception as e:
            await self._discard(result)
            internal = InternalError()
            error(
                _LOG,
                "pipeline_crashed",
                endpoint=endpoint,
                identity=identity.kind,
                state=run.state.value,
                exc_info=True,
            )
            self._record_failure(run, internal, identity, endpoint)
            raise internal from e

        metrics.record_request("success", run.elapsed())
        info(
            _LOG,
            "generate_ok",
            endpoint=endpoint,
            identity=identity.kind,
            chars=request.character_count,
            language=request.language,
            voice=request.voice,
            format=request.format,
        )
        return PipelineOutcome(run=run, request=request, result=result)

    @staticmethod
    async def _discard(result: Optional[SynthesisResult]) -> None:
        # Audio already opened upstream must not outlive a failed run
        if result is not None:
            await result.audio.aclose()

    def _record_failure(self, run: PipelineRun, exc: AppError, identity: CallerIdentity, endpoint: str) -> None:
        failed_at = run.state.value
        run.fail(exc)
        metrics.record_request("error", run.elapsed(), code=exc.code)
        log = error if exc.status_code >= 500 else warn
        log(
            _LOG,
            "generate_failed",
            endpoint=endpoint,
            identity=identity.kind,
            state=failed_at,
            code=exc.code,
            status=exc.status_code,
            attempts=exc.attempts if isinstance(exc, UpstreamError) else 0,
        )

    def start(self) -> None:
        """Start the background sweeps owned by the limiters and tracker."""
        self.ip_limiter.start()
        self.user_limiter.start()
        self.quota.start()

    async def aclose(self) -> None:
        self.ip_limiter.stop()
        self.user_limiter.stop()
        self.quota.stop()
        await self.client.aclose()


# Process-wide pipeline, created lazily
_pipeline: Optional[SpeechPipeline] = None
_pipeline_lock = threading.Lock()


def get_pipeline(config: ProxyConfig) -> SpeechPipeline:
    """
    Get or create the global SpeechPipeline.

    Thread-safe lazy singleton; ``config`` is only read on first call.
    """
    global _pipeline
    if _pipeline is None:
        with _pipeline_lock:
            if _pipeline is None:
                _pipeline = SpeechPipeline.from_config(config)
    return _pipeline


def reset_pipeline() -> None:
    """Drop the global pipeline (tests). Background sweeps are stopped."""
    global _pipeline
    with _pipeline_lock:
        pipeline, _pipeline = _pipeline, None
    if pipeline is not None:
        pipeline.ip_limiter.stop()
        pipeline.user_limiter.stop()
        pipeline.quota.stop()
