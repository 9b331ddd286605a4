"""
Tests for SpeechPipeline.

Tests cover:
- Happy path state history and quota charging
- Rate limit runs before validation
- Validation/quota failures never reach the provider
- Provider failure never charges quota
- Limiter selection by identity (address always, user for returning callers)
- Unexpected exceptions become InternalError
- PipelineRun transition rules
"""
import asyncio

import httpx
import pytest

from conftest import VALID_TEXT, ProviderStub, make_client
from tts_proxy.core.config import ProxyConfig, Settings
from tts_proxy.limits.quota import QuotaTracker
from tts_proxy.limits.rate_limiter import FixedWindowRateLimiter
from tts_proxy.services.errors import (
    InternalError,
    QuotaExceededError,
    RateLimitError,
    UpstreamError,
    ValidationError,
)
from tts_proxy.services.identity import CallerIdentity
from tts_proxy.services.pipeline import (
    InvalidTransition,
    PipelineRun,
    PipelineState as S,
    SpeechPipeline,
    get_pipeline,
    reset_pipeline,
)
from tts_proxy.services.validators import RawSpeechRequest, validate_and_sanitize

RETURNING = CallerIdentity(ip="198.51.100.4", user_id="user-1")
NEW = CallerIdentity(ip="198.51.100.4", user_id="user-2", user_is_new=True)


def _build(clock, stub=None, ip_max=10, user_max=50, quota_limits=None, validator=validate_and_sanitize):
    return SpeechPipeline(
        ip_limiter=FixedWindowRateLimiter("ip", ip_max, 60, clock=clock),
        user_limiter=FixedWindowRateLimiter("user", user_max, 60, clock=clock),
        quota=QuotaTracker(enabled=True, tier_limits=quota_limits, clock=clock),
        client=make_client(stub or ProviderStub()),
        validator=validator,
    )


def _raw(text=VALID_TEXT, **fields):
    return RawSpeechRequest(input=text, voice=fields.pop("voice", "coral"), **fields)


def _run(pipeline, raw, identity=RETURNING, run=None):
    async def go():
        outcome = await pipeline.run(raw, identity, run=run)
        body = await outcome.result.audio.read()
        return outcome, body
    return asyncio.run(go())


class TestHappyPath:

    def test_states_and_charging(self, clock):
        pipeline = _build(clock)

        outcome, body = _run(pipeline, _raw())

        assert body == b"ID3-audio"
        assert outcome.run.history == [
            S.RECEIVED, S.RATE_CHECKED, S.VALIDATED, S.QUOTA_CHECKED, S.SYNTHESIZED, S.QUOTA_CONSUMED,
        ]
        chars = outcome.request.character_count
        assert pipeline.quota.get_ledger("user-1").characters_used == chars

        outcome.run.mark_responded()
        assert outcome.run.state is S.RESPONDED
        assert outcome.run.finished

    def test_result_metadata(self, clock):
        outcome, _ = _run(_build(clock), _raw(format="flac"))
        assert outcome.result.mime_type == "audio/flac"
        assert outcome.request.language == "en"


class TestFailures:

    def test_validation_error_skips_provider_and_quota(self, clock):
        stub = ProviderStub()
        pipeline = _build(clock, stub)
        run = PipelineRun()

        with pytest.raises(ValidationError):
            _run(pipeline, _raw(voice="robot"), run=run)

        assert run.state is S.ERRORED
        assert run.history == [S.RECEIVED, S.RATE_CHECKED, S.ERRORED]
        assert isinstance(run.error, ValidationError)
        assert stub.calls == 0
        assert pipeline.quota.get_ledger("user-1").characters_used == 0

    def test_rate_limit_runs_before_validation(self, clock):
        seen = []

        def spy(raw):
            seen.append(raw)
            return validate_and_sanitize(raw)

        pipeline = _build(clock, ip_max=1, validator=spy)
        _run(pipeline, _raw())

        run = PipelineRun()
        with pytest.raises(RateLimitError) as exc_info:
            _run(pipeline, _raw(text="bad"), run=run)

        assert exc_info.value.limiter == "ip"
        assert run.history == [S.RECEIVED, S.ERRORED]
        assert len(seen) == 1

    def test_invalid_requests_still_count_against_rate_limit(self, clock):
        pipeline = _build(clock, ip_max=2)
        for _ in range(2):
            with pytest.raises(ValidationError):
                _run(pipeline, _raw(text="short"))
        with pytest.raises(RateLimitError):
            _run(pipeline, _raw())

    def test_quota_exceeded_skips_provider(self, clock):
        stub = ProviderStub()
        pipeline = _build(clock, stub, quota_limits={"FREE": 20})
        run = PipelineRun()

        with pytest.raises(QuotaExceededError) as exc_info:
            _run(pipeline, _raw(), run=run)

        assert exc_info.value.remaining == 20
        assert run.history[-2:] == [S.VALIDATED, S.ERRORED]
        assert stub.calls == 0

    def test_provider_failure_charges_nothing(self, clock):
        stub = ProviderStub(httpx.Response(401, text="bad key"))
        pipeline = _build(clock, stub)
        run = PipelineRun()

        with pytest.raises(UpstreamError) as exc_info:
            _run(pipeline, _raw(), run=run)

        assert exc_info.value.status_code == 401
        assert run.history[-2:] == [S.QUOTA_CHECKED, S.ERRORED]
        assert pipeline.quota.get_ledger("user-1").characters_used == 0

    def test_unexpected_exception_becomes_internal_error(self, clock):
        def broken(raw):
            raise KeyError("boom")

        pipeline = _build(clock, validator=broken)
        run = PipelineRun()

        with pytest.raises(InternalError) as exc_info:
            _run(pipeline, _raw(), run=run)

        assert exc_info.value.status_code == 500
        assert run.state is S.ERRORED
        assert "boom" not in exc_info.value.message


class TestLimiterSelection:

    def test_new_callers_skip_user_limiter(self, clock):
        pipeline = _build(clock, user_max=1)
        _run(pipeline, _raw(), identity=NEW)
        _run(pipeline, _raw(), identity=NEW)
        assert len(pipeline.user_limiter) == 0
        assert pipeline.ip_limiter.get_remaining(NEW.ip) == 8

    def test_returning_callers_hit_user_limiter(self, clock):
        pipeline = _build(clock, user_max=1)
        _run(pipeline, _raw())
        with pytest.raises(RateLimitError) as exc_info:
            _run(pipeline, _raw())
        assert exc_info.value.limiter == "user"

    def test_address_limit_spans_users(self, clock):
        pipeline = _build(clock, ip_max=1)
        _run(pipeline, _raw(), identity=CallerIdentity(ip="10.0.0.1", user_id="a"))
        with pytest.raises(RateLimitError):
            _run(pipeline, _raw(), identity=CallerIdentity(ip="10.0.0.1", user_id="b"))


class TestPipelineRun:

    def test_out_of_order_transition(self):
        run = PipelineRun()
        with pytest.raises(InvalidTransition):
            run.advance(S.VALIDATED)

    def test_no_transition_after_error(self):
        run = PipelineRun()
        run.fail(ValidationError("bad"))
        with pytest.raises(InvalidTransition):
            run.advance(S.RATE_CHECKED)
        with pytest.raises(InvalidTransition):
            run.fail(ValidationError("again"))

    def test_responded_only_after_quota_consumed(self):
        run = PipelineRun()
        run.advance(S.RATE_CHECKED)
        with pytest.raises(InvalidTransition):
            run.mark_responded()


class TestGlobalPipeline:

    def test_singleton_and_reset(self):
        config = ProxyConfig.from_settings(Settings(raw={"rate_limit": {"ip_max_requests": 3}}))
        reset_pipeline()
        try:
            first = get_pipeline(config)
            assert get_pipeline(config) is first
            assert first.ip_limiter.max_requests == 3
        finally:
            reset_pipeline()
        assert get_pipeline(config) is not first
        reset_pipeline()
