"""Shared fixtures: controllable clock, provider stubs, clean environment."""
from __future__ import annotations

import os
from datetime import datetime, timezone

import httpx
import pytest

from tts_proxy.core.config import UpstreamConfig
from tts_proxy.upstream.client import SynthesisClient

# 2025-03-15 12:00:00 UTC
MID_MARCH = datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc).timestamp()

VALID_TEXT = "Hello there, this is a short test sentence."


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = MID_MARCH):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ProviderStub:
    """
    httpx.MockTransport handler replaying a scripted list of responses.

    Items are httpx.Response objects or exceptions to raise. The last item
    repeats once the script runs out.
    """

    def __init__(self, *script):
        self.script = list(script) or [httpx.Response(200, content=b"ID3-audio")]
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self.script[min(len(self.requests), len(self.script)) - 1]
        if isinstance(item, Exception):
            raise item
        # Fresh response per call so repeated items are not shared
        return httpx.Response(item.status_code, headers=item.headers, content=item.content)

    @property
    def calls(self) -> int:
        return len(self.requests)


class SleepRecorder:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_client(stub: ProviderStub, sleep=None, **overrides) -> SynthesisClient:
    config = UpstreamConfig(api_key="sk-test-key", **overrides)
    return SynthesisClient(
        config,
        transport=httpx.MockTransport(stub),
        sleep=sleep or SleepRecorder(),
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep real credentials and overrides out of tests."""
    for name in list(os.environ):
        if name.startswith("TTS_PROXY_") or name == "OPENAI_API_KEY":
            monkeypatch.delenv(name, raising=False)
    yield
